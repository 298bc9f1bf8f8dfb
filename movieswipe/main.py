# movieswipe/main.py
from fastapi import FastAPI, Depends, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
import contextlib

from . import config, group_logic, models, recommendation_logic, schemas, voting_logic
from .catalog import MovieCatalog, TMDBCatalog
from .database import get_db
from .errors import DomainError, ErrorCode, ErrorKind, UnauthenticatedError
from .notifications import LoggingNotifier, Notifier

# API Rate Limiting setup
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

STATUS_BY_KIND = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.VALIDATION: 400,
    ErrorKind.PRECONDITION: 422,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}


# --- Application Lifespan Management ---
@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logging.info("Application startup...")
    app.state.catalog = TMDBCatalog()
    app.state.notifier = LoggingNotifier()
    logging.info("Application startup complete.")
    yield # Application runs here
    # --- Shutdown ---
    logging.info("Application shutdown...")
    app.state.catalog.close()
    logging.info("Application shutdown complete.")


# --- FastAPI App Initialization ---
limiter = Limiter(key_func=get_remote_address, enabled=config.RATE_LIMIT_ENABLED)
app = FastAPI(title="MovieSwipe Group Voting API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def _error_response(status_code: int, code: str, kind: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "kind": kind, "message": message}},
    )


@app.exception_handler(DomainError)
def domain_error_handler(request: Request, exc: DomainError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logging.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logging.info(f"{request.method} {request.url.path} rejected: {exc}")
    return _error_response(status_code, exc.code.value, exc.kind.value, exc.message)


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request")
    return _error_response(422, ErrorCode.VALIDATION_ERROR.value, ErrorKind.VALIDATION.value, message)


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    logging.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(
        500, ErrorCode.INTERNAL_ERROR.value, ErrorKind.INTERNAL.value, "An internal error occurred."
    )


# --- Dependencies ---
def get_catalog(request: Request) -> MovieCatalog:
    return request.app.state.catalog


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_current_user(
    x_user_id: Optional[int] = Header(None),
    db: Session = Depends(get_db),
) -> models.User:
    """Resolve the caller from the X-User-Id header set by the auth gateway."""
    if x_user_id is None:
        raise UnauthenticatedError()
    return group_logic.get_active_user(db, x_user_id)


# --- API Endpoints ---

@app.get("/")
def read_root():
    return {"message": "Welcome to the MovieSwipe Group Voting API"}


# Users
@app.post("/users", response_model=schemas.User)
def register_user(user: schemas.UserCreate, db: Session = Depends(get_db)):
    return group_logic.register_user(db, user)

@app.get("/users/me", response_model=schemas.User)
def read_current_user(current_user: models.User = Depends(get_current_user)):
    return current_user

@app.patch("/users/me", response_model=schemas.User)
def update_current_user(
    update: schemas.UserUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return group_logic.update_user(db, current_user.id, update)

@app.delete("/users/me", response_model=schemas.User)
def deactivate_current_user(current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_logic.deactivate_user(db, current_user.id)


@app.get("/genres", response_model=List[schemas.CatalogGenre])
def list_genres(
    current_user: models.User = Depends(get_current_user),
    catalog: MovieCatalog = Depends(get_catalog),
):
    return group_logic.list_genres(catalog)


# Groups
@app.post("/groups", response_model=schemas.Group, status_code=201)
def create_group(
    data: schemas.GroupCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_group = group_logic.create_group(db, current_user.id, data)
    return group_logic.to_group_schema(db_group)

@app.get("/groups", response_model=List[schemas.Group])
def list_groups(current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [group_logic.to_group_schema(g) for g in group_logic.list_user_groups(db, current_user.id)]

@app.post("/groups/join", response_model=schemas.Group)
def join_group(
    data: schemas.JoinGroup,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    db_group = group_logic.join_group(db, data.invitation_code, current_user.id, notifier)
    return group_logic.to_group_schema(db_group)

@app.get("/groups/{group_id}", response_model=schemas.Group)
def read_group(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_logic.to_group_schema(group_logic.get_group(db, group_id, current_user.id))

@app.delete("/groups/{group_id}")
def delete_group(
    group_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    group_logic.delete_group(db, group_id, current_user.id, notifier)
    return {"message": "Group deleted"}

@app.post("/groups/{group_id}/leave")
def leave_group(
    group_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    group_logic.leave_group(db, group_id, current_user.id, notifier)
    return {"message": "Left group"}

@app.get("/groups/{group_id}/invitation", response_model=schemas.InvitationCode)
def read_invitation_code(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_logic.get_invitation_code(db, group_id, current_user.id)

@app.post("/groups/{group_id}/invitation", response_model=schemas.InvitationCode)
def regenerate_invitation_code(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_logic.regenerate_invitation_code(db, group_id, current_user.id)

@app.get("/groups/{group_id}/stats", response_model=schemas.GroupStats)
def read_group_stats(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_logic.get_group_stats(db, group_id, current_user.id)


# Preferences
@app.put("/groups/{group_id}/preferences/me", response_model=List[schemas.GenrePreference])
def set_my_preferences(
    group_id: int,
    data: schemas.PreferencesUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return group_logic.set_member_preferences(db, group_id, current_user.id, data.preferences)

@app.get("/groups/{group_id}/preferences/me", response_model=List[schemas.GenrePreference])
def read_my_preferences(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_logic.get_member_preferences(db, group_id, current_user.id)

@app.delete("/groups/{group_id}/preferences/me")
def clear_my_preferences(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    group_logic.clear_member_preferences(db, group_id, current_user.id)
    return {"message": "Preferences cleared"}

@app.get("/groups/{group_id}/preferences", response_model=schemas.GroupPreferences)
def read_group_preferences(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_logic.get_aggregated_preferences(db, group_id, current_user.id)

@app.get("/groups/{group_id}/preferences/stats", response_model=schemas.GenreStats)
def read_genre_stats(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_logic.get_genre_stats(db, group_id, current_user.id)


# Recommendations
@app.get("/groups/{group_id}/recommendations", response_model=schemas.RecommendationResponse)
@limiter.limit(config.RECOMMENDATIONS_RATE_LIMIT)
def get_recommendations_for_group(
    request: Request,
    group_id: int,
    n: int = config.DEFAULT_RECOMMENDATIONS,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MovieCatalog = Depends(get_catalog),
):
    """
    Generates genre-weighted recommendations for a group.
    """
    logging.info(f"Received recommendation request for group_id={group_id}, n={n}")
    group_logic.require_member(db, group_id, current_user.id)
    return recommendation_logic.generate_group_recommendations(db, group_id, n, catalog)


# Voting sessions
@app.post("/groups/{group_id}/sessions", response_model=schemas.VotingSession, status_code=201)
@limiter.limit(config.SESSION_CREATE_RATE_LIMIT)
def create_voting_session(
    request: Request,
    group_id: int,
    settings: Optional[schemas.SessionSettings] = None,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    catalog: MovieCatalog = Depends(get_catalog),
    notifier: Notifier = Depends(get_notifier),
):
    db_session = voting_logic.create_session(
        db, group_id, current_user.id, settings or schemas.SessionSettings(), catalog, notifier
    )
    return voting_logic.to_session_schema(db_session)

@app.get("/groups/{group_id}/sessions/active", response_model=Optional[schemas.VotingSession])
def read_open_session(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    db_session = voting_logic.get_open_session(db, group_id, current_user.id)
    return voting_logic.to_session_schema(db_session) if db_session else None

@app.get("/groups/{group_id}/sessions", response_model=List[schemas.VotingSession])
def read_session_history(group_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [voting_logic.to_session_schema(s) for s in voting_logic.get_history(db, group_id, current_user.id)]

@app.get("/sessions/{session_id}", response_model=schemas.VotingSession)
def read_session(session_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return voting_logic.to_session_schema(voting_logic.get_session(db, session_id, current_user.id))

@app.post("/sessions/{session_id}/start", response_model=schemas.VotingSession)
def start_session(
    session_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return voting_logic.to_session_schema(voting_logic.start_session(db, session_id, current_user.id, notifier))

@app.post("/sessions/{session_id}/end", response_model=schemas.SessionResults)
def end_session(
    session_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return voting_logic.end_session(db, session_id, current_user.id, notifier)

@app.post("/sessions/{session_id}/cancel", response_model=schemas.VotingSession)
def cancel_session(
    session_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return voting_logic.to_session_schema(voting_logic.cancel_session(db, session_id, current_user.id, notifier))

@app.post("/sessions/{session_id}/votes", response_model=schemas.Vote)
@limiter.limit(config.VOTE_RATE_LIMIT)
def cast_vote(
    request: Request,
    session_id: int,
    vote: schemas.VoteCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return voting_logic.cast_vote(db, session_id, current_user.id, vote.movie_id, vote.vote, notifier)

@app.get("/sessions/{session_id}/votes", response_model=List[schemas.Vote])
def read_votes(
    session_id: int,
    mine: bool = False,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return voting_logic.get_votes(db, session_id, current_user.id, mine=mine)

@app.get("/sessions/{session_id}/results", response_model=schemas.SessionResults)
def read_results(session_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return voting_logic.get_results(db, session_id, current_user.id)

@app.get("/sessions/{session_id}/stats", response_model=schemas.VotingStats)
def read_voting_stats(session_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return voting_logic.get_voting_stats(db, session_id, current_user.id)
