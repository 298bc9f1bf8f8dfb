# movieswipe/group_logic.py
"""Users, groups, membership and per-group genre preferences."""
import logging
import secrets
import string
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config, crud, models, preference_logic, schemas
from .catalog import CatalogError, MovieCatalog
from .errors import (
    AlreadyMemberError, CatalogUnavailableError, GroupInactiveError, GroupLimitReachedError,
    GroupNotFoundError, InvalidInvitationCodeError, NotAMemberError, NotOwnerError,
    OwnerCannotLeaveError, UserNotFoundError, ValidationError,
)
from .notifications import (
    GROUP_DELETED, GROUP_USER_JOINED, GROUP_USER_LEFT, Notifier, dispatch_group_event,
    dispatch_user_event,
)

INVITATION_CODE_LENGTH = 8
INVITATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITATION_CODE_ATTEMPTS = 5
MAX_PREFERENCES_PER_MEMBER = 10


# --- Users ---

def get_active_user(db: Session, user_id: int) -> models.User:
    db_user = crud.get_user(db, user_id)
    if db_user is None or not db_user.is_active:
        raise UserNotFoundError(user_id)
    return db_user


def register_user(db: Session, user: schemas.UserCreate) -> models.User:
    """Create the user on first authentication, or refresh the existing profile."""
    db_user = crud.get_user_by_external_id(db, user.external_id)
    try:
        if db_user is None:
            db_user = crud.create_user(db, user)
            logging.info(f"Registered user {db_user.id} ({user.email})")
            return db_user
        return crud.update_user(
            db, db_user, email=user.email, display_name=user.display_name, is_active=True
        )
    except IntegrityError:
        db.rollback()
        raise ValidationError("Email is already registered to another account")


def update_user(db: Session, user_id: int, update: schemas.UserUpdate) -> models.User:
    db_user = get_active_user(db, user_id)
    return crud.update_user(db, db_user, display_name=update.display_name)


def deactivate_user(db: Session, user_id: int) -> models.User:
    db_user = get_active_user(db, user_id)
    logging.info(f"Deactivating user {user_id}")
    return crud.update_user(db, db_user, is_active=False)


# --- Groups ---

def generate_invitation_code() -> str:
    return "".join(secrets.choice(INVITATION_CODE_ALPHABET) for _ in range(INVITATION_CODE_LENGTH))


def load_group(db: Session, group_id: int, require_active: bool = True) -> models.Group:
    db_group = crud.get_group(db, group_id)
    if db_group is None:
        raise GroupNotFoundError(group_id)
    if require_active and not db_group.is_active:
        raise GroupInactiveError()
    return db_group


def require_member(db: Session, group_id: int, user_id: int, require_active: bool = True) -> models.Group:
    db_group = load_group(db, group_id, require_active=require_active)
    if not crud.is_member(db, group_id, user_id):
        raise NotAMemberError()
    return db_group


def require_owner(db: Session, group_id: int, user_id: int, action: str) -> models.Group:
    db_group = load_group(db, group_id)
    if db_group.owner_id != user_id:
        raise NotOwnerError(action)
    return db_group


def _check_group_limit(db: Session, user_id: int) -> None:
    if crud.count_active_groups_for_user(db, user_id) >= config.MAX_GROUPS_PER_USER:
        raise GroupLimitReachedError(config.MAX_GROUPS_PER_USER)


def to_group_schema(db_group: models.Group) -> schemas.Group:
    return schemas.Group(
        id=db_group.id,
        name=db_group.name,
        description=db_group.description,
        owner_id=db_group.owner_id,
        invitation_code=db_group.invitation_code,
        is_active=db_group.is_active,
        created_at=db_group.created_at,
        updated_at=db_group.updated_at,
        members=[
            schemas.Member(
                user_id=member.user_id,
                display_name=member.user.display_name,
                joined_at=member.joined_at,
                preferences=[schemas.GenrePreference.model_validate(p) for p in member.preferences],
            )
            for member in db_group.members
        ],
    )


def create_group(db: Session, owner_id: int, data: schemas.GroupCreate) -> models.Group:
    get_active_user(db, owner_id)
    _check_group_limit(db, owner_id)

    for attempt in range(INVITATION_CODE_ATTEMPTS):
        try:
            db_group = crud.create_group(
                db, owner_id, data.name.strip(), data.description, generate_invitation_code()
            )
        except IntegrityError:
            logging.warning(f"Invitation code collision while creating group (attempt {attempt + 1})")
            continue
        logging.info(f"User {owner_id} created group {db_group.id} '{db_group.name}'")
        return db_group
    raise RuntimeError("Could not generate a unique invitation code")


def list_user_groups(db: Session, user_id: int) -> List[models.Group]:
    get_active_user(db, user_id)
    return crud.get_active_groups_for_user(db, user_id)


def get_group(db: Session, group_id: int, user_id: int) -> models.Group:
    return require_member(db, group_id, user_id)


def join_group(db: Session, invitation_code: str, user_id: int, notifier: Notifier) -> models.Group:
    db_user = get_active_user(db, user_id)
    db_group = crud.get_active_group_by_code(db, invitation_code.strip().upper())
    if db_group is None:
        raise InvalidInvitationCodeError()
    if crud.is_member(db, db_group.id, user_id):
        raise AlreadyMemberError()
    _check_group_limit(db, user_id)

    try:
        crud.add_member(db, db_group.id, user_id)
    except IntegrityError:
        # Lost a race against the same user joining concurrently
        raise AlreadyMemberError()

    logging.info(f"User {user_id} joined group {db_group.id}")
    dispatch_group_event(notifier, db_group.id, GROUP_USER_JOINED, {
        "group_id": db_group.id,
        "user_id": user_id,
        "display_name": db_user.display_name,
    })
    db.expire_all()
    return load_group(db, db_group.id)


def leave_group(db: Session, group_id: int, user_id: int, notifier: Notifier) -> None:
    db_group = load_group(db, group_id)
    if db_group.owner_id == user_id:
        raise OwnerCannotLeaveError()
    db_member = crud.get_member(db, group_id, user_id)
    if db_member is None:
        raise NotAMemberError()

    crud.remove_member(db, db_member)
    logging.info(f"User {user_id} left group {group_id}")
    dispatch_group_event(notifier, group_id, GROUP_USER_LEFT, {"group_id": group_id, "user_id": user_id})


def delete_group(db: Session, group_id: int, user_id: int, notifier: Notifier) -> None:
    """Soft delete. Memberships and voting history stay queryable."""
    db_group = require_owner(db, group_id, user_id, "delete the group")
    member_ids = [m.user_id for m in db_group.members]
    if not crud.deactivate_group(db, group_id):
        raise GroupInactiveError()
    logging.info(f"Group {group_id} deactivated by owner {user_id}")
    for member_id in member_ids:
        if member_id != user_id:
            dispatch_user_event(notifier, member_id, GROUP_DELETED, {"group_id": group_id})


def get_invitation_code(db: Session, group_id: int, user_id: int) -> schemas.InvitationCode:
    db_group = require_member(db, group_id, user_id)
    return schemas.InvitationCode(group_id=group_id, invitation_code=db_group.invitation_code)


def regenerate_invitation_code(db: Session, group_id: int, user_id: int) -> schemas.InvitationCode:
    require_owner(db, group_id, user_id, "regenerate the invitation code")
    for attempt in range(INVITATION_CODE_ATTEMPTS):
        code = generate_invitation_code()
        try:
            crud.set_invitation_code(db, group_id, code)
        except IntegrityError:
            logging.warning(f"Invitation code collision for group {group_id} (attempt {attempt + 1})")
            continue
        logging.info(f"Regenerated invitation code for group {group_id}")
        return schemas.InvitationCode(group_id=group_id, invitation_code=code)
    raise RuntimeError("Could not generate a unique invitation code")


def get_group_stats(db: Session, group_id: int, user_id: int) -> schemas.GroupStats:
    db_group = require_member(db, group_id, user_id)
    return schemas.GroupStats(
        group_id=group_id,
        total_members=len(db_group.members),
        members_with_preferences=sum(1 for m in db_group.members if m.preferences),
        created_at=db_group.created_at,
        last_updated=db_group.updated_at,
    )


# --- Preferences ---

def validate_preferences(preferences: List[schemas.GenrePreference]) -> None:
    """Domain checks for a member's preference list; raises ValidationError."""
    if not preferences:
        raise ValidationError("At least one genre must be selected")
    if len(preferences) > MAX_PREFERENCES_PER_MEMBER:
        raise ValidationError(f"Maximum {MAX_PREFERENCES_PER_MEMBER} genres can be selected")
    seen = set()
    for pref in preferences:
        if not isinstance(pref.weight, int) or not 1 <= pref.weight <= 10:
            raise ValidationError(f"Invalid weight for genre {pref.genre_id}: must be an integer from 1 to 10")
        if not pref.genre_name or not pref.genre_name.strip():
            raise ValidationError(f"Genre {pref.genre_id} is missing a name")
        if pref.genre_id in seen:
            raise ValidationError(f"Duplicate genre: {pref.genre_id}")
        seen.add(pref.genre_id)


def set_member_preferences(
    db: Session, group_id: int, user_id: int, preferences: List[schemas.GenrePreference]
) -> List[schemas.GenrePreference]:
    """Replace the caller's genre preferences for the group."""
    validate_preferences(preferences)
    load_group(db, group_id)
    db_member = crud.get_member(db, group_id, user_id)
    if db_member is None:
        raise NotAMemberError()
    stored = crud.replace_member_preferences(db, db_member.id, preferences)
    logging.info(f"User {user_id} set {len(stored)} genre preferences in group {group_id}")
    return [schemas.GenrePreference.model_validate(p) for p in stored]


def get_member_preferences(db: Session, group_id: int, user_id: int) -> List[schemas.GenrePreference]:
    load_group(db, group_id)
    db_member = crud.get_member(db, group_id, user_id)
    if db_member is None:
        raise NotAMemberError()
    return [schemas.GenrePreference.model_validate(p) for p in db_member.preferences]


def clear_member_preferences(db: Session, group_id: int, user_id: int) -> None:
    load_group(db, group_id)
    db_member = crud.get_member(db, group_id, user_id)
    if db_member is None:
        raise NotAMemberError()
    crud.delete_member_preferences(db, db_member.id)


def get_aggregated_preferences(db: Session, group_id: int, user_id: int) -> schemas.GroupPreferences:
    require_member(db, group_id, user_id)
    return preference_logic.get_group_preferences(db, group_id)


def get_genre_stats(db: Session, group_id: int, user_id: int) -> schemas.GenreStats:
    require_member(db, group_id, user_id)
    return preference_logic.genre_stats(group_id, preference_logic.load_member_preferences(db, group_id))


def list_genres(catalog: MovieCatalog) -> List[schemas.CatalogGenre]:
    """Genres members can pick from, straight from the movie catalog."""
    try:
        return catalog.genres()
    except CatalogError as e:
        logging.error(f"Could not load genre list from catalog: {e}")
        raise CatalogUnavailableError(str(e)) from e
