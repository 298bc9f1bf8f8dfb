# movieswipe/recommendation_logic.py
import logging
import time
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from . import config, preference_logic, schemas
from .catalog import CatalogError, CatalogNotFound, CatalogUnauthorized, MovieCatalog
from .errors import CatalogUnavailableError, InsufficientDataError, ValidationError

# --- Scoring policy ---
# Every term is non-decreasing in rating, preference weight and release date,
# and the total is clamped so scores stay comparable across calls.
BASE_RATING_WEIGHT = 3.0 # catalog rating is 0..10
GENRE_PREFERENCE_WEIGHT = 2.0 # per point of common-genre weight
INDIVIDUAL_PREFERENCE_WEIGHT = 0.5 # per point of each member's matching weight
POPULARITY_VOTE_THRESHOLD = 1000
POPULARITY_BONUS = 5.0
HIGH_RATING_THRESHOLD = 7.5
RECENCY_WINDOW = timedelta(days=730) # ~2 years
RECENCY_BONUS = 5.0
MIN_SCORE = 0.0
MAX_SCORE = 100.0


def parse_release_date(release_date: Optional[str]) -> Optional[date]:
    if not release_date:
        return None
    try:
        return date.fromisoformat(release_date[:10])
    except ValueError:
        return None


def release_year(release_date: Optional[str]) -> Optional[int]:
    parsed = parse_release_date(release_date)
    if parsed:
        return parsed.year
    try:
        return int(release_date.split("-")[0]) if release_date else None
    except ValueError:
        return None


def score_movie(movie: schemas.CatalogMovie, preferences: schemas.GroupPreferences, today: date) -> Tuple[float, str]:
    """Score one catalog movie for the group. Returns (score, reason)."""
    movie_genre_ids = {g.id for g in movie.genres}
    reasons: List[str] = []

    score = BASE_RATING_WEIGHT * max(movie.vote_average, 0.0)
    if movie.vote_average >= HIGH_RATING_THRESHOLD:
        reasons.append("High-rated movie")

    common_matches = [g for g in preferences.common_genres if g.genre_id in movie_genre_ids]
    if common_matches:
        score += GENRE_PREFERENCE_WEIGHT * sum(g.weight for g in common_matches)
        reasons.append("Matches group preference: " + ", ".join(g.genre_name for g in common_matches))

    if movie.vote_count >= POPULARITY_VOTE_THRESHOLD:
        score += POPULARITY_BONUS
        reasons.append("Popular with audiences")

    released = parse_release_date(movie.release_date)
    if released is not None and today - released <= RECENCY_WINDOW:
        score += RECENCY_BONUS
        reasons.append("Recent release")

    individual_weight = 0
    matching_members = 0
    for prefs in preferences.individual_preferences.values():
        member_weight = sum(p.weight for p in prefs if p.genre_id in movie_genre_ids)
        if member_weight:
            individual_weight += member_weight
            matching_members += 1
    if individual_weight:
        score += INDIVIDUAL_PREFERENCE_WEIGHT * individual_weight
        reasons.append(f"Matches preferences of {matching_members} member(s)")

    score = round(min(MAX_SCORE, max(MIN_SCORE, score)), 2)
    return score, "; ".join(reasons) if reasons else "Popular in your group's genres"


def _fetch_genre_movies(catalog: MovieCatalog, genre_id: int) -> List[schemas.CatalogMovie]:
    """Fetch one genre page, retrying a transient failure once."""
    last_error: Optional[CatalogError] = None
    for attempt in range(2):
        try:
            return catalog.by_genre(genre_id, page=1)
        except (CatalogUnauthorized, CatalogNotFound) as e:
            last_error = e
            break
        except CatalogError as e:
            last_error = e
            logging.warning(f"Catalog lookup for genre {genre_id} failed (attempt {attempt + 1}/2): {e}")
    logging.error(f"Catalog unavailable while fetching genre {genre_id}: {last_error}")
    raise CatalogUnavailableError(str(last_error)) from last_error


def recommend_for_preferences(
    preferences: schemas.GroupPreferences,
    n: int,
    catalog: MovieCatalog,
    today: Optional[date] = None,
    top_genres: Optional[int] = None,
) -> schemas.RecommendationResponse:
    """Score, deduplicate and rank catalog movies for already aggregated preferences."""
    if preferences.member_count == 0 or not preferences.ranked_preferences:
        raise InsufficientDataError()
    today = today or date.today()
    top_genres = top_genres or config.TOP_GENRES_LIMIT

    genre_ids = [g.genre_id for g in preferences.ranked_preferences[:top_genres]]

    best: Dict[int, schemas.MovieCandidate] = {}
    for genre_id in genre_ids:
        for movie in _fetch_genre_movies(catalog, genre_id):
            score, reason = score_movie(movie, preferences, today)
            current = best.get(movie.id)
            if current is not None and current.score >= score:
                continue
            best[movie.id] = schemas.MovieCandidate(
                movie_id=movie.id,
                title=movie.title,
                year=release_year(movie.release_date),
                genres=[g.name for g in movie.genres],
                poster_url=movie.poster_url,
                rating=movie.vote_average,
                score=score,
                reason=reason,
            )

    ranked = sorted(best.values(), key=lambda c: (-c.score, c.movie_id))
    return schemas.RecommendationResponse(
        group_id=preferences.group_id,
        recommendations=ranked[:n],
        genres_used=genre_ids,
    )


def generate_group_recommendations(
    db: Session,
    group_id: int,
    n: int,
    catalog: MovieCatalog,
    today: Optional[date] = None,
) -> schemas.RecommendationResponse:
    """Recommend up to n movies for a group from its members' genre preferences.

    Raises:
        ValidationError: n is outside 1..MAX_RECOMMENDATIONS.
        InsufficientDataError: no member has set preferences.
        CatalogUnavailableError: the movie catalog could not be reached.
    """
    if n <= 0 or n > config.MAX_RECOMMENDATIONS:
        raise ValidationError(f"Number of recommendations (n) must be between 1 and {config.MAX_RECOMMENDATIONS}.")

    start_time = time.time()
    preferences = preference_logic.get_group_preferences(db, group_id)
    response = recommend_for_preferences(preferences, n, catalog, today=today)
    end_time = time.time()
    logging.info(
        f"Generated {len(response.recommendations)} recommendations for group {group_id} "
        f"from genres {response.genres_used} in {end_time - start_time:.4f} seconds"
    )
    return response
