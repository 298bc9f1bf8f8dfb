# movieswipe/preference_logic.py
"""Group preference aggregation.

ranked_preferences rewards raw popularity times intensity (summed weights).
common_genres captures consensus: genres listed by a strict majority of the
members who set preferences, weighted by their average weight.
"""
import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from . import crud, schemas

MOST_POPULAR_LIMIT = 5


def round_half_up(numerator: int, denominator: int) -> int:
    """round(numerator / denominator) with halves rounded up, for positive ints."""
    return (2 * numerator + denominator) // (2 * denominator)


def aggregate_preferences(
    group_id: int, member_preferences: Dict[int, List[schemas.GenrePreference]]
) -> schemas.GroupPreferences:
    """Combine per-member genre preferences into ranked and common genres.

    Members with an empty list do not count towards the majority threshold.
    An empty result (member_count == 0) means there is not enough data to
    recommend anything.
    """
    contributing = {user_id: prefs for user_id, prefs in member_preferences.items() if prefs}
    member_count = len(contributing)

    totals: Dict[int, int] = {}
    counts: Dict[int, int] = {}
    names: Dict[int, str] = {}
    for prefs in contributing.values():
        for pref in prefs:
            totals[pref.genre_id] = totals.get(pref.genre_id, 0) + pref.weight
            counts[pref.genre_id] = counts.get(pref.genre_id, 0) + 1
            names.setdefault(pref.genre_id, pref.genre_name)

    ranked = [
        schemas.GenreWeight(genre_id=genre_id, genre_name=names[genre_id], weight=total)
        for genre_id, total in totals.items()
    ]
    ranked.sort(key=lambda g: (-g.weight, g.genre_id))

    common = [
        schemas.GenreWeight(
            genre_id=genre_id,
            genre_name=names[genre_id],
            weight=round_half_up(totals[genre_id], counts[genre_id]),
        )
        for genre_id in totals
        if counts[genre_id] * 2 > member_count
    ]
    common.sort(key=lambda g: (-g.weight, g.genre_id))

    return schemas.GroupPreferences(
        group_id=group_id,
        member_count=member_count,
        ranked_preferences=ranked,
        common_genres=common,
        individual_preferences=contributing,
    )


def load_member_preferences(db: Session, group_id: int) -> Dict[int, List[schemas.GenrePreference]]:
    """Read every member's preference list for the group, keyed by user id."""
    members = crud.get_members_with_preferences(db, group_id)
    return {
        member.user_id: [schemas.GenrePreference.model_validate(p) for p in member.preferences]
        for member in members
    }


def get_group_preferences(db: Session, group_id: int) -> schemas.GroupPreferences:
    aggregated = aggregate_preferences(group_id, load_member_preferences(db, group_id))
    logging.info(
        f"Aggregated preferences for group {group_id}: {aggregated.member_count} members, "
        f"{len(aggregated.ranked_preferences)} genres, {len(aggregated.common_genres)} common"
    )
    return aggregated


def genre_stats(group_id: int, member_preferences: Dict[int, List[schemas.GenrePreference]]) -> schemas.GenreStats:
    """How many members listed each genre, as a count and a percentage."""
    contributing = [prefs for prefs in member_preferences.values() if prefs]
    total_users = len(contributing)

    counts: Dict[int, int] = {}
    names: Dict[int, str] = {}
    for prefs in contributing:
        for pref in prefs:
            counts[pref.genre_id] = counts.get(pref.genre_id, 0) + 1
            names.setdefault(pref.genre_id, pref.genre_name)

    stats = [
        schemas.GenreStat(
            genre_id=genre_id,
            genre_name=names[genre_id],
            count=count,
            percentage=round_half_up(count * 100, total_users),
        )
        for genre_id, count in counts.items()
    ]
    stats.sort(key=lambda s: (-s.count, s.genre_id))

    return schemas.GenreStats(
        group_id=group_id,
        total_users=total_users,
        genre_stats=stats,
        most_popular_genres=[s.genre_name for s in stats[:MOST_POPULAR_LIMIT]],
    )
