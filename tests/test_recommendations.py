"""Tests for recommendation scoring and ranking."""

import pytest

from movieswipe import preference_logic, recommendation_logic
from movieswipe.catalog import CatalogUnauthorized
from movieswipe.errors import CatalogUnavailableError, InsufficientDataError, ValidationError

from fakes import (
    COMEDY, LAUGH_RIOT, TODAY, DownCatalog, FakeCatalog, movie, prefs,
)


def group_prefs(member_prefs):
    return preference_logic.aggregate_preferences(1, member_prefs)


class TestScoreMovie:

    def test_score_components(self):
        """21 rating + 10 common genre + 5 popularity + 2.5 individual."""
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})

        score, reason = recommendation_logic.score_movie(LAUGH_RIOT, preferences, TODAY)

        assert score == 38.5
        assert "Matches group preference: Comedy" in reason
        assert "Popular with audiences" in reason
        assert "Recent release" not in reason

    def test_higher_rating_never_scores_lower(self):
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})
        worse = movie(10, "B", [COMEDY], 6.9)
        better = movie(11, "A", [COMEDY], 7.0)

        worse_score, _ = recommendation_logic.score_movie(worse, preferences, TODAY)
        better_score, _ = recommendation_logic.score_movie(better, preferences, TODAY)

        assert better_score > worse_score

    def test_recent_release_gets_bonus(self):
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})
        old = movie(10, "Old", [COMEDY], 7.0, release_date="2015-01-01")
        recent = movie(11, "Recent", [COMEDY], 7.0, release_date="2025-06-01")
        upcoming = movie(12, "Upcoming", [COMEDY], 7.0, release_date="2026-06-01")

        old_score, _ = recommendation_logic.score_movie(old, preferences, TODAY)
        recent_score, reason = recommendation_logic.score_movie(recent, preferences, TODAY)
        upcoming_score, _ = recommendation_logic.score_movie(upcoming, preferences, TODAY)

        assert recent_score == old_score + 5
        assert upcoming_score == recent_score
        assert "Recent release" in reason

    def test_missing_release_date_gets_no_bonus(self):
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})
        dated = movie(10, "Dated", [COMEDY], 7.0, release_date="2015-01-01")
        undated = movie(11, "Undated", [COMEDY], 7.0, release_date=None)

        assert recommendation_logic.score_movie(undated, preferences, TODAY)[0] == \
            recommendation_logic.score_movie(dated, preferences, TODAY)[0]

    def test_score_is_clamped(self):
        preferences = group_prefs({uid: prefs((35, "Comedy", 10)) for uid in range(1, 11)})
        blockbuster = movie(10, "Blockbuster", [COMEDY], 10.0, votes=50000, release_date="2025-10-01")

        score, _ = recommendation_logic.score_movie(blockbuster, preferences, TODAY)

        assert score == 100.0

    def test_unmatched_movie_has_default_reason(self):
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})
        plain = movie(10, "Plain", [], 5.0, votes=10, release_date="2001-01-01")

        score, reason = recommendation_logic.score_movie(plain, preferences, TODAY)

        assert score == 15.0
        assert reason == "Popular in your group's genres"


class TestRecommendForPreferences:

    def test_ranked_and_deduplicated(self, db, voting_group, catalog):
        response = recommendation_logic.generate_group_recommendations(
            db, voting_group.group.id, 10, catalog, today=TODAY
        )

        assert [c.movie_id for c in response.recommendations] == [3, 1, 2, 4]
        assert [c.score for c in response.recommendations] == [50.5, 47.0, 45.1, 35.5]
        assert response.genres_used == [35, 18]
        assert response.recommendations[0].year == 2025
        assert response.recommendations[0].genres == ["Action", "Comedy"]

    def test_truncates_to_n(self, db, voting_group, catalog):
        response = recommendation_logic.generate_group_recommendations(
            db, voting_group.group.id, 2, catalog, today=TODAY
        )

        assert [c.movie_id for c in response.recommendations] == [3, 1]

    def test_identical_input_gives_identical_output(self, db, voting_group, catalog):
        first = recommendation_logic.generate_group_recommendations(db, voting_group.group.id, 10, catalog, today=TODAY)
        second = recommendation_logic.generate_group_recommendations(db, voting_group.group.id, 10, catalog, today=TODAY)

        assert first.model_dump() == second.model_dump()

    def test_movie_listed_under_two_genres_appears_once(self, catalog):
        preferences = group_prefs({1: prefs((35, "Comedy", 5), (28, "Action", 5))})

        response = recommendation_logic.recommend_for_preferences(preferences, 10, catalog, today=TODAY)

        assert sorted(catalog.genre_calls) == [28, 35]
        assert [c.movie_id for c in response.recommendations].count(3) == 1

    def test_equal_scores_ordered_by_movie_id(self):
        twins = FakeCatalog({35: [movie(9, "Twin B", [COMEDY], 7.0), movie(5, "Twin A", [COMEDY], 7.0)]})
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})

        response = recommendation_logic.recommend_for_preferences(preferences, 10, twins, today=TODAY)

        assert [c.movie_id for c in response.recommendations] == [5, 9]

    def test_only_top_genres_are_fetched(self):
        catalog = FakeCatalog({})
        preferences = group_prefs({1: prefs(*[(gid, f"Genre {gid}", 10 - gid) for gid in range(1, 8)])})

        recommendation_logic.recommend_for_preferences(preferences, 10, catalog, today=TODAY, top_genres=5)

        assert catalog.genre_calls == [1, 2, 3, 4, 5]

    def test_no_preferences_is_insufficient_data(self, catalog):
        with pytest.raises(InsufficientDataError):
            recommendation_logic.recommend_for_preferences(group_prefs({1: []}), 10, catalog, today=TODAY)

    @pytest.mark.parametrize("n", [0, 51])
    def test_n_out_of_range(self, db, voting_group, catalog, n):
        with pytest.raises(ValidationError):
            recommendation_logic.generate_group_recommendations(db, voting_group.group.id, n, catalog)


class TestCatalogFailures:

    def test_transient_failure_is_retried_once(self):
        catalog = FakeCatalog(failures=1)
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})

        response = recommendation_logic.recommend_for_preferences(preferences, 10, catalog, today=TODAY)

        assert catalog.genre_calls == [35, 35]
        assert [c.movie_id for c in response.recommendations] == [3, 1]

    def test_unreachable_catalog_raises_unavailable(self):
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})

        with pytest.raises(CatalogUnavailableError):
            recommendation_logic.recommend_for_preferences(preferences, 10, DownCatalog(), today=TODAY)

    def test_bad_credentials_are_not_retried(self):
        class RejectingCatalog(FakeCatalog):
            def by_genre(self, genre_id, page=1):
                self.genre_calls.append(genre_id)
                raise CatalogUnauthorized("bad key")

        catalog = RejectingCatalog()
        preferences = group_prefs({1: prefs((35, "Comedy", 5))})

        with pytest.raises(CatalogUnavailableError):
            recommendation_logic.recommend_for_preferences(preferences, 10, catalog, today=TODAY)
        assert catalog.genre_calls == [35]
