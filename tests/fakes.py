"""In-memory stand-ins for the movie catalog and the notifier."""

import threading
from datetime import date
from typing import Dict, List, Optional

from movieswipe.catalog import CatalogNotFound, CatalogTimeout, MovieCatalog
from movieswipe.notifications import Notifier
from movieswipe.schemas import CatalogGenre, CatalogMovie, GenrePreference

TODAY = date(2026, 1, 1)

COMEDY = CatalogGenre(id=35, name="Comedy")
DRAMA = CatalogGenre(id=18, name="Drama")
ACTION = CatalogGenre(id=28, name="Action")
HORROR = CatalogGenre(id=27, name="Horror")


def movie(movie_id, title, genres, rating, votes=100, release_date="2015-06-01"):
    return CatalogMovie(
        id=movie_id,
        title=title,
        overview=f"{title} overview",
        poster_url=f"https://image.example/{movie_id}.jpg",
        release_date=release_date,
        genres=list(genres),
        vote_average=rating,
        vote_count=votes,
    )


LAUGH_RIOT = movie(1, "Laugh Riot", [COMEDY], 7.0, votes=1500, release_date="2020-05-01")
TEARJERKER = movie(2, "Tearjerker", [DRAMA], 8.2, votes=500, release_date="2019-01-01")
ACTION_COMEDY = movie(3, "Action Comedy", [ACTION, COMEDY], 6.5, votes=2000, release_date="2025-03-01")
SLOW_BURN = movie(4, "Slow Burn", [DRAMA], 5.0, votes=50, release_date="2010-09-10")

DEFAULT_LIBRARY = {
    COMEDY.id: [LAUGH_RIOT, ACTION_COMEDY],
    DRAMA.id: [TEARJERKER, SLOW_BURN],
    ACTION.id: [ACTION_COMEDY],
}


def prefs(*entries):
    """prefs((35, "Comedy", 7), ...) -> list of GenrePreference."""
    return [GenrePreference(genre_id=g, genre_name=n, weight=w) for g, n, w in entries]


class FakeCatalog(MovieCatalog):
    """Serves a fixed library. `failures` makes the next N genre lookups time out."""

    def __init__(self, library: Optional[Dict[int, List[CatalogMovie]]] = None, failures: int = 0):
        self.library = DEFAULT_LIBRARY if library is None else library
        self.failures = failures
        self.genre_calls: List[int] = []
        self._lock = threading.Lock()

    def search(self, query, page=1):
        return [m for movies in self.library.values() for m in movies if query.lower() in m.title.lower()]

    def by_genre(self, genre_id, page=1):
        with self._lock:
            self.genre_calls.append(genre_id)
            if self.failures:
                self.failures -= 1
                raise CatalogTimeout(f"genre {genre_id} timed out")
        return list(self.library.get(genre_id, []))

    def by_id(self, movie_id):
        for movies in self.library.values():
            for m in movies:
                if m.id == movie_id:
                    return m
        raise CatalogNotFound(f"movie {movie_id}")

    def genres(self):
        if self.failures:
            raise CatalogTimeout("genre list timed out")
        return [COMEDY, DRAMA, ACTION, HORROR]


class DownCatalog(FakeCatalog):
    """Every lookup times out."""

    def __init__(self):
        super().__init__(failures=10 ** 6)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.group_events = []
        self.user_events = []

    def notify_group(self, group_id, event, payload):
        self.group_events.append((group_id, event, payload))

    def notify_user(self, user_id, event, payload):
        self.user_events.append((user_id, event, payload))

    def events(self):
        return [event for _, event, _ in self.group_events]


class FailingNotifier(Notifier):
    def notify_group(self, group_id, event, payload):
        raise RuntimeError("realtime gateway is down")

    def notify_user(self, user_id, event, payload):
        raise RuntimeError("realtime gateway is down")
