# movieswipe/catalog.py
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests

from . import config
from .schemas import CatalogGenre, CatalogMovie


# --- Catalog errors ---
# The recommendation engine folds all of these into CatalogUnavailableError.
class CatalogError(Exception):
    """Base class for movie catalog failures."""

class CatalogUnauthorized(CatalogError):
    pass

class CatalogNotFound(CatalogError):
    pass

class CatalogRateLimited(CatalogError):
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after

class CatalogTimeout(CatalogError):
    pass


class MovieCatalog(ABC):
    """Interface for movie metadata lookups. Implementations must be swappable."""

    @abstractmethod
    def search(self, query: str, page: int = 1) -> List[CatalogMovie]:
        """Return movies matching a free-text query."""
        ...

    @abstractmethod
    def by_genre(self, genre_id: int, page: int = 1) -> List[CatalogMovie]:
        """Return popular movies tagged with the genre."""
        ...

    @abstractmethod
    def by_id(self, movie_id: int) -> CatalogMovie:
        """Return one movie, or raise CatalogNotFound."""
        ...

    @abstractmethod
    def genres(self) -> List[CatalogGenre]:
        """Return the catalog's genre list."""
        ...

    def close(self) -> None:
        """Release any resources held by the catalog."""


class TMDBCatalog(MovieCatalog):
    """The Movie Database (TMDB v3) catalog, with retries and an in-process TTL cache."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        cache_ttl: Optional[int] = None,
        cache_max_entries: Optional[int] = None,
        backoff_seconds: float = 0.5,
    ):
        self.api_key = config.TMDB_API_KEY if api_key is None else api_key
        self.base_url = (base_url or config.TMDB_BASE_URL).rstrip('/')
        self.timeout = config.TMDB_TIMEOUT if timeout is None else timeout
        self.max_retries = config.TMDB_MAX_RETRIES if max_retries is None else max_retries
        self.cache_ttl = config.TMDB_CACHE_TTL if cache_ttl is None else cache_ttl
        self.cache_max_entries = config.TMDB_CACHE_MAX_ENTRIES if cache_max_entries is None else cache_max_entries
        self.backoff_seconds = backoff_seconds
        self._cache: Dict[tuple, tuple] = {} # key -> (expires_at, payload)

        if not self.api_key:
            logging.warning("TMDB_API_KEY is not set. Catalog requests will be rejected as unauthorized.")

    # --- HTTP plumbing ---

    def _request(self, path: str, params: Optional[dict] = None) -> dict:
        params = dict(params or {})
        cache_key = (path, tuple(sorted(params.items())))
        cached = self._cache.get(cache_key)
        if cached is not None:
            if cached[0] > time.monotonic():
                return cached[1]
            del self._cache[cache_key]

        url = f"{self.base_url}{path}"
        last_error: Optional[CatalogError] = None
        for attempt in range(self.max_retries + 1):
            try:
                response = requests.get(url, params={**params, "api_key": self.api_key}, timeout=self.timeout)
            except requests.Timeout as e:
                last_error = CatalogTimeout(f"TMDB request to {path} timed out: {e}")
            except requests.RequestException as e:
                raise CatalogError(f"TMDB request to {path} failed: {e}") from e
            else:
                if response.status_code == 401:
                    raise CatalogUnauthorized("TMDB rejected the API key")
                if response.status_code == 404:
                    raise CatalogNotFound(f"TMDB resource not found: {path}")
                if response.status_code == 429:
                    last_error = CatalogRateLimited(
                        f"TMDB rate limit hit on {path}",
                        retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                    )
                elif response.status_code >= 400:
                    raise CatalogError(f"TMDB request to {path} failed with status {response.status_code}")
                else:
                    payload = _decode(response, path)
                    self._store(cache_key, payload)
                    return payload

            if attempt < self.max_retries:
                delay = self.backoff_seconds * (2 ** attempt)
                if isinstance(last_error, CatalogRateLimited) and last_error.retry_after:
                    delay = max(delay, last_error.retry_after)
                logging.warning(f"{last_error} (attempt {attempt + 1}/{self.max_retries + 1}), retrying in {delay:.2f}s")
                time.sleep(delay)

        logging.error(f"Giving up on TMDB request to {path}: {last_error}")
        raise last_error

    def _store(self, cache_key: tuple, payload: dict) -> None:
        if self._cache and len(self._cache) >= self.cache_max_entries:
            # Oldest insertion goes first
            self._cache.pop(next(iter(self._cache)))
        self._cache[cache_key] = (time.monotonic() + self.cache_ttl, payload)

    def _genre_names(self) -> Dict[int, str]:
        return {genre.id: genre.name for genre in self.genres()}

    def _to_movie(self, raw: dict, genre_names: Dict[int, str]) -> CatalogMovie:
        try:
            # List endpoints deliver genre_ids, the detail endpoint delivers genres
            if raw.get("genres"):
                genres = [CatalogGenre(id=g["id"], name=g.get("name", "")) for g in raw["genres"]]
            else:
                genres = [
                    CatalogGenre(id=gid, name=genre_names.get(gid, "Unknown"))
                    for gid in raw.get("genre_ids") or []
                ]
            poster_path = raw.get("poster_path")
            return CatalogMovie(
                id=raw["id"],
                title=raw.get("title") or "",
                overview=raw.get("overview") or "",
                poster_url=f"{config.TMDB_IMAGE_BASE_URL}{poster_path}" if poster_path else None,
                release_date=raw.get("release_date") or None,
                genres=genres,
                vote_average=float(raw.get("vote_average") or 0.0),
                vote_count=int(raw.get("vote_count") or 0),
                runtime=raw.get("runtime"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise CatalogError(f"Malformed TMDB movie record: {e!r}") from e

    # --- MovieCatalog ---

    def search(self, query: str, page: int = 1) -> List[CatalogMovie]:
        data = self._request("/search/movie", {
            "query": query,
            "page": page,
            "include_adult": "false",
            "language": "en-US",
        })
        genre_names = self._genre_names()
        return [self._to_movie(m, genre_names) for m in data.get("results") or []]

    def by_genre(self, genre_id: int, page: int = 1) -> List[CatalogMovie]:
        data = self._request("/discover/movie", {
            "with_genres": genre_id,
            "page": page,
            "sort_by": "popularity.desc",
            "include_adult": "false",
            "language": "en-US",
        })
        genre_names = self._genre_names()
        return [self._to_movie(m, genre_names) for m in data.get("results") or []]

    def by_id(self, movie_id: int) -> CatalogMovie:
        data = self._request(f"/movie/{movie_id}", {"language": "en-US"})
        return self._to_movie(data, {})

    def genres(self) -> List[CatalogGenre]:
        data = self._request("/genre/movie/list", {"language": "en-US"})
        try:
            return [CatalogGenre(id=g["id"], name=g["name"]) for g in data.get("genres") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogError(f"Malformed TMDB genre list: {e!r}") from e

    def close(self) -> None:
        logging.info("Clearing TMDB catalog cache.")
        self._cache.clear()


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _decode(response, path: str) -> dict:
    try:
        payload = response.json()
    except ValueError as e:
        raise CatalogError(f"TMDB returned a non-JSON body for {path}") from e
    if not isinstance(payload, dict):
        raise CatalogError(f"TMDB returned an unexpected payload for {path}")
    return payload
