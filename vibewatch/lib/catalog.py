"""TMDB movie catalog client.

Search and discovery are restricted to the configured original languages and
to movies released in or after the configured minimum year, ranked by
popularity.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Protocol

import httpx

from vibewatch.config import Settings, get_settings
from vibewatch.lib.exceptions import CatalogError
from vibewatch.lib.models import MovieDetails

logger = logging.getLogger(__name__)


class MovieCatalog(Protocol):
    """What the decision engine needs from a movie catalog."""

    async def resolve(self, movie_id: int) -> MovieDetails | None: ...

    async def popular_ids(self, limit: int) -> list[int]: ...


def _year(release_date: str | None) -> int | None:
    if not release_date:
        return None
    try:
        return int(release_date.split("-")[0])
    except ValueError:
        return None


def _to_details(data: dict[str, Any]) -> MovieDetails:
    return MovieDetails(
        movie_id=data["id"],
        title=data.get("title") or "",
        overview=data.get("overview") or "",
        year=_year(data.get("release_date")),
        runtime=data.get("runtime"),
        rating=data.get("vote_average"),
        poster_path=data.get("poster_path"),
        original_language=data.get("original_language") or "",
    )


class TMDBCatalog:
    """Async TMDB client with an in-process details cache."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._http_client: httpx.AsyncClient | None = None
        self._details_cache: dict[int, MovieDetails] = {}

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.settings.tmdb_base_url,
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get(self, path: str, **params: Any) -> dict[str, Any]:
        if not self.settings.tmdb_api_key:
            raise CatalogError("TMDB API key not configured")

        params = {"api_key": self.settings.tmdb_api_key, "language": "en-US", **params}
        try:
            response = await self._client().get(path, params=params)
        except httpx.RequestError as e:
            raise CatalogError(f"TMDB connection error: {e}")

        if response.status_code != 200:
            raise CatalogError(
                f"TMDB error on {path}: {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    def _allowed(self, data: dict[str, Any]) -> bool:
        year = _year(data.get("release_date")) or 0
        return (
            data.get("original_language") in self.settings.catalog_languages
            and year >= self.settings.catalog_min_year
        )

    # =========================================================================
    # Details
    # =========================================================================

    async def get_details(self, movie_id: int) -> MovieDetails:
        """
        Fetch a movie's details.

        Raises:
            CatalogError: If TMDB is unreachable or has no such movie
        """
        cached = self._details_cache.get(movie_id)
        if cached is not None:
            return cached

        details = _to_details(await self._get(f"/movie/{movie_id}"))
        self._details_cache[movie_id] = details
        return details

    async def resolve(self, movie_id: int) -> MovieDetails | None:
        """Fetch a movie's details, or None if TMDB does not know the id."""
        try:
            return await self.get_details(movie_id)
        except CatalogError as e:
            if e.status_code == 404:
                return None
            raise

    # =========================================================================
    # Search & Discovery
    # =========================================================================

    async def search(self, query: str, page: int = 1) -> list[MovieDetails]:
        """
        Search by title, falling back to popular movies for a blank query.

        Results are filtered by language and year and ranked by popularity.
        """
        if not query.strip():
            return await self.popular(page)

        data = await self._get("/search/movie", query=query, page=page)
        results = [r for r in data.get("results", []) if self._allowed(r)]
        results.sort(key=lambda r: r.get("popularity") or 0, reverse=True)
        return [_to_details(r) for r in results]

    async def popular(self, page: int = 1) -> list[MovieDetails]:
        """Popular movies across the configured languages."""
        min_year = self.settings.catalog_min_year
        max_year = date.today().year

        responses = await asyncio.gather(
            *(
                self._get(
                    "/discover/movie",
                    sort_by="popularity.desc",
                    with_original_language=language,
                    page=page,
                    **{
                        "primary_release_date.gte": f"{min_year}-01-01",
                        "primary_release_date.lte": f"{max_year}-12-31",
                    },
                )
                for language in self.settings.catalog_languages
            )
        )

        combined = [r for data in responses for r in data.get("results", [])]
        combined.sort(key=lambda r: r.get("popularity") or 0, reverse=True)
        return [_to_details(r) for r in combined]

    async def popular_ids(self, limit: int) -> list[int]:
        ids: list[int] = []
        for movie in await self.popular():
            if movie.movie_id not in ids:
                ids.append(movie.movie_id)
            if len(ids) >= limit:
                break
        logger.debug(f"Fetched {len(ids)} popular movie ids")
        return ids


# =============================================================================
# Module-level catalog instance
# =============================================================================


_default_catalog: TMDBCatalog | None = None


def get_catalog() -> TMDBCatalog:
    """Get the default catalog instance."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = TMDBCatalog()
    return _default_catalog


async def close_catalog() -> None:
    """Close the default catalog."""
    global _default_catalog
    if _default_catalog:
        await _default_catalog.close()
        _default_catalog = None
