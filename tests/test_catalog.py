"""TMDB catalog client against a mocked transport."""

import httpx
import pytest

from vibewatch.config import Settings
from vibewatch.lib.catalog import TMDBCatalog
from vibewatch.lib.exceptions import CatalogError

MOVIE = {
    "id": 27205,
    "title": "Inception",
    "overview": "Dreams within dreams.",
    "release_date": "2010-07-15",
    "runtime": 148,
    "vote_average": 8.4,
    "poster_path": "/inception.jpg",
    "original_language": "en",
}

SEARCH_RESULTS = [
    {"id": 1, "title": "Old", "release_date": "1995-01-01", "original_language": "en", "popularity": 90},
    {"id": 2, "title": "French", "release_date": "2015-01-01", "original_language": "fr", "popularity": 80},
    {"id": 3, "title": "Quiet", "release_date": "2012-01-01", "original_language": "hi", "popularity": 5},
    {"id": 4, "title": "Loud", "release_date": "2020-01-01", "original_language": "en", "popularity": 50},
    {"id": 5, "title": "Undated", "release_date": "", "original_language": "en", "popularity": 70},
]


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/movie/27205"):
        return httpx.Response(200, json=MOVIE)
    if path.endswith("/search/movie"):
        return httpx.Response(200, json={"results": SEARCH_RESULTS})
    if path.endswith("/discover/movie"):
        language = request.url.params["with_original_language"]
        results = {
            "en": [{"id": 10, "original_language": "en", "popularity": 10}],
            "hi": [{"id": 20, "original_language": "hi", "popularity": 30}],
        }[language]
        return httpx.Response(200, json={"results": results})
    return httpx.Response(404, json={"status_message": "not found"})


@pytest.fixture
def catalog():
    settings = Settings(_env_file=None, tmdb_api_key="tmdb-test")
    catalog = TMDBCatalog(settings)
    catalog._http_client = httpx.AsyncClient(
        base_url=settings.tmdb_base_url, transport=httpx.MockTransport(_handler)
    )
    return catalog


@pytest.mark.asyncio
async def test_get_details(catalog):
    details = await catalog.get_details(27205)
    await catalog.close()

    assert details.title == "Inception"
    assert details.year == 2010
    assert details.runtime == 148
    assert details.rating == 8.4


@pytest.mark.asyncio
async def test_resolve_unknown_movie_is_none(catalog):
    assert await catalog.resolve(999) is None
    await catalog.close()


@pytest.mark.asyncio
async def test_search_filters_language_and_year_by_popularity(catalog):
    results = await catalog.search("anything")
    await catalog.close()

    assert [m.movie_id for m in results] == [4, 3]


@pytest.mark.asyncio
async def test_popular_combines_languages(catalog):
    assert await catalog.popular_ids(5) == [20, 10]
    await catalog.close()


@pytest.mark.asyncio
async def test_missing_api_key():
    catalog = TMDBCatalog(Settings(_env_file=None, tmdb_api_key=""))

    with pytest.raises(CatalogError):
        await catalog.get_details(27205)
