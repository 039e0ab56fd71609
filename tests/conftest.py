import copy
from typing import Dict, Any, List, Tuple

import pytest

from episoderatings.lib.cache import Cache
from episoderatings.lib.config import EpisodeRatingsConfig, MetadataProviderApi
from episoderatings.lib.enrich import EnrichmentService
from episoderatings.lib.metadata import Tmdb, Omdb, MetadataNotFoundError
from episoderatings.lib.models import Credentials

TMDB_URL = "https://tmdb.test/3"
OMDB_URL = "https://omdb.test"

IMDB_ID = "tt3581920"
TMDB_ID = 65942


class FakeClock:

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeApi:
    """
    Stands in for MetadataApi.request: looks the url (+ OMDb season/episode)
    up in a routing table and records every call.
    A missing route is a 404, an exception in the table is raised.
    """

    def __init__(self, routes: Dict[str, Any]):
        self.routes = routes
        self.calls: List[Tuple[str, dict]] = []

    @staticmethod
    def route_key(url: str, params: dict) -> str:
        if url.startswith(OMDB_URL):
            return f"omdb:{params['i']}:{params['Season']}:{params['Episode']}"
        return url[len(TMDB_URL):]

    async def __call__(self, url: str, params: dict):
        self.calls.append((url, params))
        response = self.routes.get(self.route_key(url, params))
        if response is None:
            raise MetadataNotFoundError(f"not found ({url})")
        if isinstance(response, BaseException):
            raise response
        return copy.deepcopy(response)

    def count(self, prefix: str = "") -> int:
        return len([url for url, params in self.calls if url.startswith(prefix)])


def build_routes(
        series_id: str = IMDB_ID,
        seasons: Dict[int, int] = None,
        imdb_id: str = IMDB_ID,
        tmdb_id: Any = None,
) -> Dict[str, Any]:
    """
    A consistent fake catalog: TMDB summary, seasons and episodes addressed by
    series_id plus OMDb ratings addressed by imdb_id. With tmdb_id set, the
    /find endpoint translates imdb_id to it.
    """
    seasons = {1: 3, 2: 2} if seasons is None else seasons
    routes = {
        f"/tv/{series_id}": {
            "name": "Fake Series",
            "overview": "A series about fakes.",
            "poster_path": "/poster.jpg",
            "backdrop_path": "/backdrop.jpg",
            "vote_average": 8.4,
            "seasons": [{"season_number": number} for number in seasons],
        }
    }
    if tmdb_id is not None:
        routes[f"/find/{imdb_id}"] = {"tv_results": [{"id": tmdb_id, "name": "Fake Series"}]}

    for season, count in seasons.items():
        routes[f"/tv/{series_id}/season/{season}"] = {
            "episodes": [
                {"season_number": season, "episode_number": number} for number in range(1, count + 1)
            ]
        }
        for number in range(1, count + 1):
            routes[f"/tv/{series_id}/season/{season}/episode/{number}"] = {
                "name": f"Title {season}x{number}",
                "overview": f"Overview {season}x{number}",
                "still_path": f"/still-{season}-{number}.jpg",
                "air_date": f"2015-0{season}-{10 + number}",
            }
            routes[f"omdb:{imdb_id}:{season}:{number}"] = {
                "Response": "True",
                "imdbRating": f"{season + 6}.{number}",
            }
    return routes


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(tmdb_key="tmdb-token", omdb_key="omdb-token")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> Cache:
    return Cache(clock=clock)


@pytest.fixture
def routes() -> Dict[str, Any]:
    return build_routes()


@pytest.fixture
def fake_api(routes) -> FakeApi:
    return FakeApi(routes)


@pytest.fixture
def tmdb(fake_api, monkeypatch) -> Tmdb:
    api = Tmdb(MetadataProviderApi(name="tmdb", url=TMDB_URL))
    monkeypatch.setattr(api, "request", fake_api)
    return api


@pytest.fixture
def omdb(fake_api, monkeypatch) -> Omdb:
    api = Omdb(MetadataProviderApi(name="omdb", url=OMDB_URL))
    monkeypatch.setattr(api, "request", fake_api)
    return api


@pytest.fixture
def default_config() -> EpisodeRatingsConfig:
    return EpisodeRatingsConfig()


@pytest.fixture
def keyed_config() -> EpisodeRatingsConfig:
    """Process-wide keys configured, per-user keys not accepted."""
    return EpisodeRatingsConfig(
        api=[
            MetadataProviderApi(name="tmdb", key="tmdb-token", url=TMDB_URL),
            MetadataProviderApi(name="omdb", key="omdb-token", url=OMDB_URL),
        ],
        per_caller_credentials=False,
    )


@pytest.fixture
def make_service(tmdb, omdb, cache):
    def factory(config: EpisodeRatingsConfig) -> EnrichmentService:
        return EnrichmentService(config, cache=cache, tmdb=tmdb, omdb=omdb)
    return factory
