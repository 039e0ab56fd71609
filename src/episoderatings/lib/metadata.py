import asyncio
from typing import Dict, Optional, Any

import aiohttp
from loguru import logger

from episoderatings.lib.config import MetadataProviderApi


class Registry:

    mapping: dict[str, type['MetadataApi']]

    def __init__(self):
        self.mapping = {}

    def get(self, name: str):
        return self.mapping.get(name)

    def from_config(self, api_config: MetadataProviderApi, **kwargs) -> 'MetadataApi':
        clazz = self.get(api_config.name)
        if not clazz:
            raise KeyError(f"Unknown metadata provider '{api_config.name}'")
        return clazz(api_config, **kwargs)

    def register(self, cls):
        self.mapping[cls.__name__.lower()] = cls


metadata_providers = Registry()


class MetadataQueryError(Exception):
    pass


class MetadataNotFoundError(MetadataQueryError):
    pass


class MetadataApi:

    # Can be overridden via configuration.
    url: Optional[str] = None

    semaphore: asyncio.Semaphore

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        metadata_providers.register(cls)

    def __init__(
            self,
            config: MetadataProviderApi = None,
            max_concurrent_requests: int = 100,
            timeout: float = 10.0,
    ) -> None:
        if config and config.url:
            self.url = config.url.rstrip("/")
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def name(self):
        return self.__class__.__name__

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(self, url: str, params: Dict[str, Any]) -> Any:
        """
        Perform the actual GET request and decode the JSON body.

        :raises MetadataNotFoundError: on HTTP 404
        :raises MetadataQueryError: on any other HTTP error status
        :raises aiohttp.ClientError: on transport errors
        """
        session = await self._get_session()
        async with session.get(url, params=params) as response:
            if response.status == 404:
                raise MetadataNotFoundError(f"{self.name}: not found ({url})")
            # not raise_for_status(): its message carries the query string with the api key
            if response.status >= 400:
                raise MetadataQueryError(f"{self.name}: HTTP {response.status} {response.reason} ({url})")
            return await response.json(content_type=None)

    async def fetch_json(self, path: str, **params) -> dict:
        """
        A wrapper around the request that limits concurrency and maps every
        failure (HTTP, transport, timeout, decoding) to a MetadataQueryError.
        Nothing is retried.

        :param path: path relative to the provider's base url
        :param params: query parameters (api keys included)
        :return: decoded JSON object
        """
        url = f"{self.url}/{path.lstrip('/')}"
        logger.debug(f"Network request: [GET]({url})")
        async with self.semaphore:
            try:
                data = await self.request(url, params)
            except MetadataQueryError:
                raise
            except asyncio.TimeoutError:
                raise MetadataQueryError(f"{self.name}: request timed out ({url})")
            except (aiohttp.ClientError, ValueError) as e:
                raise MetadataQueryError(f"{self.name}: request failed ({url}): {type(e).__name__}: {e}")

        if not isinstance(data, dict):
            raise MetadataQueryError(f"{self.name}: unexpected response type {type(data).__name__} ({url})")
        return data


class Tmdb(MetadataApi):

    # Base URL for TMDB; should generally not be changed (can be overridden via config)
    url: str = "https://api.themoviedb.org/3"

    async def find_series(self, external_id: str, key: str) -> str:
        """Translate an IMDb id to the TMDB TV series id."""
        data = await self.fetch_json(f"find/{external_id}", api_key=key, external_source="imdb_id")
        results = data.get("tv_results") or []
        if not isinstance(results, list):
            raise MetadataQueryError(f"{self.name}: malformed find response for '{external_id}'")
        for result in results:
            if not isinstance(result, dict):
                raise MetadataQueryError(f"{self.name}: malformed find result for '{external_id}': {result!r}")
            if result.get("id") is not None:
                logger.debug(f"{external_id} -> TMDB {result['id']} ({result.get('name')})")
                return str(result["id"])
        raise MetadataNotFoundError(f"{self.name}: no TV series found for '{external_id}'")

    async def series(self, series_id: str, key: str) -> dict:
        return await self.fetch_json(f"tv/{series_id}", api_key=key)

    async def season(self, series_id: str, season_number: int, key: str) -> dict:
        return await self.fetch_json(f"tv/{series_id}/season/{season_number}", api_key=key)

    async def episode(self, series_id: str, season_number: int, episode_number: int, key: str) -> dict:
        return await self.fetch_json(
            f"tv/{series_id}/season/{season_number}/episode/{episode_number}", api_key=key
        )


class Omdb(MetadataApi):

    # Base URL for OMDb; should generally not be changed (can be overridden via config)
    url: str = "http://www.omdbapi.com"

    async def episode(self, imdb_id: str, season_number: int, episode_number: int, key: str) -> dict:
        """
        OMDb answers HTTP 200 even if it doesn't know the episode,
        the 'Response' flag in the body is the only signal.
        """
        data = await self.fetch_json(
            "", i=imdb_id, Season=str(season_number), Episode=str(episode_number), apikey=key
        )
        if str(data.get("Response", "True")).lower() == "false":
            raise MetadataNotFoundError(
                f"{self.name}: {imdb_id} S{season_number}E{episode_number}: {data.get('Error')}"
            )
        return data
