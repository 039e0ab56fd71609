import asyncio
from typing import Optional, List, Union, Mapping, Tuple

from loguru import logger
from pydantic import ValidationError

from .cache import Cache
from .config import (
    EpisodeRatingsConfig,
    Addressing,
    resolve_credentials,
)
from .metadata import (
    Tmdb,
    Omdb,
    MetadataQueryError,
    MetadataNotFoundError,
    metadata_providers,
)
from .models import Credentials, EpisodeRecord, SeriesRecord
from .utils import (
    gather_settled,
    image_url,
    parse_release_date,
    stringify_rating,
    normalize_rating,
    POSTER_SIZE,
    BACKGROUND_SIZE,
    THUMBNAIL_SIZE,
)

SERIES = "series"


class EnrichmentError(Exception):

    def __init__(self, message: str, external_id: Optional[str] = None):
        super().__init__(message)
        self.external_id = external_id


class NotFoundError(EnrichmentError):
    """The external id has no matching series at the metadata provider."""


class UpstreamError(EnrichmentError):
    """The series couldn't be fetched for any other reason."""


def episode_key(series_id: str, season: int, episode: int) -> str:
    return f"{series_id}:{season}:{episode}"


class RatingResolver:
    """Joins a single TMDB episode with its IMDb rating from OMDb."""

    def __init__(self, tmdb: Tmdb, omdb: Omdb, cache: Cache, episode_ttl: Optional[float] = None):
        self.tmdb = tmdb
        self.omdb = omdb
        self.cache = cache
        self.episode_ttl = episode_ttl

    async def resolve(
            self,
            series_id: str,
            season: int,
            episode: int,
            credentials: Credentials,
            provider_id: Optional[str] = None,
    ) -> Optional[EpisodeRecord]:
        """
        Resolve one episode, never raises for provider failures.

        :param series_id: external (IMDb) series id, used for OMDb and the cache key
        :param provider_id: TMDB series id, defaults to series_id (direct addressing)
        :return: the episode record, None if any of the two lookups failed
        """
        key = episode_key(series_id, season, episode)
        if hit := self.cache.get(key):
            return hit

        tmdb_episode, omdb_episode = await gather_settled(
            self.tmdb.episode(provider_id or series_id, season, episode, credentials.tmdb_key),
            self.omdb.episode(series_id, season, episode, credentials.omdb_key),
        )
        try:
            for outcome in (tmdb_episode, omdb_episode):
                if not outcome.ok:
                    raise outcome.error
            record = self.build_episode(series_id, season, episode, tmdb_episode.value, omdb_episode.value)
        except (MetadataQueryError, ValidationError) as e:
            logger.warning(f"{key}: no rating available: {e}")
            return None

        self.cache.set(key, record, self.episode_ttl)
        return record

    @staticmethod
    def build_episode(
            series_id: str, season: int, episode: int, tmdb_episode: dict, omdb_episode: dict
    ) -> EpisodeRecord:
        return EpisodeRecord(
            id=episode_key(series_id, season, episode),
            title=tmdb_episode.get("name") or f"Episode {episode}",
            season=season,
            episode=episode,
            overview=tmdb_episode.get("overview") or None,
            thumbnail=image_url(tmdb_episode.get("still_path"), THUMBNAIL_SIZE),
            released=parse_release_date(tmdb_episode.get("air_date")),
            imdb_rating=normalize_rating(omdb_episode.get("imdbRating")),
        )


class SeriesAssembler:

    def __init__(
            self,
            tmdb: Tmdb,
            resolver: RatingResolver,
            cache: Cache,
            addressing: Addressing = "direct",
            series_ttl: Optional[float] = None,
    ):
        self.tmdb = tmdb
        self.resolver = resolver
        self.cache = cache
        self.addressing = addressing
        self.series_ttl = series_ttl

    async def resolve_provider_id(self, external_id: str, credentials: Credentials) -> str:
        if self.addressing == "direct":
            return external_id

        try:
            return await self.tmdb.find_series(external_id, credentials.tmdb_key)
        except MetadataNotFoundError as e:
            raise NotFoundError(f"No TMDB series for '{external_id}': {e}", external_id) from e
        except MetadataQueryError as e:
            raise UpstreamError(f"Can't resolve '{external_id}': {e}", external_id) from e

    async def fetch_summary(self, external_id: str, provider_id: str, credentials: Credentials) -> dict:
        try:
            summary = await self.tmdb.series(provider_id, credentials.tmdb_key)
        except MetadataNotFoundError as e:
            raise NotFoundError(f"Series '{external_id}' not found: {e}", external_id) from e
        except MetadataQueryError as e:
            raise UpstreamError(f"Series '{external_id}' lookup failed: {e}", external_id) from e

        if not isinstance(summary.get("seasons"), list):
            raise UpstreamError(f"Series '{external_id}': malformed summary, no season list.", external_id)
        return summary

    async def fetch_episodes(self, external_id: str, provider_id: str, seasons: List[dict],
                             credentials: Credentials) -> List[Tuple[int, int]]:
        """
        Fetch all seasons concurrently and flatten their episodes into (season, episode) pairs.
        Seasons that fail are skipped.
        """
        season_numbers = [s.get("season_number") for s in seasons if isinstance(s, dict)]
        season_numbers = [n for n in season_numbers if isinstance(n, int)]

        outcomes = await gather_settled(*[
            self.tmdb.season(provider_id, number, credentials.tmdb_key) for number in season_numbers
        ])

        episodes = []
        for number, outcome in zip(season_numbers, outcomes):
            if not outcome.ok:
                logger.warning(f"{external_id}: season {number} dropped: {outcome.error}")
                continue
            for episode in outcome.value.get("episodes") or []:
                if not isinstance(episode, dict):
                    continue
                episode_number = episode.get("episode_number")
                if not isinstance(episode_number, int):
                    continue
                season_number = episode.get("season_number")
                if not isinstance(season_number, int):
                    season_number = number
                episodes.append((season_number, episode_number))
        return episodes

    async def assemble(self, external_id: str, credentials: Credentials) -> SeriesRecord:
        """
        Build the enriched series record (cached under the external id).

        :raises NotFoundError: the external id is unknown to the metadata provider
        :raises UpstreamError: the series summary couldn't be fetched
        """
        if hit := self.cache.get(external_id):
            return hit

        provider_id = await self.resolve_provider_id(external_id, credentials)
        summary = await self.fetch_summary(external_id, provider_id, credentials)
        episodes = await self.fetch_episodes(external_id, provider_id, summary["seasons"], credentials)
        logger.info(f"{external_id}: {len(summary['seasons'])} season(s), {len(episodes)} episode(s)")

        outcomes = await gather_settled(*[
            self.resolver.resolve(external_id, season, episode, credentials, provider_id=provider_id)
            for season, episode in episodes
        ])

        records = []
        for (season, episode), outcome in zip(episodes, outcomes):
            if not outcome.ok:
                logger.opt(exception=outcome.error).error(
                    f"{episode_key(external_id, season, episode)}: unexpected resolution error"
                )
            elif outcome.value is not None:
                records.append(outcome.value)

        # sorted() is stable: same (season, episode) keeps the original order
        records = sorted(records, key=lambda r: (r.season, r.episode))
        if len(records) < len(episodes):
            logger.info(f"{external_id}: {len(episodes) - len(records)} episode(s) without rating omitted")

        try:
            series = SeriesRecord(
                id=external_id,
                name=summary.get("name") or external_id,
                description=summary.get("overview") or None,
                poster=image_url(summary.get("poster_path"), POSTER_SIZE),
                background=image_url(summary.get("backdrop_path"), BACKGROUND_SIZE),
                imdb_rating=stringify_rating(summary.get("vote_average")),
                episodes=records,
            )
        except ValidationError as e:
            raise UpstreamError(f"Series '{external_id}': malformed summary: {e}", external_id) from e

        logger.info(f"Successfully processed {external_id}. Caching result.")
        self.cache.set(external_id, series, self.series_ttl)
        return series


class EnrichmentService:
    """
    The entry point used by the add-on host. Owns the cache and the
    provider clients for the lifetime of the process.
    """

    def __init__(
            self,
            config: EpisodeRatingsConfig,
            cache: Optional[Cache] = None,
            tmdb: Optional[Tmdb] = None,
            omdb: Optional[Omdb] = None,
    ):
        self.config = config
        self.cache = cache if cache is not None else Cache(
            default_ttl=config.cache.series_ttl,
            maxsize=config.cache.maxsize,
            enabled=config.cache.enabled,
        )
        client_options = dict(
            max_concurrent_requests=config.maximum_concurrent_requests,
            timeout=config.request_timeout,
        )
        self.tmdb = tmdb or metadata_providers.from_config(config.provider("tmdb"), **client_options)
        self.omdb = omdb or metadata_providers.from_config(config.provider("omdb"), **client_options)

        self.resolver = RatingResolver(self.tmdb, self.omdb, self.cache, config.cache.episode_ttl)
        self.assembler = SeriesAssembler(
            self.tmdb, self.resolver, self.cache, config.addressing, config.cache.series_ttl
        )
        self.check_credentials()

    def check_credentials(self) -> bool:
        """Report missing process-wide tokens right away instead of on the first request."""
        if self.config.default_credentials():
            return True
        if self.config.per_caller_credentials:
            logger.info("No process-wide API keys configured, relying on per-user configuration.")
        else:
            logger.error("TMDB and OMDb API keys are required, every request will fail.")
        return False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def close(self):
        await asyncio.gather(self.tmdb.close(), self.omdb.close())

    async def handle_meta_request(
            self,
            request_type: str,
            external_id: str,
            supplied: Union[Credentials, Mapping[str, str], None] = None,
    ) -> Optional[SeriesRecord]:
        """
        :raises ConfigurationRequiredError: API keys missing
        :raises UpstreamError: the series failed ('propagate' error policy only)
        """
        if request_type != SERIES:
            return None

        credentials = resolve_credentials(self.config, supplied)
        logger.info(f"Received meta request for series ID: {external_id}")

        try:
            return await self.assembler.assemble(external_id, credentials)
        except (NotFoundError, UpstreamError) as e:
            logger.error(f"Error fetching metadata for {external_id}: {e}")
            if self.config.error_policy == "degrade":
                return None
            raise UpstreamError(
                f"Failed to fetch metadata for {external_id}. "
                f"Please check your API keys and try again.",
                external_id,
            ) from e
