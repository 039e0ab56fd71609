import os
from typing import List, Optional, Literal, Mapping, Union

import yaml
from loguru import logger
from pydantic import BaseModel, PositiveInt, PositiveFloat, ValidationError, Field

from episoderatings.lib.models import Credentials

CONFIG_PATH = os.environ.get(
    "EPISODERATINGS_CONFIG",
    os.path.expanduser(os.path.join("~", ".config", "episoderatings.yml"))
)

# Process-wide fallbacks for the provider tokens, applied when the config file has none.
ENV_KEYS = {
    "tmdb": "EPISODERATINGS_TMDB_KEY",
    "omdb": "EPISODERATINGS_OMDB_KEY",
}

HOUR = 60 * 60

Addressing = Literal["direct", "resolve"]
ErrorPolicy = Literal["propagate", "degrade"]


class MetadataProviderApi(BaseModel):
    name: str
    key: Optional[str] = None
    url: Optional[str] = None


class CacheConfig(BaseModel):
    enabled: bool = True
    series_ttl: PositiveFloat = 24 * HOUR  # whole series records
    episode_ttl: PositiveFloat = 12 * HOUR  # ratings change faster than the catalog
    maxsize: Optional[PositiveInt] = None


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: PositiveInt = 7000


class Logging(BaseModel):
    logfile: Optional[str] = None
    loglevel: str = "INFO"


class EpisodeRatingsConfig(BaseModel):
    # Configure metadata provider APIs (API keys, override URLs).
    # Names must be "tmdb" (series/episodes) and "omdb" (episode ratings).
    api: List[MetadataProviderApi] = []

    # "direct": the IMDb id addresses the TMDB series as-is,
    # "resolve": look up the TMDB id with the /find endpoint first.
    addressing: Addressing = "direct"

    # "propagate": a failed series is a failed host request,
    # "degrade": a failed series is an empty (null) meta response.
    error_policy: ErrorPolicy = "propagate"

    # Accept tokens from the host's per-user add-on configuration.
    per_caller_credentials: bool = True

    maximum_concurrent_requests: int = Field(gt=0, default=100)

    request_timeout: PositiveFloat = 10.0

    cache: CacheConfig = CacheConfig()

    server: ServerConfig = ServerConfig()

    logging: Logging = Logging()

    def provider(self, name: str) -> MetadataProviderApi:
        for api in self.api:
            if api.name == name:
                return api
        return MetadataProviderApi(name=name)

    def default_credentials(self) -> Optional[Credentials]:
        tmdb_key = self.provider("tmdb").key
        omdb_key = self.provider("omdb").key
        if tmdb_key and omdb_key:
            return Credentials(tmdb_key=tmdb_key, omdb_key=omdb_key)
        return None


class ConfigurationError(Exception):
    pass


class ConfigurationRequiredError(ConfigurationError):
    """Provider tokens are missing; the user has to configure the add-on."""


def apply_environment(config: EpisodeRatingsConfig, environ: Mapping[str, str] = None) -> EpisodeRatingsConfig:
    environ = os.environ if environ is None else environ
    for name, variable in ENV_KEYS.items():
        value = environ.get(variable)
        if not value:
            continue
        api = next((a for a in config.api if a.name == name), None)
        if api is None:
            config.api.append(MetadataProviderApi(name=name, key=value))
        elif not api.key:
            api.key = value
        else:
            continue
        logger.debug(f"{name}: API key taken from ${variable}")
    return config


def _token(value) -> Optional[str]:
    # anything but a non-empty string counts as not provided
    if isinstance(value, str) and value.strip():
        return value
    return None


def resolve_credentials(
        config: EpisodeRatingsConfig,
        supplied: Union[Credentials, Mapping[str, str], None] = None
) -> Credentials:
    """
    Merge caller supplied tokens with the process-wide ones. Caller values win
    per token, but only if the deployment accepts per-caller credentials.

    :raises ConfigurationRequiredError: if either token is still missing
    """
    tmdb_key = config.provider("tmdb").key
    omdb_key = config.provider("omdb").key

    if supplied and config.per_caller_credentials:
        if isinstance(supplied, Credentials):
            supplied = supplied.model_dump(by_alias=True)
        tmdb_key = _token(supplied.get("tmdbKey")) or tmdb_key
        omdb_key = _token(supplied.get("omdbKey")) or omdb_key

    missing = [name for name, key in (("TMDB", tmdb_key), ("OMDb", omdb_key)) if not key]
    if missing:
        raise ConfigurationRequiredError(
            f"Configuration required. Please provide {' and '.join(missing)} API key(s) "
            f"in the addon settings."
        )
    return Credentials(tmdb_key=tmdb_key, omdb_key=omdb_key)


def read_config(config_file: Optional[str] = None) -> EpisodeRatingsConfig:
    config_file = config_file if config_file else CONFIG_PATH
    try:
        logger.info(f'reading configuration file: {config_file}')
        with open(config_file, 'r') as cfgfile:
            o_config = yaml.load(cfgfile, Loader=yaml.SafeLoader)

        return apply_environment(EpisodeRatingsConfig(**o_config['episoderatings']))
    except FileNotFoundError:
        raise ConfigurationError(
            f"Can't load configuration '{config_file}', file not found"
        )
    except (KeyError, TypeError, ValidationError):
        raise ConfigurationError(
            f"Can't load configuration '{config_file}', invalid config keys."
        )
    except Exception as e:
        raise ConfigurationError(
            f"Can't load configuration from '{config_file}', unexpected error {type(e)} "
        )


default_config = EpisodeRatingsConfig(
    api=[
        MetadataProviderApi(
            name="tmdb",
            url="https://api.themoviedb.org/3",
            key="",
        ),
        MetadataProviderApi(
            name="omdb",
            url="http://www.omdbapi.com",
            key="",
        ),
    ],
    addressing="direct",
    error_policy="propagate",
    per_caller_credentials=True,
    cache=CacheConfig(
        enabled=True,
        series_ttl=24 * HOUR,
        episode_ttl=12 * HOUR,
    ),
    logging=Logging(
        loglevel="WARNING",
        logfile=None,
    )
)
