from typing import List

from pydantic import BaseModel, ConfigDict, Field

from episoderatings import __version__
from episoderatings.lib.config import EpisodeRatingsConfig

ADDON_ID = "community.imdb.episode.ratings.configurable"


class BehaviorHints(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    configurable: bool = True
    # Makes the host's "Configure" button prominent until keys are provided.
    configuration_required: bool = Field(default=True, alias="configurationRequired")


class Manifest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = ADDON_ID
    version: str = __version__
    name: str = "IMDb Episode Ratings (Configurable)"
    description: str = "Adds IMDb ratings to individual episodes. Requires user API keys."
    resources: List[str] = ["meta", "manifest"]
    types: List[str] = ["series"]
    id_prefixes: List[str] = Field(default=["tt"], alias="idPrefixes")
    behavior_hints: BehaviorHints = Field(default_factory=BehaviorHints, alias="behaviorHints")


def build_manifest(config: EpisodeRatingsConfig) -> Manifest:
    if config.per_caller_credentials:
        return Manifest()
    return Manifest(
        description="Adds IMDb ratings to individual episodes.",
        behavior_hints=BehaviorHints(configurable=False, configuration_required=False),
    )
