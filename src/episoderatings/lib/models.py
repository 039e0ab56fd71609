from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt


class Credentials(BaseModel):
    """Per-request pair of API tokens, never cached nor persisted."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tmdb_key: str = Field(alias="tmdbKey", repr=False)
    omdb_key: str = Field(alias="omdbKey", repr=False)


class EpisodeRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    season: NonNegativeInt
    episode: PositiveInt
    overview: Optional[str] = None
    thumbnail: Optional[str] = None
    released: Optional[datetime] = None
    imdb_rating: Optional[str] = Field(default=None, alias="imdbRating")


class SeriesRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: Literal["series"] = "series"
    name: str
    description: Optional[str] = None
    poster: Optional[str] = None
    background: Optional[str] = None
    imdb_rating: Optional[str] = Field(default=None, alias="imdbRating")
    episodes: List[EpisodeRecord] = Field(default_factory=list, alias="videos")

    def to_host(self) -> dict:
        """Serialize using the host's field names (``videos``, ``imdbRating``)."""
        return self.model_dump(by_alias=True, mode="json")
