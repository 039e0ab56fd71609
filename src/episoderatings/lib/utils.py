import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Generic, List, Optional, TypeVar, Union

T = TypeVar("T")

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
POSTER_SIZE = "w500"
BACKGROUND_SIZE = "original"
THUMBNAIL_SIZE = "w300"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a single operation in a fan-out: either a value or the raised error."""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(*aws: Awaitable[T]) -> List[Outcome[T]]:
    """
    Launch all awaitables concurrently and wait for every one of them.
    Unlike a plain gather, a failure never cancels or hides its siblings,
    each position of the returned list holds that operation's outcome.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    return [
        Outcome(error=res) if isinstance(res, BaseException) else Outcome(value=res)
        for res in results
    ]


def image_url(path: Optional[str], size: str) -> Optional[str]:
    if not path:
        return None
    return f"{IMAGE_BASE_URL}/{size}{path}"


def parse_release_date(string: Optional[str]) -> Optional[datetime]:
    """Parse TMDB's 'YYYY-MM-DD' air date, anything invalid is simply no date."""
    if not string or not isinstance(string, str):
        return None
    try:
        return datetime.strptime(string[:10], "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def stringify_rating(value: Union[int, float, str, None]) -> Optional[str]:
    # 8.0 -> "8", 8.25 -> "8.25", 0/missing -> None
    if not value:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not number:
        return None
    if number.is_integer():
        return str(int(number))
    return str(number)


def normalize_rating(value: Any) -> Optional[str]:
    """OMDb uses 'N/A' for ratings it doesn't have."""
    if not value or value == "N/A":
        return None
    return str(value)
