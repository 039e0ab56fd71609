import asyncio
from datetime import datetime, timezone

import pytest

from episoderatings.lib.utils import (
    gather_settled,
    image_url,
    parse_release_date,
    stringify_rating,
    normalize_rating,
)


@pytest.mark.asyncio
async def test_gather_settled():
    async def ok(value, delay):
        await asyncio.sleep(delay)
        return value

    async def fail():
        raise LookupError("nope")

    outcomes = await gather_settled(ok("slow", 0.02), fail(), ok("fast", 0))

    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[0].value == "slow"
    assert outcomes[2].value == "fast"
    assert isinstance(outcomes[1].error, LookupError)


@pytest.mark.asyncio
async def test_gather_settled_empty():
    assert await gather_settled() == []


def test_image_url():
    assert image_url("/a.jpg", "w500") == "https://image.tmdb.org/t/p/w500/a.jpg"
    assert image_url(None, "w500") is None
    assert image_url("", "original") is None


@pytest.mark.parametrize("string, expected", [
    ("2016-04-24", datetime(2016, 4, 24, tzinfo=timezone.utc)),
    ("2016-04-24T10:00:00Z", datetime(2016, 4, 24, tzinfo=timezone.utc)),
    ("", None),
    (None, None),
    ("unknown", None),
    ("2016-02-30", None),
])
def test_parse_release_date(string, expected):
    assert parse_release_date(string) == expected


@pytest.mark.parametrize("value, expected", [
    (8.4, "8.4"),
    (8.0, "8"),
    (9, "9"),
    ("7.25", "7.25"),
    (0, None),
    (None, None),
    ("n/a", None),
])
def test_stringify_rating(value, expected):
    assert stringify_rating(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("8.8", "8.8"),
    ("N/A", None),
    ("", None),
    (None, None),
])
def test_normalize_rating(value, expected):
    assert normalize_rating(value) == expected
