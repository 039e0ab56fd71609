import pytest

from episoderatings.lib.cache import Cache
from episoderatings.lib.models import EpisodeRecord, SeriesRecord


@pytest.fixture
def series() -> SeriesRecord:
    return SeriesRecord(id="tt0000001", name="Series")


@pytest.fixture
def episode() -> EpisodeRecord:
    return EpisodeRecord(id="tt0000001:1:1", title="Pilot", season=1, episode=1)


def test_get_missing(cache):
    assert cache.get("nope") is None


def test_set_and_get(cache, series):
    cache.set(series.id, series)
    assert cache.get(series.id) is series


def test_set_replaces(cache, series):
    other = SeriesRecord(id=series.id, name="Renamed")
    cache.set(series.id, series)
    cache.set(series.id, other)
    assert cache.get(series.id) is other
    assert len(cache) == 1


def test_default_ttl_expiry(clock, series):
    cache = Cache(default_ttl=60, clock=clock)
    cache.set(series.id, series)

    clock.advance(59)
    assert cache.get(series.id) is series

    clock.advance(1)
    assert cache.get(series.id) is None
    assert len(cache) == 0, "expired entries are dropped on read"


def test_per_entry_ttl(cache, clock, series, episode):
    """Episodes expire independently and sooner than their series."""
    cache.set(series.id, series, ttl=24 * 60 * 60)
    cache.set(episode.id, episode, ttl=12 * 60 * 60)

    clock.advance(12 * 60 * 60)
    assert cache.get(episode.id) is None
    assert cache.get(series.id) is series

    clock.advance(12 * 60 * 60)
    assert cache.get(series.id) is None


def test_purge(cache, clock, series, episode):
    cache.set(series.id, series, ttl=100)
    cache.set(episode.id, episode, ttl=10)
    clock.advance(50)

    assert cache.purge() == 1
    assert len(cache) == 1
    assert cache.get(series.id) is series


def test_maxsize_evicts_closest_to_expiry(clock, series, episode):
    cache = Cache(maxsize=2, clock=clock)
    third = EpisodeRecord(id="tt0000001:1:2", title="Second", season=1, episode=2)
    cache.set(series.id, series, ttl=100)
    cache.set(episode.id, episode, ttl=10)
    cache.set(third.id, third, ttl=50)

    assert len(cache) == 2
    assert cache.get(episode.id) is None
    assert cache.get(series.id) is series
    assert cache.get(third.id) is third


def test_disabled(clock, series):
    cache = Cache(enabled=False, clock=clock)
    cache.set(series.id, series)
    assert cache.is_disabled
    assert cache.get(series.id) is None
    assert len(cache) == 0


def test_clear(cache, series):
    cache.set(series.id, series)
    cache.clear()
    assert cache.get(series.id) is None
