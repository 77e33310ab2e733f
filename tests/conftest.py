"""
Shared fixtures: in-memory Redis double and wired components.
"""

from datetime import datetime, timedelta, timezone

import pytest

from arenacore.events import EventBroadcaster
from arenacore.rating import EloRatingEngine, RatingBook
from arenacore.utils.distributed_lock import DistributedLockManager


class MockRedis:
    """Mock Redis client covering the commands the core uses."""

    def __init__(self):
        self._data = {}
        self._hashes = {}
        self._streams = {}
        self.executed_pipelines = []

    async def ping(self):
        return True

    async def set(self, key, value, nx=False, px=None):
        if nx and key in self._data:
            return None
        self._data[key] = value
        return True

    async def get(self, key):
        return self._data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def exists(self, key):
        return 1 if key in self._data else 0

    async def hset(self, key, field=None, value=None, mapping=None):
        bucket = self._hashes.setdefault(key, {})
        if mapping:
            bucket.update({k: str(v) for k, v in mapping.items()})
        elif field is not None:
            bucket[field] = str(value)
        return len(mapping or {field: value})

    async def hget(self, key, field):
        return self._hashes.get(key, {}).get(field)

    async def hmget(self, key, fields):
        bucket = self._hashes.get(key, {})
        return [bucket.get(f) for f in fields]

    async def hgetall(self, key):
        return dict(self._hashes.get(key, {}))

    async def xadd(self, stream, data, maxlen=None, approximate=False):
        entries = self._streams.setdefault(stream, [])
        entry_id = f"{len(entries) + 1}-0"
        entries.append((entry_id, dict(data)))
        if maxlen is not None:
            del entries[:-maxlen]
        return entry_id

    def stream(self, key):
        return list(self._streams.get(key, []))

    def register_script(self, script):
        data = self._data

        async def release(keys=None, args=None):
            if data.get(keys[0]) == args[0]:
                del data[keys[0]]
                return 1
            return 0

        async def renew(keys=None, args=None):
            return 1 if data.get(keys[0]) == args[0] else 0

        return renew if "pexpire" in script else release

    def pipeline(self, transaction=False):
        return MockPipeline(self, transaction)


class MockPipeline:
    def __init__(self, redis, transaction):
        self._redis = redis
        self.transaction = transaction
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass

    def hset(self, key, field=None, value=None, mapping=None):
        self._commands.append(("hset", key, field, value, mapping))
        return self

    def xadd(self, stream, data, maxlen=None, approximate=False):
        self._commands.append(("xadd", stream, data, maxlen, approximate))
        return self

    async def execute(self):
        results = []
        for cmd in self._commands:
            if cmd[0] == "hset":
                results.append(
                    await self._redis.hset(cmd[1], field=cmd[2], value=cmd[3], mapping=cmd[4])
                )
            elif cmd[0] == "xadd":
                results.append(
                    await self._redis.xadd(cmd[1], cmd[2], maxlen=cmd[3], approximate=cmd[4])
                )
        self._redis.executed_pipelines.append((self.transaction, list(self._commands)))
        self._commands = []
        return results


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """datetime clock under test control."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def lock_manager(mock_redis):
    return DistributedLockManager(mock_redis, default_acquire_timeout_ms=200, retry_interval_ms=5)


@pytest.fixture
def broadcaster():
    return EventBroadcaster(replay_size=64, subscriber_buffer=64)


@pytest.fixture
def rating_engine():
    return EloRatingEngine(k_factor=32, scale_factor=400, initial_rating=1500)


@pytest.fixture
def rating_book(mock_redis, rating_engine, lock_manager):
    return RatingBook(mock_redis, rating_engine, lock_manager)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeWallClock()
