"""Shared fixtures: an in-memory stand-in for the async Redis client."""

from pathlib import Path

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config import Settings
from core.course_catalog import CourseCatalog
from core.engine import AdaptiveEngine
from core.question_service import QuestionBank
from redis_store import ADJUST_MASTERY_SCRIPT, APPEND_GATE_RESULT_SCRIPT, RedisStore

DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class FakeScript:
    def __init__(self, client, source):
        self.client = client
        self.source = source

    async def __call__(self, keys=(), args=()):
        self.client._check()
        if self.source == ADJUST_MASTERY_SCRIPT:
            node_id, delta, default = args
            bucket = self.client.hashes.setdefault(keys[0], {})
            value = float(bucket.get(node_id, default)) + float(delta)
            value = min(max(value, 0.0), 1.0)
            bucket[node_id] = str(value)
            return str(value)
        if self.source == APPEND_GATE_RESULT_SCRIPT:
            attempt_number, payload = args
            items = self.client.lists.setdefault(keys[0], [])
            if len(items) + 1 != int(attempt_number):
                return -1
            items.append(payload)
            return len(items)
        raise AssertionError("unknown script")


class FakeAsyncRedis:
    """Implements the subset of redis.asyncio.Redis the store uses (decode_responses=True)."""

    def __init__(self):
        self.hashes = {}
        self.lists = {}
        self.sets = {}
        self.strings = {}
        self.down = False
        self.closed = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("connection refused")

    def register_script(self, source):
        return FakeScript(self, source)

    async def hgetall(self, key):
        self._check()
        return dict(self.hashes.get(key, {}))

    async def hmget(self, key, fields):
        self._check()
        bucket = self.hashes.get(key, {})
        return [bucket.get(f) for f in fields]

    async def hset(self, key, mapping=None):
        self._check()
        bucket = self.hashes.setdefault(key, {})
        for field_name, value in (mapping or {}).items():
            bucket[field_name] = str(value)
        return len(mapping or {})

    async def lrange(self, key, start, end):
        self._check()
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start:end + 1])

    async def llen(self, key):
        self._check()
        return len(self.lists.get(key, []))

    async def sadd(self, key, *members):
        self._check()
        self.sets.setdefault(key, set()).update(members)

    async def smembers(self, key):
        self._check()
        return set(self.sets.get(key, set()))

    async def get(self, key):
        self._check()
        return self.strings.get(key)

    async def set(self, key, value):
        self._check()
        self.strings[key] = str(value)

    async def delete(self, *keys):
        for key in keys:
            for bucket in (self.hashes, self.lists, self.sets, self.strings):
                bucket.pop(key, None)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeAsyncRedis()


@pytest.fixture
def settings():
    return Settings(
        redis_host="localhost",
        redis_port=6379,
        redis_password=None,
        question_service_url=None,
        question_service_api_key=None,
        question_timeout_seconds=0.5,
        record_timeout_seconds=0.5,
        default_skip_threshold=0.8,
        practice_questions_per_node=5,
        course_data_dir="data/courses",
        question_data_dir="data/questions",
        log_level="DEBUG",
    )


@pytest.fixture
def store(fake_redis, settings):
    return RedisStore(client=fake_redis, settings=settings)


@pytest.fixture
def bank():
    return QuestionBank(str(DATA_DIR / "questions"))


@pytest.fixture
def engine(store, bank, settings):
    return AdaptiveEngine(
        store=store,
        catalog=CourseCatalog(str(DATA_DIR / "courses")),
        question_service=bank,
        settings=settings,
    )
