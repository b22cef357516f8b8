"""
Redis Store - Mastery, gate history, and adaptive configuration.

Key Structure:
    learner:{learner_id}:mastery                       -> Hash (node_id -> score)
    learner:{learner_id}:gate:{lu_id}                  -> List (JSON GateResult per attempt)
    learner:{learner_id}:course:{course_id}:progress   -> Set (completed entry ids)
    learner:{learner_id}:course:{course_id}:mode       -> String (learner-chosen mode)
    course:{course_id}:adaptive                        -> Hash (CourseAdaptiveSettings)
    lu:{lu_id}:adaptive                                -> String (JSON LearningUnitAdaptive)

Mastery updates and gate appends run as server-side scripts, so
concurrent attempts never race on a read-modify-write.
"""

import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import Settings, get_settings
from core.errors import (
    InvalidConfiguration,
    PlaylistEngineError,
    RecordingUnavailable,
    ServiceUnavailable,
)
from core.models import (
    DEFAULT_ADAPTIVE_SETTINGS,
    AdaptiveMode,
    CourseAdaptiveSettings,
    GateResult,
    LearningUnitAdaptive,
    MasterySnapshot,
    validate_learning_unit_adaptive,
)

logger = logging.getLogger(__name__)

# KEYS[1] = mastery hash; ARGV = node_id, delta, default
ADJUST_MASTERY_SCRIPT = """
local current = tonumber(redis.call('HGET', KEYS[1], ARGV[1]) or ARGV[3])
local value = current + tonumber(ARGV[2])
if value < 0 then value = 0 end
if value > 1 then value = 1 end
redis.call('HSET', KEYS[1], ARGV[1], tostring(value))
return tostring(value)
"""

# KEYS[1] = gate history list; ARGV = attempt_number, result json
APPEND_GATE_RESULT_SCRIPT = """
local length = redis.call('LLEN', KEYS[1])
if length + 1 ~= tonumber(ARGV[1]) then
    return -1
end
return redis.call('RPUSH', KEYS[1], ARGV[2])
"""


class GateHistoryConflict(PlaylistEngineError):
    """A result was appended out of order (attempt numbers must be contiguous)."""


@contextmanager
def store_errors(what: str):
    """Surface Redis outages as ServiceUnavailable."""
    try:
        yield
    except RedisError as exc:
        raise ServiceUnavailable(f"{what}: Redis unreachable: {exc}") from exc


class RedisStore:
    # Default mastery score for nodes a learner has never practiced
    DEFAULT_MASTERY = 0.5

    def __init__(self, client=None, settings: Optional[Settings] = None):
        """Connect to Redis using environment settings unless a client is given."""
        if client is None:
            settings = settings or get_settings()
            client = redis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                password=settings.redis_password,
                decode_responses=True,  # Return strings instead of bytes
            )
        self.client = client
        self._adjust_mastery = self.client.register_script(ADJUST_MASTERY_SCRIPT)
        self._append_gate_result = self.client.register_script(APPEND_GATE_RESULT_SCRIPT)

    async def close(self):
        await self.client.aclose()

    # ==================== Key Builders ====================

    def _mastery_key(self, learner_id: str) -> str:
        return f"learner:{learner_id}:mastery"

    def _gate_key(self, learner_id: str, lu_id: str) -> str:
        return f"learner:{learner_id}:gate:{lu_id}"

    def _progress_key(self, learner_id: str, course_id: str) -> str:
        return f"learner:{learner_id}:course:{course_id}:progress"

    def _mode_key(self, learner_id: str, course_id: str) -> str:
        return f"learner:{learner_id}:course:{course_id}:mode"

    def _settings_key(self, course_id: str) -> str:
        return f"course:{course_id}:adaptive"

    def _lu_adaptive_key(self, lu_id: str) -> str:
        return f"lu:{lu_id}:adaptive"

    # ==================== Mastery ====================

    async def get_mastery_snapshot(self, learner_id: str,
                                   node_ids: Optional[Iterable[str]] = None) -> MasterySnapshot:
        """
        Read-only mastery snapshot for a learner.

        Args:
            learner_id: Learner to query
            node_ids: Restrict to these nodes (all recorded nodes if None)

        Returns:
            MasterySnapshot; nodes never recorded are left out
        """
        key = self._mastery_key(learner_id)
        with store_errors("mastery snapshot"):
            if node_ids is None:
                raw = await self.client.hgetall(key)
            else:
                nodes = sorted(set(node_ids))
                if not nodes:
                    return MasterySnapshot()
                values = await self.client.hmget(key, nodes)
                raw = {n: v for n, v in zip(nodes, values) if v is not None}
        return MasterySnapshot({k: float(v) for k, v in raw.items()})

    async def adjust_mastery(self, learner_id: str, node_id: str, delta: float) -> float:
        """
        Atomically add delta to a node's mastery, clamped to [0, 1].

        Returns:
            New mastery score
        """
        try:
            value = await self._adjust_mastery(
                keys=[self._mastery_key(learner_id)],
                args=[node_id, delta, self.DEFAULT_MASTERY],
            )
        except RedisError as exc:
            raise RecordingUnavailable(f"Mastery store unreachable: {exc}") from exc
        return float(value)

    async def set_mastery(self, learner_id: str, scores: Dict[str, float]):
        """Overwrite mastery scores (e.g. seeding from a pre-assessment)."""
        clean = {n: max(0.0, min(1.0, float(s))) for n, s in scores.items()}
        if clean:
            with store_errors("set mastery"):
                await self.client.hset(self._mastery_key(learner_id), mapping=clean)

    # ==================== Gate History ====================

    async def get_gate_history(self, learner_id: str, lu_id: str) -> List[GateResult]:
        with store_errors("gate history"):
            raw = await self.client.lrange(self._gate_key(learner_id, lu_id), 0, -1)
        return [GateResult.from_dict(json.loads(r)) for r in raw]

    async def get_gate_histories(self, learner_id: str,
                                 lu_ids: Iterable[str]) -> Dict[str, List[GateResult]]:
        histories = {}
        for lu_id in lu_ids:
            results = await self.get_gate_history(learner_id, lu_id)
            if results:
                histories[lu_id] = results
        return histories

    async def append_gate_result(self, learner_id: str, result: GateResult) -> int:
        """
        Append a result. attempt_number must be exactly one past the last stored attempt.

        Returns:
            Number of stored attempts
        """
        with store_errors("append gate result"):
            length = await self._append_gate_result(
                keys=[self._gate_key(learner_id, result.lu_id)],
                args=[result.attempt_number, json.dumps(result.to_dict())],
            )
        if int(length) < 0:
            raise GateHistoryConflict(
                f"Attempt {result.attempt_number} on {result.lu_id} is out of order"
            )
        return int(length)

    async def count_gate_attempts(self, learner_id: str, lu_id: str) -> int:
        with store_errors("gate history"):
            return int(await self.client.llen(self._gate_key(learner_id, lu_id)))

    # ==================== Learner Progress ====================

    async def mark_completed(self, learner_id: str, course_id: str, entry_id: str):
        with store_errors("mark completed"):
            await self.client.sadd(self._progress_key(learner_id, course_id), entry_id)

    async def get_completed(self, learner_id: str, course_id: str) -> frozenset:
        with store_errors("progress"):
            return frozenset(await self.client.smembers(self._progress_key(learner_id, course_id)))

    async def get_learner_mode(self, learner_id: str, course_id: str) -> Optional[AdaptiveMode]:
        with store_errors("learner mode"):
            raw = await self.client.get(self._mode_key(learner_id, course_id))
        return AdaptiveMode(raw) if raw else None

    async def set_learner_mode(self, learner_id: str, course_id: str, mode: AdaptiveMode):
        with store_errors("learner mode"):
            await self.client.set(self._mode_key(learner_id, course_id), mode.value)

    # ==================== Adaptive Configuration ====================

    async def get_course_settings(self, course_id: str) -> CourseAdaptiveSettings:
        """Course adaptive settings, or the defaults (mode off) when none are saved."""
        with store_errors("course settings"):
            raw = await self.client.hgetall(self._settings_key(course_id))
        if not raw:
            return DEFAULT_ADAPTIVE_SETTINGS
        return CourseAdaptiveSettings.from_dict(raw)

    async def save_course_settings(self, course_id: str, settings: CourseAdaptiveSettings):
        data = settings.to_dict()
        with store_errors("course settings"):
            await self.client.hset(
                self._settings_key(course_id),
                mapping={
                    "mode": data["mode"],
                    "allow_learner_choice": int(data["allow_learner_choice"]),
                    "pre_assessment_enabled": int(data["pre_assessment_enabled"]),
                },
            )

    async def get_lu_adaptive(self, lu_id: str) -> Optional[LearningUnitAdaptive]:
        with store_errors("unit metadata"):
            raw = await self.client.get(self._lu_adaptive_key(lu_id))
        return LearningUnitAdaptive.from_dict(json.loads(raw)) if raw else None

    async def save_lu_adaptive(self, lu_id: str, adaptive: LearningUnitAdaptive):
        """Validate, then persist. Invalid metadata never reaches the store."""
        try:
            validate_learning_unit_adaptive(adaptive)
        except InvalidConfiguration:
            logger.info("Rejected adaptive metadata for %s", lu_id)
            raise
        with store_errors("unit metadata"):
            await self.client.set(self._lu_adaptive_key(lu_id), json.dumps(adaptive.to_dict()))

    # ==================== Cleanup ====================

    async def delete_learner(self, learner_id: str, course_id: str, lu_ids: Iterable[str] = ()):
        """Delete a learner's state for a course (for testing/cleanup)."""
        keys = [
            self._mastery_key(learner_id),
            self._progress_key(learner_id, course_id),
            self._mode_key(learner_id, course_id),
        ]
        keys.extend(self._gate_key(learner_id, lu_id) for lu_id in lu_ids)
        with store_errors("delete learner"):
            await self.client.delete(*keys)
