"""
Mastery Tracker - Turns individual responses into mastery-store updates.

Update rule (per response, clamped to [0, 1]):
    correct:   +0.15 * depth_weight
    incorrect: -0.20 / depth_weight

Deeper questions move mastery further on success and cost less on failure.
The store applies each delta atomically, so concurrent attempts for the
same learner and node never lose updates.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import RecordingUnavailable

logger = logging.getLogger(__name__)


class MasteryStore(Protocol):
    async def adjust_mastery(self, learner_id: str, node_id: str, delta: float) -> float:
        """Atomically add delta to a node's mastery, clamp, and return the new value."""
        ...


@dataclass(frozen=True)
class RecordOutcome:
    """Result of a best-effort recording: either a new mastery value or an error."""
    node_id: str
    mastery: Optional[float] = None
    error: Optional[RecordingUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MasteryTracker:
    """Records responses for one learner against the mastery store."""

    CORRECT_GAIN = 0.15
    INCORRECT_LOSS = 0.20
    DEPTH_WEIGHTS = {1: 0.75, 2: 1.0, 3: 1.25, 4: 1.5}

    def __init__(self, store: MasteryStore, learner_id: str, timeout: Optional[float] = 3.0):
        self.store = store
        self.learner_id = learner_id
        self.timeout = timeout

    def delta_for(self, cognitive_depth: int, is_correct: bool) -> float:
        depth = min(max(int(cognitive_depth), 1), 4)
        weight = self.DEPTH_WEIGHTS[depth]
        if is_correct:
            return self.CORRECT_GAIN * weight
        return -self.INCORRECT_LOSS / weight

    async def record_response(self, node_id: str, cognitive_depth: int, is_correct: bool) -> float:
        """
        Apply one response to the store.

        Raises:
            RecordingUnavailable: store unreachable or too slow
        """
        delta = self.delta_for(cognitive_depth, is_correct)
        try:
            return await asyncio.wait_for(
                self.store.adjust_mastery(self.learner_id, node_id, delta),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RecordingUnavailable(
                f"Recording timed out after {self.timeout}s for node {node_id}"
            ) from exc
        except RecordingUnavailable:
            raise
        except (ConnectionError, OSError) as exc:
            raise RecordingUnavailable(f"Mastery store unreachable: {exc}") from exc

    async def try_record(self, node_id: str, cognitive_depth: int, is_correct: bool) -> RecordOutcome:
        """
        Record without raising. A failure is logged and returned, never propagated:
        gate outcomes are computed from the responses, not from the store.
        """
        try:
            mastery = await self.record_response(node_id, cognitive_depth, is_correct)
        except RecordingUnavailable as exc:
            logger.warning(
                "Could not record response for learner %s node %s: %s",
                self.learner_id, node_id, exc,
            )
            return RecordOutcome(node_id=node_id, error=exc)
        return RecordOutcome(node_id=node_id, mastery=mastery)
