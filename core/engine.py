"""
Adaptive Engine - The library-level entry point.

Exposed operations:
    build_playlist(learner_id, course_id)                  -> Playlist
    submit_gate_attempt(learner_id, lu_id, answers)        -> GateResult
    start_gate_attempt / answer_gate_question / cancel_gate_attempt
        step-by-step gate attempts for interactive clients

Configuration get/save goes through here so it is validated before it
is persisted.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from config import Settings, get_settings
from remediation.injection_policy import InjectionPolicy

from .course_catalog import CourseCatalog
from .errors import (
    AttemptInProgress,
    AttemptNotFound,
    AttemptsExhausted,
    GateNotAvailable,
    InvalidConfiguration,
)
from .gate_evaluator import (
    AnswerSource,
    AttemptState,
    GateAttempt,
    GateEvaluator,
    gate_state,
    resolve_answer,
)
from .mastery_tracker import MasteryTracker
from .models import (
    AdaptiveMode,
    CourseAdaptiveSettings,
    GateResult,
    LearningUnit,
    LearningUnitAdaptive,
    Playlist,
    validate_learning_unit_adaptive,
)
from .playlist_builder import PlaylistBuilder
from .question_service import QuestionSelectionService

logger = logging.getLogger(__name__)

AttemptKey = Tuple[str, str]


class AdaptiveEngine:
    """
    Wires the store, catalog, question service, and builder together.

    In-flight attempts live in memory, keyed by (learner, unit). A learner
    has at most one open attempt per gate; attempts on different gates or
    by different learners run independently.
    """

    def __init__(
        self,
        store,
        catalog: CourseCatalog,
        question_service: QuestionSelectionService,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.question_service = question_service
        self.settings = settings or get_settings()
        self.builder = PlaylistBuilder(
            default_skip_threshold=self.settings.default_skip_threshold,
            injection_policy=InjectionPolicy(self.settings.practice_questions_per_node),
        )
        self._attempts: Dict[AttemptKey, GateAttempt] = {}
        self._starting: Set[AttemptKey] = set()

    # ==================== Course Content ====================

    async def get_unit(self, lu_id: str) -> LearningUnit:
        """Catalog unit with stored adaptive metadata overlaid."""
        unit = self.catalog.get_unit(lu_id)
        stored = await self.store.get_lu_adaptive(lu_id)
        return replace(unit, adaptive=stored) if stored else unit

    async def get_course_units(self, course_id: str) -> List[LearningUnit]:
        units = []
        for unit in self.catalog.get_units(course_id):
            stored = await self.store.get_lu_adaptive(unit.id)
            units.append(replace(unit, adaptive=stored) if stored else unit)
        return units

    async def effective_settings(self, learner_id: str, course_id: str) -> CourseAdaptiveSettings:
        """Course settings, with the learner's own mode when the course allows a choice."""
        settings = await self.store.get_course_settings(course_id)
        if settings.allow_learner_choice:
            chosen = await self.store.get_learner_mode(learner_id, course_id)
            if chosen is not None:
                settings = replace(settings, mode=chosen)
        return settings

    # ==================== Playlist ====================

    async def build_playlist(self, learner_id: str, course_id: str) -> Playlist:
        """Gather the four inputs (plus progress), then run the pure builder."""
        units = await self.get_course_units(course_id)
        settings = await self.effective_settings(learner_id, course_id)
        mastery = await self.store.get_mastery_snapshot(learner_id, _course_nodes(units))
        gate_ids = [u.id for u in units if u.is_gate]
        history = await self.store.get_gate_histories(learner_id, gate_ids)
        completed = await self.store.get_completed(learner_id, course_id)

        playlist = self.builder.build(units, settings, mastery, history, completed)
        logger.debug(
            "Playlist for %s/%s: %d entries, current=%s, blocked_at=%s",
            learner_id, course_id, len(playlist), playlist.current_index, playlist.blocked_at,
        )
        return playlist

    async def mark_completed(self, learner_id: str, course_id: str, entry_id: str):
        await self.store.mark_completed(learner_id, course_id, entry_id)

    async def set_learner_mode(self, learner_id: str, course_id: str, mode: AdaptiveMode):
        settings = await self.store.get_course_settings(course_id)
        if not settings.allow_learner_choice:
            raise InvalidConfiguration(f"Course {course_id} does not allow learners to choose a mode")
        await self.store.set_learner_mode(learner_id, course_id, mode)

    # ==================== Gate Attempts ====================

    def get_attempt(self, learner_id: str, lu_id: str) -> GateAttempt:
        attempt = self._attempts.get((learner_id, lu_id))
        if attempt is None:
            raise AttemptNotFound(learner_id, lu_id)
        return attempt

    async def start_gate_attempt(self, learner_id: str, lu_id: str) -> GateAttempt:
        """
        Open the next attempt on a gate and serve its first question.

        Raises:
            GateNotAvailable: not a gate, adaptive mode off, or already passed
            AttemptsExhausted: retry budget used up
            AttemptInProgress: an attempt is already open
        """
        key = (learner_id, lu_id)
        open_attempt = self._attempts.get(key)
        if key in self._starting or (open_attempt is not None and not open_attempt.is_finished):
            raise AttemptInProgress(learner_id, lu_id)

        self._starting.add(key)
        try:
            attempt = await self._open_attempt(learner_id, lu_id)
            self._attempts[key] = attempt
        finally:
            self._starting.discard(key)

        try:
            await attempt.start(self.question_service)
        except BaseException:
            # cancelled or broken: leave no open attempt behind
            await self._discard(key, attempt)
            raise

        if attempt.is_finished:
            await self._complete(learner_id, attempt)
        return attempt

    async def answer_gate_question(self, learner_id: str, lu_id: str, answer: Any) -> GateAttempt:
        """Answer the current question; the attempt's result is stored once it finishes."""
        attempt = self.get_attempt(learner_id, lu_id)
        tracker = self._tracker(learner_id)
        try:
            await attempt.answer(answer, tracker)
        except BaseException:
            await self._discard((learner_id, lu_id), attempt)
            raise

        if attempt.is_finished:
            await self._complete(learner_id, attempt)
        return attempt

    async def cancel_gate_attempt(self, learner_id: str, lu_id: str):
        """Abandon the open attempt. It leaves no result and does not use up an attempt."""
        attempt = self.get_attempt(learner_id, lu_id)
        await self._discard((learner_id, lu_id), attempt)

    async def submit_gate_attempt(self, learner_id: str, lu_id: str,
                                  answers: AnswerSource) -> GateResult:
        """Run a complete attempt with answers supplied up front or by a callback."""
        attempt = await self.start_gate_attempt(learner_id, lu_id)
        if attempt.is_finished:
            # no questions could be served; the failed result is already stored
            return attempt.result

        key = (learner_id, lu_id)
        tracker = self._tracker(learner_id)
        try:
            while not attempt.is_finished:
                answer = await resolve_answer(answers, attempt.current_question)
                await attempt.answer(answer, tracker)
        except BaseException:
            await self._discard(key, attempt)
            raise

        await self._complete(learner_id, attempt)
        return attempt.result

    async def _open_attempt(self, learner_id: str, lu_id: str) -> GateAttempt:
        unit = await self.get_unit(lu_id)
        if not unit.is_gate:
            raise GateNotAvailable(lu_id, "not a gate")

        course_id = self.catalog.course_of(lu_id)
        settings = await self.effective_settings(learner_id, course_id)
        if settings.mode == AdaptiveMode.OFF:
            raise GateNotAvailable(lu_id, "adaptive mode is off")

        config = unit.adaptive.gate_config
        history = await self.store.get_gate_history(learner_id, lu_id)
        state = gate_state(config, history)
        if state == AttemptState.PASSED:
            raise GateNotAvailable(lu_id, "already passed")
        if state == AttemptState.EXHAUSTED:
            raise AttemptsExhausted(lu_id, config.max_retries)

        evaluator = GateEvaluator(
            self.question_service,
            tracker=self._tracker(learner_id),
            question_timeout=self.settings.question_timeout_seconds,
        )
        return evaluator.open_attempt(
            lu_id, unit.adaptive.assesses_nodes, config, len(history) + 1
        )

    async def _complete(self, learner_id: str, attempt: GateAttempt):
        key = (learner_id, attempt.lu_id)
        if self._attempts.get(key) is attempt:
            del self._attempts[key]
        result = attempt.result
        await self.store.append_gate_result(learner_id, result)
        logger.info(
            "Learner %s gate %s attempt %d: passed=%s score=%.2f",
            learner_id, result.lu_id, result.attempt_number, result.passed, result.score,
        )

    async def _discard(self, key: AttemptKey, attempt: GateAttempt):
        await attempt.cancel()
        if self._attempts.get(key) is attempt:
            del self._attempts[key]

    def _tracker(self, learner_id: str) -> MasteryTracker:
        return MasteryTracker(self.store, learner_id, timeout=self.settings.record_timeout_seconds)

    # ==================== Configuration ====================

    async def get_course_settings(self, course_id: str) -> CourseAdaptiveSettings:
        self.catalog.get_units(course_id)
        return await self.store.get_course_settings(course_id)

    async def save_course_settings(self, course_id: str, settings: CourseAdaptiveSettings):
        self.catalog.get_units(course_id)
        await self.store.save_course_settings(course_id, settings)

    async def get_lu_adaptive(self, lu_id: str) -> Optional[LearningUnitAdaptive]:
        return (await self.get_unit(lu_id)).adaptive

    async def save_lu_adaptive(self, lu_id: str, adaptive: LearningUnitAdaptive):
        self.catalog.get_unit(lu_id)
        validate_learning_unit_adaptive(adaptive)
        await self.store.save_lu_adaptive(lu_id, adaptive)


def _course_nodes(units: Iterable[LearningUnit]) -> List[str]:
    nodes = set()
    for unit in units:
        if unit.adaptive:
            nodes.update(unit.adaptive.teaches_nodes)
            nodes.update(unit.adaptive.assesses_nodes)
    return sorted(nodes)
