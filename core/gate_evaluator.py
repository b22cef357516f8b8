"""
Gate Evaluator - Mastery checks for gate learning units.

One GateAttempt per (learner, learning unit, attempt number):

    pending -> in_progress -> passed
                           -> failed -> pending    (retries remain)
                                     -> exhausted  (no retries left)
    pending | in_progress -> cancelled             (abandoned, no result)

Per question the order is fixed: answer, record, then fetch the next
question. Scoring only uses the responses collected in the attempt, so
a mastery store outage never changes pass/fail.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import AttemptCancelled, ServiceUnavailable
from .mastery_tracker import MasteryTracker, RecordOutcome
from .models import ContextType, GateConfig, GateResult, Question, latest_result
from .question_service import QuestionSelectionService

logger = logging.getLogger(__name__)

AnswerSource = Union[Mapping[str, Any], Callable[[Question], Union[Any, Awaitable[Any]]]]


class AttemptState(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Response:
    """One answered question inside an attempt."""
    question_id: str
    node_id: str
    is_correct: bool


# ==================== Scoring ====================

def score_responses(
    lu_id: str,
    responses: Sequence[Response],
    threshold: float,
    attempt_number: int,
) -> GateResult:
    """
    Score a completed set of responses.

    score       = correct / total
    passed      = score >= threshold
    failed_nodes = nodes (with at least one question) whose ratio < threshold
    """
    if not responses:
        raise ValueError("cannot score an attempt without responses")

    per_node: Dict[str, List[int]] = {}
    for response in responses:
        counts = per_node.setdefault(response.node_id, [0, 0])
        counts[1] += 1
        if response.is_correct:
            counts[0] += 1

    total_correct = sum(c for c, _ in per_node.values())
    score = total_correct / len(responses)
    failed_nodes = tuple(
        node_id for node_id, (correct, total) in per_node.items()
        if total > 0 and correct / total < threshold
    )

    return GateResult(
        lu_id=lu_id,
        passed=score >= threshold,
        score=score,
        attempt_number=attempt_number,
        failed_nodes=failed_nodes,
    )


def gate_state(config: GateConfig, history: Sequence[GateResult]) -> AttemptState:
    """Where a learner stands on a gate given its result history."""
    latest = latest_result(list(history))
    if latest is None:
        return AttemptState.PENDING
    if latest.passed:
        return AttemptState.PASSED
    if config.retries_remaining(latest.attempt_number):
        return AttemptState.PENDING
    return AttemptState.EXHAUSTED


# ==================== Attempt ====================

class GateAttempt:
    """
    A single attempt at a gate, driven one question at a time.

    start() fetches the first question; answer() scores the current one,
    records it, and fetches the next. When the question set runs out the
    attempt produces exactly one GateResult.
    """

    def __init__(
        self,
        lu_id: str,
        assesses_nodes: Sequence[str],
        gate_config: GateConfig,
        attempt_number: int,
        question_timeout: Optional[float] = 5.0,
    ):
        if not assesses_nodes:
            raise ValueError(f"Gate {lu_id} assesses no nodes")
        if attempt_number < 1:
            raise ValueError("attempt_number is 1-based")

        self.lu_id = lu_id
        self.assesses_nodes: Tuple[str, ...] = tuple(assesses_nodes)
        self.config = gate_config
        self.attempt_number = attempt_number
        self.question_timeout = question_timeout

        self.state = AttemptState.PENDING
        self.current_question: Optional[Question] = None
        self.responses: List[Response] = []
        self.recordings: List[RecordOutcome] = []
        self.unavailable = False  # no questions could be served
        self._result: Optional[GateResult] = None
        self._questions: Optional[AsyncIterator[Question]] = None
        self._served = 0

    @property
    def primary_node(self) -> str:
        return self.assesses_nodes[0]

    @property
    def result(self) -> Optional[GateResult]:
        if self.state == AttemptState.CANCELLED:
            raise AttemptCancelled(f"Attempt {self.attempt_number} on {self.lu_id} was cancelled")
        return self._result

    @property
    def is_finished(self) -> bool:
        return self._result is not None or self.state == AttemptState.CANCELLED

    @property
    def next_state(self) -> AttemptState:
        """State of the gate once this attempt is over."""
        if self.state == AttemptState.FAILED:
            if self.config.retries_remaining(self.attempt_number):
                return AttemptState.PENDING
            return AttemptState.EXHAUSTED
        return self.state

    # ==================== Transitions ====================

    async def start(self, service: QuestionSelectionService) -> Optional[Question]:
        """
        Open the question set and return the first question.

        Returns None when the attempt already finished as unavailable.
        """
        self._require(AttemptState.PENDING)
        self.state = AttemptState.IN_PROGRESS
        self._questions = service.select_questions(
            self.primary_node, ContextType.ASSESSMENT, self.config.min_questions
        ).__aiter__()

        try:
            self.current_question = await self._next_question()
        except ServiceUnavailable as exc:
            logger.warning("Gate %s: question selection failed: %s", self.lu_id, exc)
            await self._finish_unavailable()
            return None

        if self.current_question is None:
            logger.warning("Gate %s: no questions available for %s", self.lu_id, self.primary_node)
            await self._finish_unavailable()
        return self.current_question

    async def answer(self, answer: Any, tracker: Optional[MasteryTracker] = None) -> Optional[Question]:
        """
        Submit an answer for the current question.

        Returns the next question, or None once the attempt has a result.
        """
        self._require(AttemptState.IN_PROGRESS)
        question = self.current_question
        is_correct = question.is_correct(answer)
        node_id = question.node_id or self.primary_node

        if tracker is not None:
            self.recordings.append(
                await tracker.try_record(node_id, question.cognitive_depth, is_correct)
            )

        self.responses.append(Response(question.id, node_id, is_correct))

        try:
            self.current_question = await self._next_question()
        except ServiceUnavailable as exc:
            logger.warning("Gate %s: question selection failed mid-attempt: %s", self.lu_id, exc)
            await self._finish_unavailable()
            return None

        if self.current_question is None:
            self._finish()
        return self.current_question

    async def cancel(self):
        """Abandon the attempt. No result is ever produced for it."""
        if self.is_finished:
            return
        self.state = AttemptState.CANCELLED
        self.current_question = None
        await self._close_questions()
        logger.info("Gate %s attempt %d cancelled", self.lu_id, self.attempt_number)

    # ==================== Internals ====================

    async def _next_question(self) -> Optional[Question]:
        if self._served >= self.config.min_questions:
            await self._close_questions()
            return None
        try:
            question = await asyncio.wait_for(self._questions.__anext__(), timeout=self.question_timeout)
        except StopAsyncIteration:
            return None
        except asyncio.TimeoutError as exc:
            raise ServiceUnavailable(
                f"Question selection timed out after {self.question_timeout}s"
            ) from exc
        except (ConnectionError, OSError) as exc:
            raise ServiceUnavailable(str(exc)) from exc
        self._served += 1
        return question

    async def _close_questions(self):
        aclose = getattr(self._questions, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except RuntimeError as exc:
            # generator still running a fetch on another task; it finalizes on its own
            logger.debug("Gate %s: question stream not closed: %s", self.lu_id, exc)

    def _finish(self):
        result = score_responses(self.lu_id, self.responses, self.config.mastery_threshold,
                                 self.attempt_number)
        self._result = result
        self.state = AttemptState.PASSED if result.passed else AttemptState.FAILED
        logger.info(
            "Gate %s attempt %d: %s (score %.2f)",
            self.lu_id, self.attempt_number, self.state.value, result.score,
        )

    async def _finish_unavailable(self):
        self.unavailable = True
        self.current_question = None
        await self._close_questions()
        self._result = GateResult(
            lu_id=self.lu_id,
            passed=False,
            score=0.0,
            attempt_number=self.attempt_number,
            failed_nodes=self.assesses_nodes,
        )
        self.state = AttemptState.FAILED

    def _require(self, state: AttemptState):
        if self.state != state:
            raise RuntimeError(
                f"Gate {self.lu_id} attempt is {self.state.value}, expected {state.value}"
            )


# ==================== Evaluator ====================

class GateEvaluator:
    """Runs gate attempts against a question service and a mastery tracker."""

    def __init__(
        self,
        question_service: QuestionSelectionService,
        tracker: Optional[MasteryTracker] = None,
        question_timeout: Optional[float] = 5.0,
    ):
        self.question_service = question_service
        self.tracker = tracker
        self.question_timeout = question_timeout

    def open_attempt(
        self,
        lu_id: str,
        assesses_nodes: Sequence[str],
        gate_config: GateConfig,
        attempt_number: int,
    ) -> GateAttempt:
        return GateAttempt(lu_id, assesses_nodes, gate_config, attempt_number,
                           question_timeout=self.question_timeout)

    async def evaluate(
        self,
        lu_id: str,
        assesses_nodes: Sequence[str],
        gate_config: GateConfig,
        attempt_number: int,
        answers: AnswerSource,
    ) -> GateResult:
        """
        Run a whole attempt, taking each answer from `answers`.

        `answers` is either a mapping of question id -> answer or a callable
        (sync or async) that receives the Question. Cancelling the calling
        task cancels the attempt and no result is produced.
        """
        attempt = self.open_attempt(lu_id, assesses_nodes, gate_config, attempt_number)
        try:
            question = await attempt.start(self.question_service)
            while question is not None:
                answer = await resolve_answer(answers, question)
                question = await attempt.answer(answer, self.tracker)
        except asyncio.CancelledError:
            await attempt.cancel()
            raise
        return attempt.result


async def resolve_answer(answers: AnswerSource, question: Question) -> Any:
    if isinstance(answers, Mapping):
        return answers.get(question.id)
    answer = answers(question)
    if inspect.isawaitable(answer):
        answer = await answer
    return answer
