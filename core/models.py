"""
Data model for the adaptive playlist engine.

Types:
    - LearningUnit / LearningUnitAdaptive / GateConfig: static course content
    - CourseAdaptiveSettings: per-course adaptive mode
    - MasterySnapshot: read-only per-node mastery for one build
    - GateResult: one completed gate attempt (append-only history)
    - PlaylistDisplayEntry / Playlist: the builder's projection
    - Question: an item served by a question selection service

Validation helpers raise InvalidConfiguration and are meant to run
before anything is persisted.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .errors import InvalidConfiguration


# ==================== Enums ====================

class UnitCategory(Enum):
    TOPIC = "topic"
    PRACTICE = "practice"
    ASSIGNMENT = "assignment"
    GRADED = "graded"


class FailStrategy(Enum):
    """What happens when a learner fails a gate."""
    HOLD = "hold"
    ALLOW_CONTINUE = "allow-continue"
    INJECT_PRACTICE = "inject-practice"
    PRESCRIBE_REVIEW = "prescribe-review"


class AdaptiveMode(Enum):
    OFF = "off"
    GUIDED = "guided"
    FULL = "full"


class EntryKind(Enum):
    STATIC = "static"
    INJECTED_PRACTICE = "injected-practice"
    INJECTED_REVIEW = "injected-review"
    RETRY = "retry"


class GateStatus(Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


class ContextType(Enum):
    PRACTICE = "practice"
    ASSESSMENT = "assessment"


# ==================== Course Content ====================

@dataclass(frozen=True)
class GateConfig:
    """Configuration for a gate checkpoint."""
    mastery_threshold: float = 0.8
    min_questions: int = 3
    max_retries: int = 2  # -1 = unlimited
    fail_strategy: FailStrategy = FailStrategy.HOLD

    @property
    def unlimited_retries(self) -> bool:
        return self.max_retries == -1

    def retries_remaining(self, attempt_number: int) -> bool:
        """
        Whether another attempt is allowed after `attempt_number` attempts.

        A gate allows at most max_retries + 1 attempts in total.
        """
        return self.unlimited_retries or attempt_number <= self.max_retries

    def to_dict(self) -> dict:
        return {
            "mastery_threshold": self.mastery_threshold,
            "min_questions": self.min_questions,
            "max_retries": self.max_retries,
            "fail_strategy": self.fail_strategy.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GateConfig":
        return cls(
            mastery_threshold=float(data.get("mastery_threshold", 0.8)),
            min_questions=int(data.get("min_questions", 3)),
            max_retries=int(data.get("max_retries", 2)),
            fail_strategy=FailStrategy(data.get("fail_strategy", FailStrategy.HOLD.value)),
        )


DEFAULT_GATE_CONFIG = GateConfig()


@dataclass(frozen=True)
class LearningUnitAdaptive:
    """Adaptive metadata attached to a learning unit."""
    teaches_nodes: Tuple[str, ...] = ()
    assesses_nodes: Tuple[str, ...] = ()  # first entry is the primary node
    is_gate: bool = False
    is_skippable: bool = False
    gate_config: Optional[GateConfig] = None

    @property
    def primary_node(self) -> Optional[str]:
        return self.assesses_nodes[0] if self.assesses_nodes else None

    def to_dict(self) -> dict:
        return {
            "teaches_nodes": list(self.teaches_nodes),
            "assesses_nodes": list(self.assesses_nodes),
            "is_gate": self.is_gate,
            "is_skippable": self.is_skippable,
            "gate_config": self.gate_config.to_dict() if self.gate_config else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningUnitAdaptive":
        gate_config = data.get("gate_config")
        return cls(
            teaches_nodes=tuple(data.get("teaches_nodes", [])),
            assesses_nodes=tuple(data.get("assesses_nodes", [])),
            is_gate=bool(data.get("is_gate", False)),
            is_skippable=bool(data.get("is_skippable", False)),
            gate_config=GateConfig.from_dict(gate_config) if gate_config else None,
        )


@dataclass(frozen=True)
class LearningUnit:
    """A learning unit in a course's static sequence. Read-only to the engine."""
    id: str
    sequence: int
    title: str
    category: UnitCategory = UnitCategory.TOPIC
    is_required: bool = True
    adaptive: Optional[LearningUnitAdaptive] = None
    module_id: Optional[str] = None
    estimated_duration: Optional[int] = None  # minutes

    @property
    def is_gate(self) -> bool:
        return bool(self.adaptive and self.adaptive.is_gate)

    @property
    def teaches_nodes(self) -> Tuple[str, ...]:
        return self.adaptive.teaches_nodes if self.adaptive else ()

    @classmethod
    def from_dict(cls, data: dict) -> "LearningUnit":
        adaptive = data.get("adaptive")
        return cls(
            id=data["id"],
            sequence=int(data["sequence"]),
            title=data.get("title", data["id"]),
            category=UnitCategory(data.get("category", UnitCategory.TOPIC.value)),
            is_required=bool(data.get("is_required", True)),
            adaptive=LearningUnitAdaptive.from_dict(adaptive) if adaptive else None,
            module_id=data.get("module_id"),
            estimated_duration=data.get("estimated_duration"),
        )


@dataclass(frozen=True)
class CourseAdaptiveSettings:
    """Course-level adaptive settings."""
    mode: AdaptiveMode = AdaptiveMode.OFF
    allow_learner_choice: bool = False
    pre_assessment_enabled: bool = False

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "allow_learner_choice": self.allow_learner_choice,
            "pre_assessment_enabled": self.pre_assessment_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CourseAdaptiveSettings":
        return cls(
            mode=AdaptiveMode(data.get("mode", AdaptiveMode.OFF.value)),
            allow_learner_choice=_as_bool(data.get("allow_learner_choice", False)),
            pre_assessment_enabled=_as_bool(data.get("pre_assessment_enabled", False)),
        )


DEFAULT_ADAPTIVE_SETTINGS = CourseAdaptiveSettings()


def _as_bool(value: Any) -> bool:
    # Redis hashes hand back strings
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


# ==================== Learner State ====================

class MasterySnapshot(Mapping):
    """
    Immutable NodeId -> mastery mapping taken once per playlist build.

    Nodes the learner has never touched read as 0.0.
    """

    def __init__(self, scores: Optional[Mapping[str, float]] = None):
        clean = {}
        for node_id, score in (scores or {}).items():
            score = float(score)
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"Mastery for {node_id} out of range: {score}")
            clean[node_id] = score
        self._scores = MappingProxyType(clean)

    def __getitem__(self, node_id: str) -> float:
        return self._scores[node_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._scores)

    def __len__(self) -> int:
        return len(self._scores)

    def level(self, node_id: str) -> float:
        return self._scores.get(node_id, 0.0)

    def all_at_least(self, node_ids: Sequence[str], threshold: float) -> bool:
        """True when every node is at or above threshold (False for no nodes)."""
        return bool(node_ids) and all(self.level(n) >= threshold for n in node_ids)

    def __repr__(self) -> str:
        return f"MasterySnapshot({dict(self._scores)!r})"


@dataclass(frozen=True)
class GateResult:
    """Result of one completed gate attempt."""
    lu_id: str
    passed: bool
    score: float
    attempt_number: int
    failed_nodes: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.attempt_number < 1:
            raise ValueError("attempt_number is 1-based")
        # keep failed nodes canonical so results compare and serialize stably
        object.__setattr__(self, "failed_nodes", tuple(sorted(set(self.failed_nodes))))

    def to_dict(self) -> dict:
        return {
            "lu_id": self.lu_id,
            "passed": self.passed,
            "score": self.score,
            "attempt_number": self.attempt_number,
            "failed_nodes": list(self.failed_nodes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GateResult":
        return cls(
            lu_id=data["lu_id"],
            passed=bool(data["passed"]),
            score=float(data["score"]),
            attempt_number=int(data["attempt_number"]),
            failed_nodes=tuple(data.get("failed_nodes", [])),
        )


# ==================== Questions ====================

@dataclass(frozen=True)
class Question:
    """A question served by a question selection service."""
    id: str
    node_id: Optional[str]
    text: str = ""
    options: Tuple[str, ...] = ()
    correct_answers: Tuple[str, ...] = ()
    difficulty: int = 2  # 1 easy .. 3 hard
    cognitive_depth: int = 1  # 1 recall .. 4 analyze

    def is_correct(self, answer: Any) -> bool:
        """
        Multi-select answers must match the correct set exactly (order ignored);
        a single answer only has to be one of the correct answers.
        """
        if answer is None:
            return False
        if isinstance(answer, (list, tuple, set, frozenset)):
            return set(answer) == set(self.correct_answers)
        return answer in self.correct_answers

    def to_public_dict(self) -> dict:
        """Question payload without the answer key."""
        return {
            "id": self.id,
            "node_id": self.node_id,
            "text": self.text,
            "options": list(self.options),
            "difficulty": self.difficulty,
            "cognitive_depth": self.cognitive_depth,
        }

    @classmethod
    def from_dict(cls, data: dict, node_id: Optional[str] = None) -> "Question":
        correct = data.get("correct_answers", data.get("correct", []))
        if isinstance(correct, str):
            correct = [correct]
        return cls(
            id=data["id"],
            node_id=data.get("node_id") or node_id,
            text=data.get("text", data.get("question", "")),
            options=tuple(data.get("options", [])),
            correct_answers=tuple(correct),
            difficulty=int(data.get("difficulty", 2)),
            cognitive_depth=int(data.get("cognitive_depth", 1)),
        )


# ==================== Playlist ====================

@dataclass(frozen=True)
class PlaylistDisplayEntry:
    """One display-ready row of the playlist."""
    id: str
    title: str
    kind: EntryKind
    is_skipped: bool = False
    is_current: bool = False
    is_completed: bool = False
    is_gate: bool = False
    gate_status: Optional[GateStatus] = None
    lu_id: Optional[str] = None
    target_node_ids: Tuple[str, ...] = ()
    question_count: Optional[int] = None
    reference_lu_id: Optional[str] = None
    attempt_number: Optional[int] = None
    question_strategy: Optional[str] = None  # injected practice only

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "kind": self.kind.value,
            "is_skipped": self.is_skipped,
            "is_current": self.is_current,
            "is_completed": self.is_completed,
            "is_gate": self.is_gate,
            "gate_status": self.gate_status.value if self.gate_status else None,
            "lu_id": self.lu_id,
            "target_node_ids": list(self.target_node_ids),
            "question_count": self.question_count,
            "reference_lu_id": self.reference_lu_id,
            "attempt_number": self.attempt_number,
            "question_strategy": self.question_strategy,
        }


@dataclass(frozen=True)
class Playlist(Sequence):
    """
    Ordered playlist entries plus navigation signals.

    blocked_at is the index of the entry the learner cannot advance past
    (a pending gate, or a failed `hold` gate). Entries after it are still
    listed but are not reachable.
    """
    entries: Tuple[PlaylistDisplayEntry, ...] = ()
    blocked_at: Optional[int] = None
    current_index: Optional[int] = None

    def __getitem__(self, index):
        return self.entries[index]

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_complete(self) -> bool:
        return self.current_index is None and self.blocked_at is None

    @property
    def current(self) -> Optional[PlaylistDisplayEntry]:
        return self.entries[self.current_index] if self.current_index is not None else None

    def to_dict(self) -> dict:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "blocked_at": self.blocked_at,
            "current_index": self.current_index,
            "is_complete": self.is_complete,
        }


# ==================== Validation ====================

def validate_gate_config(config: GateConfig) -> None:
    if not 0.0 < config.mastery_threshold <= 1.0:
        raise InvalidConfiguration(
            f"mastery_threshold must be in (0, 1], got {config.mastery_threshold}"
        )
    if config.min_questions < 1:
        raise InvalidConfiguration(f"min_questions must be >= 1, got {config.min_questions}")
    if config.max_retries < -1:
        raise InvalidConfiguration(f"max_retries must be >= -1, got {config.max_retries}")


def validate_learning_unit_adaptive(adaptive: LearningUnitAdaptive) -> None:
    """Reject adaptive metadata the playlist builder cannot act on."""
    for name in ("teaches_nodes", "assesses_nodes"):
        nodes = getattr(adaptive, name)
        if len(set(nodes)) != len(nodes):
            raise InvalidConfiguration(f"{name} contains duplicates: {list(nodes)}")
        if any(not n for n in nodes):
            raise InvalidConfiguration(f"{name} contains an empty node id")

    if adaptive.is_gate:
        if adaptive.gate_config is None:
            raise InvalidConfiguration("a gate requires a gate_config")
        if not adaptive.assesses_nodes:
            raise InvalidConfiguration("a gate must assess at least one node")
        validate_gate_config(adaptive.gate_config)
    elif adaptive.gate_config is not None:
        validate_gate_config(adaptive.gate_config)

    if adaptive.is_skippable and not adaptive.teaches_nodes:
        raise InvalidConfiguration("a skippable unit must teach at least one node")


def validate_units(units: Sequence[LearningUnit]) -> None:
    seen_ids = set()
    positions: Dict[Tuple[Optional[str], int], str] = {}
    for unit in units:
        if unit.id in seen_ids:
            raise InvalidConfiguration(f"duplicate learning unit id: {unit.id}")
        seen_ids.add(unit.id)
        position = (unit.module_id, unit.sequence)
        if position in positions:
            raise InvalidConfiguration(
                f"units {positions[position]} and {unit.id} share sequence {unit.sequence} "
                f"in module {unit.module_id}"
            )
        positions[position] = unit.id
        if unit.adaptive:
            validate_learning_unit_adaptive(unit.adaptive)


def history_sort_key(result: GateResult) -> int:
    return result.attempt_number


def latest_result(results: Optional[List[GateResult]]) -> Optional[GateResult]:
    if not results:
        return None
    return max(results, key=history_sort_key)
