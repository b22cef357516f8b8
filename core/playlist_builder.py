"""
Playlist Builder - Projects static course content onto a learner's state.

Inputs (all materialized, no I/O):
    - units: the course's static learning units, in sequence order
    - settings: course adaptive settings
    - mastery: MasterySnapshot for the learner
    - gate_history: luId -> GateResults (append-only)
    - completed: entry IDs the learner has finished

The output is a deterministic function of the inputs: same inputs,
same Playlist, on every call.
"""

import logging
from dataclasses import dataclass, replace
from typing import AbstractSet, List, Mapping, Optional, Sequence

from remediation.injection_policy import InjectedEntrySpec, InjectionPolicy

from .errors import InvalidConfiguration
from .models import (
    AdaptiveMode,
    CourseAdaptiveSettings,
    EntryKind,
    FailStrategy,
    GateResult,
    GateStatus,
    LearningUnit,
    MasterySnapshot,
    Playlist,
    PlaylistDisplayEntry,
    latest_result,
)

logger = logging.getLogger(__name__)

DEFAULT_SKIP_THRESHOLD = 0.8


@dataclass
class _Row:
    entry: PlaylistDisplayEntry
    actionable: bool  # learner still has to work this entry
    blocking: bool = False  # learner cannot advance past this entry


# ==================== Entry IDs ====================

def static_entry_id(lu_id: str) -> str:
    return f"static-{lu_id}"


def practice_entry_id(gate_id: str, attempt: int, node_id: str) -> str:
    return f"practice-{gate_id}-{attempt}-{node_id}"


def review_entry_id(gate_id: str, attempt: int, node_id: str) -> str:
    return f"review-{gate_id}-{attempt}-{node_id}"


def retry_entry_id(gate_id: str, attempt: int) -> str:
    return f"retry-{gate_id}-{attempt}"


class PlaylistBuilder:
    """
    Builds the ordered playlist for one learner and one course.

    Per unit (guided/full modes):
        skippable + taught nodes mastered -> skipped (visible, inert)
        gate                              -> gate entry, then fail strategy
        anything else                     -> ordinary static entry
    """

    def __init__(
        self,
        default_skip_threshold: float = DEFAULT_SKIP_THRESHOLD,
        injection_policy: Optional[InjectionPolicy] = None,
    ):
        if not 0.0 < default_skip_threshold <= 1.0:
            raise ValueError("default_skip_threshold must be in (0, 1]")
        self.default_skip_threshold = default_skip_threshold
        self.injection_policy = injection_policy or InjectionPolicy()

    def build(
        self,
        units: Sequence[LearningUnit],
        settings: CourseAdaptiveSettings,
        mastery: MasterySnapshot,
        gate_history: Mapping[str, Sequence[GateResult]],
        completed: AbstractSet[str] = frozenset(),
    ) -> Playlist:
        if settings.mode == AdaptiveMode.OFF:
            rows = [self._pass_through(unit, completed) for unit in units]
        else:
            rows = []
            for index, unit in enumerate(units):
                rows.extend(self._adaptive_rows(
                    unit, units[:index], mastery, gate_history, completed
                ))

        return self._finalize(rows)

    # ==================== Modes ====================

    def _pass_through(self, unit: LearningUnit, completed: AbstractSet[str]) -> _Row:
        entry_id = static_entry_id(unit.id)
        done = entry_id in completed
        return _Row(
            entry=PlaylistDisplayEntry(
                id=entry_id,
                title=unit.title,
                kind=EntryKind.STATIC,
                is_completed=done,
                lu_id=unit.id,
            ),
            actionable=not done,
        )

    def _adaptive_rows(
        self,
        unit: LearningUnit,
        prior_units: Sequence[LearningUnit],
        mastery: MasterySnapshot,
        gate_history: Mapping[str, Sequence[GateResult]],
        completed: AbstractSet[str],
    ) -> List[_Row]:
        adaptive = unit.adaptive

        if adaptive and adaptive.is_gate and adaptive.gate_config is None:
            raise InvalidConfiguration(f"Gate {unit.id} has no gate_config")

        if self.is_skip_eligible(unit, mastery):
            return [_Row(
                entry=PlaylistDisplayEntry(
                    id=static_entry_id(unit.id),
                    title=unit.title,
                    kind=EntryKind.STATIC,
                    is_skipped=True,
                    is_gate=unit.is_gate,
                    lu_id=unit.id,
                ),
                actionable=False,
            )]

        if unit.is_gate:
            return self._gate_rows(
                unit, prior_units, gate_history.get(unit.id) or [], completed
            )

        row = self._pass_through(unit, completed)
        return [row]

    # ==================== Skip ====================

    def skip_threshold(self, unit: LearningUnit) -> float:
        """Gate units skip at their own threshold, others at the default."""
        if unit.is_gate and unit.adaptive.gate_config:
            return unit.adaptive.gate_config.mastery_threshold
        return self.default_skip_threshold

    def is_skip_eligible(self, unit: LearningUnit, mastery: MasterySnapshot) -> bool:
        adaptive = unit.adaptive
        if not adaptive or not adaptive.is_skippable:
            return False
        return mastery.all_at_least(adaptive.teaches_nodes, self.skip_threshold(unit))

    # ==================== Gates ====================

    def _gate_rows(
        self,
        unit: LearningUnit,
        prior_units: Sequence[LearningUnit],
        results: Sequence[GateResult],
        completed: AbstractSet[str],
    ) -> List[_Row]:
        config = unit.adaptive.gate_config
        latest = latest_result(list(results))
        gate_id = static_entry_id(unit.id)

        def gate_row(status: GateStatus, actionable: bool, blocking: bool) -> _Row:
            return _Row(
                entry=PlaylistDisplayEntry(
                    id=gate_id,
                    title=unit.title,
                    kind=EntryKind.STATIC,
                    is_completed=status == GateStatus.PASSED,
                    is_gate=True,
                    gate_status=status,
                    lu_id=unit.id,
                    attempt_number=latest.attempt_number if latest else None,
                ),
                actionable=actionable,
                blocking=blocking,
            )

        if latest is None:
            return [gate_row(GateStatus.PENDING, actionable=True, blocking=True)]

        if latest.passed:
            return [gate_row(GateStatus.PASSED, actionable=False, blocking=False)]

        attempt = latest.attempt_number

        if not config.retries_remaining(attempt):
            retry = PlaylistDisplayEntry(
                id=retry_entry_id(unit.id, attempt),
                title=f"Retry: {unit.title} (#{attempt})",
                kind=EntryKind.RETRY,
                is_gate=True,
                gate_status=GateStatus.EXHAUSTED,
                lu_id=unit.id,
                attempt_number=attempt,
            )
            logger.debug("Gate %s exhausted after %d attempts", unit.id, attempt)
            return [
                gate_row(GateStatus.EXHAUSTED, actionable=False, blocking=False),
                _Row(entry=retry, actionable=False),
            ]

        strategy = config.fail_strategy

        if strategy == FailStrategy.HOLD:
            return [gate_row(GateStatus.FAILED, actionable=True, blocking=True)]

        rows = [gate_row(GateStatus.FAILED, actionable=False, blocking=False)]
        if strategy == FailStrategy.ALLOW_CONTINUE:
            return rows

        specs = self.injection_policy.select_remediation(
            latest.failed_nodes, strategy, prior_units=prior_units
        )
        rows.extend(self._injected_row(unit.id, attempt, spec, completed) for spec in specs)
        return rows

    def _injected_row(self, gate_lu_id: str, attempt: int, spec: InjectedEntrySpec,
                      completed: AbstractSet[str]) -> _Row:
        if spec.kind == EntryKind.INJECTED_PRACTICE:
            entry_id = practice_entry_id(gate_lu_id, attempt, spec.node_id)
        else:
            entry_id = review_entry_id(gate_lu_id, attempt, spec.node_id)
        done = entry_id in completed

        return _Row(
            entry=PlaylistDisplayEntry(
                id=entry_id,
                title=spec.title,
                kind=spec.kind,
                is_completed=done,
                lu_id=gate_lu_id,
                target_node_ids=(spec.node_id,),
                question_count=spec.question_count,
                reference_lu_id=spec.reference_lu_id,
                attempt_number=attempt,
                question_strategy=spec.question_strategy,
            ),
            actionable=not done,
        )

    # ==================== Navigation ====================

    def _finalize(self, rows: List[_Row]) -> Playlist:
        blocked_at = next((i for i, r in enumerate(rows) if r.blocking), None)
        current_index = next((i for i, r in enumerate(rows) if r.actionable), None)

        entries = []
        for index, row in enumerate(rows):
            entry = row.entry
            if index == current_index:
                entry = replace(entry, is_current=True)
            entries.append(entry)

        return Playlist(
            entries=tuple(entries),
            blocked_at=blocked_at,
            current_index=current_index,
        )


def build_playlist(
    units: Sequence[LearningUnit],
    settings: CourseAdaptiveSettings,
    mastery: MasterySnapshot,
    gate_history: Mapping[str, Sequence[GateResult]],
    completed: AbstractSet[str] = frozenset(),
    default_skip_threshold: float = DEFAULT_SKIP_THRESHOLD,
) -> Playlist:
    """Functional entry point: build a playlist with a fresh builder."""
    builder = PlaylistBuilder(default_skip_threshold=default_skip_threshold)
    return builder.build(units, settings, mastery, gate_history, completed)


def format_playlist_for_display(playlist: Playlist) -> str:
    """Format a playlist as readable text."""
    markers = {
        EntryKind.STATIC: " ",
        EntryKind.INJECTED_PRACTICE: "+",
        EntryKind.INJECTED_REVIEW: "↺",
        EntryKind.RETRY: "!",
    }
    output = []
    for index, entry in enumerate(playlist):
        if entry.is_skipped:
            state = "skipped"
        elif entry.is_completed:
            state = "done"
        elif entry.is_current:
            state = "current"
        else:
            state = ""
        gate = f" [gate: {entry.gate_status.value}]" if entry.gate_status else ""
        line = f"{markers[entry.kind]} {index + 1:>2}. {entry.title}{gate}"
        if state:
            line += f" ({state})"
        if index == playlist.blocked_at:
            line += "  <- blocked"
        output.append(line)
    return "\n".join(output)
