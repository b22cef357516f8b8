"""
Injection Policy - Remedial entries for a failed gate.

Decides what gets spliced into the playlist right after a failed gate:
    inject-practice  -> one practice set per failed node
    prescribe-review -> one review link per failed node, pointing back at
                        the earliest prior unit that teaches it
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from core.models import EntryKind, FailStrategy, LearningUnit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InjectedEntrySpec:
    """A remedial item the playlist builder turns into a display entry."""
    kind: EntryKind
    node_id: str
    title: str
    question_count: Optional[int] = None
    question_strategy: Optional[str] = None
    reference_lu_id: Optional[str] = None


class InjectionPolicy:
    """
    Chooses remediation for the nodes a learner failed at a gate.

    Practice sets ask the question service for reinforcing questions;
    reviews only ever reference units that exist earlier in the course.
    """

    PRACTICE_STRATEGY = "reinforce"
    DEFAULT_QUESTIONS_PER_NODE = 5

    def __init__(self, questions_per_node: int = DEFAULT_QUESTIONS_PER_NODE):
        if questions_per_node < 1:
            raise ValueError("questions_per_node must be >= 1")
        self.questions_per_node = questions_per_node

    def select_remediation(
        self,
        failed_nodes: Iterable[str],
        strategy: FailStrategy,
        count_per_node: Optional[int] = None,
        prior_units: Sequence[LearningUnit] = (),
    ) -> List[InjectedEntrySpec]:
        """
        Build the ordered remediation for a failed gate.

        Args:
            failed_nodes: Node IDs below threshold in the failed attempt
            strategy: INJECT_PRACTICE or PRESCRIBE_REVIEW
            count_per_node: Practice questions per node (policy default if None)
            prior_units: Units before the gate, in course order

        Returns:
            One spec per failed node, in node-id order. Review specs are
            omitted for nodes no prior unit teaches.
        """
        nodes = sorted(set(failed_nodes))

        if strategy == FailStrategy.INJECT_PRACTICE:
            count = count_per_node or self.questions_per_node
            return [self._practice(node_id, count) for node_id in nodes]

        if strategy == FailStrategy.PRESCRIBE_REVIEW:
            specs = []
            for node_id in nodes:
                unit = self.find_teaching_unit(node_id, prior_units)
                if unit is None:
                    logger.debug("No prior unit teaches %s, review omitted", node_id)
                    continue
                specs.append(InjectedEntrySpec(
                    kind=EntryKind.INJECTED_REVIEW,
                    node_id=node_id,
                    title=f"Review: {unit.title}",
                    reference_lu_id=unit.id,
                ))
            return specs

        raise ValueError(f"{strategy.value} does not inject remediation")

    def _practice(self, node_id: str, count: int) -> InjectedEntrySpec:
        return InjectedEntrySpec(
            kind=EntryKind.INJECTED_PRACTICE,
            node_id=node_id,
            title=f"Practice: {node_id}",
            question_count=count,
            question_strategy=self.PRACTICE_STRATEGY,
        )

    @staticmethod
    def find_teaching_unit(node_id: str, units: Sequence[LearningUnit]) -> Optional[LearningUnit]:
        """First unit (in course order) whose taught nodes include node_id."""
        for unit in units:
            if node_id in unit.teaches_nodes:
                return unit
        return None
