"""Tests for core/models.py"""

import pytest

from core.errors import InvalidConfiguration
from core.models import (
    DEFAULT_GATE_CONFIG,
    CourseAdaptiveSettings,
    AdaptiveMode,
    FailStrategy,
    GateConfig,
    GateResult,
    LearningUnit,
    LearningUnitAdaptive,
    MasterySnapshot,
    Question,
    latest_result,
    validate_learning_unit_adaptive,
    validate_units,
)


def test_default_gate_config():
    assert DEFAULT_GATE_CONFIG == GateConfig(0.8, 3, 2, FailStrategy.HOLD)


def test_retries_remaining_allows_max_retries_plus_one_attempts():
    config = GateConfig(max_retries=1)
    assert config.retries_remaining(1)
    assert not config.retries_remaining(2)

    no_retries = GateConfig(max_retries=0)
    assert not no_retries.retries_remaining(1)

    unlimited = GateConfig(max_retries=-1)
    assert unlimited.retries_remaining(1000)


def test_mastery_snapshot_defaults_missing_nodes_to_zero():
    snapshot = MasterySnapshot({"vectors": 0.9})
    assert snapshot.level("vectors") == 0.9
    assert snapshot.level("eigenvalues") == 0.0
    assert snapshot.all_at_least(["vectors"], 0.8)
    assert not snapshot.all_at_least(["vectors", "eigenvalues"], 0.8)
    assert not snapshot.all_at_least([], 0.8)


def test_mastery_snapshot_rejects_out_of_range():
    with pytest.raises(ValueError):
        MasterySnapshot({"vectors": 1.2})


def test_gate_result_normalizes_failed_nodes():
    result = GateResult("g", False, 0.4, 1, ("b", "a", "b"))
    assert result.failed_nodes == ("a", "b")
    assert GateResult.from_dict(result.to_dict()) == result


def test_gate_result_attempt_number_is_one_based():
    with pytest.raises(ValueError):
        GateResult("g", True, 1.0, 0)


def test_latest_result_uses_attempt_number():
    first = GateResult("g", False, 0.2, 1)
    second = GateResult("g", True, 0.9, 2)
    assert latest_result([second, first]) is second
    assert latest_result([]) is None


def test_question_single_answer_is_containment():
    question = Question("q1", "n1", correct_answers=("5", "five"))
    assert question.is_correct("5")
    assert question.is_correct("five")
    assert not question.is_correct("7")
    assert not question.is_correct(None)


def test_question_multi_select_needs_exact_set():
    question = Question("q1", "n1", correct_answers=("a", "b"))
    assert question.is_correct(["b", "a"])
    assert not question.is_correct(["a"])
    assert not question.is_correct(["a", "b", "c"])


def test_question_from_dict_accepts_legacy_keys():
    question = Question.from_dict(
        {"id": "q1", "question": "2 + 2?", "correct": "4", "options": ["3", "4"]},
        node_id="arith",
    )
    assert question.node_id == "arith"
    assert question.text == "2 + 2?"
    assert question.correct_answers == ("4",)
    assert "correct_answers" not in question.to_public_dict()


def test_course_settings_from_redis_strings():
    settings = CourseAdaptiveSettings.from_dict(
        {"mode": "guided", "allow_learner_choice": "1", "pre_assessment_enabled": "0"}
    )
    assert settings.mode == AdaptiveMode.GUIDED
    assert settings.allow_learner_choice is True
    assert settings.pre_assessment_enabled is False


@pytest.mark.parametrize("adaptive", [
    LearningUnitAdaptive(is_gate=True, assesses_nodes=("n1",)),
    LearningUnitAdaptive(is_gate=True, gate_config=GateConfig()),
    LearningUnitAdaptive(is_skippable=True),
    LearningUnitAdaptive(teaches_nodes=("n1", "n1")),
    LearningUnitAdaptive(assesses_nodes=("",)),
    LearningUnitAdaptive(is_gate=True, assesses_nodes=("n1",),
                         gate_config=GateConfig(mastery_threshold=0.0)),
    LearningUnitAdaptive(is_gate=True, assesses_nodes=("n1",),
                         gate_config=GateConfig(min_questions=0)),
    LearningUnitAdaptive(is_gate=True, assesses_nodes=("n1",),
                         gate_config=GateConfig(max_retries=-2)),
])
def test_invalid_adaptive_metadata_is_rejected(adaptive):
    with pytest.raises(InvalidConfiguration):
        validate_learning_unit_adaptive(adaptive)


def test_valid_gate_metadata_passes():
    validate_learning_unit_adaptive(LearningUnitAdaptive(
        teaches_nodes=("n1",),
        assesses_nodes=("n1", "n2"),
        is_gate=True,
        is_skippable=True,
        gate_config=GateConfig(mastery_threshold=1.0, max_retries=-1),
    ))


def test_duplicate_unit_ids_rejected():
    units = [LearningUnit("a", 1, "A"), LearningUnit("a", 2, "A again")]
    with pytest.raises(InvalidConfiguration):
        validate_units(units)


def test_sequence_must_be_unique_within_module():
    units = [
        LearningUnit("a", 1, "A", module_id="m1"),
        LearningUnit("b", 1, "B", module_id="m1"),
    ]
    with pytest.raises(InvalidConfiguration):
        validate_units(units)

    # the same sequence in another module is fine
    validate_units([LearningUnit("a", 1, "A", module_id="m1"), LearningUnit("b", 1, "B", module_id="m2")])


def test_learning_unit_from_dict():
    unit = LearningUnit.from_dict({
        "id": "gate",
        "sequence": "3",
        "title": "Checkpoint",
        "category": "graded",
        "adaptive": {
            "assesses_nodes": ["n1"],
            "is_gate": True,
            "gate_config": {"mastery_threshold": 0.7, "fail_strategy": "prescribe-review"},
        },
    })
    assert unit.sequence == 3
    assert unit.is_gate
    assert unit.adaptive.primary_node == "n1"
    assert unit.adaptive.gate_config.fail_strategy == FailStrategy.PRESCRIBE_REVIEW
    assert unit.adaptive.gate_config.min_questions == 3
