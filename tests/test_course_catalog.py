"""Tests for core/course_catalog.py"""

from pathlib import Path

import pytest

from core.course_catalog import CourseCatalog
from core.errors import InvalidConfiguration, UnknownCourse, UnknownLearningUnit

COURSE_DIR = str(Path(__file__).resolve().parent.parent / "data" / "courses")


def test_sample_course_ordered_by_module_then_sequence():
    catalog = CourseCatalog(COURSE_DIR)
    units = catalog.get_units("linear-algebra")
    assert [u.id for u in units] == [
        "la-vectors",
        "la-matrix-ops",
        "la-checkpoint-1",
        "la-determinants",
        "la-determinant-drills",
        "la-checkpoint-2",
        "la-eigenvalues",
        "la-final",
    ]
    assert units[3].module_id == "determinants-and-eigen"
    assert catalog.titles["linear-algebra"] == "Linear Algebra Foundations"


def test_unit_lookup():
    catalog = CourseCatalog(COURSE_DIR)
    assert catalog.get_unit("la-final").is_gate
    assert catalog.course_of("la-final") == "linear-algebra"
    with pytest.raises(UnknownLearningUnit):
        catalog.get_unit("missing")
    with pytest.raises(UnknownCourse):
        catalog.get_units("missing")


def test_flat_course_sorted_by_sequence(tmp_path):
    catalog = CourseCatalog(str(tmp_path))
    catalog.add_course({"id": "flat", "units": [
        {"id": "b", "sequence": 2},
        {"id": "a", "sequence": 1},
    ]})
    assert [u.id for u in catalog.get_units("flat")] == ["a", "b"]
    assert catalog.list_courses() == ["flat"]


def test_invalid_course_rejected(tmp_path):
    catalog = CourseCatalog(str(tmp_path))
    with pytest.raises(InvalidConfiguration):
        catalog.add_course({"id": "bad", "units": [
            {"id": "g", "sequence": 1, "adaptive": {"is_gate": True, "assesses_nodes": ["n1"]}},
        ]})
