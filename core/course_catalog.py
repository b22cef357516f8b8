"""
Course Catalog - Static learning-unit sequences loaded from JSON.

Layout:
    data/courses/<course_id>.json
        {
            "id": "linear-algebra",
            "title": "...",
            "modules": [
                {"id": "m1", "units": [{"id": "...", "sequence": 1, ...}, ...]},
                ...
            ]
        }

A flat "units" list is accepted for single-module courses. Units are
ordered module by module, then by sequence within each module.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from .errors import UnknownCourse, UnknownLearningUnit
from .models import LearningUnit, validate_units

logger = logging.getLogger(__name__)


class CourseCatalog:

    def __init__(self, data_dir: str = "data/courses"):
        self.data_dir = Path(data_dir)
        self.courses: Dict[str, List[LearningUnit]] = {}
        self.titles: Dict[str, str] = {}
        self._unit_course: Dict[str, str] = {}
        self._load_all()

    def _load_all(self):
        if not self.data_dir.exists():
            logger.warning("Course data directory %s not found", self.data_dir)
            return
        for path in sorted(self.data_dir.glob("*.json")):
            with open(path, "r") as f:
                self.add_course(json.load(f), default_id=path.stem)

    def add_course(self, data: dict, default_id: Optional[str] = None):
        course_id = data.get("id", default_id)
        units: List[LearningUnit] = []

        if "modules" in data:
            for module in data["modules"]:
                module_units = [
                    LearningUnit.from_dict({**u, "module_id": module.get("id")})
                    for u in module.get("units", [])
                ]
                units.extend(sorted(module_units, key=lambda u: u.sequence))
        else:
            units = sorted(
                (LearningUnit.from_dict(u) for u in data.get("units", [])),
                key=lambda u: u.sequence,
            )

        validate_units(units)
        self.courses[course_id] = units
        self.titles[course_id] = data.get("title", course_id)
        for unit in units:
            self._unit_course[unit.id] = course_id

    # ==================== Query Methods ====================

    def get_units(self, course_id: str) -> List[LearningUnit]:
        if course_id not in self.courses:
            raise UnknownCourse(course_id)
        return list(self.courses[course_id])

    def get_unit(self, lu_id: str) -> LearningUnit:
        course_id = self._unit_course.get(lu_id)
        if course_id is None:
            raise UnknownLearningUnit(lu_id)
        return next(u for u in self.courses[course_id] if u.id == lu_id)

    def course_of(self, lu_id: str) -> str:
        if lu_id not in self._unit_course:
            raise UnknownLearningUnit(lu_id)
        return self._unit_course[lu_id]

    def list_courses(self) -> List[str]:
        return sorted(self.courses)
