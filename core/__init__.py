"""
Core module - Playlist building, gate evaluation, and mastery tracking.

Components:
    - models: Learning units, adaptive settings, gate results, playlist entries
    - errors: Engine exception hierarchy
    - course_catalog: Static course content loaded from JSON
    - question_service: Question bank (JSON) and remote question service (HTTP)
    - mastery_tracker: Response -> mastery-store updates
    - gate_evaluator: Gate attempts and scoring
    - playlist_builder: Pure playlist projection (imports remediation/)
    - engine: AdaptiveEngine, the library entry point (imports remediation/)

Note: PlaylistBuilder and AdaptiveEngine are imported from their modules
directly, since remediation/ depends on core.models.
"""

from .errors import (
    PlaylistEngineError,
    ServiceUnavailable,
    RecordingUnavailable,
    InvalidConfiguration,
    AttemptsExhausted,
    AttemptInProgress,
    AttemptNotFound,
    AttemptCancelled,
    GateNotAvailable,
    UnknownCourse,
    UnknownLearningUnit,
)
from .models import (
    AdaptiveMode,
    CourseAdaptiveSettings,
    EntryKind,
    FailStrategy,
    GateConfig,
    GateResult,
    GateStatus,
    LearningUnit,
    LearningUnitAdaptive,
    MasterySnapshot,
    Playlist,
    PlaylistDisplayEntry,
    Question,
)
from .course_catalog import CourseCatalog
from .question_service import QuestionBank, HttpQuestionService
from .mastery_tracker import MasteryTracker
from .gate_evaluator import GateAttempt, GateEvaluator

__all__ = [
    "PlaylistEngineError",
    "ServiceUnavailable",
    "RecordingUnavailable",
    "InvalidConfiguration",
    "AttemptsExhausted",
    "AttemptInProgress",
    "AttemptNotFound",
    "AttemptCancelled",
    "GateNotAvailable",
    "UnknownCourse",
    "UnknownLearningUnit",
    "AdaptiveMode",
    "CourseAdaptiveSettings",
    "EntryKind",
    "FailStrategy",
    "GateConfig",
    "GateResult",
    "GateStatus",
    "LearningUnit",
    "LearningUnitAdaptive",
    "MasterySnapshot",
    "Playlist",
    "PlaylistDisplayEntry",
    "Question",
    "CourseCatalog",
    "QuestionBank",
    "HttpQuestionService",
    "MasteryTracker",
    "GateAttempt",
    "GateEvaluator",
]
