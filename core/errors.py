"""
Engine errors.

    PlaylistEngineError
    ├── ServiceUnavailable     - question selection unreachable (gate degrades to failed)
    ├── RecordingUnavailable   - mastery store unreachable (logged, never aborts)
    ├── InvalidConfiguration   - rejected at save time
    ├── AttemptsExhausted      - no retries left for a gate
    ├── AttemptInProgress      - learner already has an open attempt on the gate
    ├── AttemptNotFound        - no open attempt to answer/cancel
    ├── AttemptCancelled       - attempt was abandoned, no result exists
    ├── GateNotAvailable       - unit is not an open gate for this learner
    ├── UnknownCourse
    └── UnknownLearningUnit
"""


class PlaylistEngineError(Exception):
    """Base class for all engine errors."""


class ServiceUnavailable(PlaylistEngineError):
    """Question selection service failed or timed out."""


class RecordingUnavailable(PlaylistEngineError):
    """Mastery store could not record a response."""


class InvalidConfiguration(PlaylistEngineError):
    """Adaptive configuration violates an invariant."""


class AttemptsExhausted(PlaylistEngineError):
    def __init__(self, lu_id: str, max_retries: int):
        super().__init__(f"No attempts left for gate {lu_id} (max retries: {max_retries})")
        self.lu_id = lu_id
        self.max_retries = max_retries


class AttemptInProgress(PlaylistEngineError):
    def __init__(self, learner_id: str, lu_id: str):
        super().__init__(f"Learner {learner_id} already has an open attempt on {lu_id}")
        self.learner_id = learner_id
        self.lu_id = lu_id


class AttemptNotFound(PlaylistEngineError):
    def __init__(self, learner_id: str, lu_id: str):
        super().__init__(f"No open attempt for learner {learner_id} on {lu_id}")
        self.learner_id = learner_id
        self.lu_id = lu_id


class AttemptCancelled(PlaylistEngineError):
    """The attempt was abandoned before it completed."""


class UnknownCourse(PlaylistEngineError):
    def __init__(self, course_id: str):
        super().__init__(f"Course not found: {course_id}")
        self.course_id = course_id


class UnknownLearningUnit(PlaylistEngineError):
    def __init__(self, lu_id: str):
        super().__init__(f"Learning unit not found: {lu_id}")
        self.lu_id = lu_id


class GateNotAvailable(PlaylistEngineError):
    """The unit cannot be attempted: not a gate, adaptive mode off, or already passed."""

    def __init__(self, lu_id: str, reason: str):
        super().__init__(f"Gate {lu_id} not available: {reason}")
        self.lu_id = lu_id
        self.reason = reason
