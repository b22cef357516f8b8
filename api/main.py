"""
FastAPI Backend for the Adaptive Playlist Engine

Per-learner playlists over static courses:
- Playlist: skipped, gated, and injected entries for one learner
- Gate attempts: start, answer question by question, or abandon
- Adaptive settings: course mode and per-unit gate metadata (validated on save)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import configure_logging, get_settings
from core.course_catalog import CourseCatalog
from core.engine import AdaptiveEngine
from core.errors import (
    AttemptInProgress,
    AttemptNotFound,
    AttemptsExhausted,
    GateNotAvailable,
    InvalidConfiguration,
    PlaylistEngineError,
    ServiceUnavailable,
    UnknownCourse,
    UnknownLearningUnit,
)
from core.gate_evaluator import GateAttempt
from core.models import AdaptiveMode, CourseAdaptiveSettings, GateConfig, LearningUnitAdaptive
from core.playlist_builder import format_playlist_for_display
from core.question_service import HttpQuestionService, QuestionBank
from redis_store import GateHistoryConflict, RedisStore

configure_logging()
logger = logging.getLogger(__name__)

# ==================== Initialize ====================

_engine: Optional[AdaptiveEngine] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the engine's Redis connection on shutdown."""
    global _engine
    yield
    if _engine is not None:
        logger.info("Closing Redis store")
        await _engine.store.close()
        _engine = None


app = FastAPI(
    title="Adaptive Playlist API",
    description="Mastery-gated learning playlists",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_engine() -> AdaptiveEngine:
    """Shared engine, created on first use from environment settings."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if settings.question_service_url:
            questions = HttpQuestionService(
                settings.question_service_url,
                api_key=settings.question_service_api_key,
                timeout=settings.question_timeout_seconds,
            )
        else:
            questions = QuestionBank(settings.question_data_dir)
        _engine = AdaptiveEngine(
            store=RedisStore(settings=settings),
            catalog=CourseCatalog(settings.course_data_dir),
            question_service=questions,
            settings=settings,
        )
    return _engine


ERROR_STATUS = {
    InvalidConfiguration: 422,
    AttemptsExhausted: 409,
    AttemptInProgress: 409,
    GateNotAvailable: 409,
    GateHistoryConflict: 409,
    AttemptNotFound: 404,
    UnknownCourse: 404,
    UnknownLearningUnit: 404,
    ServiceUnavailable: 503,
}


def http_error(exc: PlaylistEngineError) -> HTTPException:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status, detail=str(exc))
    logger.exception("Unhandled engine error", exc_info=exc)
    return HTTPException(status_code=500, detail=str(exc))


# ==================== Request/Response Models ====================

class AnswerRequest(BaseModel):
    answer: Any = None


class SubmitRequest(BaseModel):
    answers: Dict[str, Any]


class ModeRequest(BaseModel):
    mode: AdaptiveMode


class AdaptiveSettingsBody(BaseModel):
    mode: AdaptiveMode = AdaptiveMode.OFF
    allow_learner_choice: bool = False
    pre_assessment_enabled: bool = False


class GateConfigBody(BaseModel):
    mastery_threshold: float = 0.8
    min_questions: int = 3
    max_retries: int = 2
    fail_strategy: str = "hold"


class LearningUnitAdaptiveBody(BaseModel):
    teaches_nodes: List[str] = []
    assesses_nodes: List[str] = []
    is_gate: bool = False
    is_skippable: bool = False
    gate_config: Optional[GateConfigBody] = None


class AttemptResponse(BaseModel):
    lu_id: str
    attempt_number: int
    state: str
    question: Optional[dict] = None
    result: Optional[dict] = None
    next_state: Optional[str] = None
    message: Optional[str] = None


class PlaylistResponse(BaseModel):
    course_id: str
    learner_id: str
    mode: str
    entries: List[dict]
    blocked_at: Optional[int] = None
    current_index: Optional[int] = None
    is_complete: bool
    formatted: str


def attempt_response(attempt: GateAttempt) -> AttemptResponse:
    result = attempt.result
    message = None
    if attempt.unavailable:
        message = "No questions available for this gate right now"
    return AttemptResponse(
        lu_id=attempt.lu_id,
        attempt_number=attempt.attempt_number,
        state=attempt.state.value,
        question=attempt.current_question.to_public_dict() if attempt.current_question else None,
        result=result.to_dict() if result else None,
        next_state=attempt.next_state.value if result else None,
        message=message,
    )


def require_unit_in_course(engine: AdaptiveEngine, course_id: str, lu_id: str):
    if engine.catalog.course_of(lu_id) != course_id:
        raise UnknownLearningUnit(lu_id)


# ==================== Endpoints ====================

@app.get("/")
def root():
    return {
        "name": "Adaptive Playlist API",
        "version": "1.0.0",
        "endpoints": [
            "GET /courses",
            "GET /courses/{course_id}/learners/{learner_id}/playlist",
            "POST /courses/{course_id}/learners/{learner_id}/gates/{lu_id}/attempts",
            "GET|PUT /courses/{course_id}/adaptive-settings",
            "GET|PUT /learning-units/{lu_id}/adaptive",
        ],
    }


@app.get("/health")
def health():
    engine = get_engine()
    return {
        "status": "ok",
        "courses": len(engine.catalog.list_courses()),
        "question_service": type(engine.question_service).__name__,
    }


@app.get("/courses")
def list_courses():
    catalog = get_engine().catalog
    return [
        {"id": course_id, "title": catalog.titles[course_id], "units": len(catalog.courses[course_id])}
        for course_id in catalog.list_courses()
    ]


@app.get("/courses/{course_id}/learners/{learner_id}/playlist", response_model=PlaylistResponse)
async def get_playlist(course_id: str, learner_id: str):
    """Build the learner's playlist. Read-only; building twice gives the same result."""
    engine = get_engine()
    try:
        playlist = await engine.build_playlist(learner_id, course_id)
        settings = await engine.effective_settings(learner_id, course_id)
    except PlaylistEngineError as exc:
        raise http_error(exc)

    data = playlist.to_dict()
    return PlaylistResponse(
        course_id=course_id,
        learner_id=learner_id,
        mode=settings.mode.value,
        entries=data["entries"],
        blocked_at=data["blocked_at"],
        current_index=data["current_index"],
        is_complete=data["is_complete"],
        formatted=format_playlist_for_display(playlist),
    )


# ==================== Gate Attempts ====================

@app.post("/courses/{course_id}/learners/{learner_id}/gates/{lu_id}/attempts",
          response_model=AttemptResponse)
async def start_attempt(course_id: str, learner_id: str, lu_id: str):
    """Open the next attempt on a gate and return its first question."""
    engine = get_engine()
    try:
        require_unit_in_course(engine, course_id, lu_id)
        attempt = await engine.start_gate_attempt(learner_id, lu_id)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return attempt_response(attempt)


@app.post("/courses/{course_id}/learners/{learner_id}/gates/{lu_id}/attempts/answer",
          response_model=AttemptResponse)
async def answer_question(course_id: str, learner_id: str, lu_id: str, request: AnswerRequest):
    """Answer the current question. The response carries the next question or the result."""
    engine = get_engine()
    try:
        require_unit_in_course(engine, course_id, lu_id)
        attempt = await engine.answer_gate_question(learner_id, lu_id, request.answer)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return attempt_response(attempt)


@app.delete("/courses/{course_id}/learners/{learner_id}/gates/{lu_id}/attempts")
async def abandon_attempt(course_id: str, learner_id: str, lu_id: str):
    """Abandon the open attempt. No result is stored."""
    engine = get_engine()
    try:
        require_unit_in_course(engine, course_id, lu_id)
        await engine.cancel_gate_attempt(learner_id, lu_id)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return {"status": "cancelled", "lu_id": lu_id}


@app.post("/courses/{course_id}/learners/{learner_id}/gates/{lu_id}/submissions")
async def submit_attempt(course_id: str, learner_id: str, lu_id: str, request: SubmitRequest):
    """Run a whole attempt with answers keyed by question id."""
    engine = get_engine()
    try:
        require_unit_in_course(engine, course_id, lu_id)
        result = await engine.submit_gate_attempt(learner_id, lu_id, request.answers)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return result.to_dict()


# ==================== Learner Progress ====================

@app.post("/courses/{course_id}/learners/{learner_id}/entries/{entry_id}/complete")
async def complete_entry(course_id: str, learner_id: str, entry_id: str):
    engine = get_engine()
    try:
        engine.catalog.get_units(course_id)
        await engine.mark_completed(learner_id, course_id, entry_id)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return {"status": "completed", "entry_id": entry_id}


@app.put("/courses/{course_id}/learners/{learner_id}/mode")
async def set_mode(course_id: str, learner_id: str, request: ModeRequest):
    """Pick a learner's own adaptive mode (only when the course allows it)."""
    engine = get_engine()
    try:
        engine.catalog.get_units(course_id)
        await engine.set_learner_mode(learner_id, course_id, request.mode)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return {"status": "updated", "mode": request.mode.value}


# ==================== Adaptive Configuration ====================

@app.get("/courses/{course_id}/adaptive-settings")
async def get_adaptive_settings(course_id: str):
    try:
        settings = await get_engine().get_course_settings(course_id)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return settings.to_dict()


@app.put("/courses/{course_id}/adaptive-settings")
async def save_adaptive_settings(course_id: str, request: AdaptiveSettingsBody):
    settings = CourseAdaptiveSettings(
        mode=request.mode,
        allow_learner_choice=request.allow_learner_choice,
        pre_assessment_enabled=request.pre_assessment_enabled,
    )
    try:
        await get_engine().save_course_settings(course_id, settings)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return settings.to_dict()


@app.get("/learning-units/{lu_id}/adaptive")
async def get_unit_adaptive(lu_id: str):
    try:
        adaptive = await get_engine().get_lu_adaptive(lu_id)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return adaptive.to_dict() if adaptive else None


@app.put("/learning-units/{lu_id}/adaptive")
async def save_unit_adaptive(lu_id: str, request: LearningUnitAdaptiveBody):
    """Validate and store a unit's adaptive metadata. Invalid metadata is rejected with 422."""
    try:
        gate_config = None
        if request.gate_config is not None:
            gate_config = GateConfig.from_dict(request.gate_config.model_dump())
        adaptive = LearningUnitAdaptive(
            teaches_nodes=tuple(request.teaches_nodes),
            assesses_nodes=tuple(request.assesses_nodes),
            is_gate=request.is_gate,
            is_skippable=request.is_skippable,
            gate_config=gate_config,
        )
    except ValueError as exc:
        # unknown fail_strategy
        raise HTTPException(status_code=422, detail=str(exc))

    try:
        await get_engine().save_lu_adaptive(lu_id, adaptive)
    except PlaylistEngineError as exc:
        raise http_error(exc)
    return adaptive.to_dict()


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
