"""Tests for core/question_service.py"""

import json
from pathlib import Path

import httpx
import pytest

from core.errors import ServiceUnavailable
from core.models import ContextType
from core.question_service import HttpQuestionService, QuestionBank

QUESTION_DIR = str(Path(__file__).resolve().parent.parent / "data" / "questions")


async def collect(stream):
    return [q async for q in stream]


def test_bank_loads_both_file_layouts():
    bank = QuestionBank(QUESTION_DIR)
    assert len(bank.questions) == 4
    assert len(bank.get_questions("vectors")) == 4
    assert len(bank.get_questions("determinants")) == 3
    assert [q.id for q in bank.get_questions("vectors", difficulty=1)] == ["vec_001", "vec_002"]


def test_bank_missing_directory_is_empty(tmp_path):
    bank = QuestionBank(str(tmp_path / "missing"))
    assert bank.questions == {}
    assert bank.get_questions("vectors") == []


@pytest.mark.asyncio
async def test_assessment_is_progressive_and_bounded():
    bank = QuestionBank(QUESTION_DIR)
    questions = await collect(bank.select_questions("vectors", ContextType.ASSESSMENT, 3))
    assert [q.id for q in questions] == ["vec_002", "vec_001", "vec_003"]


@pytest.mark.asyncio
async def test_reinforce_practice_starts_easy():
    bank = QuestionBank(QUESTION_DIR)
    questions = await collect(
        bank.select_questions("vectors", ContextType.PRACTICE, 2, strategy="reinforce")
    )
    assert [q.id for q in questions] == ["vec_001", "vec_002"]


@pytest.mark.asyncio
async def test_unknown_node_yields_nothing():
    bank = QuestionBank(QUESTION_DIR)
    assert await collect(bank.select_questions("topology", ContextType.ASSESSMENT, 3)) == []


@pytest.mark.asyncio
async def test_http_service_posts_selection_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[
            {"id": "q1", "text": "?", "correct_answers": ["a"]},
            {"id": "q2", "text": "?", "correct_answers": ["b"]},
            {"id": "q3", "text": "?", "correct_answers": ["c"]},
        ])

    service = HttpQuestionService(
        "http://questions.test/", api_key="secret", transport=httpx.MockTransport(handler)
    )
    questions = await collect(service.select_questions("vectors", ContextType.ASSESSMENT, 2))

    assert [q.id for q in questions] == ["q1", "q2"]
    assert all(q.node_id == "vectors" for q in questions)
    assert seen["url"] == "http://questions.test/questions/select"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {
        "node_id": "vectors", "context_type": "assessment", "strategy": None, "count": 2,
    }


@pytest.mark.asyncio
async def test_http_errors_are_service_unavailable():
    service = HttpQuestionService(
        "http://questions.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    with pytest.raises(ServiceUnavailable):
        await service.fetch("vectors", ContextType.ASSESSMENT, 3)


@pytest.mark.asyncio
async def test_non_json_body_is_service_unavailable():
    service = HttpQuestionService(
        "http://questions.test",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html>bad gateway</html>")
        ),
    )
    with pytest.raises(ServiceUnavailable):
        await service.fetch("vectors", ContextType.ASSESSMENT, 3)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    [{"text": "no id", "correct_answers": ["a"]}],
    ["q1", "q2"],
])
async def test_malformed_questions_are_service_unavailable(body):
    service = HttpQuestionService(
        "http://questions.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
    )
    with pytest.raises(ServiceUnavailable):
        await collect(service.select_questions("vectors", ContextType.ASSESSMENT, 3))
