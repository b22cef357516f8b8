"""
Question Selection Services.

Both implementations hand back a lazy, finite, non-restartable async
sequence of Questions for one knowledge node:

    - QuestionBank: questions loaded from JSON files under data/questions
    - HttpQuestionService: remote question service over HTTP

Failures surface as ServiceUnavailable.
"""

import json
import logging
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Protocol

import httpx

from .errors import ServiceUnavailable
from .models import ContextType, Question

logger = logging.getLogger(__name__)


class QuestionSelectionService(Protocol):
    def select_questions(
        self,
        node_id: str,
        context_type: ContextType,
        count: int,
        strategy: Optional[str] = None,
    ) -> AsyncIterator[Question]:
        ...


class QuestionBank:
    """
    File-backed question bank.

    Layout:
        data/questions/<topic>/<anything>.json
            {"node_id": "...", "questions": [...]}        single node
            {"nodes": [{"id": "...", "questions": [...]}]}  several nodes

    Selection is deterministic:
        assessment -> progressive (easy -> hard)
        practice   -> "reinforce" strategy serves the easiest questions first,
                      anything else follows the assessment order
    """

    def __init__(self, data_dir: str = "data/questions"):
        self.data_dir = Path(data_dir)
        self.questions: Dict[str, List[Question]] = {}
        self._load_all()

    def _load_all(self):
        if not self.data_dir.exists():
            logger.warning("Question data directory %s not found", self.data_dir)
            return

        for path in sorted(self.data_dir.rglob("*.json")):
            with open(path, "r") as f:
                data = json.load(f)

            if "nodes" in data:
                for node in data["nodes"]:
                    self.add_questions(node["id"], node.get("questions", []))
            else:
                self.add_questions(data["node_id"], data.get("questions", []))

    def add_questions(self, node_id: str, questions: List[dict]):
        bucket = self.questions.setdefault(node_id, [])
        bucket.extend(Question.from_dict(q, node_id=node_id) for q in questions)

    # ==================== Query Methods ====================

    def get_questions(self, node_id: str, difficulty: Optional[int] = None) -> List[Question]:
        """Get questions for a node, optionally filtered by difficulty."""
        questions = self.questions.get(node_id, [])
        if difficulty is not None:
            return [q for q in questions if q.difficulty == difficulty]
        return list(questions)

    def _ordered(self, node_id: str, context_type: ContextType,
                 strategy: Optional[str]) -> List[Question]:
        questions = self.get_questions(node_id)
        if context_type == ContextType.PRACTICE and strategy == "reinforce":
            return sorted(questions, key=lambda q: (q.difficulty, q.cognitive_depth, q.id))
        # progressive: difficulty first, then deeper questions
        return sorted(questions, key=lambda q: (q.difficulty, -q.cognitive_depth, q.id))

    async def select_questions(
        self,
        node_id: str,
        context_type: ContextType,
        count: int,
        strategy: Optional[str] = None,
    ) -> AsyncIterator[Question]:
        for question in self._ordered(node_id, context_type, strategy)[:count]:
            yield question


class HttpQuestionService:
    """
    Client for a remote question selection endpoint.

    POST {base_url}/questions/select
        {"node_id", "context_type", "strategy", "count"} -> [question, ...]
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.timeout = timeout
        self.transport = transport

    async def fetch(self, node_id: str, context_type: ContextType, count: int,
                    strategy: Optional[str] = None) -> List[Question]:
        payload = {
            "node_id": node_id,
            "context_type": context_type.value,
            "strategy": strategy,
            "count": count,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/questions/select",
                    headers=self.headers,
                    json=payload,
                )
                response.raise_for_status()
                items = response.json()
        except httpx.HTTPError as exc:
            raise ServiceUnavailable(f"Question selection failed for {node_id}: {exc}") from exc
        except ValueError as exc:
            raise ServiceUnavailable(f"Question service sent invalid JSON for {node_id}") from exc

        try:
            return [Question.from_dict(item, node_id=node_id) for item in items][:count]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ServiceUnavailable(
                f"Question service sent a malformed question for {node_id}: {exc!r}"
            ) from exc

    async def select_questions(
        self,
        node_id: str,
        context_type: ContextType,
        count: int,
        strategy: Optional[str] = None,
    ) -> AsyncIterator[Question]:
        for question in await self.fetch(node_id, context_type, count, strategy):
            yield question
