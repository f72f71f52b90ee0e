"""Storage contract, record serialization and the JSON-file backend."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, TypeVar, cast

from .errors import StorageError
from .models import (
    QUIZ_TYPES,
    CardStatistics,
    Flashcard,
    LearningSession,
    QuizQuestion,
    QuizSession,
    TrainerData,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKENDS = ("json", "sqlite")
JSON_FILENAME = "data.json"
SQLITE_FILENAME = "trainer.db"


class Storage(Protocol):
    """CRUD over the three persisted collections."""

    def load_cards(self) -> list[Flashcard]: ...

    def save_cards(self, cards: Sequence[Flashcard]) -> None: ...

    def load_learning_sessions(self) -> list[LearningSession]: ...

    def append_learning_session(self, session: LearningSession) -> None: ...

    def load_quiz_sessions(self) -> list[QuizSession]: ...

    def append_quiz_session(self, session: QuizSession) -> None: ...

    def close(self) -> None: ...


def open_storage(backend: str, data_dir: Path | str) -> Storage:
    """Create the configured backend rooted at `data_dir`."""
    root = Path(data_dir)
    if backend == "json":
        logger.info("Using JSON storage at %s", root / JSON_FILENAME)
        return JsonStore(root / JSON_FILENAME)
    if backend == "sqlite":
        from .sqlite_store import SqliteStore

        logger.info("Using SQLite storage at %s", root / SQLITE_FILENAME)
        return SqliteStore(root / SQLITE_FILENAME)
    raise ValueError(f"Unknown storage backend '{backend}'. Expected one of: {', '.join(BACKENDS)}.")


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _required_timestamp(value: object) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"Invalid timestamp: {value!r}")
    return parsed


def _mapping(value: object, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a JSON object, got {type(value).__name__}.")
    return cast(dict[str, Any], value)


def _items(value: object, name: str) -> list[object]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a JSON list, got {type(value).__name__}.")
    return cast(list[object], value)


def card_to_dict(card: Flashcard) -> dict[str, Any]:
    stats = card.statistics
    return {
        "id": card.id,
        "front": card.front,
        "back": card.back,
        "notes": card.notes,
        "created_at": format_timestamp(card.created_at),
        "updated_at": format_timestamp(card.updated_at),
        "statistics": {
            "times_shown": stats.times_shown,
            "times_correct": stats.times_correct,
            "times_incorrect": stats.times_incorrect,
            "last_reviewed": format_timestamp(stats.last_reviewed),
            "success_rate": stats.success_rate,
            "status": stats.status,
            "consecutive_correct": stats.consecutive_correct,
        },
    }


def card_from_dict(raw: dict[str, Any]) -> Flashcard:
    raw = _mapping(raw, "card")
    stats = _mapping(raw.get("statistics") or {}, "card statistics")
    return Flashcard(
        id=str(raw["id"]),
        front=str(raw["front"]),
        back=str(raw["back"]),
        notes=str(raw["notes"]) if raw.get("notes") else None,
        created_at=_required_timestamp(raw["created_at"]),
        updated_at=_required_timestamp(raw["updated_at"]),
        statistics=CardStatistics(
            times_shown=int(stats.get("times_shown", 0)),
            times_correct=int(stats.get("times_correct", 0)),
            times_incorrect=int(stats.get("times_incorrect", 0)),
            last_reviewed=parse_timestamp(stats.get("last_reviewed")),
            success_rate=int(stats.get("success_rate", 0)),
            status=stats.get("status", "new"),
            consecutive_correct=int(stats.get("consecutive_correct", 0)),
        ),
    )


def learning_session_to_dict(session: LearningSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "date": format_timestamp(session.date),
        "cards_reviewed": list(session.cards_reviewed),
        "correct_cards": list(session.correct_cards),
        "incorrect_cards": list(session.incorrect_cards),
        "duration_seconds": session.duration_seconds,
    }


def learning_session_from_dict(raw: dict[str, Any]) -> LearningSession:
    raw = _mapping(raw, "learning session")
    return LearningSession(
        id=str(raw["id"]),
        date=_required_timestamp(raw["date"]),
        cards_reviewed=tuple(str(item) for item in _items(raw.get("cards_reviewed"), "cards_reviewed")),
        correct_cards=tuple(str(item) for item in _items(raw.get("correct_cards"), "correct_cards")),
        incorrect_cards=tuple(str(item) for item in _items(raw.get("incorrect_cards"), "incorrect_cards")),
        duration_seconds=int(raw.get("duration_seconds", 0)),
    )


def question_to_dict(question: QuizQuestion) -> dict[str, Any]:
    return {
        "id": question.id,
        "card_id": question.card_id,
        "prompt_text": question.prompt_text,
        "options": list(question.options),
        "correct_answer_index": question.correct_answer_index,
        "correct_answer": question.correct_answer,
        "user_answer": question.user_answer,
        "was_correct": question.was_correct,
    }


def question_from_dict(raw: dict[str, Any]) -> QuizQuestion:
    """Parse a quiz question; the correct answer must sit at its recorded index."""
    raw = _mapping(raw, "quiz question")
    options = tuple(str(item) for item in _items(raw.get("options"), "options"))
    correct_answer = str(raw["correct_answer"])
    index = raw.get("correct_answer_index")
    if index is None:
        index = options.index(correct_answer) if correct_answer in options else -1
    index = int(index)
    if not 0 <= index < len(options) or options[index] != correct_answer:
        raise ValueError(f"Quiz question {raw['id']!r} has no correct answer at index {index}.")
    return QuizQuestion(
        id=str(raw["id"]),
        card_id=str(raw["card_id"]),
        prompt_text=str(raw.get("prompt_text", "")),
        options=options,
        correct_answer_index=index,
        correct_answer=correct_answer,
        user_answer=str(raw.get("user_answer", "")),
        was_correct=bool(raw.get("was_correct", False)),
    )


def quiz_session_to_dict(session: QuizSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "quiz_type": session.quiz_type,
        "date": format_timestamp(session.date),
        "questions": [question_to_dict(question) for question in session.questions],
        "score_percent": session.score_percent,
        "completed": session.completed,
    }


def quiz_session_from_dict(raw: dict[str, Any]) -> QuizSession:
    raw = _mapping(raw, "quiz session")
    quiz_type = raw["quiz_type"]
    if quiz_type not in QUIZ_TYPES:
        raise ValueError(f"Unknown quiz type: {quiz_type!r}")
    return QuizSession(
        id=str(raw["id"]),
        quiz_type=quiz_type,
        date=_required_timestamp(raw["date"]),
        questions=tuple(
            question_from_dict(_mapping(item, "quiz question")) for item in _items(raw.get("questions"), "questions")
        ),
        score_percent=int(raw.get("score_percent", 0)),
        completed=bool(raw.get("completed", True)),
    )


def data_to_dict(data: TrainerData) -> dict[str, Any]:
    return {
        "cards": [card_to_dict(card) for card in data.cards],
        "learning_sessions": [learning_session_to_dict(session) for session in data.learning_sessions],
        "quiz_sessions": [quiz_session_to_dict(session) for session in data.quiz_sessions],
    }


class JsonStore:
    """Keeps all collections in one JSON document, read and rewritten as a whole.

    `path=None` keeps the document in memory only.
    """

    def __init__(self, path: Path | str | None) -> None:
        self._path = Path(path) if path is not None else None
        self._memory: dict[str, Any] = {"cards": [], "learning_sessions": [], "quiz_sessions": []}

    @property
    def path(self) -> Path | None:
        return self._path

    def _read(self) -> dict[str, Any]:
        if self._path is None:
            return json.loads(json.dumps(self._memory))
        if not self._path.exists():
            return {"cards": [], "learning_sessions": [], "quiz_sessions": []}
        try:
            raw: object = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Could not read {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise StorageError(f"{self._path} does not contain a JSON object.")
        return cast(dict[str, Any], raw)

    def _write(self, document: dict[str, Any]) -> None:
        if self._path is None:
            self._memory = json.loads(json.dumps(document))
            return
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise StorageError(f"Could not write {self._path}: {exc}") from exc
        logger.debug("Wrote %s", self._path)

    def _section(self, document: dict[str, Any], key: str) -> list[dict[str, Any]]:
        rows = document.get(key, [])
        if not isinstance(rows, list):
            raise StorageError(f"Section '{key}' is not a list.")
        return cast(list[dict[str, Any]], rows)

    def _load(self, key: str, parse: Callable[[dict[str, Any]], T]) -> list[T]:
        document = self._read()
        try:
            return [parse(row) for row in self._section(document, key)]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Malformed '{key}' record: {exc}") from exc

    def load_cards(self) -> list[Flashcard]:
        return self._load("cards", card_from_dict)

    def save_cards(self, cards: Sequence[Flashcard]) -> None:
        document = self._read()
        document["cards"] = [card_to_dict(card) for card in cards]
        self._write(document)

    def load_learning_sessions(self) -> list[LearningSession]:
        return self._load("learning_sessions", learning_session_from_dict)

    def append_learning_session(self, session: LearningSession) -> None:
        document = self._read()
        sessions = self._section(document, "learning_sessions")
        document["learning_sessions"] = [*sessions, learning_session_to_dict(session)]
        self._write(document)

    def load_quiz_sessions(self) -> list[QuizSession]:
        return self._load("quiz_sessions", quiz_session_from_dict)

    def append_quiz_session(self, session: QuizSession) -> None:
        document = self._read()
        sessions = self._section(document, "quiz_sessions")
        document["quiz_sessions"] = [*sessions, quiz_session_to_dict(session)]
        self._write(document)

    def close(self) -> None:
        """Nothing is held open between calls."""
