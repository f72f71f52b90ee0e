"""SQLite backend for cards, learning sessions and quiz history."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from .errors import StorageError
from .models import CardStatistics, Flashcard, LearningSession, QuizQuestion, QuizSession
from .storage import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class SqliteStore:
    """Relational storage; each write runs in a single transaction."""

    def __init__(self, db_path: Path | str) -> None:
        """Open the database and bring its schema up to date."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        try:
            self._conn = sqlite3.connect(target)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open database {target}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        with self._errors("migrate schema"):
            self._apply_migrations()

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise StorageError(f"Could not {action}: {exc}") from exc

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise StorageError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )
            logger.debug("Migrated database schema to version %s", version)

    def _migrate_to_v1(self) -> None:
        """Create card, learning-session and quiz tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS cards (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    front TEXT NOT NULL,
                    back TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    times_shown INTEGER NOT NULL DEFAULT 0,
                    times_correct INTEGER NOT NULL DEFAULT 0,
                    times_incorrect INTEGER NOT NULL DEFAULT 0,
                    last_reviewed TEXT,
                    success_rate INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'new',
                    consecutive_correct INTEGER NOT NULL DEFAULT 0
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS learning_sessions (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    cards_reviewed TEXT NOT NULL,
                    correct_cards TEXT NOT NULL,
                    incorrect_cards TEXT NOT NULL,
                    duration_seconds INTEGER NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS quiz_sessions (
                    id TEXT PRIMARY KEY,
                    quiz_type TEXT NOT NULL,
                    date TEXT NOT NULL,
                    score_percent INTEGER NOT NULL,
                    completed INTEGER NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS quiz_questions (
                    quiz_session_id TEXT NOT NULL REFERENCES quiz_sessions(id) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    id TEXT NOT NULL,
                    card_id TEXT NOT NULL,
                    prompt_text TEXT NOT NULL,
                    options TEXT NOT NULL,
                    correct_answer_index INTEGER NOT NULL,
                    correct_answer TEXT NOT NULL,
                    user_answer TEXT NOT NULL,
                    was_correct INTEGER NOT NULL,
                    PRIMARY KEY (quiz_session_id, position)
                )
                """)

    def load_cards(self) -> list[Flashcard]:
        """Return cards in insertion order."""
        with self._errors("load cards"):
            rows = self._conn.execute("SELECT * FROM cards ORDER BY position").fetchall()
        return [_card_from_row(row) for row in rows]

    def save_cards(self, cards: Sequence[Flashcard]) -> None:
        """Replace the whole card collection."""
        with self._errors("save cards"), self._conn:
            self._conn.execute("DELETE FROM cards")
            self._conn.executemany(
                """
                INSERT INTO cards (
                    id,
                    position,
                    front,
                    back,
                    notes,
                    created_at,
                    updated_at,
                    times_shown,
                    times_correct,
                    times_incorrect,
                    last_reviewed,
                    success_rate,
                    status,
                    consecutive_correct
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        card.id,
                        position,
                        card.front,
                        card.back,
                        card.notes,
                        format_timestamp(card.created_at),
                        format_timestamp(card.updated_at),
                        card.statistics.times_shown,
                        card.statistics.times_correct,
                        card.statistics.times_incorrect,
                        format_timestamp(card.statistics.last_reviewed),
                        card.statistics.success_rate,
                        card.statistics.status,
                        card.statistics.consecutive_correct,
                    )
                    for position, card in enumerate(cards)
                ],
            )
        logger.debug("Saved %s cards", len(cards))

    def load_learning_sessions(self) -> list[LearningSession]:
        with self._errors("load learning sessions"):
            rows = self._conn.execute("SELECT * FROM learning_sessions ORDER BY rowid").fetchall()
        return [
            LearningSession(
                id=str(row["id"]),
                date=_timestamp(row["date"]),
                cards_reviewed=tuple(json.loads(row["cards_reviewed"])),
                correct_cards=tuple(json.loads(row["correct_cards"])),
                incorrect_cards=tuple(json.loads(row["incorrect_cards"])),
                duration_seconds=int(row["duration_seconds"]),
            )
            for row in rows
        ]

    def append_learning_session(self, session: LearningSession) -> None:
        with self._errors("append learning session"), self._conn:
            self._conn.execute(
                """
                INSERT INTO learning_sessions (
                    id, date, cards_reviewed, correct_cards, incorrect_cards, duration_seconds
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    format_timestamp(session.date),
                    json.dumps(list(session.cards_reviewed)),
                    json.dumps(list(session.correct_cards)),
                    json.dumps(list(session.incorrect_cards)),
                    session.duration_seconds,
                ),
            )

    def load_quiz_sessions(self) -> list[QuizSession]:
        with self._errors("load quiz sessions"):
            session_rows = self._conn.execute("SELECT * FROM quiz_sessions ORDER BY rowid").fetchall()
            question_rows = self._conn.execute(
                "SELECT * FROM quiz_questions ORDER BY quiz_session_id, position"
            ).fetchall()

        questions: dict[str, list[QuizQuestion]] = {}
        for row in question_rows:
            questions.setdefault(str(row["quiz_session_id"]), []).append(
                QuizQuestion(
                    id=str(row["id"]),
                    card_id=str(row["card_id"]),
                    prompt_text=str(row["prompt_text"]),
                    options=tuple(json.loads(row["options"])),
                    correct_answer_index=int(row["correct_answer_index"]),
                    correct_answer=str(row["correct_answer"]),
                    user_answer=str(row["user_answer"]),
                    was_correct=bool(row["was_correct"]),
                )
            )
        return [
            QuizSession(
                id=str(row["id"]),
                quiz_type=row["quiz_type"],
                date=_timestamp(row["date"]),
                questions=tuple(questions.get(str(row["id"]), [])),
                score_percent=int(row["score_percent"]),
                completed=bool(row["completed"]),
            )
            for row in session_rows
        ]

    def append_quiz_session(self, session: QuizSession) -> None:
        with self._errors("append quiz session"), self._conn:
            self._conn.execute(
                "INSERT INTO quiz_sessions (id, quiz_type, date, score_percent, completed) VALUES (?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.quiz_type,
                    format_timestamp(session.date),
                    session.score_percent,
                    int(session.completed),
                ),
            )
            self._conn.executemany(
                """
                INSERT INTO quiz_questions (
                    quiz_session_id,
                    position,
                    id,
                    card_id,
                    prompt_text,
                    options,
                    correct_answer_index,
                    correct_answer,
                    user_answer,
                    was_correct
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        session.id,
                        position,
                        question.id,
                        question.card_id,
                        question.prompt_text,
                        json.dumps(list(question.options)),
                        question.correct_answer_index,
                        question.correct_answer,
                        question.user_answer,
                        int(question.was_correct),
                    )
                    for position, question in enumerate(session.questions)
                ],
            )

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()


def _timestamp(value: object) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise StorageError(f"Invalid timestamp in database: {value!r}")
    return parsed


def _card_from_row(row: sqlite3.Row) -> Flashcard:
    return Flashcard(
        id=str(row["id"]),
        front=str(row["front"]),
        back=str(row["back"]),
        notes=row["notes"],
        created_at=_timestamp(row["created_at"]),
        updated_at=_timestamp(row["updated_at"]),
        statistics=CardStatistics(
            times_shown=int(row["times_shown"]),
            times_correct=int(row["times_correct"]),
            times_incorrect=int(row["times_incorrect"]),
            last_reviewed=parse_timestamp(row["last_reviewed"]),
            success_rate=int(row["success_rate"]),
            status=row["status"],
            consecutive_correct=int(row["consecutive_correct"]),
        ),
    )
