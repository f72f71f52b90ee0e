"""Application service for cards, learning sessions, quizzes and statistics."""

from __future__ import annotations

import json
import logging
import math
import random
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, TypeVar, cast

from . import __version__, activity, quiz, statistics
from .content_loader import load_demo_deck
from .errors import SessionStateError, ValidationError
from .ids import new_id
from .models import (
    QUIZ_TYPES,
    ActiveLearningSession,
    AnswerUpdate,
    Flashcard,
    LearningSession,
    QuizQuestion,
    QuizSession,
    QuizType,
    TrainerData,
)
from .storage import (
    Storage,
    card_from_dict,
    data_to_dict,
    learning_session_from_dict,
    quiz_session_from_dict,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXPORT_FORMAT_VERSION = 1
MIN_TEXT_LENGTH = 2
MAX_TEXT_LENGTH = 100
MAX_NOTES_LENGTH = 500
DEFAULT_SESSION_SIZE = 20
DEFAULT_QUIZ_SIZE = 10


@dataclass(frozen=True)
class DashboardSummary:
    """Headline numbers for the start screen."""

    total_cards: int
    learned_cards: int
    due_cards: int
    current_streak: int
    longest_streak: int


@dataclass(frozen=True)
class TransferSummary:
    """Summary emitted by export/import operations."""

    cards: int
    learning_sessions: int
    quiz_sessions: int


class TrainerService:
    """Coordinates storage and the pure engines.

    Every mutating call loads, computes and saves under one lock.
    """

    def __init__(self, storage: Storage) -> None:
        """Initialize service with a storage backend."""
        self.storage = storage
        self._lock = threading.RLock()
        self._active: ActiveLearningSession | None = None
        self._pending_updates: list[AnswerUpdate] = []

    # Cards

    def list_cards(self) -> list[Flashcard]:
        return self.storage.load_cards()

    def get_card(self, card_id: str) -> Flashcard | None:
        """Get one card by id."""
        return next((card for card in self.storage.load_cards() if card.id == card_id), None)

    def search_cards(self, query: str) -> list[Flashcard]:
        return statistics.search_cards(self.storage.load_cards(), query)

    def is_duplicate(self, front: str, exclude_id: str | None = None) -> bool:
        return statistics.is_duplicate(self.storage.load_cards(), front, exclude_id)

    def create_card(self, front: str, back: str, notes: str | None = None) -> Flashcard:
        """Validate and store a new card with empty statistics."""
        with self._lock:
            cards = self.storage.load_cards()
            front_text, back_text, notes_text = _validate_card_fields(cards, front, back, notes)
            now = datetime.now(UTC)
            card = Flashcard(
                id=new_id(),
                front=front_text,
                back=back_text,
                notes=notes_text,
                created_at=now,
                updated_at=now,
                statistics=statistics.new_statistics(),
            )
            self.storage.save_cards([*cards, card])
        logger.debug("Created card %s (%s)", card.id, card.front)
        return card

    def update_card(
        self,
        card_id: str,
        front: str | None = None,
        back: str | None = None,
        notes: str | None = None,
    ) -> Flashcard | None:
        """Edit card text; statistics are left untouched. Returns None when the card is missing.

        A field left as None keeps its current value; `notes=""` clears the notes.
        """
        with self._lock:
            cards = self.storage.load_cards()
            index = next((i for i, card in enumerate(cards) if card.id == card_id), None)
            if index is None:
                logger.debug("Cannot update missing card %s", card_id)
                return None
            current = cards[index]
            front_text, back_text, notes_text = _validate_card_fields(
                cards,
                current.front if front is None else front,
                current.back if back is None else back,
                current.notes if notes is None else notes,
                exclude_id=card_id,
            )
            updated = replace(
                current,
                front=front_text,
                back=back_text,
                notes=notes_text,
                updated_at=datetime.now(UTC),
            )
            cards[index] = updated
            self.storage.save_cards(cards)
        return updated

    def delete_card(self, card_id: str) -> bool:
        """Delete one card by id."""
        with self._lock:
            cards = self.storage.load_cards()
            remaining = [card for card in cards if card.id != card_id]
            if len(remaining) == len(cards):
                return False
            self.storage.save_cards(remaining)
        return True

    def record_answer(self, card_id: str, was_correct: bool) -> Flashcard | None:
        """Count one answer for a card. Returns None when the card is missing."""
        with self._lock:
            cards, applied = statistics.apply_answers(
                self.storage.load_cards(), [AnswerUpdate(card_id=card_id, was_correct=was_correct)]
            )
            if not applied:
                return None
            self.storage.save_cards(cards)
        return next(card for card in cards if card.id == card_id)

    def record_answers(self, updates: Iterable[AnswerUpdate]) -> int:
        """Apply many verdicts with a single save; returns how many matched a card."""
        with self._lock:
            pending = list(updates)
            if not pending:
                return 0
            cards, applied = statistics.apply_answers(self.storage.load_cards(), pending)
            self.storage.save_cards(cards)
        return applied

    def cards_due_for_review(self) -> list[Flashcard]:
        return statistics.cards_due_for_review(self.storage.load_cards())

    def seed_demo_cards(self) -> int:
        """Add bundled demo cards that are not already present; returns how many were added."""
        deck = load_demo_deck()
        with self._lock:
            cards = self.storage.load_cards()
            now = datetime.now(UTC)
            added = 0
            for template in deck.cards:
                if statistics.is_duplicate(cards, template.front):
                    continue
                cards.append(
                    Flashcard(
                        id=new_id(),
                        front=template.front,
                        back=template.back,
                        notes=template.notes,
                        created_at=now,
                        updated_at=now,
                    )
                )
                added += 1
            if added:
                self.storage.save_cards(cards)
        logger.info("Seeded %s cards from deck %s (%s, version %s)", added, deck.id, deck.title, deck.content_version)
        return added

    # Learning sessions

    @property
    def active_session(self) -> ActiveLearningSession | None:
        return self._active

    def start_learning_session(
        self, card_ids: Sequence[str], rng: random.Random | None = None
    ) -> ActiveLearningSession:
        """Begin reviewing the given cards in random order, replacing any unfinished session."""
        if not card_ids:
            raise ValidationError("card_ids", "A learning session needs at least one card.")
        if self._active is not None:
            logger.info(
                "Discarding unfinished learning session with %s pending answers", len(self._pending_updates)
            )
        self._active = ActiveLearningSession(card_ids=quiz.shuffle(card_ids, rng), start_time=datetime.now(UTC))
        self._pending_updates = []
        return self._active

    def _require_active(self) -> ActiveLearningSession:
        if self._active is None:
            raise SessionStateError("No learning session is active.")
        return self._active

    def current_card_id(self) -> str | None:
        """Id of the card being shown, or None once the session ran past its last card."""
        session = self._require_active()
        if session.finished:
            return None
        return session.card_ids[session.current_index]

    def flip_card(self) -> bool:
        session = self._require_active()
        session.is_flipped = not session.is_flipped
        return session.is_flipped

    def next_card(self) -> str | None:
        session = self._require_active()
        session.current_index = min(session.current_index + 1, len(session.card_ids))
        session.is_flipped = False
        return self.current_card_id()

    def previous_card(self) -> str | None:
        session = self._require_active()
        session.current_index = max(session.current_index - 1, 0)
        session.is_flipped = False
        return self.current_card_id()

    def answer_current(self, was_correct: bool) -> None:
        """Record a verdict for the shown card; statistics are written when the session ends."""
        card_id = self.current_card_id()
        if card_id is None:
            raise SessionStateError("The learning session has no current card.")
        session = self._require_active()
        if was_correct:
            session.correct_in_session.append(card_id)
        else:
            session.incorrect_in_session.append(card_id)
        self._pending_updates.append(AnswerUpdate(card_id=card_id, was_correct=was_correct))

    def end_learning_session(self) -> LearningSession | None:
        """Write queued statistics in one batch, then store the session record."""
        if self._active is None:
            return None
        with self._lock:
            active = self._active
            if self._pending_updates:
                self.record_answers(self._pending_updates)
                self._pending_updates = []
            now = datetime.now(UTC)
            session = LearningSession(
                id=new_id(),
                date=now,
                cards_reviewed=tuple(active.card_ids),
                correct_cards=tuple(active.correct_in_session),
                incorrect_cards=tuple(active.incorrect_in_session),
                duration_seconds=max(0, math.floor((now - active.start_time).total_seconds())),
            )
            self.storage.append_learning_session(session)
            self._active = None
        logger.info(
            "Learning session %s finished: %s reviewed, %s correct",
            session.id,
            len(session.cards_reviewed),
            len(session.correct_cards),
        )
        return session

    # Quizzes

    def build_quiz(
        self,
        mode: QuizType,
        count: int = DEFAULT_QUIZ_SIZE,
        pool: Sequence[Flashcard] | None = None,
        rng: random.Random | None = None,
    ) -> list[QuizQuestion]:
        """Build a quiz from `pool`, or from every stored card."""
        cards = list(pool) if pool is not None else self.storage.load_cards()
        return quiz.build_quiz(mode, cards, count, rng)

    def finalize_quiz(self, quiz_type: QuizType, questions: Sequence[QuizQuestion]) -> QuizSession:
        """Score an answered quiz, update card statistics, then store the session.

        Statistics are saved before the session is appended; a storage failure
        propagates and earlier writes are not rolled back.
        """
        if quiz_type not in QUIZ_TYPES:
            raise ValidationError("quiz_type", f"Unknown quiz type: {quiz_type}")
        with self._lock:
            score = quiz.score_percent(questions)
            self.record_answers(
                AnswerUpdate(card_id=question.card_id, was_correct=question.was_correct) for question in questions
            )
            session = QuizSession(
                id=new_id(),
                quiz_type=quiz_type,
                date=datetime.now(UTC),
                questions=tuple(questions),
                score_percent=score,
                completed=True,
            )
            self.storage.append_quiz_session(session)
        logger.info("Quiz %s (%s) finalized with score %s%%", session.id, quiz_type, score)
        return session

    def list_quiz_sessions(self, quiz_type: QuizType | None = None) -> list[QuizSession]:
        sessions = self.storage.load_quiz_sessions()
        if quiz_type is None:
            return sessions
        return quiz.quiz_sessions_by_type(sessions, quiz_type)

    def average_quiz_score(self, quiz_type: QuizType | None = None) -> int:
        return quiz.average_quiz_score(self.storage.load_quiz_sessions(), quiz_type)

    # Statistics

    def learning_sessions(self) -> list[LearningSession]:
        return self.storage.load_learning_sessions()

    def streaks(self, today: date | None = None) -> activity.Streaks:
        return activity.compute_streaks(self.storage.load_learning_sessions(), today)

    def daily_activity(self, days: int = 7, today: date | None = None) -> list[activity.DailyActivity]:
        return activity.daily_activity(self.storage.load_learning_sessions(), days, today)

    def overall_stats(self) -> activity.OverallStats:
        return activity.overall_stats(self.storage.load_learning_sessions())

    def dashboard(self, today: date | None = None) -> DashboardSummary:
        cards = self.storage.load_cards()
        streaks = self.streaks(today)
        return DashboardSummary(
            total_cards=len(cards),
            learned_cards=statistics.count_learned(cards),
            due_cards=len(statistics.cards_due_for_review(cards)),
            current_streak=streaks.current_streak,
            longest_streak=streaks.longest_streak,
        )

    # Export / import

    def export_data(self, export_path: Path | str) -> TransferSummary:
        """Write all cards and history to a JSON file."""
        data = TrainerData(
            cards=self.storage.load_cards(),
            learning_sessions=self.storage.load_learning_sessions(),
            quiz_sessions=self.storage.load_quiz_sessions(),
        )
        payload = {
            "format_version": EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now(UTC).isoformat(),
            "source": {"app_version": __version__},
            **data_to_dict(data),
        }
        path = Path(export_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        return TransferSummary(
            cards=len(data.cards),
            learning_sessions=len(data.learning_sessions),
            quiz_sessions=len(data.quiz_sessions),
        )

    def import_data(self, import_path: Path | str) -> TransferSummary:
        """Merge an export file into storage.

        Records whose id already exists are skipped, as are cards whose front duplicates
        an existing card and rows that cannot be parsed.
        """
        raw_obj: object = json.loads(Path(import_path).read_text(encoding="utf-8"))
        if not isinstance(raw_obj, dict):
            raise ValueError("Import file root must be a JSON object.")
        raw = cast(dict[str, object], raw_obj)

        format_version = raw.get("format_version", 0)
        if not isinstance(format_version, int) or isinstance(format_version, bool):
            raise ValueError("Import file has invalid format_version.")
        if format_version > EXPORT_FORMAT_VERSION:
            raise ValueError(
                f"Import file format version {format_version} is newer than supported {EXPORT_FORMAT_VERSION}."
            )

        imported_cards = _parse_rows(raw.get("cards"), card_from_dict)
        imported_learning = _parse_rows(raw.get("learning_sessions"), learning_session_from_dict)
        imported_quizzes = _parse_rows(raw.get("quiz_sessions"), quiz_session_from_dict)

        with self._lock:
            cards = self.storage.load_cards()
            known_ids = {card.id for card in cards}
            new_cards: list[Flashcard] = []
            for imported in imported_cards:
                try:
                    card = _checked_import_card(imported)
                except ValueError as exc:
                    logger.debug("Skipping imported card %s: %s", imported.id, exc)
                    continue
                if card.id in known_ids or statistics.is_duplicate([*cards, *new_cards], card.front):
                    continue
                known_ids.add(card.id)
                new_cards.append(card)
            if new_cards:
                self.storage.save_cards([*cards, *new_cards])

            learning_ids = {session.id for session in self.storage.load_learning_sessions()}
            new_learning = [session for session in imported_learning if session.id not in learning_ids]
            for learning_session in new_learning:
                self.storage.append_learning_session(learning_session)

            quiz_ids = {session.id for session in self.storage.load_quiz_sessions()}
            new_quizzes = [session for session in imported_quizzes if session.id not in quiz_ids]
            for quiz_session in new_quizzes:
                self.storage.append_quiz_session(quiz_session)

        return TransferSummary(
            cards=len(new_cards),
            learning_sessions=len(new_learning),
            quiz_sessions=len(new_quizzes),
        )

    def close(self) -> None:
        """Close resources."""
        self.storage.close()


def _validate_text(field: str, label: str, value: str) -> str:
    text = value.strip()
    if not text:
        raise ValidationError(field, f"{label} is required.")
    if len(text) < MIN_TEXT_LENGTH:
        raise ValidationError(field, f"{label} must be at least {MIN_TEXT_LENGTH} characters.")
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(field, f"{label} must be at most {MAX_TEXT_LENGTH} characters.")
    return text


def _validate_notes(notes: str | None) -> str | None:
    notes_text = (notes or "").strip()
    if len(notes_text) > MAX_NOTES_LENGTH:
        raise ValidationError("notes", f"Notes must be at most {MAX_NOTES_LENGTH} characters.")
    return notes_text or None


def _checked_import_card(card: Flashcard) -> Flashcard:
    """Apply create-time validation to an imported card and rederive its statistics."""
    return replace(
        card,
        front=_validate_text("front", "Spanish term", card.front),
        back=_validate_text("back", "English term", card.back),
        notes=_validate_notes(card.notes),
        statistics=statistics.rebuild_statistics(card.statistics),
    )


def _validate_card_fields(
    cards: Sequence[Flashcard],
    front: str,
    back: str,
    notes: str | None,
    exclude_id: str | None = None,
) -> tuple[str, str, str | None]:
    """Return trimmed card fields or raise ValidationError for the first bad one."""
    front_text = _validate_text("front", "Spanish term", front)
    back_text = _validate_text("back", "English term", back)
    notes_text = _validate_notes(notes)
    if statistics.is_duplicate(cards, front_text, exclude_id):
        raise ValidationError("front", f"A card for '{front_text}' already exists.")
    return front_text, back_text, notes_text


def _parse_rows(raw: object, parse: Callable[[dict[str, Any]], T]) -> list[T]:
    """Parse import rows, skipping anything malformed."""
    if not isinstance(raw, list):
        return []
    rows: list[T] = []
    for item in cast(list[object], raw):
        if not isinstance(item, dict):
            continue
        try:
            rows.append(parse(cast(dict[str, Any], item)))
        except (KeyError, TypeError, ValueError) as exc:
            logger.debug("Skipping malformed import row: %s", exc)
    return rows
