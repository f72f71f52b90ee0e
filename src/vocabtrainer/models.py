"""Core domain records for vocabulary cards, learning sessions and quizzes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

CardStatus = Literal["new", "learning", "learned"]
QuizType = Literal["multiple-choice", "fill-in-blank"]

QUIZ_TYPES: tuple[QuizType, ...] = ("multiple-choice", "fill-in-blank")


@dataclass(frozen=True)
class CardStatistics:
    """Cumulative answer counters and derived mastery for one card."""

    times_shown: int = 0
    times_correct: int = 0
    times_incorrect: int = 0
    last_reviewed: datetime | None = None
    success_rate: int = 0
    status: CardStatus = "new"
    consecutive_correct: int = 0


@dataclass(frozen=True)
class Flashcard:
    """One vocabulary pair: Spanish term on the front, English on the back."""

    id: str
    front: str
    back: str
    created_at: datetime
    updated_at: datetime
    notes: str | None = None
    statistics: CardStatistics = field(default_factory=CardStatistics)


@dataclass(frozen=True)
class AnswerUpdate:
    """One verdict to apply to a card's statistics."""

    card_id: str
    was_correct: bool


@dataclass(frozen=True)
class LearningSession:
    """Completed flashcard review session."""

    id: str
    date: datetime
    cards_reviewed: tuple[str, ...]
    correct_cards: tuple[str, ...]
    incorrect_cards: tuple[str, ...]
    duration_seconds: int


@dataclass
class ActiveLearningSession:
    """Review in progress; lives only in memory until it is ended."""

    card_ids: list[str]
    start_time: datetime
    current_index: int = 0
    is_flipped: bool = False
    correct_in_session: list[str] = field(default_factory=list)
    incorrect_in_session: list[str] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.current_index >= len(self.card_ids)


@dataclass(frozen=True)
class QuizQuestion:
    """One quiz prompt with its answer options."""

    id: str
    card_id: str
    prompt_text: str
    options: tuple[str, ...]
    correct_answer_index: int
    correct_answer: str
    user_answer: str = ""
    was_correct: bool = False


@dataclass(frozen=True)
class QuizSession:
    """Finalized quiz with per-question results."""

    id: str
    quiz_type: QuizType
    date: datetime
    questions: tuple[QuizQuestion, ...]
    score_percent: int
    completed: bool = True


@dataclass(frozen=True)
class TrainerData:
    """Everything a storage backend persists."""

    cards: list[Flashcard]
    learning_sessions: list[LearningSession]
    quiz_sessions: list[QuizSession]
