"""Quiz question generation, answering and scoring."""

from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import TypeVar

from .errors import ValidationError
from .ids import new_id
from .models import QUIZ_TYPES, Flashcard, QuizQuestion, QuizSession, QuizType
from .statistics import percentage, round_half_up

T = TypeVar("T")

MC_OPTION_COUNT = 4
FILL_BLANK_MIN_DISTRACTORS = 3
FILL_BLANK_MAX_DISTRACTORS = 5


def shuffle(items: Iterable[T], rng: random.Random | None = None) -> list[T]:
    """Return a uniformly shuffled copy of `items` (Fisher-Yates)."""
    source = rng or random
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = source.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def _distractor_candidates(card: Flashcard, pool: Iterable[Flashcard]) -> list[str]:
    """Distinct backs of other cards, excluding the correct answer, in pool order."""
    seen: set[str] = {card.back}
    candidates: list[str] = []
    for other in pool:
        if other.id == card.id or other.back in seen:
            continue
        seen.add(other.back)
        candidates.append(other.back)
    return candidates


def _filler_options(correct_answer: str, taken: Sequence[str], needed: int) -> list[str]:
    """Placeholder wrong answers derived from the correct one, distinct from `taken`."""
    fillers: list[str] = []
    used = set(taken)
    counter = 1
    while len(fillers) < needed:
        candidate = f"{correct_answer} (wrong {counter})"
        counter += 1
        if candidate in used:
            continue
        used.add(candidate)
        fillers.append(candidate)
    return fillers


def _question(card: Flashcard, distractors: list[str], rng: random.Random | None) -> QuizQuestion:
    options = shuffle([card.back, *distractors], rng)
    return QuizQuestion(
        id=new_id(),
        card_id=card.id,
        prompt_text=card.front,
        options=tuple(options),
        correct_answer_index=options.index(card.back),
        correct_answer=card.back,
    )


def make_multiple_choice_question(
    card: Flashcard, pool: Sequence[Flashcard], rng: random.Random | None = None
) -> QuizQuestion:
    """Build a question with exactly four options, padding with fillers if the pool is small."""
    distractors = shuffle(_distractor_candidates(card, pool), rng)[: MC_OPTION_COUNT - 1]
    missing = MC_OPTION_COUNT - 1 - len(distractors)
    if missing:
        distractors.extend(_filler_options(card.back, [card.back, *distractors], missing))
    return _question(card, distractors, rng)


def make_fill_blank_question(
    card: Flashcard, pool: Sequence[Flashcard], rng: random.Random | None = None
) -> QuizQuestion:
    """Build a question with 3-5 distractors; smaller pools yield fewer options, never fillers."""
    source = rng or random
    count = source.randint(FILL_BLANK_MIN_DISTRACTORS, FILL_BLANK_MAX_DISTRACTORS)
    distractors = shuffle(_distractor_candidates(card, pool), rng)[:count]
    return _question(card, distractors, rng)


def build_quiz(
    mode: QuizType, pool: Sequence[Flashcard], count: int, rng: random.Random | None = None
) -> list[QuizQuestion]:
    """Build up to `count` questions for distinct cards drawn from `pool`.

    The whole pool is used as the distractor source, not just the selected cards.
    """
    if mode not in QUIZ_TYPES:
        raise ValidationError("mode", f"Unknown quiz type: {mode}")
    if not pool or count <= 0:
        return []
    selected = shuffle(pool, rng)[: min(count, len(pool))]
    maker = make_multiple_choice_question if mode == "multiple-choice" else make_fill_blank_question
    return [maker(card, pool, rng) for card in selected]


def answer_question(question: QuizQuestion, user_answer: str) -> QuizQuestion:
    """Record a picked option; options are chosen, not typed, so matching is exact."""
    return replace(question, user_answer=user_answer, was_correct=user_answer == question.correct_answer)


def score_percent(questions: Sequence[QuizQuestion]) -> int:
    correct = sum(1 for question in questions if question.was_correct)
    return percentage(correct, len(questions))


def quiz_sessions_by_type(sessions: Iterable[QuizSession], quiz_type: QuizType) -> list[QuizSession]:
    return [session for session in sessions if session.quiz_type == quiz_type]


def average_quiz_score(sessions: Iterable[QuizSession], quiz_type: QuizType | None = None) -> int:
    """Mean `score_percent` over sessions, optionally of one quiz type; 0 without sessions."""
    selected = list(sessions) if quiz_type is None else quiz_sessions_by_type(sessions, quiz_type)
    if not selected:
        return 0
    return round_half_up(sum(session.score_percent for session in selected) / len(selected))
