"""Per-card mastery statistics and review eligibility.

Rules:
- `success_rate` is the rounded percentage of correct answers (0 before the first answer).
- a card is `learned` once it has been shown at least 3 times with a rate of at least 70,
  and falls back to `learning` as soon as the rate drops again; status is never sticky.
- a card is due for review while its rate is below 70, unless it was just answered
  correctly twice in a row.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from .models import AnswerUpdate, CardStatistics, CardStatus, Flashcard

logger = logging.getLogger(__name__)

LEARNED_SUCCESS_RATE = 70
LEARNED_MIN_SHOWN = 3
REVIEW_STREAK_LIMIT = 2


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up, unlike the builtin banker's `round`."""
    return int(math.floor(value + 0.5))


def percentage(part: int, total: int) -> int:
    """Return `part / total` as a rounded percentage, 0 when `total` is 0."""
    if total <= 0:
        return 0
    return round_half_up(part / total * 100)


def calculate_success_rate(times_correct: int, times_shown: int) -> int:
    return percentage(times_correct, times_shown)


def calculate_status(times_shown: int, success_rate: int) -> CardStatus:
    if times_shown == 0:
        return "new"
    if times_shown >= LEARNED_MIN_SHOWN and success_rate >= LEARNED_SUCCESS_RATE:
        return "learned"
    return "learning"


def new_statistics() -> CardStatistics:
    """Statistics of a card that has never been shown."""
    return CardStatistics()


def rebuild_statistics(stats: CardStatistics) -> CardStatistics:
    """Recompute shown count, rate and status from the correct/incorrect counters.

    Raises ValueError for negative counters.
    """
    if min(stats.times_correct, stats.times_incorrect, stats.consecutive_correct) < 0:
        raise ValueError("Answer counters must not be negative.")
    times_shown = stats.times_correct + stats.times_incorrect
    success_rate = calculate_success_rate(stats.times_correct, times_shown)
    return replace(
        stats,
        times_shown=times_shown,
        success_rate=success_rate,
        status=calculate_status(times_shown, success_rate),
        consecutive_correct=min(stats.consecutive_correct, stats.times_correct),
        last_reviewed=stats.last_reviewed if times_shown else None,
    )


def apply_answer(card: Flashcard, was_correct: bool, now: datetime | None = None) -> Flashcard:
    """Return a copy of `card` with one more answer counted."""
    timestamp = now or datetime.now(UTC)
    stats = card.statistics
    times_shown = stats.times_shown + 1
    if was_correct:
        times_correct = stats.times_correct + 1
        times_incorrect = stats.times_incorrect
        consecutive_correct = stats.consecutive_correct + 1
    else:
        times_correct = stats.times_correct
        times_incorrect = stats.times_incorrect + 1
        consecutive_correct = 0

    success_rate = calculate_success_rate(times_correct, times_shown)
    updated = CardStatistics(
        times_shown=times_shown,
        times_correct=times_correct,
        times_incorrect=times_incorrect,
        last_reviewed=timestamp,
        success_rate=success_rate,
        status=calculate_status(times_shown, success_rate),
        consecutive_correct=consecutive_correct,
    )
    return replace(card, statistics=updated, updated_at=timestamp)


def apply_answers(
    cards: Sequence[Flashcard],
    updates: Iterable[AnswerUpdate],
    now: datetime | None = None,
) -> tuple[list[Flashcard], int]:
    """Apply many verdicts in one pass.

    Returns the updated collection (original order) and the number of updates applied.
    Updates for unknown card ids are skipped and not counted.
    """
    timestamp = now or datetime.now(UTC)
    by_id = {card.id: card for card in cards}
    applied = 0
    for update in updates:
        card = by_id.get(update.card_id)
        if card is None:
            logger.debug("Skipping statistics update for unknown card %s", update.card_id)
            continue
        by_id[update.card_id] = apply_answer(card, update.was_correct, timestamp)
        applied += 1
    return [by_id[card.id] for card in cards], applied


def normalize_term(text: str) -> str:
    return text.strip().lower()


def is_duplicate(cards: Iterable[Flashcard], front: str, exclude_id: str | None = None) -> bool:
    """Return whether another card already uses `front` (trimmed, case-insensitive)."""
    target = normalize_term(front)
    return any(normalize_term(card.front) == target and card.id != exclude_id for card in cards)


def cards_due_for_review(cards: Iterable[Flashcard]) -> list[Flashcard]:
    """Return cards needing review, weakest first."""
    due = [
        card
        for card in cards
        if card.statistics.success_rate < LEARNED_SUCCESS_RATE
        and card.statistics.consecutive_correct < REVIEW_STREAK_LIMIT
    ]
    # list.sort is stable, so equal rates keep collection order.
    due.sort(key=lambda card: card.statistics.success_rate)
    return due


def search_cards(cards: Iterable[Flashcard], query: str) -> list[Flashcard]:
    """Return cards whose front, back or notes contain `query` (case-insensitive)."""
    needle = normalize_term(query)
    if not needle:
        return list(cards)
    return [
        card
        for card in cards
        if needle in card.front.lower() or needle in card.back.lower() or needle in (card.notes or "").lower()
    ]


def count_learned(cards: Iterable[Flashcard]) -> int:
    return sum(1 for card in cards if card.statistics.status == "learned")
