"""Streaks and daily/overall rollups over the learning-session history.

All day boundaries are local calendar days.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from .models import LearningSession
from .statistics import percentage, round_half_up


@dataclass(frozen=True)
class Streaks:
    """Consecutive-day learning streaks."""

    current_streak: int
    longest_streak: int


@dataclass(frozen=True)
class DailyActivity:
    """Review totals for one calendar day."""

    date: date
    cards_reviewed: int
    correct_cards: int
    incorrect_cards: int
    success_rate: int


@dataclass(frozen=True)
class OverallStats:
    """Totals across the whole learning-session history."""

    total_sessions: int
    total_cards_reviewed: int
    total_correct: int
    total_incorrect: int
    overall_success_rate: int
    average_session_duration_seconds: int


def local_day(moment: datetime) -> date:
    """Calendar day of `moment` in the local timezone."""
    return moment.astimezone().date()


def _today(today: date | None) -> date:
    return today if today is not None else datetime.now().astimezone().date()


def compute_streaks(sessions: Iterable[LearningSession], today: date | None = None) -> Streaks:
    """Return the current and longest runs of consecutive days with at least one session.

    The current streak counts back from today, or from yesterday when today has no
    session yet, so an unfinished day does not break it.
    """
    days = {local_day(session.date) for session in sessions}
    if not days:
        return Streaks(current_streak=0, longest_streak=0)

    reference = _today(today)
    cursor = reference if reference in days else reference - timedelta(days=1)
    current = 0
    while cursor in days:
        current += 1
        cursor -= timedelta(days=1)

    longest = 0
    run = 0
    previous: date | None = None
    for day in sorted(days):
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day

    return Streaks(current_streak=current, longest_streak=max(longest, current))


def daily_activity(
    sessions: Iterable[LearningSession], days: int = 7, today: date | None = None
) -> list[DailyActivity]:
    """Return one bucket per day for the last `days` days, oldest first, ending today."""
    if days <= 0:
        return []
    end = _today(today)
    start = end - timedelta(days=days - 1)
    totals: dict[date, list[int]] = {start + timedelta(days=offset): [0, 0, 0] for offset in range(days)}

    for session in sessions:
        bucket = totals.get(local_day(session.date))
        if bucket is None:
            continue
        bucket[0] += len(session.cards_reviewed)
        bucket[1] += len(session.correct_cards)
        bucket[2] += len(session.incorrect_cards)

    return [
        DailyActivity(
            date=day,
            cards_reviewed=reviewed,
            correct_cards=correct,
            incorrect_cards=incorrect,
            success_rate=percentage(correct, reviewed),
        )
        for day, (reviewed, correct, incorrect) in sorted(totals.items())
    ]


def overall_stats(sessions: Sequence[LearningSession]) -> OverallStats:
    """Return lifetime totals; every field is 0 for an empty history."""
    if not sessions:
        return OverallStats(0, 0, 0, 0, 0, 0)

    reviewed = sum(len(session.cards_reviewed) for session in sessions)
    correct = sum(len(session.correct_cards) for session in sessions)
    incorrect = sum(len(session.incorrect_cards) for session in sessions)
    duration = sum(session.duration_seconds for session in sessions)
    return OverallStats(
        total_sessions=len(sessions),
        total_cards_reviewed=reviewed,
        total_correct=correct,
        total_incorrect=incorrect,
        overall_success_rate=percentage(correct, reviewed),
        average_session_duration_seconds=round_half_up(duration / len(sessions)),
    )


def format_day_short(day: date) -> str:
    """Chart label like `07.03` for 7 March."""
    return day.strftime("%d.%m")
