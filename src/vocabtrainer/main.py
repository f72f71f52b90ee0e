"""CLI entrypoint for the vocabulary flashcard trainer."""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import Callable
from pathlib import Path

from .activity import format_day_short
from .errors import StorageError, ValidationError
from .models import Flashcard, QuizType
from .quiz import answer_question
from .service import DEFAULT_QUIZ_SIZE, DEFAULT_SESSION_SIZE, TrainerService
from .storage import BACKENDS, open_storage

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
BACK_COMMANDS = {":back", ":b", "back"}
MENU_QUIT_COMMANDS = {"q"}
FLOW_EXIT_COMMANDS = {":quit", ":exit", ":q"}
MENU_BACK_COMMANDS = {"b"}
YES_ANSWERS = {"y", "yes"}
NO_ANSWERS = {"n", "no"}
CLEAR_NOTES = "-"

BACKEND_ENV = "VOCABTRAINER_BACKEND"
DATA_DIR_ENV = "VOCABTRAINER_DATA_DIR"
DEFAULT_DATA_DIR = ".vocabtrainer"


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _service(backend: str, data_dir: Path) -> TrainerService:
    """Create app service on the configured storage backend."""
    return TrainerService(open_storage(backend, data_dir))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vocabtrainer", description="Spanish vocabulary flashcards")
    parser.add_argument("command", nargs="?", default="play", choices=["play"])
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=os.environ.get(BACKEND_ENV, "json"),
        help=f"storage backend (env {BACKEND_ENV})",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path(os.environ.get(DATA_DIR_ENV, DEFAULT_DATA_DIR)),
        help=f"directory for stored data (env {DATA_DIR_ENV})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output")
    return parser


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        service = _service(args.backend, args.data_dir)
    except StorageError as exc:
        print(f"Could not open storage: {exc}")
        return 1
    return play_shell(service)


def play_shell(service: TrainerService, input_fn: InputFn = input, print_fn: PrintFn = print) -> int:
    """Run persistent menu-driven shell."""
    try:
        while True:
            summary = service.dashboard()
            print_fn("\n=== Vocabulary Trainer ===")
            print_fn(
                f"Cards: {summary.total_cards}  Learned: {summary.learned_cards}  "
                f"Due: {summary.due_cards}  Streak: {summary.current_streak} days"
            )
            print_fn("1) Learn")
            print_fn("2) Multiple-choice quiz")
            print_fn("3) Fill-in-the-blank quiz")
            print_fn("4) Manage cards")
            print_fn("5) Statistics")
            print_fn("6) Admin")
            print_fn("q) Quit")
            choice = input_fn("Choose: ").strip().lower()

            try:
                if choice == "1":
                    _learn_flow(service, input_fn, print_fn)
                elif choice == "2":
                    _quiz_flow(service, "multiple-choice", input_fn, print_fn)
                elif choice == "3":
                    _quiz_flow(service, "fill-in-blank", input_fn, print_fn)
                elif choice == "4":
                    _cards_flow(service, input_fn, print_fn)
                elif choice == "5":
                    _statistics_flow(service, print_fn)
                elif choice == "6":
                    _admin_flow(service, input_fn, print_fn)
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
            except StorageError as exc:
                print_fn(f"Storage error: {exc}")
    except QuitApp:
        return 0
    finally:
        service.close()


def _print_cards(cards: list[Flashcard], print_fn: PrintFn) -> None:
    """Print a numbered card table."""
    if not cards:
        print_fn("No cards.")
        return
    front_width = max(len("Spanish"), max(len(card.front) for card in cards))
    back_width = max(len("English"), max(len(card.back) for card in cards))
    header = f"{'#':>3} {'Spanish':<{front_width}} {'English':<{back_width}} {'Status':<8} {'Rate':>4}"
    print_fn(header)
    print_fn("-" * len(header))
    for idx, card in enumerate(cards, start=1):
        print_fn(
            f"{idx:>3} "
            f"{card.front:<{front_width}} "
            f"{card.back:<{back_width}} "
            f"{card.statistics.status:<8} "
            f"{card.statistics.success_rate:>3}%"
        )


def _pick_card(cards: list[Flashcard], input_fn: InputFn, print_fn: PrintFn, prompt: str) -> Flashcard | None:
    _print_cards(cards, print_fn)
    choice = input_fn(prompt).strip()
    if choice.isdigit():
        index = int(choice) - 1
        if 0 <= index < len(cards):
            return cards[index]
    print_fn("Invalid choice.")
    return None


def _cards_flow(service: TrainerService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """List, search, add, edit and delete cards."""
    while True:
        print_fn("\n=== Cards ===")
        print_fn("l) List")
        print_fn("s) Search")
        print_fn("a) Add")
        print_fn("e) Edit")
        print_fn("d) Delete")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "l":
            _print_cards(service.list_cards(), print_fn)
        elif choice == "s":
            _print_cards(service.search_cards(input_fn("Search: ")), print_fn)
        elif choice == "a":
            _add_card_flow(service, input_fn, print_fn)
        elif choice == "e":
            _edit_card_flow(service, input_fn, print_fn)
        elif choice == "d":
            _delete_card_flow(service, input_fn, print_fn)
        else:
            print_fn("Invalid choice.")


def _add_card_flow(service: TrainerService, input_fn: InputFn, print_fn: PrintFn) -> None:
    front = input_fn("Spanish: ")
    back = input_fn("English: ")
    notes = input_fn("Notes (optional): ")
    try:
        card = service.create_card(front, back, notes)
    except ValidationError as exc:
        print_fn(f"Could not add card: {exc}")
        return
    print_fn(f"Added '{card.front}' = '{card.back}'.")


def _edit_card_flow(service: TrainerService, input_fn: InputFn, print_fn: PrintFn) -> None:
    card = _pick_card(service.list_cards(), input_fn, print_fn, "Card to edit: ")
    if card is None:
        return
    front = input_fn(f"Spanish [{card.front}]: ").strip() or None
    back = input_fn(f"English [{card.back}]: ").strip() or None
    notes_answer = input_fn(f"Notes [{card.notes or ''}] (- to clear): ").strip()
    notes = "" if notes_answer == CLEAR_NOTES else notes_answer or None
    try:
        updated = service.update_card(card.id, front=front, back=back, notes=notes)
    except ValidationError as exc:
        print_fn(f"Could not update card: {exc}")
        return
    if updated is None:
        print_fn("Card was not found.")
        return
    print_fn(f"Updated '{updated.front}' = '{updated.back}'.")


def _delete_card_flow(service: TrainerService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Delete a card after confirmation."""
    card = _pick_card(service.list_cards(), input_fn, print_fn, "Card to delete: ")
    if card is None:
        return
    confirm = input_fn(f"Type DELETE to remove '{card.front}': ").strip()
    if confirm != "DELETE":
        print_fn("Deletion cancelled.")
        return
    if service.delete_card(card.id):
        print_fn(f"Deleted '{card.front}'.")
    else:
        print_fn("Card was not found.")


def _learn_flow(service: TrainerService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Review due cards (or all cards when none are due) one at a time."""
    cards = service.cards_due_for_review() or service.list_cards()
    if not cards:
        print_fn("No cards yet. Add some or seed the demo deck from Admin.")
        return
    by_id = {card.id: card for card in cards}
    service.start_learning_session([card.id for card in cards[:DEFAULT_SESSION_SIZE]])

    print_fn("\n=== Learn ===")
    print_fn("Press Enter to reveal, then answer y/n. Type :q to stop.")
    card_id = service.current_card_id()
    while card_id is not None:
        card = by_id[card_id]
        print_fn(f"\n{card.front}")
        if input_fn("(reveal) ").strip().lower() in FLOW_EXIT_COMMANDS | BACK_COMMANDS:
            break
        service.flip_card()
        print_fn(f"= {card.back}")
        if card.notes:
            print_fn(f"Note: {card.notes}")
        verdict = _ask_verdict(input_fn, print_fn)
        if verdict is None:
            break
        service.answer_current(verdict)
        card_id = service.next_card()

    session = service.end_learning_session()
    if session is None:
        return
    answered = len(session.correct_cards) + len(session.incorrect_cards)
    print_fn(f"\nSession saved: {len(session.correct_cards)}/{answered} known, {session.duration_seconds}s.")


def _ask_verdict(input_fn: InputFn, print_fn: PrintFn) -> bool | None:
    while True:
        answer = input_fn("Did you know it? (y/n) ").strip().lower()
        if answer in YES_ANSWERS:
            return True
        if answer in NO_ANSWERS:
            return False
        if answer in FLOW_EXIT_COMMANDS or answer in BACK_COMMANDS:
            return None
        print_fn("Please answer y or n.")


def _quiz_flow(service: TrainerService, quiz_type: QuizType, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Run one quiz and record its result."""
    questions = service.build_quiz(quiz_type, DEFAULT_QUIZ_SIZE)
    if not questions:
        print_fn("No cards yet. Add some or seed the demo deck from Admin.")
        return

    title = "Multiple Choice" if quiz_type == "multiple-choice" else "Fill in the Blank"
    print_fn(f"\n=== {title} Quiz ===")
    print_fn("Type the option number. Type :q to abandon the quiz.")
    answered = []
    for number, question in enumerate(questions, start=1):
        print_fn(f"\n{number}/{len(questions)}  {question.prompt_text}")
        for idx, option in enumerate(question.options, start=1):
            print_fn(f"  {idx}) {option}")
        while True:
            choice = input_fn("Answer: ").strip().lower()
            if choice in FLOW_EXIT_COMMANDS or choice in BACK_COMMANDS:
                print_fn("Quiz abandoned; nothing was recorded.")
                return
            if choice.isdigit() and 1 <= int(choice) <= len(question.options):
                break
            print_fn("Invalid option.")
        result = answer_question(question, question.options[int(choice) - 1])
        answered.append(result)
        if result.was_correct:
            print_fn("Correct.")
        else:
            print_fn(f"Incorrect. Answer: {result.correct_answer}")

    session = service.finalize_quiz(quiz_type, answered)
    correct = sum(1 for question in session.questions if question.was_correct)
    print_fn(f"\nScore: {session.score_percent}% ({correct}/{len(session.questions)})")


def _statistics_flow(service: TrainerService, print_fn: PrintFn) -> None:
    """Print streaks, lifetime totals, the last week and quiz averages."""
    streaks = service.streaks()
    overall = service.overall_stats()
    print_fn("\n=== Statistics ===")
    print_fn(f"Current streak: {streaks.current_streak} days (longest {streaks.longest_streak})")
    print_fn(f"Sessions: {overall.total_sessions}")
    print_fn(
        f"Cards reviewed: {overall.total_cards_reviewed} "
        f"({overall.total_correct} correct, {overall.total_incorrect} incorrect, "
        f"{overall.overall_success_rate}%)"
    )
    print_fn(f"Average session: {overall.average_session_duration_seconds}s")

    print_fn("\nLast 7 days")
    header = f"{'Day':<5} {'Reviewed':>8} {'Correct':>7} {'Rate':>5}"
    print_fn(header)
    print_fn("-" * len(header))
    for day in service.daily_activity(7):
        print_fn(
            f"{format_day_short(day.date):<5} "
            f"{day.cards_reviewed:>8} "
            f"{day.correct_cards:>7} "
            f"{day.success_rate:>4}%"
        )

    print_fn("\nQuizzes")
    print_fn(f"Multiple choice: {len(service.list_quiz_sessions('multiple-choice'))} taken, "
             f"average {service.average_quiz_score('multiple-choice')}%")
    print_fn(f"Fill in the blank: {len(service.list_quiz_sessions('fill-in-blank'))} taken, "
             f"average {service.average_quiz_score('fill-in-blank')}%")


def _admin_flow(service: TrainerService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Seed demo cards, export or import data."""
    print_fn("\n=== Admin ===")
    print_fn("1) Add demo cards")
    print_fn("2) Export data")
    print_fn("3) Import data")
    print_fn("b) Back")
    print_fn("q) Quit")
    choice = input_fn("Choose: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if choice == "1":
        added = service.seed_demo_cards()
        print_fn(f"Added {added} demo cards.")
    elif choice == "2":
        _export_flow(service, input_fn, print_fn)
    elif choice == "3":
        _import_flow(service, input_fn, print_fn)
    else:
        print_fn("Invalid choice.")


def _export_flow(service: TrainerService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Export all data to a JSON file."""
    path_text = input_fn("Export file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    try:
        summary = service.export_data(path_text)
    except OSError as exc:
        print_fn(f"Export failed: {exc}")
        return
    print_fn(f"Exported to {path_text}")
    print_fn(f"- cards: {summary.cards}")
    print_fn(f"- learning sessions: {summary.learning_sessions}")
    print_fn(f"- quiz sessions: {summary.quiz_sessions}")


def _import_flow(service: TrainerService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Merge data from a JSON export file."""
    path_text = input_fn("Import file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    try:
        summary = service.import_data(path_text)
    except (OSError, ValueError) as exc:
        print_fn(f"Import failed: {exc}")
        return
    print_fn("Imported:")
    print_fn(f"- cards: {summary.cards}")
    print_fn(f"- learning sessions: {summary.learning_sessions}")
    print_fn(f"- quiz sessions: {summary.quiz_sessions}")


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
