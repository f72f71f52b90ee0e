import re
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

import vocabtrainer.main as main
from vocabtrainer.content_loader import load_demo_deck
from vocabtrainer.errors import StorageError
from vocabtrainer.service import TrainerService
from vocabtrainer.storage import JsonStore


def _scripted(answers: list[str]) -> Callable[[str], str]:
    replies: Iterator[str] = iter(answers)
    return lambda _: next(replies)


def _picker(outputs: list[str], answers: list[str], correct: str) -> Callable[[str], str]:
    """Reply from `answers`, except that quiz prompts pick the option equal to `correct`."""
    replies = iter(answers)

    def input_fn(prompt: str) -> str:
        if prompt == "Answer: ":
            for line in reversed(outputs):
                match = re.fullmatch(r"  (\d+)\) (.*)", line)
                if match and match.group(2) == correct:
                    return match.group(1)
            raise AssertionError("correct option was not printed")
        return next(replies)

    return input_fn


def test_run_enters_play_shell(monkeypatch: Any, tmp_path: Path) -> None:
    seen: dict[str, object] = {}

    def fake_service(backend: str, data_dir: Path) -> str:
        seen["backend"] = backend
        seen["data_dir"] = data_dir
        return "svc"

    monkeypatch.setattr(main, "_service", fake_service)
    monkeypatch.setattr(main, "play_shell", lambda service: 0 if service == "svc" else 1)
    assert main.run(["--backend", "sqlite", "--data-dir", str(tmp_path)]) == 0
    assert seen == {"backend": "sqlite", "data_dir": tmp_path}


def test_run_reports_storage_failure(monkeypatch: Any, capsys: Any) -> None:
    def broken(backend: str, data_dir: Path) -> TrainerService:
        raise StorageError("locked")

    monkeypatch.setattr(main, "_service", broken)
    assert main.run([]) == 1
    assert "Could not open storage: locked" in capsys.readouterr().out


def test_parser_reads_environment(monkeypatch: Any, tmp_path: Path) -> None:
    monkeypatch.setenv(main.BACKEND_ENV, "sqlite")
    monkeypatch.setenv(main.DATA_DIR_ENV, str(tmp_path))
    args = main.build_parser().parse_args([])
    assert args.backend == "sqlite"
    assert args.data_dir == tmp_path
    assert args.command == "play"
    assert args.verbose is False


def test_service_uses_configured_backend(tmp_path: Path) -> None:
    service = main._service("sqlite", tmp_path)
    try:
        assert service.list_cards() == []
        assert (tmp_path / "trainer.db").exists()
    finally:
        service.close()


def test_play_shell_quit(service: TrainerService) -> None:
    closed: list[bool] = []
    service.close = lambda: closed.append(True)  # type: ignore[method-assign]
    outputs: list[str] = []
    assert main.play_shell(service, _scripted(["q"]), outputs.append) == 0
    assert closed == [True]
    assert any("Cards: 0" in line for line in outputs)


def test_play_shell_invalid_choice_then_quit(service: TrainerService) -> None:
    outputs: list[str] = []
    assert main.play_shell(service, _scripted(["9", "q"]), outputs.append) == 0
    assert "Invalid choice." in outputs


def test_play_shell_calls_menu_handlers(monkeypatch: Any, service: TrainerService) -> None:
    called: list[str] = []
    monkeypatch.setattr(main, "_learn_flow", lambda *args: called.append("learn"))
    monkeypatch.setattr(main, "_quiz_flow", lambda service, quiz_type, *args: called.append(quiz_type))
    monkeypatch.setattr(main, "_cards_flow", lambda *args: called.append("cards"))
    monkeypatch.setattr(main, "_statistics_flow", lambda *args: called.append("stats"))
    monkeypatch.setattr(main, "_admin_flow", lambda *args: called.append("admin"))

    code = main.play_shell(service, _scripted(["1", "2", "3", "4", "5", "6", "q"]), lambda _: None)

    assert code == 0
    assert called == ["learn", "multiple-choice", "fill-in-blank", "cards", "stats", "admin"]


def test_play_shell_reports_storage_errors(monkeypatch: Any, service: TrainerService) -> None:
    def failing(*args: object) -> None:
        raise StorageError("disk full")

    monkeypatch.setattr(main, "_statistics_flow", failing)
    outputs: list[str] = []
    assert main.play_shell(service, _scripted(["5", "q"]), outputs.append) == 0
    assert "Storage error: disk full" in outputs


def test_quit_from_nested_menu(service: TrainerService) -> None:
    assert main.play_shell(service, _scripted(["4", "q"]), lambda _: None) == 0


def test_cards_flow_add_list_search(service: TrainerService) -> None:
    outputs: list[str] = []
    inputs = ["a", "hola", "hello", "greeting", "a", "HOLA", "hi", "", "s", "greet", "l", "b"]
    main._cards_flow(service, _scripted(inputs), outputs.append)

    assert "Added 'hola' = 'hello'." in outputs
    assert any("Could not add card: A card for 'HOLA' already exists." in line for line in outputs)
    assert sum(1 for line in outputs if re.match(r"\s+1 hola\s+hello\s+new\s+0%", line)) == 2
    assert len(service.list_cards()) == 1


def test_cards_flow_edit_and_delete(service: TrainerService) -> None:
    service.create_card("hola", "hello")
    outputs: list[str] = []
    inputs = ["e", "1", "", "hi", "", "d", "1", "nope", "d", "1", "DELETE", "l", "b"]
    main._cards_flow(service, _scripted(inputs), outputs.append)

    assert "Updated 'hola' = 'hi'." in outputs
    assert "Deletion cancelled." in outputs
    assert "Deleted 'hola'." in outputs
    assert "No cards." in outputs
    assert service.list_cards() == []


def test_cards_flow_invalid_pick(service: TrainerService) -> None:
    service.create_card("hola", "hello")
    outputs: list[str] = []
    main._cards_flow(service, _scripted(["e", "7", "d", "x", "b"]), outputs.append)
    assert outputs.count("Invalid choice.") == 2
    assert len(service.list_cards()) == 1


def test_learn_flow_without_cards(service: TrainerService) -> None:
    outputs: list[str] = []
    main._learn_flow(service, _scripted([]), outputs.append)
    assert any("No cards yet" in line for line in outputs)
    assert service.learning_sessions() == []


def test_learn_flow_records_session(service: TrainerService) -> None:
    service.create_card("hola", "hello", "greeting")
    service.create_card("adiós", "goodbye")
    outputs: list[str] = []

    main._learn_flow(service, _scripted(["", "maybe", "y", "", "n"]), outputs.append)

    assert "Please answer y or n." in outputs
    assert any(line.startswith("\nSession saved: 1/2 known") for line in outputs)
    sessions = service.learning_sessions()
    assert len(sessions) == 1
    assert len(sessions[0].correct_cards) == 1
    assert len(sessions[0].incorrect_cards) == 1
    assert [card.statistics.times_shown for card in service.list_cards()] == [1, 1]


def test_learn_flow_stop_early_still_saves(service: TrainerService) -> None:
    service.create_card("hola", "hello")
    service.create_card("adiós", "goodbye")
    outputs: list[str] = []

    main._learn_flow(service, _scripted(["", "y", ":q"]), outputs.append)

    sessions = service.learning_sessions()
    assert len(sessions) == 1
    assert len(sessions[0].cards_reviewed) == 2
    assert len(sessions[0].correct_cards) == 1
    assert service.active_session is None


def test_quiz_flow_records_score(service: TrainerService) -> None:
    service.create_card("hola", "hello")
    outputs: list[str] = []

    main._quiz_flow(service, "multiple-choice", _picker(outputs, [], "hello"), outputs.append)

    assert "Correct." in outputs
    assert "\nScore: 100% (1/1)" in outputs
    sessions = service.list_quiz_sessions("multiple-choice")
    assert len(sessions) == 1
    assert service.list_cards()[0].statistics.times_correct == 1


def test_quiz_flow_wrong_answer_and_invalid_option(service: TrainerService) -> None:
    service.create_card("hola", "hello")
    outputs: list[str] = []

    def input_fn(prompt: str) -> str:
        if not any(line == "Invalid option." for line in outputs):
            return "0"
        for line in reversed(outputs):
            match = re.fullmatch(r"  (\d+)\) (.*)", line)
            if match and match.group(2) != "hello":
                return match.group(1)
        raise AssertionError("no wrong option printed")

    main._quiz_flow(service, "multiple-choice", input_fn, outputs.append)

    assert "Incorrect. Answer: hello" in outputs
    assert "\nScore: 0% (0/1)" in outputs
    assert service.list_cards()[0].statistics.times_incorrect == 1


def test_quiz_flow_abandon_records_nothing(service: TrainerService) -> None:
    service.create_card("hola", "hello")
    outputs: list[str] = []
    main._quiz_flow(service, "fill-in-blank", _scripted([":q"]), outputs.append)
    assert "Quiz abandoned; nothing was recorded." in outputs
    assert service.list_quiz_sessions() == []
    assert service.list_cards()[0].statistics.times_shown == 0


def test_quiz_flow_without_cards(service: TrainerService) -> None:
    outputs: list[str] = []
    main._quiz_flow(service, "fill-in-blank", _scripted([]), outputs.append)
    assert any("No cards yet" in line for line in outputs)


def test_statistics_flow(service: TrainerService) -> None:
    card = service.create_card("hola", "hello")
    service.start_learning_session([card.id])
    service.answer_current(True)
    service.end_learning_session()
    outputs: list[str] = []

    main._statistics_flow(service, outputs.append)

    assert "Current streak: 1 days (longest 1)" in outputs
    assert "Sessions: 1" in outputs
    assert "Cards reviewed: 1 (1 correct, 0 incorrect, 100%)" in outputs
    assert "Multiple choice: 0 taken, average 0%" in outputs
    day_rows = [line for line in outputs if re.match(r"\d\d\.\d\d ", line)]
    assert len(day_rows) == 7
    assert day_rows[-1].split()[1:] == ["1", "1", "100%"]


def test_admin_flow_seeds_demo_cards(service: TrainerService) -> None:
    outputs: list[str] = []
    main._admin_flow(service, _scripted(["1"]), outputs.append)
    assert f"Added {len(load_demo_deck().cards)} demo cards." in outputs


def test_admin_flow_back_invalid_and_quit(service: TrainerService) -> None:
    outputs: list[str] = []
    main._admin_flow(service, _scripted(["b"]), outputs.append)
    main._admin_flow(service, _scripted(["7"]), outputs.append)
    assert "Invalid choice." in outputs
    with pytest.raises(main.QuitApp):
        main._admin_flow(service, _scripted(["q"]), outputs.append)


def test_admin_export_and_import(service: TrainerService, tmp_path: Path) -> None:
    service.create_card("hola", "hello")
    export_path = tmp_path / "backup.json"
    outputs: list[str] = []

    main._admin_flow(service, _scripted(["2", str(export_path)]), outputs.append)
    assert f"Exported to {export_path}" in outputs
    assert "- cards: 1" in outputs

    target = TrainerService(JsonStore(None))
    import_outputs: list[str] = []
    main._admin_flow(target, _scripted(["3", str(export_path)]), import_outputs.append)
    assert "Imported:" in import_outputs
    assert "- cards: 1" in import_outputs
    assert [card.front for card in target.list_cards()] == ["hola"]


def test_admin_import_reports_failures(service: TrainerService, tmp_path: Path) -> None:
    outputs: list[str] = []
    main._admin_flow(service, _scripted(["3", ""]), outputs.append)
    main._admin_flow(service, _scripted(["3", str(tmp_path / "missing.json")]), outputs.append)
    bad = tmp_path / "bad.json"
    bad.write_text("{", encoding="utf-8")
    main._admin_flow(service, _scripted(["3", str(bad)]), outputs.append)

    assert "File path is required." in outputs
    assert sum(1 for line in outputs if line.startswith("Import failed:")) == 2


def test_main_entry_exits_with_run_code(monkeypatch: Any) -> None:
    monkeypatch.setattr(main, "run", lambda: 3)
    with pytest.raises(SystemExit) as exc_info:
        main.main_entry()
    assert exc_info.value.code == 3


def test_cards_flow_clears_notes(service: TrainerService) -> None:
    card = service.create_card("hola", "hello", "greeting")
    outputs: list[str] = []
    main._cards_flow(service, _scripted(["e", "1", "", "", "", "e", "1", "", "", "-", "b"]), outputs.append)

    assert outputs.count("Updated 'hola' = 'hello'.") == 2
    assert service.get_card(card.id).notes is None  # type: ignore[union-attr]


def test_admin_import_skips_malformed_nested_rows(service: TrainerService, tmp_path: Path) -> None:
    path = tmp_path / "import.json"
    path.write_text(
        '{"format_version": 1, "cards": [{"id": "a", "front": "hola", "back": "hello", '
        '"created_at": "2024-01-01T00:00:00+00:00", "updated_at": "2024-01-01T00:00:00+00:00", '
        '"statistics": [1]}], "quiz_sessions": [{"id": "q", "quiz_type": "multiple-choice", '
        '"date": "2024-01-01T00:00:00+00:00", "questions": [5]}]}',
        encoding="utf-8",
    )
    outputs: list[str] = []

    main._admin_flow(service, _scripted(["3", str(path)]), outputs.append)

    assert "Imported:" in outputs
    assert "- cards: 0" in outputs
    assert "- quiz sessions: 0" in outputs
    assert service.list_cards() == []
