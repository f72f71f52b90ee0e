import json
import sqlite3
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

import pytest
from conftest import make_card

from vocabtrainer.errors import StorageError
from vocabtrainer.models import CardStatistics, LearningSession, QuizQuestion, QuizSession
from vocabtrainer.sqlite_store import SCHEMA_VERSION, SqliteStore
from vocabtrainer.storage import JSON_FILENAME, SQLITE_FILENAME, JsonStore, open_storage, parse_timestamp

WHEN = datetime(2024, 3, 7, 9, 30, tzinfo=UTC)


def _learning_session() -> LearningSession:
    return LearningSession(
        id="ls-1",
        date=WHEN,
        cards_reviewed=("a", "b"),
        correct_cards=("a",),
        incorrect_cards=("b",),
        duration_seconds=42,
    )


def _quiz_session() -> QuizSession:
    question = QuizQuestion(
        id="q-1",
        card_id="a",
        prompt_text="hola",
        options=("bye", "hello", "cat", "dog"),
        correct_answer_index=1,
        correct_answer="hello",
        user_answer="hello",
        was_correct=True,
    )
    return QuizSession(
        id="qs-1",
        quiz_type="multiple-choice",
        date=WHEN,
        questions=(question, replace(question, id="q-2", was_correct=False)),
        score_percent=50,
    )


def _stores(tmp_path: Path) -> list:
    return [
        JsonStore(None),
        JsonStore(tmp_path / "data.json"),
        SqliteStore(":memory:"),
        SqliteStore(tmp_path / "db" / "trainer.db"),
    ]


def test_stores_keep_records_and_order(tmp_path: Path) -> None:
    reviewed = CardStatistics(
        times_shown=3,
        times_correct=2,
        times_incorrect=1,
        last_reviewed=WHEN,
        success_rate=67,
        status="learning",
        consecutive_correct=1,
    )
    cards = [make_card("b", notes="second letter"), make_card("a", statistics=reviewed)]

    for store in _stores(tmp_path):
        assert store.load_cards() == []
        store.save_cards(cards)
        store.append_learning_session(_learning_session())
        store.append_quiz_session(_quiz_session())

        assert store.load_cards() == cards
        assert store.load_learning_sessions() == [_learning_session()]
        assert store.load_quiz_sessions() == [_quiz_session()]

        store.save_cards(cards[1:])
        assert [card.id for card in store.load_cards()] == ["a"]
        store.close()


def test_json_store_persists_between_instances(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "data.json"
    JsonStore(path).save_cards([make_card("a")])
    assert path.exists()
    assert not path.with_name("data.json.tmp").exists()
    assert [card.id for card in JsonStore(path).load_cards()] == ["a"]


def test_json_store_memory_copies_are_isolated() -> None:
    store = JsonStore(None)
    store.save_cards([make_card("a")])
    loaded = store.load_cards()
    loaded.append(make_card("b"))
    assert len(store.load_cards()) == 1


def test_json_store_wraps_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "data.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        JsonStore(path).load_cards()

    path.write_text("[]", encoding="utf-8")
    with pytest.raises(StorageError):
        JsonStore(path).load_cards()

    path.write_text(json.dumps({"cards": [{"front": "no id"}]}), encoding="utf-8")
    with pytest.raises(StorageError):
        JsonStore(path).load_cards()


def test_sqlite_store_records_schema_version(tmp_path: Path) -> None:
    db_path = tmp_path / "trainer.db"
    SqliteStore(db_path).close()
    conn = sqlite3.connect(db_path)
    try:
        assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        versions = [row[0] for row in conn.execute("SELECT version FROM schema_migrations")]
        assert versions == [SCHEMA_VERSION]
    finally:
        conn.close()

    store = SqliteStore(db_path)
    store.save_cards([make_card("a")])
    store.close()
    reopened = SqliteStore(db_path)
    assert [card.id for card in reopened.load_cards()] == ["a"]
    reopened.close()


def test_sqlite_store_rejects_newer_schema(tmp_path: Path) -> None:
    db_path = tmp_path / "trainer.db"
    conn = sqlite3.connect(db_path)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
    conn.close()
    with pytest.raises(StorageError):
        SqliteStore(db_path)


def test_sqlite_store_wraps_duplicate_ids() -> None:
    store = SqliteStore(":memory:")
    with pytest.raises(StorageError):
        store.save_cards([make_card("a"), make_card("a")])
    assert store.load_cards() == []
    store.close()


def test_open_storage_selects_backend(tmp_path: Path) -> None:
    json_store = open_storage("json", tmp_path)
    assert isinstance(json_store, JsonStore)
    assert json_store.path == tmp_path / JSON_FILENAME

    sqlite_store = open_storage("sqlite", tmp_path)
    assert isinstance(sqlite_store, SqliteStore)
    assert (tmp_path / SQLITE_FILENAME).exists()
    sqlite_store.close()

    with pytest.raises(ValueError):
        open_storage("yaml", tmp_path)


def test_parse_timestamp_treats_naive_as_utc() -> None:
    assert parse_timestamp("2024-03-07T09:30:00") == WHEN
    assert parse_timestamp("2024-03-07T09:30:00+00:00") == WHEN
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None


def test_json_store_wraps_wrongly_typed_nested_fields(tmp_path: Path) -> None:
    path = tmp_path / "data.json"
    card = {
        "id": "a",
        "front": "hola",
        "back": "hello",
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
        "statistics": [1],
    }
    quiz = {"id": "q", "quiz_type": "multiple-choice", "date": "2024-01-01T00:00:00+00:00", "questions": [5]}
    path.write_text(json.dumps({"cards": [card], "quiz_sessions": [quiz]}), encoding="utf-8")

    store = JsonStore(path)
    with pytest.raises(StorageError, match="cards"):
        store.load_cards()
    with pytest.raises(StorageError, match="quiz_sessions"):
        store.load_quiz_sessions()
