from __future__ import annotations

import shutil
import sys
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from vocabtrainer.models import CardStatistics, Flashcard  # noqa: E402
from vocabtrainer.service import TrainerService  # noqa: E402
from vocabtrainer.storage import JsonStore  # noqa: E402

CREATED = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def make_card(
    card_id: str,
    front: str | None = None,
    back: str | None = None,
    notes: str | None = None,
    statistics: CardStatistics | None = None,
) -> Flashcard:
    """Build a card with fixed timestamps."""
    return Flashcard(
        id=card_id,
        front=front if front is not None else f"front-{card_id}",
        back=back if back is not None else f"back-{card_id}",
        notes=notes,
        created_at=CREATED,
        updated_at=CREATED,
        statistics=statistics if statistics is not None else CardStatistics(),
    )


@pytest.fixture
def service() -> Iterator[TrainerService]:
    """Service over an in-memory JSON store."""
    svc = TrainerService(JsonStore(None))
    try:
        yield svc
    finally:
        svc.close()


def _tmp_path_fixture() -> Iterator[Path]:
    """Provide per-test temporary directory path inside the workspace.

    Overrides pytest's builtin ``tmp_path`` so data files stay under
    ``.tmp_pytest/`` in the project directory.
    """
    base = ROOT / ".tmp_pytest"
    base.mkdir(parents=True, exist_ok=True)
    path = base / str(uuid4())
    path.mkdir(parents=True, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        try:
            next(base.iterdir())
        except StopIteration:
            base.rmdir()
        except FileNotFoundError:
            pass


tmp_path = pytest.fixture(name="tmp_path")(_tmp_path_fixture)
