"""Load bundled vocabulary decks from JSON resources."""

from __future__ import annotations

import json
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

CONTENT_PACKAGE = "vocabtrainer.content"
DEMO_DECK = "demo_cards.json"


@dataclass(frozen=True)
class DeckCard:
    """Card template from a deck; becomes a Flashcard when seeded."""

    front: str
    back: str
    notes: str | None


@dataclass(frozen=True)
class Deck:
    """Named list of card templates."""

    id: str
    title: str
    content_version: int
    cards: list[DeckCard]


def _card_from_dict(deck_id: str, raw: dict[str, Any]) -> DeckCard:
    """Build a deck card from raw JSON content."""
    front = str(raw.get("front", "")).strip()
    back = str(raw.get("back", "")).strip()
    if not front or not back:
        raise ValueError(f"Deck '{deck_id}' has a card without front or back: {raw!r}")
    notes = str(raw.get("notes", "")).strip()
    return DeckCard(front=front, back=back, notes=notes or None)


def _deck_from_dict(raw: dict[str, Any]) -> Deck:
    """Build a deck from raw JSON content."""
    deck_id = str(raw["id"])
    cards = [_card_from_dict(deck_id, item) for item in raw.get("cards", [])]
    _validate_unique_fronts(deck_id, cards)
    return Deck(
        id=deck_id,
        title=str(raw.get("title", deck_id)),
        content_version=int(raw.get("content_version", 1)),
        cards=cards,
    )


def load_demo_deck() -> Deck:
    """Load the bundled demo deck."""
    entry = resources.files(CONTENT_PACKAGE).joinpath(DEMO_DECK)
    return _deck_from_dict(json.loads(entry.read_text(encoding="utf-8-sig")))


def load_deck_file(path: Path | str) -> Deck:
    """Load one deck from a JSON file for tests/tools."""
    raw = json.loads(Path(path).read_text(encoding="utf-8-sig"))
    if not isinstance(raw, dict):
        raise ValueError("Deck file root must be a JSON object.")
    return _deck_from_dict(raw)


def _validate_unique_fronts(deck_id: str, cards: list[DeckCard]) -> None:
    """Validate that no two cards in a deck share a front (case-insensitive)."""
    seen: set[str] = set()
    for card in cards:
        key = card.front.lower()
        if key in seen:
            raise ValueError(f"Duplicate card front in deck '{deck_id}': {card.front}")
        seen.add(key)
