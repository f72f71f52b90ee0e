"""Unique identifiers for cards, sessions and quiz questions."""

from __future__ import annotations

import logging
import random
import uuid

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Return a random UUID4 string, preferring the OS CSPRNG."""
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        logger.warning("No secure random source available; falling back to pseudo-random ids.")
        return _pseudo_random_uuid4()


def _pseudo_random_uuid4() -> str:
    """Build a UUID4-shaped id from the non-cryptographic `random` module."""
    return str(uuid.UUID(int=random.getrandbits(128), version=4))
