"""Exception types raised by the trainer core."""

from __future__ import annotations


class TrainerError(Exception):
    """Base class for trainer failures the UI is expected to render."""


class ValidationError(TrainerError, ValueError):
    """Rejected input; raised before any state is changed."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message

    def __str__(self) -> str:
        return self.message


class SessionStateError(TrainerError, RuntimeError):
    """Learning-session operation called without an active session."""


class StorageError(TrainerError, RuntimeError):
    """Storage backend could not read or write its records."""
