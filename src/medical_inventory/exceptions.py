"""Service level errors.

Validation problems are collected into a list of :class:`ExceptionMessage`
and raised together. Messages carry a severity so that callers can tell
blocking errors apart from informational notices they may present to the
user before going on.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable


class SeverityLevel(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class ExceptionMessage:
    """A single user facing problem description."""

    message: str
    title: str = "Error"
    severity: SeverityLevel = SeverityLevel.ERROR

    def as_dict(self) -> dict[str, str]:
        return {"title": self.title, "message": self.message, "severity": self.severity.value}


class ServiceError(RuntimeError):
    """Raised when a service operation cannot be completed."""

    def __init__(self, messages: ExceptionMessage | str | Iterable[ExceptionMessage | str]):
        if isinstance(messages, (str, ExceptionMessage)):
            messages = [messages]
        self.messages: list[ExceptionMessage] = [
            item if isinstance(item, ExceptionMessage) else ExceptionMessage(item) for item in messages
        ]
        super().__init__("; ".join(item.message for item in self.messages))

    @property
    def is_informational(self) -> bool:
        """Return ``True`` when every message is only a notice."""

        return bool(self.messages) and all(item.severity is SeverityLevel.INFO for item in self.messages)


class DataValidationError(ServiceError):
    """Raised when submitted data fails validation."""


class NotFoundError(ServiceError):
    """Raised when a referenced record does not exist."""


class DuplicateRecordError(ServiceError):
    """Raised when trying to create a record with an existing key."""
