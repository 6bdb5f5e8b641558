"""Structured outcomes and user-facing notifications shared by all components."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, Literal, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Failure taxonomy reported across component boundaries."""

    AUTHENTICATION_REQUIRED = "authentication-required"
    STORAGE_UNAVAILABLE = "storage-unavailable"
    SESSION_LOCKED = "session-locked"
    PAYLOAD_CORRUPT = "payload-corrupt"
    REMOTE_INVOCATION_FAILED = "remote-invocation-failed"
    FETCH_FAILED = "fetch-failed"
    VALIDATION_FAILED = "validation-failed"
    PERSISTENCE_FAILED = "persistence-failed"


@dataclass(slots=True)
class Outcome(Generic[T]):
    """Typed result of an operation that must not raise past its component."""

    ok: bool
    value: T | None = None
    error: ErrorKind | None = None
    message: str | None = None
    warnings: list[tuple[ErrorKind, str]] = field(default_factory=list)

    @classmethod
    def success(cls, value: T | None = None) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "Outcome[T]":
        return cls(ok=False, error=error, message=message)

    def warn(self, kind: ErrorKind, message: str) -> "Outcome[T]":
        self.warnings.append((kind, message))
        return self


@dataclass(frozen=True, slots=True)
class Notification:
    """A toast-style message surfaced to whoever hosts the core."""

    title: str
    description: str
    variant: Literal["default", "destructive"] = "default"


Notifier = Callable[[Notification], None]


def log_notifier(notification: Notification) -> None:
    """Default notifier: route notifications to the module logger."""

    level = logging.WARNING if notification.variant == "destructive" else logging.INFO
    logger.log(
        level,
        notification.title,
        extra={"description": notification.description, "variant": notification.variant},
    )


__all__ = ["ErrorKind", "Notification", "Notifier", "Outcome", "log_notifier"]
