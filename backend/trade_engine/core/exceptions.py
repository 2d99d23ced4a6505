"""
Trade error taxonomy.

Raised inside the session model and the orchestrator, converted to a typed
``TradeResult`` at the orchestrator boundary so callers never see a raw
exception for an expected domain failure.
"""

from __future__ import annotations

from enum import Enum


class TradeResultCode(str, Enum):
    OK = "ok"
    STILL_WAITING = "still_waiting"
    COMPLETED = "completed"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION_FAILED = "validation_failed"
    FRAUD_BLOCKED = "fraud_blocked"
    EXECUTION_FAILED = "execution_failed"


RETRYABLE_CODES = {TradeResultCode.NOT_FOUND, TradeResultCode.CONFLICT}


class TradeError(Exception):
    """Base class for every expected trade failure."""

    code: TradeResultCode = TradeResultCode.EXECUTION_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SessionNotFound(TradeError):
    code = TradeResultCode.NOT_FOUND


class SessionEnded(SessionNotFound):
    """The session still exists but has reached a terminal state."""

    def __init__(self, message: str, session=None) -> None:
        super().__init__(message)
        self.session = session


class TradeConflict(TradeError):
    code = TradeResultCode.CONFLICT


class TradeValidationError(TradeError):
    code = TradeResultCode.VALIDATION_FAILED


class ExecutionFailure(TradeError):
    code = TradeResultCode.EXECUTION_FAILED
