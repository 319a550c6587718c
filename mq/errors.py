"""
Message Queue Errors — the only exception types that cross the adapter boundary.

  MessageQueueError   — base class, carries an optional numeric code
  TransportError      — any backend/transport failure (connect, listen, publish, ack, nack)
  PreconditionError   — operation invoked while the orchestrator is disconnected
  ValidationError     — malformed envelope or option value

Adapters translate vendor exceptions (botocore, aio-pika, redis) into
TransportError; vendor exception types never leak upward.
"""
from __future__ import annotations

from typing import Optional


class MessageQueueError(Exception):
    """Base exception for all message queue operations."""

    def __init__(self, message: str, code: int = 0):
        self.code = code
        super().__init__(message)


class TransportError(MessageQueueError):
    """Raised when the underlying transport fails."""

    def __init__(self, message: str, code: int = 0, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message, code)

    @classmethod
    def wrap(cls, exc: BaseException) -> TransportError:
        """Build a TransportError from a vendor exception, keeping its message."""
        code = getattr(exc, "code", 0)
        return cls(str(exc) or exc.__class__.__name__,
                   code=code if isinstance(code, int) else 0,
                   original=exc)


class PreconditionError(MessageQueueError):
    """Raised when an operation requires an open connection."""

    NOT_CONNECTED = 763

    def __init__(self, message: str = "Not connected! Open the connection first",
                 code: int = NOT_CONNECTED):
        super().__init__(message, code)


class ValidationError(MessageQueueError, ValueError):
    """Raised for malformed envelopes, attribute values or options."""
