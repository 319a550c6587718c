"""
Envelope — the message unit shared by every backend.

An envelope carries:
  id              opaque identifier, assigned on publish or by the backend
  queue           target queue name / URL (read-only once constructed)
  receipt_handle  token proving the message is checked out (in-flight)
  attributes      ordered mapping name → AttributeValue
  body            opaque str / bytes payload

Each backend subclasses Envelope and defines the two boundary conversions:
  to_vendor()        envelope → backend-native representation
  from_vendor(data)  backend-native representation → envelope
"""
from __future__ import annotations

import abc
from enum import Enum
from typing import Any, Optional, Union

from mq.errors import ValidationError

AttributeValue = Union[str, int, float, bool, bytes]
Body = Union[str, bytes]


class AttributeType(str, Enum):
    """Discriminator for the attribute value union."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    BYTES = "bytes"

    @classmethod
    def of(cls, value: Any) -> Optional[AttributeType]:
        # bool is a subclass of int, so it must be tested first
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, int):
            return cls.INTEGER
        if isinstance(value, float):
            return cls.FLOAT
        if isinstance(value, str):
            return cls.STRING
        if isinstance(value, (bytes, bytearray)):
            return cls.BYTES
        return None


class Envelope(abc.ABC):
    """Base envelope with attribute bookkeeping; subclasses own the vendor format."""

    def __init__(self, queue: Optional[str] = None):
        self._queue = queue
        self._id: Optional[str] = None
        self._receipt_handle: Any = None
        self._body: Body = ""
        self._attributes: dict[str, Any] = {}

    # ── Identity ──────────────────────────────────────────────

    @property
    def id(self) -> Optional[str]:
        return self._id

    @id.setter
    def id(self, value: Optional[str]) -> None:
        self._id = value

    @property
    def queue(self) -> Optional[str]:
        return self._queue

    @property
    def receipt_handle(self) -> Any:
        return self._receipt_handle

    @receipt_handle.setter
    def receipt_handle(self, value: Any) -> None:
        self._receipt_handle = value

    @property
    def body(self) -> Body:
        return self._body

    @body.setter
    def body(self, value: Body) -> None:
        self._body = value

    # ── Attributes ────────────────────────────────────────────

    @property
    def attributes(self) -> dict[str, Any]:
        return dict(self._attributes)

    def set_attribute(self, name: str, value: Any) -> Envelope:
        self._check_attribute(name, value)
        self._attributes[name] = value
        return self

    def get_attribute(self, name: str, default: Any = None) -> Any:
        return self._attributes.get(name, default)

    def has_attribute(self, name: str) -> bool:
        return name in self._attributes

    def remove_attribute(self, name: str) -> Envelope:
        self._attributes.pop(name, None)
        return self

    def clear_attributes(self) -> Envelope:
        self._attributes.clear()
        return self

    def _check_attribute(self, name: str, value: Any) -> None:
        if AttributeType.of(value) is None:
            raise ValidationError(
                f'Unsupported type "{type(value).__name__}" for attribute "{name}". '
                f"Only str, int, float, bool and bytes values are supported"
            )

    # ── Conversions ───────────────────────────────────────────

    @abc.abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Structural snapshot, used for logging and inspection."""
        ...

    @abc.abstractmethod
    def to_vendor(self) -> Any:
        """Backend-native representation for transmission."""
        ...

    @classmethod
    @abc.abstractmethod
    def from_vendor(cls, data: Any) -> Envelope:
        """Build an envelope from a backend-native representation."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id!r} queue={self.queue!r}>"
