"""Result values and the error taxonomy shared by every core component.

Fallible operations return ``Ok(value)`` or ``Err(error)`` instead of
raising.  Errors are ``StoreError`` subclasses; each carries a ``name``
tag that callers (HTTP mapping, CLI, capability handlers) switch on.
Only unclassified backend exceptions are allowed to propagate.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")
E = TypeVar("E")


class StoreError(Exception):
    """Base class for typed failures carried in ``Err`` values."""

    name = "StoreError"
    default_message = "store operation failed"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class RecordNotFound(StoreError):
    name = "RecordNotFound"
    default_message = "record not found"


class RecordKeyConflict(StoreError):
    name = "RecordKeyConflict"
    default_message = "record key conflict"


class StorageOperationFailed(StoreError):
    name = "StorageOperationFailed"
    default_message = "storage operation failed"


class DecodeFailure(StoreError):
    name = "DecodeFailure"
    default_message = "failed to decode record"


class EncodeFailure(StoreError):
    name = "EncodeFailure"
    default_message = "failed to encode record"


# ---------------------------------------------------------------------------
# Identifier resolution
# ---------------------------------------------------------------------------


class UnsupportedIdentifier(StoreError):
    name = "UnsupportedIdentifier"
    default_message = "unsupported CID type"


class UnsupportedVersion(StoreError):
    name = "UnsupportedVersion"
    default_message = (
        "v1 piece CIDs are not supported, provide a v2 piece CID (FRC-0069)"
    )


class MalformedIdentifier(StoreError):
    name = "MalformedIdentifier"
    default_message = "malformed piece CID"


class NoEquivalentCids(StoreError):
    name = "NoEquivalentCids"
    default_message = "no equivalent CID for piece CID found"


class ContentNotFound(StoreError):
    name = "ContentNotFound"
    default_message = "no content found"


# ---------------------------------------------------------------------------
# Result variants
# ---------------------------------------------------------------------------


class Ok(BaseModel, Generic[T]):
    """Successful outcome."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    ok: T


class Err(BaseModel, Generic[E]):
    """Failed outcome carrying a typed ``StoreError``."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    error: Any

    @property
    def name(self) -> str:
        return self.error.name


Result = Union[Ok[T], Err[E]]


class Unit(BaseModel):
    """Empty success payload."""

    model_config = ConfigDict(frozen=True)
