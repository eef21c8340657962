"""
Record identifiers.

A record created while offline gets a client-generated temporary id. Once
the remote service accepts the insert, the temporary id is replaced by the
server-assigned one everywhere it is referenced (see ``sync.reconcile``).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

TEMPORARY_PREFIX = "tmp-"


@dataclass(frozen=True)
class TemporaryId:
    """Client-generated id, valid only until the server confirms the record."""

    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ConfirmedId:
    """Server-assigned id, stable for the lifetime of the record."""

    value: str

    def __str__(self) -> str:
        return self.value


RecordId = TemporaryId | ConfirmedId


def new_temporary_id() -> TemporaryId:
    """Generate a fresh temporary id."""
    return TemporaryId(f"{TEMPORARY_PREFIX}{uuid.uuid4()}")


def parse_id(value: str) -> RecordId:
    """Classify a stored id string."""
    if value.startswith(TEMPORARY_PREFIX):
        return TemporaryId(value)
    return ConfirmedId(value)


def is_temporary(value: str | None) -> bool:
    return bool(value) and isinstance(parse_id(value), TemporaryId)  # type: ignore[arg-type]
