"""Pagination cursors returned by marketplace clients.

A cursor is either an :class:`OffsetCursor` (numeric offset into a result set)
or a :class:`TokenCursor` (opaque continuation string). ``None`` means there is
no further page. A given client only ever produces one of the two variants;
callers treat cursors as opaque and hand them back to the client that made them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Union


@dataclass(frozen=True)
class OffsetCursor:
    kind: ClassVar[str] = "offset"
    offset: int

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")

    def describe(self) -> str:
        return f"offset={self.offset}"


@dataclass(frozen=True)
class TokenCursor:
    kind: ClassVar[str] = "token"
    token: str

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError("continuation token must be non-empty")

    def describe(self) -> str:
        return f"token={self.token[:16]}"


Cursor = Union[OffsetCursor, TokenCursor]


def describe_cursor(cursor: Optional[Cursor]) -> str:
    return cursor.describe() if cursor is not None else "start"
