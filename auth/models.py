"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work.

Layer rule: no imports from api/ or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A stored account.

    iat is the session counter: 0 means no session has been issued (or the
    last one was revoked). Every token carries the iat it was issued with and
    is only accepted while it matches this value.

    access_code / access_code_issued_at are set by the recovery flow and
    cleared once the code is used. access_code_issued_at is epoch milliseconds.
    """

    username: str
    hashed_password: str
    admin: bool = False
    iat: int = 0
    access_code: str | None = None
    access_code_issued_at: int | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Identity:
    """The caller resolved from a verified session token."""

    username: str
    admin: bool
