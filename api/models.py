"""
API request and response models for the storage server REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py and storage/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Identity
from storage.models import DiskUsage, Entry

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_MIN = 6
USERNAME_MAX = 32
PASSWORD_MIN = 9
PASSWORD_MAX = 63
# bcrypt rejects secrets longer than this many bytes.
PASSWORD_MAX_BYTES = 72

_LETTER_RE = re.compile(r"[A-Za-z]")
_DIGIT_RE = re.compile(r"[0-9]")

_Username = Annotated[str, Field(min_length=USERNAME_MIN, max_length=USERNAME_MAX)]


def decode_password(value: str) -> str:
    """Decode a base64 password and enforce the password policy.

    The decoded password must be 9-63 characters (at most 72 UTF-8 bytes)
    and contain at least one letter and one digit.
    """
    try:
        password = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError("password must be valid base64") from exc
    if not PASSWORD_MIN <= len(password) <= PASSWORD_MAX:
        raise ValueError(f"password must be {PASSWORD_MIN}-{PASSWORD_MAX} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must encode to at most {PASSWORD_MAX_BYTES} bytes")
    if not _LETTER_RE.search(password) or not _DIGIT_RE.search(password):
        raise ValueError("password must contain at least one letter and one digit")
    return password


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _PasswordBody(BaseModel):
    """Shared base: password arrives base64-encoded and is decoded on validation."""

    password: str

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return decode_password(value)


class RegisterRequest(_PasswordBody):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: _Username
    admin: bool


class PasswordUpdateRequest(_PasswordBody):
    """Request body for PUT /auth/user and PUT /auth/recover.

    code is the temporary access code; admins rotating another user's
    password omit it.
    """

    username: str
    code: Optional[str] = Field(default=None, max_length=6)


class UsernameRequest(BaseModel):
    username: str


class DeleteUserRequest(BaseModel):
    """Request body for DELETE /auth/user. force is required to delete an admin."""

    username: str
    force: bool = False


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class AccessCodeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str


class UserResponse(BaseModel):
    """Public view of an account. Never carries hashes or access codes."""

    model_config = ConfigDict(frozen=True)

    username: str
    admin: bool

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserResponse":
        return cls(username=identity.username, admin=identity.admin)


class FileEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    name: str
    path: str
    size: int
    created: float
    modified: float


class DirectoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["directory"] = "directory"
    name: str
    path: str
    children: list[EntryModel] = Field(default_factory=list)


EntryModel = Annotated[Union[FileEntry, DirectoryEntry], Field(discriminator="kind")]

DirectoryEntry.model_rebuild()


def entry_to_model(entry: Entry) -> FileEntry | DirectoryEntry:
    """Map a storage entry to its API model, branching on the kind discriminant."""
    if entry.kind == "file":
        return FileEntry(
            name=entry.name,
            path=entry.path,
            size=entry.size,
            created=entry.created_at,
            modified=entry.modified_at,
        )
    return DirectoryEntry(
        name=entry.name,
        path=entry.path,
        children=[entry_to_model(child) for child in entry.children],
    )


class SpaceResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    free: int

    @classmethod
    def from_usage(cls, usage: DiskUsage) -> "SpaceResponse":
        return cls(total=usage.total, free=usage.free)


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    model_config = ConfigDict(frozen=True)

    error: bool = True
    code: str
    message: str


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    running: bool = True
