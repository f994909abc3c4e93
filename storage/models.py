"""
storage/models.py -- Filesystem entry types.

FileInfo and DirectoryInfo form a tagged union: the kind field is the
discriminant, so consumers branch on entry.kind and never on which attributes
happen to be present. A DirectoryInfo produced by a listing holds one level of
children; nested directories in it have empty children.

path is always root-relative, '/'-prefixed and '/'-delimited ("/" is the root).
Entries are built fresh per call and never cached.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union


@dataclass
class FileInfo:
    name: str
    path: str
    size: int
    created_at: float  # epoch seconds
    modified_at: float  # epoch seconds
    kind: Literal["file"] = "file"


@dataclass
class DirectoryInfo:
    name: str
    path: str
    children: list[Entry] = field(default_factory=list)
    kind: Literal["directory"] = "directory"


Entry = Union[FileInfo, DirectoryInfo]


@dataclass(frozen=True)
class DiskUsage:
    """Volume capacity in bytes, read fresh from the filesystem."""

    total: int
    free: int
