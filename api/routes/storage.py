"""
api/routes/storage.py -- Filesystem REST endpoints. Every route requires a session.

Routes:
  GET    /space            -- {total, free} bytes on the storage volume
  GET    /search?query=    -- entries anywhere in the tree whose name contains query
  GET    /fs[/{path}]      -- directory listing (JSON) or file download (stream)
  POST   /fs/{path}        -- upload; application/octet-stream + Content-Length
  PUT    /fs/{path}        -- create a directory (and parents)
  DELETE /fs[/{path}]      -- delete a file or a directory tree

Paths in URLs are root-relative. StorageService.confine() validates each one
before any filesystem call.
"""

from __future__ import annotations

import errno
import logging
from collections.abc import AsyncIterator
from typing import Union

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect

from api.models import DirectoryEntry, EntryModel, MessageResponse, SpaceResponse, entry_to_model
from auth.dependencies import get_identity
from core.errors import ValidationError
from storage.service import StorageService

logger = logging.getLogger("pss.api")

router = APIRouter(dependencies=[Depends(get_identity)])


def _storage(request: Request) -> StorageService:
    return request.app.state.storage


# ---------------------------------------------------------------------------
# Volume and search
# ---------------------------------------------------------------------------


@router.get("/space", response_model=SpaceResponse)
def space(request: Request) -> SpaceResponse:
    return SpaceResponse.from_usage(_storage(request).get_disk_info())


@router.get("/search", response_model=list[EntryModel])
def search(request: Request, query: str = Query(min_length=1)) -> list:
    return [entry_to_model(e) for e in _storage(request).search(query)]


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


@router.get("/fs", response_model=None)
@router.get("/fs/{path:path}", response_model=None)
def read_path(request: Request, path: str = "") -> Union[DirectoryEntry, StreamingResponse]:
    """List a directory, or stream a file's bytes."""
    storage = _storage(request)
    if storage.is_directory(path):
        return entry_to_model(storage.get_directory_info(path))
    target = storage.open_file(path)
    return StreamingResponse(
        storage.iter_file(target),
        media_type="application/octet-stream",
        headers={"Content-Length": str(target.stat().st_size)},
    )


@router.post("/fs/{path:path}", response_model=MessageResponse)
async def upload(request: Request, path: str) -> MessageResponse:
    """Stream the raw request body into a file.

    Content-Type must be application/octet-stream and Content-Length must be
    present: both quota checks run against the declared length before the
    body is read.
    """
    content_type = request.headers.get("Content-Type", "").split(";")[0].strip().lower()
    if content_type != "application/octet-stream":
        raise ValidationError("Invalid header 'Content-Type'!")
    declared = request.headers.get("Content-Length", "")
    if not declared.isdigit():
        raise ValidationError("Invalid header 'Content-Length'!")
    await _storage(request).write_file(path, _request_body(request), int(declared))
    logger.info("Upload of /%s by %s complete", path, request.state.auth.username)
    return MessageResponse(message="File was successfully uploaded.")


async def _request_body(request: Request) -> AsyncIterator[bytes]:
    """Yield the request body, turning a client disconnect into an OSError."""
    try:
        async for chunk in request.stream():
            if chunk:
                yield chunk
    except ClientDisconnect as exc:
        raise ConnectionAbortedError(errno.ECONNABORTED, "Client disconnected during upload") from exc


@router.put("/fs/{path:path}", response_model=MessageResponse)
def create_directory(request: Request, path: str) -> MessageResponse:
    _storage(request).create_directory(path)
    return MessageResponse(message="Directory was successfully created.")


@router.delete("/fs", response_model=MessageResponse)
@router.delete("/fs/{path:path}", response_model=MessageResponse)
def delete_path(request: Request, path: str = "") -> MessageResponse:
    _storage(request).delete_path(path)
    return MessageResponse(message="Path was successfully deleted.")
