"""
auth/dependencies.py -- FastAPI Depends() helpers for the session gate.

Token sources, checked in priority order:
  1. ?token=<jwt> query parameter -- the primary client contract.
  2. Authorization: Bearer <jwt> header -- for clients that prefer headers.

Both converge on AuthService.verify(), which checks the signature and then
the stored session counter. The resolved Identity is also left on
request.state.auth for handlers and middleware that need it.

get_identity() raises AuthError when the request is not authenticated.
require_admin() wraps it and raises PermissionDeniedError for non-admins.

Both are plain (sync) functions, so FastAPI runs the store lookup in its
thread pool rather than on the event loop.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import Identity
from auth.service import AuthService
from core.errors import AuthError, PermissionDeniedError


def _extract_token(request: Request) -> str | None:
    token = request.query_params.get("token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def authenticate(request: Request) -> Identity:
    """Resolve the caller of a request or raise AuthError."""
    token = _extract_token(request)
    if token is None:
        raise AuthError("Missing token!")
    auth_service: AuthService = request.app.state.auth_service
    identity = auth_service.verify(token)
    request.state.auth = identity
    return identity


def get_identity(request: Request) -> Identity:
    """Require a live session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_identity)): ...
    """
    return authenticate(request)


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.admin:
        raise PermissionDeniedError("User lacks proper permissions to perform this operation!")
    return identity
