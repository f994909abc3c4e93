"""
api/routes/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /auth/login         -- Basic auth login; returns {token}       (public)
  PUT    /auth/recover       -- password reset with an access code      (public)
  POST   /auth/register      -- create an account                       (admin)
  POST   /auth/logout        -- revoke every session of the caller
  POST   /auth/renew         -- swap the caller's token for a fresh one
  GET    /auth/user          -- caller's own identity
  DELETE /auth/user          -- delete self, or anyone as admin (force for admins)
  PUT    /auth/user          -- rotate a password (admin, or self with access code)
  POST   /auth/user/code     -- issue a temporary access code           (admin)
  POST   /auth/user/promote  -- grant admin                             (admin)
  POST   /auth/user/demote   -- revoke admin                            (admin)
  GET    /auth/users         -- list accounts                           (admin)

Security:
  POST /auth/login and PUT /auth/recover are rate-limited per client IP.
  Recovery fails the same way for unknown users and wrong codes.
  Login responses carry Cache-Control: no-store.
  Every handler is a plain def, so bcrypt and store calls run in the thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_rate_limit
from api.models import (
    AccessCodeResponse,
    DeleteUserRequest,
    MessageResponse,
    PasswordUpdateRequest,
    RegisterRequest,
    TokenResponse,
    UsernameRequest,
    UserResponse,
)
from auth.dependencies import get_identity, require_admin
from auth.models import Identity
from auth.service import AuthService
from auth.tokens import parse_basic_auth
from core.errors import ValidationError

# Routes that must work without a session.
public_router = APIRouter()

# Everything else goes through the session gate.
router = APIRouter(dependencies=[Depends(get_identity)])


def _auth(request: Request) -> AuthService:
    return request.app.state.auth_service


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@public_router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(login_rate_limit)
def login(request: Request, response: Response) -> TokenResponse:
    """Exchange Basic credentials for a session token.

    Wrong password and unknown username produce the same 401.
    """
    username, password = parse_basic_auth(request.headers.get("Authorization"))
    token = _auth(request).login(username, password)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse(token=token)


@public_router.put("/auth/recover", response_model=MessageResponse)
@limiter.limit(login_rate_limit)
def recover_password(request: Request, body: PasswordUpdateRequest) -> MessageResponse:
    """Set a new password with a temporary access code (no session needed).

    Unknown usernames and wrong codes produce the same 401.
    """
    if not body.code:
        raise ValidationError("Missing access code!")
    _auth(request).update_password(body.username, body.password, access_code=body.code)
    return MessageResponse(message="User password was successfully updated.")


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, identity: Identity = Depends(get_identity)) -> MessageResponse:
    _auth(request).logout(identity.username)
    return MessageResponse(message="User was successfully logged out.")


@router.post("/auth/renew", response_model=TokenResponse)
def renew(request: Request, response: Response, identity: Identity = Depends(get_identity)) -> TokenResponse:
    token = _auth(request).renew(identity.username)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse(token=token)


@router.get("/auth/user", response_model=UserResponse)
def get_user(identity: Identity = Depends(get_identity)) -> UserResponse:
    return UserResponse.from_identity(identity)


# ---------------------------------------------------------------------------
# Account management
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=MessageResponse)
def register(request: Request, body: RegisterRequest, _admin: Identity = Depends(require_admin)) -> MessageResponse:
    _auth(request).register(body.username, body.password, body.admin)
    return MessageResponse(message="User was registered successfully.")


@router.delete("/auth/user", response_model=MessageResponse)
def delete_user(
    request: Request,
    body: DeleteUserRequest,
    identity: Identity = Depends(get_identity),
) -> MessageResponse:
    _auth(request).delete_user(body.username, identity, force=body.force)
    return MessageResponse(message="User was successfully deleted.")


@router.put("/auth/user", response_model=MessageResponse)
def update_password(
    request: Request,
    body: PasswordUpdateRequest,
    identity: Identity = Depends(get_identity),
) -> MessageResponse:
    """Rotate a password.

    Admins may rotate any password without a code. Other users may only
    rotate their own, and only with a valid access code.
    """
    _auth(request).update_password(body.username, body.password, requestor=identity, access_code=body.code)
    return MessageResponse(message="User password was successfully updated.")


@router.post("/auth/user/code", response_model=AccessCodeResponse)
def create_access_code(
    request: Request,
    body: UsernameRequest,
    _admin: Identity = Depends(require_admin),
) -> AccessCodeResponse:
    return AccessCodeResponse(code=_auth(request).create_temp_access_code(body.username))


@router.post("/auth/user/promote", response_model=MessageResponse)
def promote(request: Request, body: UsernameRequest, _admin: Identity = Depends(require_admin)) -> MessageResponse:
    _auth(request).promote(body.username)
    return MessageResponse(message=f"User {body.username} is now an admin.")


@router.post("/auth/user/demote", response_model=MessageResponse)
def demote(request: Request, body: UsernameRequest, admin: Identity = Depends(require_admin)) -> MessageResponse:
    _auth(request).demote(body.username, admin)
    return MessageResponse(message=f"User {body.username} is no longer an admin.")


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(request: Request, _admin: Identity = Depends(require_admin)) -> list[UserResponse]:
    return [UserResponse.from_identity(u) for u in _auth(request).list_users()]
