"""
auth/service.py -- Login, session verification/revocation, and account management.

Session protocol:
  Each user row holds an integer session counter (iat). Issuing a token first
  advances the counter in the store and only then signs a token carrying the
  new value, so a returned token is valid immediately. verify() checks the
  signature and then compares the claim with the stored counter; any later
  login, renew, logout, or password rotation moves the counter and every
  older token stops verifying, whatever its stated expiry.

  The counter is shared by all of a user's sessions: a second login
  supersedes the first.

Password recovery:
  An admin creates a temporary access code for a user. The user may then set
  a new password by presenting the code within access_code_expiration_ms.
  The code is cleared on use, so it cannot be replayed.

All methods are synchronous (SQLAlchemy + bcrypt). FastAPI runs the routes
that call them in its thread pool.

Layer rule: no imports from api/ or storage/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from auth.models import Identity, User
from auth.store import UserStore
from auth.tokens import (
    access_codes_match,
    burn_password_check,
    create_access_token,
    decode_access_token,
    generate_access_code,
    hash_password,
    verify_password,
)
from core.errors import AuthError, PermissionDeniedError

logger = logging.getLogger("pss.auth")


class AuthService:
    def __init__(
        self,
        store: UserStore,
        access_code_expiration_ms: int,
        token_expire_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.access_code_expiration_ms = access_code_expiration_ms
        self.token_expire_seconds = token_expire_seconds
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> str:
        """Check credentials and open a new session, superseding any previous one.

        Unknown usernames and wrong passwords fail with the same message and
        (through the dummy bcrypt run) roughly the same latency.
        """
        user = self.store.get_by_username(username)
        if user is None:
            burn_password_check(password)
            raise AuthError("Invalid credentials!")
        if not verify_password(password, user.hashed_password):
            raise AuthError("Invalid credentials!")
        token = self._issue_token(username)
        logger.info("User %s logged in", username)
        return token

    def verify(self, token: str) -> Identity:
        claims = decode_access_token(token)
        user = self.store.get_by_username(claims["username"])
        if user is None or user.iat == 0 or user.iat != claims["iat"]:
            raise AuthError("Session was invalidated!")
        return Identity(username=user.username, admin=user.admin)

    def logout(self, username: str) -> None:
        """Revoke every outstanding token for the user, including the caller's."""
        if not self.store.set_iat(username, 0):
            raise AuthError("User not found!")
        logger.info("User %s logged out", username)

    def renew(self, username: str) -> str:
        """Issue a fresh token; the one used to call this stops verifying."""
        return self._issue_token(username)

    def _issue_token(self, username: str) -> str:
        iat = self.store.next_iat(username, floor=self._now_ms())
        if iat is None:
            raise AuthError("User not found!")
        return create_access_token(username, iat, self.token_expire_seconds)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def register(self, username: str, password: str, admin: bool) -> None:
        """Create an account. The caller has already checked for an admin identity."""
        self.store.create_user(User(username=username, hashed_password=hash_password(password), admin=admin))
        logger.info("Registered %s %s", "admin" if admin else "user", username)

    def list_users(self) -> list[Identity]:
        return [Identity(username=u.username, admin=u.admin) for u in self.store.list_users()]

    def delete_user(self, username: str, requestor: Identity, force: bool = False) -> None:
        """Delete an account.

        Allowed for admins and for the account owner. Admin accounts are
        protected: deleting one requires force, even for the admin themself.
        """
        if not requestor.admin and requestor.username != username:
            raise PermissionDeniedError("User lacks proper permissions to perform this operation!")
        target = self._require_user(username)
        if target.admin and not force:
            raise PermissionDeniedError("Admin accounts can only be deleted with force!")
        self.store.delete_user(username)
        logger.info("User %s deleted by %s", username, requestor.username)

    def update_password(
        self,
        username: str,
        new_password: str,
        requestor: Identity | None = None,
        access_code: str | None = None,
    ) -> None:
        """Rotate a password.

        Two authorization modes:
          - requestor is an admin: unconditional.
          - otherwise: access_code must match the stored code (case-insensitive)
            and must not be older than access_code_expiration_ms. A non-admin
            requestor may only rotate their own password.

        Success clears the access code and revokes every session of the user.
        On the access-code path an unknown username fails exactly like a wrong
        code, so the public recovery route does not reveal which accounts exist.
        """
        if requestor is not None and requestor.admin:
            self._require_user(username)
        else:
            if requestor is not None and requestor.username != username:
                raise PermissionDeniedError("User lacks proper permissions to perform this operation!")
            target = self.store.get_by_username(username)
            if target is None:
                raise AuthError("Invalid access code!")
            self._check_access_code(target, access_code)
        self.store.update_password(username, hash_password(new_password))
        logger.info("Password of %s was rotated", username)

    def _check_access_code(self, user: User, supplied: str | None) -> None:
        if not access_codes_match(user.access_code, supplied):
            raise AuthError("Invalid access code!")
        issued_at = user.access_code_issued_at or 0
        if self._now_ms() - issued_at > self.access_code_expiration_ms:
            raise AuthError("Access code is expired!")

    def create_temp_access_code(self, username: str) -> str:
        """Generate and store a new access code, replacing any previous one."""
        code = generate_access_code()
        if not self.store.set_access_code(username, code, self._now_ms()):
            raise AuthError("User not found!")
        logger.info("Access code issued for %s", username)
        return code

    def promote(self, username: str) -> None:
        target = self._require_user(username)
        if target.admin:
            raise PermissionDeniedError(f"User {username} is already an admin!")
        self.store.set_admin(username, True)
        logger.info("User %s promoted to admin", username)

    def demote(self, username: str, requestor: Identity) -> None:
        target = self._require_user(username)
        if not target.admin:
            raise PermissionDeniedError(f"User {username} is not an admin!")
        if requestor.username == username:
            raise PermissionDeniedError("Admins cannot demote themselves!")
        self.store.set_admin(username, False)
        logger.info("User %s demoted by %s", username, requestor.username)

    def _require_user(self, username: str) -> User:
        user = self.store.get_by_username(username)
        if user is None:
            raise AuthError("User not found!")
        return user
