"""
auth/tokens.py -- JWT codec, password hashing, access codes, Basic auth parsing.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the username, the session counter
       (iat) they were issued under, and an expiry. Signature and expiry are
       checked here; whether the iat is still current is a store lookup done
       by AuthService.verify(). A valid signature alone never authenticates.

       The iat claim holds the session counter rather than a seconds
       timestamp. python-jose only requires iat to be an integer.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       lets AuthService.login() run bcrypt for unknown usernames too, so the
       response time does not reveal whether an account exists.

  Access codes: 6 characters from an alphabet without look-alike glyphs
       (no 0/O, 1/I/L), drawn with secrets.choice.

  SECRET_KEY: sourced from core.config.get_settings().

Layer rule: no imports from api/ or storage/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings
from core.errors import AuthError, ValidationError

logger = logging.getLogger("pss.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
ACCESS_CODE_LENGTH = 6

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only accepts up to 72 bytes; the API layer rejects longer
    passwords before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("pss_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison whose result is discarded (timing equalization)."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(username: str, iat: int, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for a session.

    Args:
        username:       Account the token authenticates.
        iat:            Session counter value the store holds for this user
                        at issue time.
        expire_seconds: Token lifetime. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "username": username,
        "iat": iat,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry and return the claims.

    Raises AuthError with a message that distinguishes an expired token from
    any other failure (bad signature, malformed token, missing claims).
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise AuthError("Token is expired!") from exc
    except JWTError as exc:
        raise AuthError("Invalid token!") from exc
    if not isinstance(payload.get("username"), str) or not isinstance(payload.get("iat"), int):
        raise AuthError("Invalid token!")
    return payload


# ---------------------------------------------------------------------------
# Access codes
# ---------------------------------------------------------------------------


def generate_access_code() -> str:
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH))


def access_codes_match(stored: str | None, supplied: str | None) -> bool:
    """Case-insensitive, constant-time comparison of two access codes."""
    if not stored or not supplied:
        return False
    return secrets.compare_digest(stored.upper().encode("utf-8"), supplied.strip().upper().encode("utf-8"))


# ---------------------------------------------------------------------------
# Basic auth
# ---------------------------------------------------------------------------


def parse_basic_auth(header: str | None) -> tuple[str, str]:
    """Split an 'Authorization: Basic <b64(user:pass)>' header into its credentials.

    The password may itself contain ':' -- only the first colon separates.
    Raises ValidationError when the header is absent or malformed.
    """
    if not header or not header.startswith("Basic "):
        raise ValidationError("Missing or malformed Authorization header!")
    try:
        decoded = base64.b64decode(header[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValidationError("Missing or malformed Authorization header!") from exc
    username, sep, password = decoded.partition(":")
    if not sep or not username:
        raise ValidationError("Missing or malformed Authorization header!")
    return username, password
