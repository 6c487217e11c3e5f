"""
Password hashing and JWT signing for the auth subsystem.
"""

from __future__ import annotations

import base64
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.hash import pbkdf2_sha256 as hasher

from .config import settings

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


class InvalidToken(Exception):
    pass


def hash_password(password: str) -> str:
    """Hash password with pbkdf2_sha256"""
    return hasher.hash(password)


def verify_password(password: str, hash: str | None) -> bool:
    """Verify password against hash"""
    if not hash:
        return False
    try:
        return hasher.verify(password, hash)
    except (ValueError, TypeError):
        return False


def password_problem(password: str) -> str | None:
    """Return a user facing message when the password is unacceptable."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"password must be at least {PASSWORD_MIN_LENGTH} characters"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"password must be at most {PASSWORD_MAX_LENGTH} characters"
    return None


def generate_token() -> str:
    """Generate a secure random token"""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("utf-8").rstrip("=")


def secure_link_token(project_name: str, rfi_number: str, now: datetime | None = None) -> str:
    """Readable prefix (``ABC-R001-26``) plus a random part, e.g. for client links."""
    letters = re.sub(r"[^A-Za-z]", "", project_name or "")[:3].upper().ljust(3, "X")
    digits = re.sub(r"\D", "", rfi_number or "").rjust(3, "0")[:3]
    year = (now or datetime.now(timezone.utc)).strftime("%y")
    return f"{letters}-R{digits}-{year}-{generate_token()}"


def sign_token(user_id: str, email: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "jti": str(uuid.uuid4()),
        "iss": settings.JWT_ISSUER,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_EXPIRE_MIN),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict[str, Any]:
    """Verify JWT token and return payload"""
    try:
        return jwt.decode(
            token, settings.JWT_SECRET, algorithms=["HS256"], issuer=settings.JWT_ISSUER
        )
    except JWTError as exc:
        logger.debug(f"Rejected JWT: {exc}")
        raise InvalidToken("Invalid token") from exc
