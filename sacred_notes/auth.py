"""
Authentication functions for Sacred Notes.

Single-user password auth for hosted deployments. When no password is
configured, auth is disabled and every request is allowed.
"""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from .config import settings
from .db import Database
from .utils import AuthenticationError, ValidationError

logger = structlog.get_logger(__name__)


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def is_auth_enabled() -> bool:
    return bool(settings.auth_password)


def check_password(candidate: str | None, expected: str | None) -> bool:
    """Constant-time password comparison."""
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def login(db: Database, password: str | None) -> dict[str, Any]:
    """Check the password and open a session.

    Returns the new session id and its expiry.

    Raises:
        ValidationError: If no password is configured
        AuthenticationError: If the password is wrong
    """
    if not is_auth_enabled():
        raise ValidationError("Authentication not configured")
    if not check_password(password, settings.auth_password):
        logger.warning("login_failed")
        raise AuthenticationError("Invalid password")

    session_id = secrets.token_hex(32)
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(days=settings.session_days)
    db.execute(
        "INSERT INTO auth_sessions (id, created_at, expires_at) VALUES (?, ?, ?)",
        (session_id, _iso(now), _iso(expires_at)),
    )
    logger.info("login_succeeded", expires_at=_iso(expires_at))
    return {"sessionId": session_id, "expiresAt": _iso(expires_at), "maxAge": settings.session_days * 24 * 60 * 60}


def validate_session(db: Database, session_id: str | None) -> bool:
    if not session_id:
        return False
    row = db.fetchone(
        "SELECT id FROM auth_sessions WHERE id = ? AND expires_at > ?",
        (session_id, _iso(datetime.now(timezone.utc))),
    )
    return row is not None


def logout(db: Database, session_id: str | None) -> None:
    if session_id:
        db.execute("DELETE FROM auth_sessions WHERE id = ?", (session_id,))
        logger.info("logged_out")


def cleanup_expired_sessions(db: Database) -> int:
    cursor = db.execute(
        "DELETE FROM auth_sessions WHERE expires_at <= ?",
        (_iso(datetime.now(timezone.utc)),),
    )
    if cursor.rowcount:
        logger.info("expired_sessions_removed", count=cursor.rowcount)
    return cursor.rowcount


def auth_status(db: Database, session_id: str | None) -> dict[str, bool]:
    if not is_auth_enabled():
        return {"authenticated": True, "authRequired": False}
    return {"authenticated": validate_session(db, session_id), "authRequired": True}
