"""
Study session functions for Sacred Notes.

An append-only log of what was studied (Bible chapters, doctrines,
notes) and the summaries computed from it.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from .config import SESSION_TYPES
from .db import Database
from .models import StudySession, StudySessionInput
from .utils import ValidationError, new_id, now_iso, require_fields

logger = structlog.get_logger(__name__)

TOP_REFERENCES_LIMIT = 10
RELATED_LIMIT = 20


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def _filters(session_type: str | None, start_date: str | None, end_date: str | None) -> tuple[str, list[Any]]:
    conditions: list[str] = []
    params: list[Any] = []
    if session_type:
        conditions.append("session_type = ?")
        params.append(session_type)
    if start_date:
        conditions.append("created_at >= ?")
        params.append(start_date)
    if end_date:
        conditions.append("created_at <= ?")
        params.append(end_date)
    return (f"WHERE {' AND '.join(conditions)}" if conditions else ""), params


def log_session(db: Database, data: StudySessionInput) -> StudySession:
    """Append one study session.

    Raises:
        ValidationError: If sessionType or referenceId is missing, or the type is unknown
    """
    require_fields(data.model_dump(), {"session_type": "sessionType", "reference_id": "referenceId"})
    if data.session_type not in SESSION_TYPES:
        raise ValidationError(f"Invalid sessionType. Must be one of: {', '.join(SESSION_TYPES)}")

    session_id = new_id()
    db.execute(
        """INSERT INTO study_sessions (id, session_type, reference_id, reference_label, duration_seconds, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (
            session_id, data.session_type, data.reference_id, data.reference_label or None,
            data.duration_seconds or None, now_iso(),
        ),
    )
    logger.debug("session_logged", id=session_id, type=data.session_type, reference=data.reference_id)
    row = db.fetchone("SELECT * FROM study_sessions WHERE id = ?", (session_id,))
    return StudySession.model_validate(dict(row))


def list_sessions(
    db: Database,
    session_type: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    """Sessions newest first, with the total for the same filters."""
    where, params = _filters(session_type, start_date, end_date)
    rows = db.fetchall(
        f"SELECT * FROM study_sessions {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
        (*params, limit, offset),
    )
    return {
        "sessions": [StudySession.model_validate(dict(r)).to_api() for r in rows],
        "total": db.scalar(f"SELECT COUNT(*) FROM study_sessions {where}", params),
        "limit": limit,
        "offset": offset,
    }


def _top_references(db: Database, session_type: str, since: str) -> list[dict[str, Any]]:
    rows = db.fetchall(
        """SELECT reference_id, MAX(reference_label) AS reference_label, COUNT(*) AS count
           FROM study_sessions
           WHERE session_type = ? AND created_at >= ?
           GROUP BY reference_id
           ORDER BY count DESC, reference_id
           LIMIT ?""",
        (session_type, since, TOP_REFERENCES_LIMIT),
    )
    return [{"referenceId": r["reference_id"], "referenceLabel": r["reference_label"], "count": r["count"]} for r in rows]


def get_summary(db: Database, days: int = 30) -> dict[str, Any]:
    """Aggregate the last ``days`` of study activity.

    Returns counts and distinct references per type, the ten most studied
    Bible chapters, doctrines and notes, and per-day counts for the last
    seven days.
    """
    now = datetime.now(timezone.utc)
    since = _iso(now - timedelta(days=days))
    week_start = (now - timedelta(days=7)).date().isoformat()

    by_type = db.fetchall(
        """SELECT session_type, COUNT(*) AS count, COUNT(DISTINCT reference_id) AS unique_count
           FROM study_sessions WHERE created_at >= ? GROUP BY session_type""",
        (since,),
    )
    daily = db.fetchall(
        """SELECT substr(created_at, 1, 10) AS date, COUNT(*) AS count
           FROM study_sessions
           WHERE created_at >= ?
           GROUP BY date
           ORDER BY date DESC""",
        (week_start,),
    )

    return {
        "period": {"days": days, "startDate": since},
        "byType": {r["session_type"]: r["count"] for r in by_type},
        "uniqueByType": {r["session_type"]: r["unique_count"] for r in by_type},
        "topBibleChapters": _top_references(db, "bible", since),
        "topDoctrines": _top_references(db, "doctrine", since),
        "topNotes": _top_references(db, "note", since),
        "dailyActivity": [{"date": r["date"], "count": r["count"]} for r in daily],
    }


def find_related(
    db: Database,
    book: str | None = None,
    chapter: int | None = None,
    doctrine_chapter: int | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """Earlier sessions in the same Bible book, or on the same doctrine chapter.

    Bible reference ids look like ``ROM:3``; doctrine ids are ``ch32`` or ``ch32-a``.
    """
    sessions: list[dict[str, Any]] = []
    if book and chapter:
        rows = db.fetchall(
            """SELECT * FROM study_sessions
               WHERE session_type = 'bible' AND reference_id LIKE ?
               ORDER BY created_at DESC LIMIT ?""",
            (f"{book}:%", RELATED_LIMIT),
        )
        sessions += [StudySession.model_validate(dict(r)).to_api() for r in rows]
    if doctrine_chapter:
        rows = db.fetchall(
            """SELECT * FROM study_sessions
               WHERE session_type = 'doctrine' AND (reference_id = ? OR reference_id LIKE ?)
               ORDER BY created_at DESC LIMIT ?""",
            (f"ch{doctrine_chapter}", f"ch{doctrine_chapter}-%", RELATED_LIMIT),
        )
        sessions += [StudySession.model_validate(dict(r)).to_api() for r in rows]
    return {"sessions": sessions}


def get_last_studied(db: Database, session_type: str, reference_id: str) -> dict[str, Any]:
    row = db.fetchone(
        """SELECT * FROM study_sessions WHERE session_type = ? AND reference_id = ?
           ORDER BY created_at DESC LIMIT 1""",
        (session_type, reference_id),
    )
    if row is None:
        return {"found": False, "lastSession": None, "totalTimesStudied": 0}
    count = db.scalar(
        "SELECT COUNT(*) FROM study_sessions WHERE session_type = ? AND reference_id = ?",
        (session_type, reference_id),
    )
    return {"found": True, "lastSession": StudySession.model_validate(dict(row)).to_api(), "totalTimesStudied": count}


def delete_older_than(db: Database, older_than: str | None) -> dict[str, Any]:
    if not older_than:
        raise ValidationError("olderThan query parameter required (ISO date string)")
    cursor = db.execute("DELETE FROM study_sessions WHERE created_at < ?", (older_than,))
    logger.info("sessions_pruned", deleted=cursor.rowcount, older_than=older_than)
    return {"deleted": cursor.rowcount, "message": f"Deleted {cursor.rowcount} sessions older than {older_than}"}
