"""
Backup functions for Sacred Notes.

Notes export/import (version 1 files), a full-data backup bundle
(version 2), bulk deletion and change tracking.
"""

import sqlite3
from typing import Any

import structlog

from .config import EXPORT_VERSION, FULL_EXPORT_VERSION, NOTE_TYPES
from .db import Database, check_foreign_keys
from .models import ImportResult, ImportRowError
from .notes import row_to_note
from .utils import ValidationError, now_iso

logger = structlog.get_logger(__name__)

# Tables in the full backup, in foreign-key order, with their columns.
FULL_BACKUP_TABLES: dict[str, tuple[str, ...]] = {
    "series": ("id", "name", "description", "created_at", "updated_at"),
    "topics": ("id", "name", "parent_id", "sort_order", "systematic_tag_id", "created_at", "updated_at"),
    "notes": (
        "id", "book", "start_chapter", "start_verse", "end_chapter", "end_verse", "title", "content",
        "type", "primary_topic_id", "series_id", "created_at", "updated_at",
    ),
    "note_tags": ("note_id", "topic_id"),
    "inline_tag_types": ("id", "name", "color", "icon", "is_default", "sort_order", "created_at"),
    "inline_tags": (
        "id", "note_id", "tag_type", "text_content", "html_fragment", "position_start", "position_end", "created_at",
    ),
    "systematic_annotations": (
        "id", "systematic_id", "annotation_type", "color", "content", "text_selection",
        "position_start", "position_end", "created_at", "updated_at",
    ),
}

# Tables keyed by a composite primary key rather than an id column
COMPOSITE_KEYS = {"note_tags": ("note_id", "topic_id")}


def export_notes(db: Database) -> dict[str, Any]:
    """Export every note, oldest first, in the versioned backup format."""
    rows = db.fetchall("SELECT * FROM notes ORDER BY created_at ASC")
    return {
        "version": EXPORT_VERSION,
        "exportedAt": now_iso(),
        "notes": [row_to_note(r).to_api() for r in rows],
    }


def import_notes(db: Database, payload: dict[str, Any]) -> ImportResult:
    """Upsert notes by id inside one transaction.

    A row that fails validation or violates a constraint is recorded in
    ``errors`` and skipped; the rest of the batch is still committed.

    Raises:
        ValidationError: If ``notes`` is missing or not a list
    """
    notes = payload.get("notes") if isinstance(payload, dict) else None
    if not isinstance(notes, list):
        raise ValidationError("Invalid import data: notes array required")

    inserted = 0
    updated = 0
    errors: list[ImportRowError] = []
    now = now_iso()

    with db.transaction() as conn:
        for index, note in enumerate(notes):
            note_id = note.get("id") if isinstance(note, dict) else None
            try:
                _check_import_row(note)
                conn.execute(f"SAVEPOINT import_row_{index}")
                try:
                    if _upsert_note(conn, note, now):
                        updated += 1
                    else:
                        inserted += 1
                except sqlite3.Error:
                    conn.execute(f"ROLLBACK TO import_row_{index}")
                    raise
                finally:
                    conn.execute(f"RELEASE import_row_{index}")
            except (ValidationError, sqlite3.Error) as e:
                logger.warning("import_row_failed", id=note_id, error=str(e))
                errors.append(ImportRowError(id=str(note_id) if note_id is not None else None, error=str(e)))

    logger.info("notes_imported", version=payload.get("version"), inserted=inserted, updated=updated, errors=len(errors))
    return ImportResult(success=True, inserted=inserted, updated=updated, errors=errors or None)


def _check_import_row(note: Any) -> None:
    if not isinstance(note, dict):
        raise ValidationError("Note must be an object")
    missing = [f for f in ("id", "book", "startChapter", "endChapter") if note.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if note.get("type", "note") not in NOTE_TYPES:
        raise ValidationError(f"Invalid note type '{note.get('type')}'")


def _upsert_note(conn: sqlite3.Connection, note: dict[str, Any], now: str) -> bool:
    """Write one imported note. Returns True when an existing row was updated."""
    values = (
        str(note["book"]).upper(),
        note["startChapter"],
        note.get("startVerse"),
        note["endChapter"],
        note.get("endVerse"),
        note.get("title") or "",
        note.get("content") or "",
        note.get("type") or "note",
    )
    existing = conn.execute("SELECT id FROM notes WHERE id = ?", (note["id"],)).fetchone()
    if existing:
        conn.execute(
            """UPDATE notes SET book = ?, start_chapter = ?, start_verse = ?, end_chapter = ?, end_verse = ?,
                                title = ?, content = ?, type = ?, updated_at = ?
               WHERE id = ?""",
            (*values, note.get("updatedAt") or now, note["id"]),
        )
        return True

    conn.execute(
        """INSERT INTO notes (id, book, start_chapter, start_verse, end_chapter, end_verse,
                              title, content, type, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (note["id"], *values, note.get("createdAt") or now, note.get("updatedAt") or now),
    )
    return False


def delete_all_notes(db: Database) -> dict[str, Any]:
    cursor = db.execute("DELETE FROM notes")
    logger.warning("all_notes_deleted", deleted=cursor.rowcount)
    return {"success": True, "deleted": cursor.rowcount}


def count_notes(db: Database) -> dict[str, int]:
    return {"count": db.scalar("SELECT COUNT(*) FROM notes")}


def last_modified(db: Database) -> dict[str, str | None]:
    return {"lastModified": db.scalar("SELECT MAX(updated_at) FROM notes")}


# ============== Full backup ==============

def full_export(db: Database) -> dict[str, Any]:
    """Export all user data (not the theology corpus) as a version 2 bundle."""
    data: dict[str, Any] = {"version": FULL_EXPORT_VERSION, "exportedAt": now_iso()}
    counts: dict[str, int] = {}
    for table, columns in FULL_BACKUP_TABLES.items():
        rows = db.fetchall(f"SELECT {', '.join(columns)} FROM {table}")
        data[table] = [dict(r) for r in rows]
        counts[table] = len(rows)
    data["counts"] = counts
    return data


def full_import(db: Database, payload: dict[str, Any]) -> dict[str, Any]:
    """Upsert a full backup bundle in one all-or-nothing transaction.

    Raises:
        ValidationError: If the payload is not a full backup
    """
    if not isinstance(payload, dict) or payload.get("version") != FULL_EXPORT_VERSION:
        raise ValidationError(f"Invalid backup: expected version {FULL_EXPORT_VERSION}")

    counts: dict[str, int] = {}
    with db.transaction() as conn:
        # Topics may reference parents that appear later in the file
        conn.execute("PRAGMA defer_foreign_keys = ON")
        for table, columns in FULL_BACKUP_TABLES.items():
            rows = payload.get(table) or []
            if not isinstance(rows, list):
                raise ValidationError(f"Invalid backup: {table} must be an array")
            for row in rows:
                _upsert_row(conn, table, columns, row)
            counts[table] = len(rows)
        check_foreign_keys(conn)

    logger.info("full_backup_imported", **counts)
    return {"success": True, "imported": counts}


def _upsert_row(conn: sqlite3.Connection, table: str, columns: tuple[str, ...], row: dict[str, Any]) -> None:
    keys = COMPOSITE_KEYS.get(table, ("id",))
    if any(row.get(k) is None for k in keys):
        raise ValidationError(f"Invalid backup: {table} row without {', '.join(keys)}")

    values = [row.get(c) for c in columns]
    updates = [c for c in columns if c not in keys]
    if updates:
        assignments = ", ".join(f"{c} = excluded.{c}" for c in updates)
        conflict = f"ON CONFLICT ({', '.join(keys)}) DO UPDATE SET {assignments}"
    else:
        conflict = f"ON CONFLICT ({', '.join(keys)}) DO NOTHING"
    conn.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)}) {conflict}",
        values,
    )
