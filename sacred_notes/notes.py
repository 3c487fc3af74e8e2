"""
Note functions for Sacred Notes.

CRUD and query operations over verse-range-scoped notes.
"""

import sqlite3
from typing import Any

import structlog

from .db import Database, placeholders
from .models import Note, NoteInput, NoteMetadata, NoteSearchResult
from .utils import (
    NotFoundError,
    ValidationError,
    new_id,
    now_iso,
    require_fields,
    validate_book,
    validate_content_size,
    validate_note_type,
    validate_title,
)

logger = structlog.get_logger(__name__)

METADATA_COLUMNS = (
    "id, book, start_chapter, start_verse, end_chapter, end_verse, title, type, "
    "primary_topic_id, series_id, created_at, updated_at"
)

REQUIRED_NOTE_FIELDS = {"book": "book", "start_chapter": "startChapter", "end_chapter": "endChapter"}


def row_to_note(row: sqlite3.Row) -> Note:
    return Note.model_validate(dict(row))


def fts_query(text: str) -> str:
    """Quote each term so user input is never parsed as FTS5 syntax."""
    terms = [t.replace('"', "") for t in text.split()]
    return " ".join(f'"{t}"' for t in terms if t)


def _fetch_note(db: Database, note_id: str) -> sqlite3.Row:
    row = db.fetchone("SELECT * FROM notes WHERE id = ?", (note_id,))
    if row is None:
        raise NotFoundError("Note not found")
    return row


def list_notes(db: Database, limit: int | None = None, offset: int = 0) -> dict[str, Any]:
    """List notes, most recently updated first."""
    rows = db.fetchall(
        "SELECT * FROM notes ORDER BY updated_at DESC LIMIT ? OFFSET ?",
        (limit if limit is not None else -1, offset),
    )
    total = db.scalar("SELECT COUNT(*) FROM notes")
    return {"notes": [row_to_note(r) for r in rows], "total": total, "limit": limit, "offset": offset}


def get_note(db: Database, note_id: str) -> Note:
    return row_to_note(_fetch_note(db, note_id))


def get_chapter_notes(db: Database, book: str, chapter: int) -> list[Note]:
    """Notes whose range overlaps the given chapter."""
    rows = db.fetchall(
        """SELECT * FROM notes
           WHERE book = ? AND start_chapter <= ? AND end_chapter >= ?
           ORDER BY start_chapter, start_verse""",
        (book.upper(), chapter, chapter),
    )
    return [row_to_note(r) for r in rows]


def get_book_notes(db: Database, book: str) -> list[Note]:
    rows = db.fetchall(
        "SELECT * FROM notes WHERE book = ? ORDER BY start_chapter, start_verse",
        (book.upper(),),
    )
    return [row_to_note(r) for r in rows]


def create_note(db: Database, data: NoteInput) -> Note:
    """Create a note.

    Requires book, startChapter and endChapter. The id is generated unless
    one is supplied (used by import and restore).

    Raises:
        ValidationError: If required fields are missing or invalid
    """
    values = data.model_dump()
    require_fields(values, REQUIRED_NOTE_FIELDS)

    book = validate_book(data.book)
    note_type = validate_note_type(data.type or "note")
    title = validate_title(data.title or "")
    content = validate_content_size(data.content or "")
    _validate_range(data.start_chapter, data.start_verse, data.end_chapter, data.end_verse)
    _check_references(db, data.primary_topic_id, data.series_id)

    note_id = data.id or new_id()
    now = now_iso()
    db.execute(
        """INSERT INTO notes (id, book, start_chapter, start_verse, end_chapter, end_verse,
                              title, content, type, primary_topic_id, series_id, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            note_id, book, data.start_chapter, data.start_verse, data.end_chapter, data.end_verse,
            title, content, note_type, data.primary_topic_id, data.series_id, now, now,
        ),
    )
    logger.info("note_created", id=note_id, book=book, chapter=data.start_chapter, type=note_type)
    return get_note(db, note_id)


def update_note(db: Database, note_id: str, data: NoteInput) -> Note:
    """Merge the supplied fields over the stored note and bump updated_at."""
    existing = get_note(db, note_id)
    changes = data.model_dump(exclude_unset=True, exclude={"id", "created_at", "updated_at"})
    merged = existing.model_copy(update=changes)

    if not merged.book or merged.start_chapter is None or merged.end_chapter is None:
        require_fields(merged.model_dump(), REQUIRED_NOTE_FIELDS)

    book = validate_book(merged.book)
    validate_note_type(merged.type)
    validate_title(merged.title or "")
    validate_content_size(merged.content or "")
    _validate_range(merged.start_chapter, merged.start_verse, merged.end_chapter, merged.end_verse)
    _check_references(db, merged.primary_topic_id, merged.series_id)

    db.execute(
        """UPDATE notes SET book = ?, start_chapter = ?, start_verse = ?, end_chapter = ?, end_verse = ?,
                            title = ?, content = ?, type = ?, primary_topic_id = ?, series_id = ?, updated_at = ?
           WHERE id = ?""",
        (
            book, merged.start_chapter, merged.start_verse, merged.end_chapter, merged.end_verse,
            merged.title or "", merged.content or "", merged.type, merged.primary_topic_id,
            merged.series_id, now_iso(), note_id,
        ),
    )
    logger.info("note_updated", id=note_id, fields=sorted(changes))
    return get_note(db, note_id)


def delete_note(db: Database, note_id: str) -> None:
    cursor = db.execute("DELETE FROM notes WHERE id = ?", (note_id,))
    if cursor.rowcount == 0:
        raise NotFoundError("Note not found")
    logger.info("note_deleted", id=note_id)


def _check_references(db: Database, primary_topic_id: str | None, series_id: str | None) -> None:
    if primary_topic_id and db.fetchone("SELECT id FROM topics WHERE id = ?", (primary_topic_id,)) is None:
        raise ValidationError("Topic not found")
    if series_id and db.fetchone("SELECT id FROM series WHERE id = ?", (series_id,)) is None:
        raise ValidationError("Series not found")


def _validate_range(start_chapter: int, start_verse: int | None, end_chapter: int, end_verse: int | None) -> None:
    if start_chapter < 1 or end_chapter < 1:
        raise ValidationError("Chapters must be positive")
    if end_chapter < start_chapter:
        raise ValidationError("endChapter cannot be before startChapter")
    if (
        start_chapter == end_chapter
        and start_verse is not None
        and end_verse is not None
        and end_verse < start_verse
    ):
        raise ValidationError("endVerse cannot be before startVerse")


# ============== Metadata & summaries ==============

def get_note_metadata(db: Database, note_id: str) -> NoteMetadata:
    row = db.fetchone(f"SELECT {METADATA_COLUMNS} FROM notes WHERE id = ?", (note_id,))
    if row is None:
        raise NotFoundError("Note not found")
    return NoteMetadata.model_validate(dict(row))


def list_notes_metadata(
    db: Database,
    book: str | None = None,
    note_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    """List notes without their content, optionally filtered by book and type."""
    conditions: list[str] = []
    params: list[Any] = []
    if book:
        conditions.append("book = ?")
        params.append(book.upper())
    if note_type:
        conditions.append("type = ?")
        params.append(note_type)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    rows = db.fetchall(
        f"SELECT {METADATA_COLUMNS} FROM notes {where} ORDER BY updated_at DESC LIMIT ? OFFSET ?",
        (*params, limit, offset),
    )
    total = db.scalar(f"SELECT COUNT(*) FROM notes {where}", params)
    return {
        "notes": [NoteMetadata.model_validate(dict(r)) for r in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
        "filters": {"book": book.upper() if book else None, "type": note_type},
    }


def get_notes_summary(db: Database) -> dict[str, Any]:
    """Totals by type and book plus the five most recently updated notes."""
    by_type = db.fetchall("SELECT type, COUNT(*) AS count FROM notes GROUP BY type")
    by_book = db.fetchall("SELECT book, COUNT(*) AS count FROM notes GROUP BY book ORDER BY count DESC")
    recent = db.fetchall("SELECT * FROM notes ORDER BY updated_at DESC LIMIT 5")
    return {
        "total": db.scalar("SELECT COUNT(*) FROM notes"),
        "byType": {r["type"]: r["count"] for r in by_type},
        "byBook": {r["book"]: r["count"] for r in by_book},
        "recentlyUpdated": [row_to_note(r) for r in recent],
    }


def get_books_with_notes(db: Database) -> list[dict[str, Any]]:
    rows = db.fetchall("SELECT book, COUNT(*) AS count FROM notes GROUP BY book ORDER BY book")
    return [{"book": r["book"], "count": r["count"]} for r in rows]


def search_notes(db: Database, query: str, limit: int = 20) -> list[NoteSearchResult]:
    """Full-text search over note titles and content, best matches first."""
    if not query or len(query.strip()) < 2:
        return []

    rows = db.fetchall(
        """SELECT n.*, snippet(notes_fts, 1, '<mark>', '</mark>', '...', 30) AS snippet
           FROM notes_fts
           JOIN notes n ON n.rowid = notes_fts.rowid
           WHERE notes_fts MATCH ?
           ORDER BY rank
           LIMIT ?""",
        (fts_query(query), limit),
    )
    return [NoteSearchResult.model_validate(dict(r)) for r in rows]


# ============== Topic assignment ==============

def get_note_topics(db: Database, note_id: str) -> dict[str, Any]:
    note = get_note_metadata(db, note_id)
    rows = db.fetchall("SELECT topic_id FROM note_tags WHERE note_id = ? ORDER BY topic_id", (note_id,))
    return {"noteId": note_id, "primaryTopicId": note.primary_topic_id, "tags": [r["topic_id"] for r in rows]}


def get_note_tag_ids(db: Database, note_id: str) -> list[str]:
    return [r["topic_id"] for r in db.fetchall("SELECT topic_id FROM note_tags WHERE note_id = ?", (note_id,))]


def set_note_topics(
    db: Database,
    note_id: str,
    primary_topic_id: str | None = None,
    tag_ids: list[str] | None = None,
) -> dict[str, Any]:
    """Set a note's primary topic and replace its secondary topic tags."""
    get_note_metadata(db, note_id)
    wanted = [t for t in [primary_topic_id, *(tag_ids or [])] if t]
    if wanted:
        found = db.fetchall(f"SELECT id FROM topics WHERE id IN ({placeholders(wanted)})", wanted)
        missing = set(wanted) - {r["id"] for r in found}
        if missing:
            raise ValidationError(f"Topic not found: {', '.join(sorted(missing))}")

    with db.transaction() as conn:
        conn.execute(
            "UPDATE notes SET primary_topic_id = ?, updated_at = ? WHERE id = ?",
            (primary_topic_id, now_iso(), note_id),
        )
        if tag_ids is not None:
            conn.execute("DELETE FROM note_tags WHERE note_id = ?", (note_id,))
            conn.executemany(
                "INSERT OR IGNORE INTO note_tags (note_id, topic_id) VALUES (?, ?)",
                [(note_id, t) for t in tag_ids],
            )
    return get_note_topics(db, note_id)
