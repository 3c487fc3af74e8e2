"""
Inline tag functions for Sacred Notes.

Tag types (illustration, application, key point, ...) and the tagged
spans extracted from note bodies for browsing and search.
"""

import re
import sqlite3
from typing import Any

import structlog

from .config import DEFAULT_INLINE_TAG_TYPES
from .db import Database
from .models import InlineTag, InlineTagInput, InlineTagType, InlineTagTypeInput
from .utils import (
    NotFoundError,
    ValidationError,
    new_id,
    now_iso,
    slugify,
    strip_html,
    validate_color,
)

logger = structlog.get_logger(__name__)

# Spans written by the editor: <span data-inline-tag="illustration">...</span>
INLINE_TAG_PATTERN = re.compile(
    r'<span\b[^>]*\bdata-inline-tag="([^"]+)"[^>]*>(.*?)</span>',
    re.IGNORECASE | re.DOTALL,
)

TAG_SELECT = """
    SELECT it.*, n.title AS note_title, n.book, n.start_chapter, n.start_verse, n.end_chapter, n.end_verse
    FROM inline_tags it
    JOIN notes n ON it.note_id = n.id
"""


def _row_to_type(row: sqlite3.Row) -> InlineTagType:
    return InlineTagType.model_validate(dict(row))


def _row_to_tag(row: sqlite3.Row) -> InlineTag:
    return InlineTag.model_validate(dict(row))


# ============== Tag types ==============

def list_types(db: Database) -> list[InlineTagType]:
    return [_row_to_type(r) for r in db.fetchall("SELECT * FROM inline_tag_types ORDER BY sort_order")]


def get_type(db: Database, type_id: str) -> InlineTagType:
    row = db.fetchone("SELECT * FROM inline_tag_types WHERE id = ?", (type_id,))
    if row is None:
        raise NotFoundError("Tag type not found")
    return _row_to_type(row)


def _check_unique_name(db: Database, name: str, exclude_id: str | None = None) -> None:
    row = db.fetchone("SELECT id FROM inline_tag_types WHERE LOWER(name) = LOWER(?)", (name,))
    if row is not None and row["id"] != exclude_id:
        raise ValidationError("A tag type with this name already exists")


def create_type(db: Database, data: InlineTagTypeInput) -> InlineTagType:
    """Create a custom tag type; its id is a slug of the name.

    Raises:
        ValidationError: On a missing name or color, a malformed color, or a
            name already in use
    """
    if not data.name or not data.name.strip() or not data.color:
        raise ValidationError("Missing required fields: name, color")
    name = data.name.strip()
    validate_color(data.color)
    _check_unique_name(db, name)

    type_id = slugify(name) or new_id()
    if db.fetchone("SELECT id FROM inline_tag_types WHERE id = ?", (type_id,)) is not None:
        type_id = f"{type_id}-{new_id()[:8]}"

    next_order = (db.scalar("SELECT MAX(sort_order) FROM inline_tag_types") or 0) + 1
    db.execute(
        """INSERT INTO inline_tag_types (id, name, color, icon, is_default, sort_order, created_at)
           VALUES (?, ?, ?, ?, 0, ?, ?)""",
        (type_id, name, data.color, data.icon, next_order, now_iso()),
    )
    logger.info("tag_type_created", id=type_id, name=name)
    return get_type(db, type_id)


def update_type(db: Database, type_id: str, data: InlineTagTypeInput) -> InlineTagType:
    existing = get_type(db, type_id)
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}

    if "name" in changes:
        if not changes["name"].strip():
            raise ValidationError("Tag type name is required")
        changes["name"] = changes["name"].strip()
        _check_unique_name(db, changes["name"], exclude_id=type_id)
    if "color" in changes:
        validate_color(changes["color"])

    merged = existing.model_copy(update=changes)
    db.execute(
        "UPDATE inline_tag_types SET name = ?, color = ?, icon = ?, sort_order = ? WHERE id = ?",
        (merged.name, merged.color, merged.icon, merged.sort_order, type_id),
    )
    logger.info("tag_type_updated", id=type_id, fields=sorted(changes))
    return get_type(db, type_id)


def delete_type(db: Database, type_id: str) -> None:
    """Delete a custom tag type and its tag instances.

    Raises:
        NotFoundError: If the type does not exist
        ValidationError: If the type is one of the defaults
    """
    if get_type(db, type_id).is_default:
        raise ValidationError("Cannot delete default tag types")
    db.execute("DELETE FROM inline_tag_types WHERE id = ?", (type_id,))
    logger.info("tag_type_deleted", id=type_id)


def seed_types(db: Database) -> list[InlineTagType]:
    """Restore the default tag types, overwriting any edits to them."""
    now = now_iso()
    with db.transaction() as conn:
        conn.executemany(
            """INSERT INTO inline_tag_types (id, name, color, icon, is_default, sort_order, created_at)
               VALUES (?, ?, ?, ?, 1, ?, ?)
               ON CONFLICT (id) DO UPDATE SET
                   name = excluded.name, color = excluded.color, icon = excluded.icon,
                   is_default = 1, sort_order = excluded.sort_order""",
            [(tid, name, color, icon, order, now) for tid, name, color, icon, order in DEFAULT_INLINE_TAG_TYPES],
        )
    return list_types(db)


# ============== Tag instances ==============

def list_tags(
    db: Database,
    tag_type: str | None = None,
    book: str | None = None,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[InlineTag]:
    """Browse tagged spans with their note's passage, in canonical order."""
    conditions: list[str] = []
    params: list[Any] = []
    if tag_type:
        conditions.append("it.tag_type = ?")
        params.append(tag_type)
    if book:
        conditions.append("n.book = ?")
        params.append(book.upper())
    if search:
        conditions.append("it.text_content LIKE ?")
        params.append(f"%{search}%")
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    rows = db.fetchall(
        f"{TAG_SELECT} {where} ORDER BY n.book, n.start_chapter, n.start_verse LIMIT ? OFFSET ?",
        (*params, limit, offset),
    )
    return [_row_to_tag(r) for r in rows]


def tags_by_type(db: Database) -> list[dict[str, Any]]:
    """Every tag type with its instance count (zero counts included)."""
    rows = db.fetchall(
        """SELECT itt.*, COUNT(it.id) AS count
           FROM inline_tag_types itt
           LEFT JOIN inline_tags it ON itt.id = it.tag_type
           GROUP BY itt.id
           ORDER BY itt.sort_order"""
    )
    return [{**_row_to_type(r).to_api(), "count": r["count"]} for r in rows]


def search_tags(db: Database, query: str | None, limit: int = 50) -> list[InlineTag]:
    if not query:
        raise ValidationError("Missing query parameter: q")
    rows = db.fetchall(
        f"{TAG_SELECT} WHERE it.text_content LIKE ? ORDER BY n.book, n.start_chapter, n.start_verse LIMIT ?",
        (f"%{query}%", limit),
    )
    return [_row_to_tag(r) for r in rows]


def get_note_tags(db: Database, note_id: str) -> list[InlineTag]:
    rows = db.fetchall(f"{TAG_SELECT} WHERE it.note_id = ? ORDER BY it.position_start", (note_id,))
    return [_row_to_tag(r) for r in rows]


def parse_inline_tags(content: str | None) -> list[InlineTagInput]:
    """Find the tagged spans in a note body, in document order."""
    tags: list[InlineTagInput] = []
    for match in INLINE_TAG_PATTERN.finditer(content or ""):
        text = strip_html(match.group(2)).strip()
        if not text:
            continue
        tags.append(InlineTagInput(
            tag_type=match.group(1),
            text_content=text,
            html_fragment=match.group(0),
            position_start=match.start(),
            position_end=match.end(),
        ))
    return tags


def replace_note_tags(db: Database, note_id: str, tags: list[InlineTagInput]) -> list[InlineTag]:
    """Replace all tag instances of a note. Spans of unknown types are skipped."""
    known = {r["id"] for r in db.fetchall("SELECT id FROM inline_tag_types")}
    now = now_iso()
    kept = [t for t in tags if t.tag_type in known]
    if len(kept) != len(tags):
        logger.warning("inline_tags_skipped", note_id=note_id, skipped=len(tags) - len(kept))

    with db.transaction() as conn:
        conn.execute("DELETE FROM inline_tags WHERE note_id = ?", (note_id,))
        conn.executemany(
            """INSERT INTO inline_tags (id, note_id, tag_type, text_content, html_fragment,
                                        position_start, position_end, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (new_id(), note_id, t.tag_type, t.text_content, t.html_fragment, t.position_start, t.position_end, now)
                for t in kept
            ],
        )
    return get_note_tags(db, note_id)


def sync_note_tags(db: Database, note_id: str, content: str | None) -> list[InlineTag]:
    """Re-extract a note's tagged spans after its body changed."""
    return replace_note_tags(db, note_id, parse_inline_tags(content))


def extract_tags(
    db: Database,
    tag_type: str,
    book: str | None = None,
    search: str | None = None,
    limit: int = 50,
) -> dict[str, Any]:
    """Collect spans of one type (illustrations, applications, ...) across notes."""
    tags = list_tags(db, tag_type=tag_type, book=book, search=search, limit=limit)
    return {
        "tagType": tag_type,
        "filters": {"book": book.upper() if book else None, "search": search},
        "total": len(tags),
        "tags": [t.to_api() for t in tags],
    }
