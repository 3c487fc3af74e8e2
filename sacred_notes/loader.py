"""
Systematic theology corpus loader for Sacred Notes.

Imports the bundled theology JSON on startup when the theology table is
empty. The file holds ``systematic_theology`` entries plus optional
``scripture_index``, ``tags``, ``chapter_tags`` and ``related`` arrays.
"""

import json
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from .config import ENTRY_TYPES, settings
from .db import Database, check_foreign_keys
from .tree import build_tree, count_nodes
from .utils import ValidationError, now_iso

logger = structlog.get_logger(__name__)


def _entry_params(entry: dict[str, Any], now: str) -> tuple:
    if entry.get("entry_type") not in ENTRY_TYPES:
        raise ValidationError(f"Invalid entry_type for {entry.get('id')}: {entry.get('entry_type')}")
    return (
        entry["id"],
        entry["entry_type"],
        entry.get("part_number"),
        entry.get("chapter_number"),
        entry.get("section_letter"),
        entry.get("subsection_number"),
        entry["title"],
        entry.get("content"),
        entry.get("summary"),
        entry.get("parent_id"),
        entry.get("sort_order") or 0,
        entry.get("word_count") or 0,
        entry.get("created_at") or now,
        entry.get("updated_at") or now,
    )


def import_corpus(db: Database, data: dict[str, Any] | list[dict[str, Any]]) -> dict[str, int]:
    """Insert a parsed corpus in one transaction.

    Raises:
        TreeIntegrityError: If the entries' parent pointers form a cycle
        ValidationError: If an entry has an unknown entry_type
    """
    if isinstance(data, list):
        data = {"systematic_theology": data}
    entries = data.get("systematic_theology") or []

    # Rejects cyclic outlines before anything is written
    tree = build_tree(
        ({"id": e["id"], "parentId": e.get("parent_id"), "sortOrder": e.get("sort_order") or 0} for e in entries)
    )

    now = now_iso()
    with db.transaction() as conn:
        # Parents may appear after their children in the file
        conn.execute("PRAGMA defer_foreign_keys = ON")
        conn.executemany(
            """INSERT INTO systematic_theology (id, entry_type, part_number, chapter_number, section_letter,
                                                subsection_number, title, content, summary, parent_id,
                                                sort_order, word_count, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [_entry_params(e, now) for e in entries],
        )
        conn.executemany(
            """INSERT INTO systematic_scripture_index (id, systematic_id, book, chapter, start_verse, end_verse,
                                                       is_primary, context_snippet, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    r["id"], r["systematic_id"], str(r["book"]).upper(), r["chapter"], r.get("start_verse"),
                    r.get("end_verse"), 1 if r.get("is_primary") else 0, r.get("context_snippet"),
                    r.get("created_at") or now,
                )
                for r in data.get("scripture_index") or []
            ],
        )
        conn.executemany(
            """INSERT INTO systematic_tags (id, name, color, sort_order, created_at) VALUES (?, ?, ?, ?, ?)
               ON CONFLICT (id) DO UPDATE SET name = excluded.name, color = excluded.color,
                                              sort_order = excluded.sort_order""",
            [
                (t["id"], t["name"], t.get("color"), t.get("sort_order") or 0, t.get("created_at") or now)
                for t in data.get("tags") or []
            ],
        )
        conn.executemany(
            "INSERT OR IGNORE INTO systematic_chapter_tags (chapter_number, tag_id) VALUES (?, ?)",
            [(ct["chapter_number"], ct["tag_id"]) for ct in data.get("chapter_tags") or []],
        )
        conn.executemany(
            """INSERT OR IGNORE INTO systematic_related (id, source_chapter, target_chapter, relationship_type,
                                                         note, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            [
                (
                    r["id"], r["source_chapter"], r["target_chapter"], r.get("relationship_type") or "see_also",
                    r.get("note"), r.get("created_at") or now,
                )
                for r in data.get("related") or []
            ],
        )
        check_foreign_keys(conn)

    counts = {
        "entries": count_nodes(tree),
        "scriptureReferences": len(data.get("scripture_index") or []),
        "tags": len(data.get("tags") or []),
        "chapterTags": len(data.get("chapter_tags") or []),
        "related": len(data.get("related") or []),
    }
    logger.info("theology_corpus_imported", **counts)
    return counts


async def load_theology_if_needed(db: Database, path: Path | None = None) -> dict[str, int] | None:
    """Load the theology JSON file when the theology table is empty.

    Returns the import counts, or None when nothing was loaded.
    """
    path = path or settings.theology_data_path

    existing = db.scalar("SELECT COUNT(*) FROM systematic_theology")
    if existing:
        logger.debug("theology_load_skipped", reason="already_loaded", entries=existing)
        return None
    if not path.exists():
        logger.info("theology_load_skipped", reason="file_not_found", path=str(path))
        return None

    async with aiofiles.open(path, encoding="utf-8") as f:
        raw = await f.read()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid theology data file {path}: {e}") from e

    logger.info("theology_load_started", path=str(path))
    return import_corpus(db, data)
