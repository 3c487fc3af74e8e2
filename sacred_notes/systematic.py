"""
Systematic theology functions for Sacred Notes.

Read access to the theology corpus (outline tree, chapters, scripture
index, search), link resolution for ``[[ST:...]]`` tokens, user
annotations and doctrine tags, and the sermon-facing doctrine views.
"""

import sqlite3
from typing import Any

import structlog

from .config import ANNOTATION_TYPES
from .db import Database
from .models import Annotation, AnnotationInput, ScriptureReference, SystematicEntry, SystematicTag
from .notes import fts_query, row_to_note
from .tree import build_tree
from .utils import (
    UUID_PATTERN,
    NotFoundError,
    ValidationError,
    find_reference_tokens,
    format_passage,
    format_reference,
    new_id,
    now_iso,
    parse_reference,
)

logger = structlog.get_logger(__name__)

ENTRY_COLUMNS = (
    "st.id, st.entry_type, st.part_number, st.chapter_number, st.section_letter, st.subsection_number, "
    "st.title, st.content, st.summary, st.parent_id, st.sort_order, st.word_count, st.created_at, st.updated_at"
)


def _row_to_entry(row: sqlite3.Row) -> SystematicEntry:
    return SystematicEntry.model_validate(dict(row))


def _row_to_ref(row: sqlite3.Row) -> ScriptureReference:
    return ScriptureReference.model_validate(dict(row))


def entry_link(entry: SystematicEntry) -> str | None:
    return format_reference(entry.chapter_number, entry.section_letter, entry.subsection_number)


def _ref_label(row: sqlite3.Row) -> str:
    return format_passage(row["book"], row["chapter"], row["start_verse"], row["chapter"], row["end_verse"])


# ============== Outline ==============

def get_tree(db: Database) -> list[dict[str, Any]]:
    """The whole outline as nested parts, chapters, sections and subsections."""
    rows = db.fetchall("SELECT * FROM systematic_theology ORDER BY sort_order")
    return build_tree(_row_to_entry(r).to_api() for r in rows)


def list_flat(db: Database) -> list[SystematicEntry]:
    rows = db.fetchall(
        "SELECT * FROM systematic_theology ORDER BY chapter_number, section_letter, subsection_number, sort_order"
    )
    return [_row_to_entry(r) for r in rows]


def _fetch_entry(db: Database, entry_id: str) -> SystematicEntry:
    row = db.fetchone("SELECT * FROM systematic_theology WHERE id = ?", (entry_id,))
    if row is None:
        raise NotFoundError("Entry not found")
    return _row_to_entry(row)


def _entry_detail(db: Database, entry: SystematicEntry) -> dict[str, Any]:
    children = db.fetchall("SELECT * FROM systematic_theology WHERE parent_id = ? ORDER BY sort_order", (entry.id,))
    refs = db.fetchall(
        """SELECT * FROM systematic_scripture_index WHERE systematic_id = ?
           ORDER BY is_primary DESC, book, chapter, start_verse""",
        (entry.id,),
    )
    return {
        **entry.to_api(),
        "linkSyntax": entry_link(entry),
        "children": [_row_to_entry(r).to_api() for r in children],
        "scriptureReferences": [_row_to_ref(r).to_api() for r in refs],
    }


def get_entry(db: Database, entry_id: str) -> dict[str, Any]:
    """One entry with its direct children and scripture references."""
    return _entry_detail(db, _fetch_entry(db, entry_id))


def _chapter_row(db: Database, chapter_number: int) -> SystematicEntry:
    row = db.fetchone(
        "SELECT * FROM systematic_theology WHERE entry_type = 'chapter' AND chapter_number = ?",
        (chapter_number,),
    )
    if row is None:
        raise NotFoundError(f"Chapter {chapter_number} not found")
    return _row_to_entry(row)


def _related_chapters(db: Database, chapter_number: int) -> list[sqlite3.Row]:
    return db.fetchall(
        """SELECT sr.target_chapter, sr.relationship_type, st.title
           FROM systematic_related sr
           JOIN systematic_theology st ON sr.target_chapter = st.chapter_number AND st.entry_type = 'chapter'
           WHERE sr.source_chapter = ?
           ORDER BY sr.target_chapter""",
        (chapter_number,),
    )


def _chapter_tags(db: Database, chapter_number: int) -> list[SystematicTag]:
    rows = db.fetchall(
        """SELECT t.* FROM systematic_tags t
           JOIN systematic_chapter_tags ct ON t.id = ct.tag_id
           WHERE ct.chapter_number = ?
           ORDER BY t.sort_order""",
        (chapter_number,),
    )
    return [SystematicTag.model_validate(dict(r)) for r in rows]


def _chapter_scripture(db: Database, chapter_number: int, primary_only: bool = False,
                       limit: int = -1) -> list[sqlite3.Row]:
    primary = "AND ssi.is_primary = 1" if primary_only else ""
    return db.fetchall(
        f"""SELECT ssi.* FROM systematic_scripture_index ssi
            JOIN systematic_theology st ON ssi.systematic_id = st.id
            WHERE st.chapter_number = ? {primary}
            ORDER BY ssi.is_primary DESC, ssi.book, ssi.chapter, ssi.start_verse
            LIMIT ?""",
        (chapter_number, limit),
    )


def get_chapter(db: Database, chapter_number: int) -> dict[str, Any]:
    """A chapter with its sections and subsections, scripture refs, related chapters and tags.

    Raises:
        NotFoundError: If no chapter has that number
    """
    chapter = _chapter_row(db, chapter_number)
    sections = db.fetchall(
        """SELECT * FROM systematic_theology
           WHERE chapter_number = ? AND entry_type IN ('section', 'subsection')
           ORDER BY sort_order""",
        (chapter_number,),
    )
    return {
        **chapter.to_api(),
        "linkSyntax": entry_link(chapter),
        "sections": [_row_to_entry(r).to_api() for r in sections],
        "scriptureReferences": [_row_to_ref(r).to_api() for r in _chapter_scripture(db, chapter_number)],
        "relatedChapters": [
            {"chapterNumber": r["target_chapter"], "title": r["title"], "relationshipType": r["relationship_type"]}
            for r in _related_chapters(db, chapter_number)
        ],
        "tags": [t.to_api(exclude={"chapter_count"}) for t in _chapter_tags(db, chapter_number)],
    }


# ============== Link resolution ==============

def resolve_reference(db: Database, text: str | None) -> SystematicEntry | None:
    """Find the entry a ``[[ST:...]]`` token (or bare ``Ch32:A.1``) points at.

    Matching is exact: a section reference never falls back to its chapter.
    Malformed or unknown references return None.
    """
    ref = parse_reference(text)
    if ref is None:
        return None

    if ref.subsection_number is not None:
        row = db.fetchone(
            """SELECT * FROM systematic_theology
               WHERE chapter_number = ? AND section_letter = ? AND subsection_number = ?""",
            (ref.chapter_number, ref.section_letter, ref.subsection_number),
        )
    elif ref.section_letter:
        row = db.fetchone(
            """SELECT * FROM systematic_theology
               WHERE chapter_number = ? AND section_letter = ? AND subsection_number IS NULL""",
            (ref.chapter_number, ref.section_letter),
        )
    else:
        row = db.fetchone(
            "SELECT * FROM systematic_theology WHERE chapter_number = ? AND entry_type = 'chapter'",
            (ref.chapter_number,),
        )
    return _row_to_entry(row) if row else None


def get_entry_by_reference(db: Database, reference: str) -> dict[str, Any]:
    """Look up an entry by id or by reference ("Ch32", "Ch32:A", "[[ST:Ch32:A.1]]").

    Raises:
        NotFoundError: If nothing matches
    """
    reference = (reference or "").strip()
    if UUID_PATTERN.match(reference):
        return get_entry(db, reference)

    entry = resolve_reference(db, reference)
    if entry is None:
        raise NotFoundError(f"Entry not found: {reference}")
    return _entry_detail(db, entry)


# ============== Passage lookup & search ==============

def find_for_passage(db: Database, book: str, chapter: int, verse: int | None = None) -> list[dict[str, Any]]:
    """Entries whose scripture index cites the passage, primary citations first."""
    params: list[Any] = [book.upper(), chapter]
    verse_filter = ""
    if verse is not None:
        verse_filter = "AND ssi.start_verse <= ? AND (ssi.end_verse >= ? OR ssi.end_verse IS NULL)"
        params += [verse, verse]

    rows = db.fetchall(
        f"""SELECT DISTINCT {ENTRY_COLUMNS}, ssi.is_primary, ssi.context_snippet
            FROM systematic_theology st
            JOIN systematic_scripture_index ssi ON st.id = ssi.systematic_id
            WHERE ssi.book = ? AND ssi.chapter = ? {verse_filter}
            ORDER BY ssi.is_primary DESC, st.chapter_number, st.sort_order""",
        params,
    )
    results = []
    for r in rows:
        entry = _row_to_entry(r)
        results.append({
            **entry.to_api(),
            "isPrimary": bool(r["is_primary"]),
            "contextSnippet": r["context_snippet"],
            "linkSyntax": entry_link(entry),
        })
    return results


def search(db: Database, query: str, limit: int = 20) -> list[dict[str, Any]]:
    """Full-text search over titles, content and summaries."""
    if not query or len(query.strip()) < 2:
        return []

    rows = db.fetchall(
        f"""SELECT {ENTRY_COLUMNS},
                   snippet(systematic_theology_fts, 1, '<mark>', '</mark>', '...', 30) AS snippet
            FROM systematic_theology_fts
            JOIN systematic_theology st ON st.rowid = systematic_theology_fts.rowid
            WHERE systematic_theology_fts MATCH ?
            ORDER BY rank
            LIMIT ?""",
        (fts_query(query), limit),
    )
    return [{**_row_to_entry(r).to_api(), "snippet": r["snippet"]} for r in rows]


def get_summary(db: Database) -> dict[str, int]:
    counts = {r["entry_type"]: r["count"] for r in db.fetchall(
        "SELECT entry_type, COUNT(*) AS count FROM systematic_theology GROUP BY entry_type"
    )}
    return {
        "totalEntries": sum(counts.values()),
        "parts": counts.get("part", 0),
        "chapters": counts.get("chapter", 0),
        "sections": counts.get("section", 0),
        "subsections": counts.get("subsection", 0),
        "scriptureReferences": db.scalar("SELECT COUNT(*) FROM systematic_scripture_index"),
        "annotations": db.scalar("SELECT COUNT(*) FROM systematic_annotations"),
    }


# ============== Tags ==============

def list_tags(db: Database) -> list[SystematicTag]:
    rows = db.fetchall(
        """SELECT t.*, COUNT(ct.chapter_number) AS chapter_count
           FROM systematic_tags t
           LEFT JOIN systematic_chapter_tags ct ON t.id = ct.tag_id
           GROUP BY t.id
           ORDER BY t.sort_order"""
    )
    return [SystematicTag.model_validate(dict(r)) for r in rows]


def chapters_by_tag(db: Database, tag_id: str) -> list[SystematicEntry]:
    rows = db.fetchall(
        """SELECT st.* FROM systematic_theology st
           JOIN systematic_chapter_tags ct ON st.chapter_number = ct.chapter_number
           WHERE ct.tag_id = ? AND st.entry_type = 'chapter'
           ORDER BY st.chapter_number""",
        (tag_id,),
    )
    return [_row_to_entry(r) for r in rows]


# ============== Annotations ==============

def add_annotation(db: Database, entry_id: str, data: AnnotationInput) -> Annotation:
    """Attach a highlight or note to an entry.

    Raises:
        NotFoundError: If the entry does not exist
        ValidationError: If the annotation type is not highlight or note
    """
    if db.fetchone("SELECT id FROM systematic_theology WHERE id = ?", (entry_id,)) is None:
        raise NotFoundError("Systematic theology entry not found")
    if data.annotation_type not in ANNOTATION_TYPES:
        raise ValidationError("Invalid annotation type")

    annotation_id = new_id()
    now = now_iso()
    db.execute(
        """INSERT INTO systematic_annotations (id, systematic_id, annotation_type, color, content,
                                               text_selection, position_start, position_end, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            annotation_id, entry_id, data.annotation_type, data.color, data.content,
            data.text_selection, data.position_start, data.position_end, now, now,
        ),
    )
    logger.info("annotation_added", id=annotation_id, entry_id=entry_id, type=data.annotation_type)
    row = db.fetchone("SELECT * FROM systematic_annotations WHERE id = ?", (annotation_id,))
    return Annotation.model_validate(dict(row))


def list_annotations(db: Database, entry_id: str) -> list[Annotation]:
    rows = db.fetchall(
        "SELECT * FROM systematic_annotations WHERE systematic_id = ? ORDER BY position_start, created_at",
        (entry_id,),
    )
    return [Annotation.model_validate(dict(r)) for r in rows]


def delete_annotation(db: Database, annotation_id: str) -> None:
    cursor = db.execute("DELETE FROM systematic_annotations WHERE id = ?", (annotation_id,))
    if cursor.rowcount == 0:
        raise NotFoundError("Annotation not found")
    logger.info("annotation_deleted", id=annotation_id)


# ============== Notes linking to the corpus ==============

def _notes_linking_chapter(db: Database, chapter_number: int, limit: int = -1) -> list[sqlite3.Row]:
    """Notes linking the chapter itself or any of its sections, newest first."""
    return db.fetchall(
        """SELECT * FROM notes
           WHERE content LIKE ? OR content LIKE ?
           ORDER BY updated_at DESC
           LIMIT ?""",
        (f"%[[ST:Ch{chapter_number}]]%", f"%[[ST:Ch{chapter_number}:%", limit),
    )


def referencing_notes(db: Database, entry_id: str) -> list[dict[str, Any]]:
    """Notes whose body links to the entry.

    For a chapter this includes notes that link any of its sections.
    Parts have no link token, so they return an empty list.
    """
    entry = _fetch_entry(db, entry_id)
    token = entry_link(entry)
    if token is None:
        return []

    if entry.section_letter is None:
        rows = _notes_linking_chapter(db, entry.chapter_number)
    else:
        rows = db.fetchall(
            "SELECT * FROM notes WHERE content LIKE ? ORDER BY updated_at DESC",
            (f"%{token}%",),
        )
    return [
        row_to_note(r).to_api(include={"id", "book", "start_chapter", "start_verse", "end_chapter", "end_verse",
                                       "title", "type", "updated_at"})
        for r in rows
    ]


# ============== Sermon-facing views ==============

def summarize_for_sermon(db: Database, chapter_number: int) -> dict[str, Any]:
    """Key points, primary scriptures and related doctrines of a chapter."""
    chapter = _chapter_row(db, chapter_number)
    sections = db.fetchall(
        "SELECT * FROM systematic_theology WHERE chapter_number = ? AND entry_type = 'section' ORDER BY sort_order",
        (chapter_number,),
    )
    scriptures = _chapter_scripture(db, chapter_number, primary_only=True, limit=10)
    return {
        "title": chapter.title,
        "chapterNumber": chapter_number,
        "summary": chapter.summary or "No summary available",
        "keyPoints": [{"letter": s["section_letter"], "title": s["title"], "summary": s["summary"]} for s in sections],
        "keyScriptures": [{"reference": _ref_label(s), "context": s["context_snippet"]} for s in scriptures],
        "relatedDoctrines": [
            {"chapter": r["target_chapter"], "title": r["title"]} for r in _related_chapters(db, chapter_number)
        ],
        "linkSyntax": entry_link(chapter),
    }


def explain_simply(db: Database, chapter_number: int) -> dict[str, Any]:
    chapter = _chapter_row(db, chapter_number)
    sections = db.fetchall(
        "SELECT title FROM systematic_theology WHERE chapter_number = ? AND entry_type = 'section' ORDER BY sort_order",
        (chapter_number,),
    )
    return {
        "title": chapter.title,
        "chapterNumber": chapter_number,
        "summary": chapter.summary,
        "mainPoints": [s["title"] for s in sections],
        "instruction": (
            "Use the title, summary, and main points above to provide a simple, jargon-free explanation "
            "of this doctrine that would be accessible to someone new to theology."
        ),
    }


def extract_doctrines_from_note(db: Database, note_id: str) -> dict[str, Any]:
    """Doctrine links already in a note plus entries citing its passage."""
    row = db.fetchone("SELECT * FROM notes WHERE id = ?", (note_id,))
    if row is None:
        raise NotFoundError(f"Note not found: {note_id}")
    note = row_to_note(row)

    suggested = db.fetchall(
        f"""SELECT DISTINCT {ENTRY_COLUMNS}, ssi.is_primary
            FROM systematic_theology st
            JOIN systematic_scripture_index ssi ON st.id = ssi.systematic_id
            WHERE ssi.book = ? AND ssi.chapter = ?
            ORDER BY ssi.is_primary DESC, st.chapter_number
            LIMIT 10""",
        (note.book, note.start_chapter),
    )
    return {
        "note": {"id": note.id, "title": note.title, "passage": f"{note.book} {note.start_chapter}"},
        "existingDoctrineLinks": find_reference_tokens(note.content),
        "suggestedDoctrines": [
            {**_row_to_entry(d).to_api(), "isPrimary": bool(d["is_primary"]), "linkSyntax": entry_link(_row_to_entry(d))}
            for d in suggested
        ],
    }


def doctrine_study_bundle(db: Database, chapter_number: int) -> dict[str, Any]:
    """Everything needed to study one doctrine chapter in a single payload."""
    chapter = _chapter_row(db, chapter_number)
    sections = db.fetchall(
        "SELECT * FROM systematic_theology WHERE chapter_number = ? AND entry_type = 'section' ORDER BY sort_order",
        (chapter_number,),
    )
    refs = _chapter_scripture(db, chapter_number, limit=50)
    related = _related_chapters(db, chapter_number)
    tags = _chapter_tags(db, chapter_number)
    linked = _notes_linking_chapter(db, chapter_number, limit=20)
    annotations = db.fetchall(
        """SELECT sa.* FROM systematic_annotations sa
           JOIN systematic_theology st ON sa.systematic_id = st.id
           WHERE st.chapter_number = ?
           ORDER BY sa.created_at DESC""",
        (chapter_number,),
    )

    return {
        "chapter": {
            "id": chapter.id,
            "number": chapter_number,
            "title": chapter.title,
            "summary": chapter.summary,
            "linkSyntax": entry_link(chapter),
        },
        "sections": [
            {
                "id": s["id"],
                "letter": s["section_letter"],
                "title": s["title"],
                "summary": s["summary"],
                "linkSyntax": format_reference(chapter_number, s["section_letter"]),
            }
            for s in sections
        ],
        "scriptureReferences": [
            {**_row_to_ref(r).to_api(include={"book", "chapter", "start_verse", "end_verse", "is_primary"}),
             "reference": _ref_label(r), "context": r["context_snippet"]}
            for r in refs
        ],
        "relatedChapters": [
            {"number": r["target_chapter"], "title": r["title"], "linkSyntax": format_reference(r["target_chapter"])}
            for r in related
        ],
        "tags": [{"id": t.id, "name": t.name, "color": t.color} for t in tags],
        "linkedNotes": [
            {
                "id": n["id"], "book": n["book"], "startChapter": n["start_chapter"],
                "startVerse": n["start_verse"], "title": n["title"], "type": n["type"],
            }
            for n in linked
        ],
        "annotations": [
            {
                "id": a["id"], "type": a["annotation_type"], "color": a["color"],
                "content": a["content"], "textSelection": a["text_selection"],
            }
            for a in annotations
        ],
        "counts": {
            "sections": len(sections),
            "scriptureRefs": len(refs),
            "relatedChapters": len(related),
            "linkedNotes": len(linked),
            "annotations": len(annotations),
        },
    }
