"""
Sermon preparation helpers for Sacred Notes.

Composite views that pull notes, doctrines and inline tags together for
a passage or topic, plus helpers that enrich notes with topics and
doctrine links. Doctrine suggestions come from the scripture index;
topic suggestions follow topics linked to the doctrines' tags.
"""

import sqlite3
from typing import Any

import structlog

from .db import Database, placeholders
from .inline_tags import TAG_SELECT, sync_note_tags
from .models import InlineTag, NoteInput, Topic
from .notes import create_note, fts_query, get_note, get_note_tag_ids, row_to_note
from .topics import get_topic
from .tree import descendant_ids
from .utils import find_reference_tokens, format_passage, format_reference, is_verse_in_range, now_iso, strip_html

logger = structlog.get_logger(__name__)

OUTLINE_POINTS = 3


# ============== Shared queries ==============

def _overlapping_notes(db: Database, book: str, start_chapter: int, end_chapter: int,
                       note_type: str | None = None, limit: int = -1) -> list[sqlite3.Row]:
    """Notes in ``book`` whose range overlaps the chapter span."""
    type_filter = "AND type = ?" if note_type else ""
    params: list[Any] = [book, end_chapter, start_chapter]
    if note_type:
        params.append(note_type)
    return db.fetchall(
        f"""SELECT * FROM notes
            WHERE book = ? AND start_chapter <= ? AND end_chapter >= ? {type_filter}
            ORDER BY start_chapter, start_verse
            LIMIT ?""",
        (*params, limit),
    )


def _passage_doctrines(db: Database, book: str, start_chapter: int, end_chapter: int,
                       primary_only: bool = False, limit: int = 20) -> list[sqlite3.Row]:
    """Doctrine chapters whose scripture index cites the chapter span, one row per chapter."""
    primary = "AND ssi.is_primary = 1" if primary_only else ""
    return db.fetchall(
        f"""SELECT st.chapter_number, MIN(st.id) AS id, MAX(ssi.is_primary) AS is_primary,
                   ch.title, ch.summary, MIN(ssi.context_snippet) AS context_snippet
            FROM systematic_scripture_index ssi
            JOIN systematic_theology st ON st.id = ssi.systematic_id
            JOIN systematic_theology ch ON ch.chapter_number = st.chapter_number AND ch.entry_type = 'chapter'
            WHERE ssi.book = ? AND ssi.chapter >= ? AND ssi.chapter <= ? {primary}
            GROUP BY st.chapter_number
            ORDER BY MAX(ssi.is_primary) DESC, st.chapter_number
            LIMIT ?""",
        (book, start_chapter, end_chapter, limit),
    )


def _doctrine_view(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "chapterNumber": row["chapter_number"],
        "title": row["title"],
        "summary": row["summary"],
        "isPrimary": bool(row["is_primary"]),
        "contextSnippet": row["context_snippet"],
        "linkSyntax": format_reference(row["chapter_number"]),
    }


def _passage_tags(db: Database, book: str, start_chapter: int, end_chapter: int, tag_type: str,
                  limit: int = 20) -> list[InlineTag]:
    rows = db.fetchall(
        f"""{TAG_SELECT}
            WHERE n.book = ? AND n.start_chapter <= ? AND n.end_chapter >= ? AND it.tag_type = ?
            ORDER BY n.start_chapter, n.start_verse, it.position_start
            LIMIT ?""",
        (book, end_chapter, start_chapter, tag_type, limit),
    )
    return [InlineTag.model_validate(dict(r)) for r in rows]


def _topics_for_doctrines(db: Database, chapter_numbers: list[int]) -> list[Topic]:
    """Topics linked to the doctrine tags of the given theology chapters."""
    if not chapter_numbers:
        return []
    rows = db.fetchall(
        f"""SELECT DISTINCT t.* FROM topics t
            JOIN systematic_chapter_tags ct ON t.systematic_tag_id = ct.tag_id
            WHERE ct.chapter_number IN ({placeholders(chapter_numbers)})
            ORDER BY t.sort_order, t.name""",
        chapter_numbers,
    )
    return [Topic.model_validate(dict(r)) for r in rows]


def _note_with_tags(db: Database, row: sqlite3.Row, **extra: Any) -> dict[str, Any]:
    return {**row_to_note(row).to_api(), "tags": get_note_tag_ids(db, row["id"]), **extra}


def _passage(book: str, start_chapter: int, start_verse: int | None,
             end_chapter: int | None, end_verse: int | None) -> dict[str, Any]:
    end = end_chapter if end_chapter is not None else start_chapter
    return {
        "reference": format_passage(book, start_chapter, start_verse, end, end_verse),
        "book": book,
        "startChapter": start_chapter,
        "startVerse": start_verse,
        "endChapter": end,
        "endVerse": end_verse,
    }


# ============== Passage bundles ==============

def sermon_prep_bundle(
    db: Database,
    book: str,
    start_chapter: int,
    start_verse: int | None = None,
    end_chapter: int | None = None,
    end_verse: int | None = None,
) -> dict[str, Any]:
    """Notes, doctrines, illustrations, applications and key points for a passage."""
    book = book.upper()
    end = end_chapter if end_chapter is not None else start_chapter

    notes = _overlapping_notes(db, book, start_chapter, end)
    doctrines = _passage_doctrines(db, book, start_chapter, end)
    illustrations = _passage_tags(db, book, start_chapter, end, "illustration")
    applications = _passage_tags(db, book, start_chapter, end, "application")
    key_points = _passage_tags(db, book, start_chapter, end, "keypoint")

    return {
        "passage": _passage(book, start_chapter, start_verse, end, end_verse),
        "notes": [_note_with_tags(db, n) for n in notes],
        "doctrines": [_doctrine_view(d) for d in doctrines],
        "illustrations": [t.to_api() for t in illustrations],
        "applications": [t.to_api() for t in applications],
        "keyPoints": [t.to_api() for t in key_points],
        "counts": {
            "notes": len(notes),
            "doctrines": len(doctrines),
            "illustrations": len(illustrations),
            "applications": len(applications),
            "keyPoints": len(key_points),
        },
    }


def suggest_topics_for_passage(db: Database, book: str, chapter: int, verse: int | None = None) -> dict[str, Any]:
    """Topics suggested by the passage's doctrines and by notes already on it."""
    book = book.upper()
    params: list[Any] = [book, chapter]
    verse_filter = ""
    if verse is not None:
        verse_filter = "AND ssi.start_verse <= ? AND (ssi.end_verse >= ? OR ssi.end_verse IS NULL)"
        params += [verse, verse]

    doctrines = db.fetchall(
        f"""SELECT st.chapter_number, ch.title, MAX(ssi.is_primary) AS is_primary
            FROM systematic_scripture_index ssi
            JOIN systematic_theology st ON st.id = ssi.systematic_id
            JOIN systematic_theology ch ON ch.chapter_number = st.chapter_number AND ch.entry_type = 'chapter'
            WHERE ssi.book = ? AND ssi.chapter = ? {verse_filter}
            GROUP BY st.chapter_number
            ORDER BY MAX(ssi.is_primary) DESC, st.chapter_number
            LIMIT 10""",
        params,
    )
    from_doctrines = _topics_for_doctrines(db, [d["chapter_number"] for d in doctrines])
    note_rows = db.fetchall(
        """SELECT t.*, n.start_chapter AS note_start_chapter, n.start_verse AS note_start_verse,
                  n.end_chapter AS note_end_chapter, n.end_verse AS note_end_verse
           FROM topics t
           JOIN notes n ON n.primary_topic_id = t.id
           WHERE n.book = ? AND n.start_chapter <= ? AND n.end_chapter >= ?
           ORDER BY t.name""",
        (book, chapter, chapter),
    )
    from_notes = [
        Topic.model_validate(dict(r)) for r in note_rows
        if verse is None or is_verse_in_range(
            chapter, verse, r["note_start_chapter"], r["note_start_verse"], r["note_end_chapter"], r["note_end_verse"]
        )
    ]

    suggested: list[dict[str, Any]] = []
    seen: set[str] = set()
    for source, topics in (("doctrine", from_doctrines), ("existing_notes", from_notes)):
        for topic in topics:
            if topic.id not in seen:
                seen.add(topic.id)
                suggested.append({**topic.to_api(), "source": source})

    return {
        "passage": format_passage(book, chapter, verse),
        "suggestedTopics": suggested,
        "relatedDoctrines": [
            {
                "chapterNumber": d["chapter_number"],
                "title": d["title"],
                "isPrimary": bool(d["is_primary"]),
                "linkSyntax": format_reference(d["chapter_number"]),
            }
            for d in doctrines
        ],
        "counts": {"suggestedTopics": len(suggested), "relatedDoctrines": len(doctrines)},
    }


def generate_sermon_structure(
    db: Database,
    book: str,
    start_chapter: int,
    start_verse: int | None = None,
    end_chapter: int | None = None,
    end_verse: int | None = None,
    sermon_title: str | None = None,
    main_theme: str | None = None,
) -> dict[str, Any]:
    """An outline scaffold for a sermon, seeded with material from existing notes."""
    book = book.upper()
    end = end_chapter if end_chapter is not None else start_chapter
    reference = format_passage(book, start_chapter, start_verse, end, end_verse)

    notes = _overlapping_notes(db, book, start_chapter, end)
    doctrines = _passage_doctrines(db, book, start_chapter, end, limit=10)
    illustrations = [t.text_content for t in _passage_tags(db, book, start_chapter, end, "illustration", 5)]
    applications = [t.text_content for t in _passage_tags(db, book, start_chapter, end, "application", 5)]
    key_points = [t.text_content for t in _passage_tags(db, book, start_chapter, end, "keypoint", 10)]
    past_sermons = _overlapping_notes(db, book, max(start_chapter - 2, 1), end + 2, note_type="sermon", limit=5)

    main_points = []
    for i in range(OUTLINE_POINTS):
        main_points.append({
            "point": f"[Main Point {i + 1} - derived from text]",
            "scripture": "[Supporting verses]",
            "explanation": "[Exegetical explanation]",
            "illustration": illustrations[i] if i < len(illustrations) else "[Illustration needed]",
            "application": applications[i] if i < len(applications) else "[Application needed]",
        })

    return {
        "metadata": {
            "passage": reference,
            "title": sermon_title or f"[Sermon on {reference}]",
            "mainTheme": main_theme or "[To be determined from text study]",
            "dateCreated": now_iso(),
        },
        "outline": {
            "introduction": {
                "hook": "[Opening story, question, or observation to capture attention]",
                "context": "[Historical/literary context of the passage]",
                "thesis": main_theme or "[Central truth/proposition of this sermon]",
                "preview": "[Brief overview of main points]",
            },
            "mainPoints": main_points,
            "conclusion": {
                "summary": "[Recap of main points]",
                "finalApplication": "[Call to action/response]",
                "closingIllustration": "[Final story or image]",
                "invitation": "[Gospel invitation if appropriate]",
            },
        },
        "resources": {
            "existingNotes": [
                {"id": n["id"], "title": n["title"], "type": n["type"], "preview": strip_html(n["content"])[:200]}
                for n in notes
            ],
            "relatedDoctrines": [_doctrine_view(d) for d in doctrines],
            "keyPointsFromNotes": key_points,
            "similarPastSermons": [
                {
                    "title": s["title"],
                    "passage": format_passage(s["book"], s["start_chapter"], s["start_verse"]),
                    "date": s["updated_at"],
                }
                for s in past_sermons
            ],
        },
        "instructions": {
            "nextSteps": [
                "1. Study the passage carefully and refine the main points",
                "2. Use sermon_prep_bundle to gather more context",
                "3. Use get_similar_sermons to check what you've preached before",
                "4. Use compile_illustrations_for_topic to find more illustrations",
                "5. Fill in the outline scaffold with your exegesis",
                '6. Create the sermon note with create_note (type: "sermon")',
            ],
            "doctrineLinks": [f"{format_reference(d['chapter_number'])} - {d['title']}" for d in doctrines[:3]],
        },
    }


# ============== Note-based helpers ==============

def find_related_notes(db: Database, note_id: str, limit: int = 10) -> dict[str, Any]:
    """Notes sharing the primary topic, near the same passage, or sharing topic tags."""
    note = get_note(db, note_id)
    related: list[tuple[sqlite3.Row, str]] = []

    if note.primary_topic_id:
        rows = db.fetchall(
            "SELECT * FROM notes WHERE primary_topic_id = ? AND id != ? ORDER BY updated_at DESC LIMIT 5",
            (note.primary_topic_id, note_id),
        )
        related += [(r, "same_topic") for r in rows]

    rows = db.fetchall(
        """SELECT * FROM notes
           WHERE book = ? AND id != ? AND ABS(start_chapter - ?) <= 2
           ORDER BY ABS(start_chapter - ?), updated_at DESC
           LIMIT 5""",
        (note.book, note_id, note.start_chapter, note.start_chapter),
    )
    related += [(r, "nearby_passage") for r in rows]

    tag_ids = get_note_tag_ids(db, note_id)
    if tag_ids:
        rows = db.fetchall(
            f"""SELECT DISTINCT n.* FROM notes n
                JOIN note_tags nt ON n.id = nt.note_id
                WHERE nt.topic_id IN ({placeholders(tag_ids)}) AND n.id != ?
                ORDER BY n.updated_at DESC
                LIMIT 5""",
            (*tag_ids, note_id),
        )
        related += [(r, "shared_tags") for r in rows]

    seen: set[str] = set()
    unique = []
    for row, relationship in related:
        if row["id"] not in seen:
            seen.add(row["id"])
            unique.append(_note_with_tags(db, row, relationshipType=relationship))

    return {
        "sourceNote": {"id": note.id, "book": note.book, "startChapter": note.start_chapter, "title": note.title},
        "relatedNotes": unique[:limit],
        "count": min(len(unique), limit),
    }


def summarize_topic_notes(db: Database, topic_id: str) -> dict[str, Any]:
    """Statistics over every note filed under a topic or its descendants."""
    topic = get_topic(db, topic_id)
    ids = descendant_ids([(r["id"], r["parent_id"]) for r in db.fetchall("SELECT id, parent_id FROM topics")], topic_id)
    marks = placeholders(ids)
    notes = db.fetchall(
        f"""SELECT DISTINCT n.* FROM notes n
            LEFT JOIN note_tags nt ON n.id = nt.note_id
            WHERE n.primary_topic_id IN ({marks}) OR nt.topic_id IN ({marks})
            ORDER BY n.book, n.start_chapter, n.start_verse""",
        (*ids, *ids),
    )

    by_book: dict[str, int] = {}
    by_type: dict[str, int] = {}
    for n in notes:
        by_book[n["book"]] = by_book.get(n["book"], 0) + 1
        by_type[n["type"]] = by_type.get(n["type"], 0) + 1

    tag_counts: dict[str, int] = {}
    note_ids = [n["id"] for n in notes]
    if note_ids:
        for r in db.fetchall(
            f"SELECT tag_type, COUNT(*) AS count FROM inline_tags WHERE note_id IN ({placeholders(note_ids)}) GROUP BY tag_type",
            note_ids,
        ):
            tag_counts[r["tag_type"]] = r["count"]

    return {
        "topic": topic.to_api(),
        "statistics": {
            "totalNotes": len(notes),
            "byBook": by_book,
            "byType": by_type,
            "inlineTagCounts": tag_counts,
        },
        "recentNotes": [_note_with_tags(db, n) for n in notes[:5]],
        "booksRepresented": sorted(by_book),
    }


def create_enriched_note(db: Database, data: NoteInput) -> dict[str, Any]:
    """Create a note and suggest topics and doctrine links for its passage."""
    note = create_note(db, data)
    sync_note_tags(db, note.id, note.content)
    doctrines = _passage_doctrines(db, note.book, note.start_chapter, note.end_chapter, limit=5)
    topics = _topics_for_doctrines(db, [d["chapter_number"] for d in doctrines])
    logger.info("enriched_note_created", id=note.id, doctrines=len(doctrines), topics=len(topics))

    return {
        "success": True,
        "message": "Note created with enrichment suggestions",
        "note": note.to_api(),
        "suggestions": {
            "topics": [
                {**t.to_api(), "action": f'Use set_note_topics with noteId="{note.id}" and primaryTopicId="{t.id}" to assign'}
                for t in topics
            ],
            "doctrineLinks": [
                {
                    "chapterNumber": d["chapter_number"],
                    "title": d["title"],
                    "isPrimary": bool(d["is_primary"]),
                    "linkSyntax": format_reference(d["chapter_number"]),
                    "instruction": "Add this link to the note content to connect to systematic theology",
                }
                for d in doctrines
            ],
        },
    }


def auto_tag_note(db: Database, note_id: str, apply_primary: bool = False,
                  apply_secondary: bool = False) -> dict[str, Any]:
    """Suggest topics for a note from its passage's doctrines, optionally applying them.

    The first suggestion becomes the primary topic (only when the note has
    none); the rest are added as secondary tags.
    """
    note = get_note(db, note_id)
    doctrines = _passage_doctrines(db, note.book, note.start_chapter, note.end_chapter, limit=10)
    suggested = _topics_for_doctrines(db, [d["chapter_number"] for d in doctrines])

    applied_primary: Topic | None = None
    applied_secondary: list[Topic] = []
    with db.transaction() as conn:
        if apply_primary and suggested and not note.primary_topic_id:
            applied_primary = suggested[0]
            conn.execute(
                "UPDATE notes SET primary_topic_id = ?, updated_at = ? WHERE id = ?",
                (applied_primary.id, now_iso(), note_id),
            )
        if apply_secondary and len(suggested) > 1:
            applied_secondary = suggested[1:]
            conn.executemany(
                "INSERT OR IGNORE INTO note_tags (note_id, topic_id) VALUES (?, ?)",
                [(note_id, t.id) for t in applied_secondary],
            )

    if apply_primary or apply_secondary:
        message = f"Applied {1 if applied_primary else 0} primary and {len(applied_secondary)} secondary topics"
        logger.info("note_auto_tagged", id=note_id, primary=bool(applied_primary), secondary=len(applied_secondary))
    else:
        message = "Suggestions generated (use applyPrimary/applySecondary to auto-assign)"

    return {
        "note": {**get_note(db, note_id).to_api(), "tags": get_note_tag_ids(db, note_id)},
        "suggestedTopics": [t.to_api() for t in suggested],
        "applied": {
            "primaryTopic": applied_primary.to_api() if applied_primary else None,
            "secondaryTopics": [t.to_api() for t in applied_secondary],
        },
        "message": message,
    }


def insert_doctrine_links(db: Database, note_id: str, apply: bool = False) -> dict[str, Any]:
    """Preview, or append, chapter links for the primary doctrines of a note's passage."""
    note = get_note(db, note_id)
    doctrines = _passage_doctrines(db, note.book, note.start_chapter, note.end_chapter, primary_only=True, limit=5)
    doctrines = sorted(doctrines, key=lambda d: d["chapter_number"])
    existing = find_reference_tokens(note.content)
    new_links = [
        link for link in (format_reference(d["chapter_number"]) for d in doctrines) if link not in existing
    ]

    if apply and new_links:
        block = f"<p><strong>Related Doctrines:</strong> {' '.join(new_links)}</p>"
        db.execute(
            "UPDATE notes SET content = ?, updated_at = ? WHERE id = ?",
            ((note.content or "") + block, now_iso(), note_id),
        )
        logger.info("doctrine_links_inserted", id=note_id, links=new_links)

    if not apply:
        message = "Preview only - set apply=true to insert links"
    elif new_links:
        message = f"Inserted {len(new_links)} new doctrine links"
    else:
        message = "No new links to add (all already present)"

    return {
        "note": {"id": note.id, "book": note.book, "startChapter": note.start_chapter, "title": note.title},
        "existingLinks": existing,
        "suggestedDoctrines": [
            {
                "chapterNumber": d["chapter_number"],
                "title": d["title"],
                "linkSyntax": format_reference(d["chapter_number"]),
                "alreadyPresent": format_reference(d["chapter_number"]) in existing,
            }
            for d in doctrines
        ],
        "newLinksToAdd": new_links,
        "applied": apply,
        "message": message,
    }


# ============== Sermon library search ==============

def get_similar_sermons(
    db: Database,
    book: str | None = None,
    chapter: int | None = None,
    topic: str | None = None,
    keyword: str | None = None,
    limit: int = 20,
) -> dict[str, Any]:
    """Past sermons near a passage, on a topic, or mentioning a keyword.

    With no filter, returns the most recent sermons.
    """
    matches: list[tuple[sqlite3.Row, str]] = []

    if book:
        params: list[Any] = [book.upper()]
        near = ""
        if chapter:
            near = "AND start_chapter <= ? AND end_chapter >= ?"
            params += [chapter + 3, chapter - 3]
        rows = db.fetchall(
            f"""SELECT * FROM notes WHERE type = 'sermon' AND book = ? {near}
                ORDER BY start_chapter, updated_at DESC LIMIT ?""",
            (*params, limit),
        )
        matches += [(r, "same_book") for r in rows]

    if topic:
        topic_row = db.fetchone(
            "SELECT id FROM topics WHERE name LIKE ? ORDER BY CASE WHEN LOWER(name) = LOWER(?) THEN 0 ELSE 1 END",
            (f"%{topic}%", topic),
        )
        if topic_row:
            rows = db.fetchall(
                """SELECT DISTINCT n.* FROM notes n
                   LEFT JOIN note_tags nt ON n.id = nt.note_id
                   WHERE n.type = 'sermon' AND (n.primary_topic_id = ? OR nt.topic_id = ?)
                   ORDER BY n.updated_at DESC LIMIT ?""",
                (topic_row["id"], topic_row["id"], limit),
            )
            matches += [(r, "topic_match") for r in rows]
        rows = db.fetchall(
            "SELECT * FROM notes WHERE type = 'sermon' AND title LIKE ? ORDER BY updated_at DESC LIMIT ?",
            (f"%{topic}%", limit),
        )
        matches += [(r, "title_match") for r in rows]

    if keyword and fts_query(keyword):
        rows = db.fetchall(
            """SELECT n.* FROM notes_fts
               JOIN notes n ON n.rowid = notes_fts.rowid
               WHERE notes_fts MATCH ? AND n.type = 'sermon'
               ORDER BY rank LIMIT ?""",
            (fts_query(keyword), limit),
        )
        matches += [(r, "content_match") for r in rows]

    if not (book or topic or keyword):
        rows = db.fetchall("SELECT * FROM notes WHERE type = 'sermon' ORDER BY updated_at DESC LIMIT ?", (limit,))
        matches += [(r, "recent") for r in rows]

    seen: set[str] = set()
    sermons = []
    for row, match_type in matches:
        if row["id"] in seen:
            continue
        seen.add(row["id"])
        reference = format_passage(
            row["book"], row["start_chapter"], row["start_verse"], row["end_chapter"], row["end_verse"]
        )
        sermons.append(_note_with_tags(db, row, matchType=match_type, reference=reference))

    return {
        "sermons": sermons[:limit],
        "filters": {"book": book, "chapter": chapter, "topic": topic, "keyword": keyword},
        "totalSermonsInLibrary": db.scalar("SELECT COUNT(*) FROM notes WHERE type = 'sermon'"),
        "count": min(len(sermons), limit),
    }


def compile_illustrations_for_topic(
    db: Database,
    topic: str | None = None,
    doctrine_chapter: int | None = None,
    limit: int = 30,
) -> dict[str, Any]:
    """Illustration spans matching a keyword, or found on a doctrine's primary passages."""
    found: list[tuple[sqlite3.Row, str]] = []

    if topic:
        for column, source in (("it.text_content", "keyword_match"), ("n.title", "note_title_match")):
            rows = db.fetchall(
                f"""{TAG_SELECT} WHERE it.tag_type = 'illustration' AND {column} LIKE ?
                    ORDER BY n.updated_at DESC LIMIT ?""",
                (f"%{topic}%", limit),
            )
            found += [(r, source) for r in rows]

    if doctrine_chapter:
        passages = db.fetchall(
            """SELECT DISTINCT ssi.book, ssi.chapter
               FROM systematic_scripture_index ssi
               JOIN systematic_theology st ON ssi.systematic_id = st.id
               WHERE st.chapter_number = ? AND ssi.is_primary = 1
               LIMIT 20""",
            (doctrine_chapter,),
        )
        for p in passages:
            rows = db.fetchall(
                f"""{TAG_SELECT} WHERE it.tag_type = 'illustration'
                    AND n.book = ? AND n.start_chapter <= ? AND n.end_chapter >= ?
                    LIMIT 5""",
                (p["book"], p["chapter"], p["chapter"]),
            )
            found += [(r, f"doctrine_ch{doctrine_chapter}_{p['book']}_{p['chapter']}") for r in rows]

    if not topic and not doctrine_chapter:
        rows = db.fetchall(
            f"{TAG_SELECT} WHERE it.tag_type = 'illustration' ORDER BY n.updated_at DESC LIMIT ?",
            (limit,),
        )
        found += [(r, "recent") for r in rows]

    seen: set[str] = set()
    illustrations = []
    for row, source in found:
        if row["id"] not in seen:
            seen.add(row["id"])
            illustrations.append({**InlineTag.model_validate(dict(row)).to_api(), "source": source})

    return {
        "illustrations": illustrations[:limit],
        "filters": {"topic": topic, "doctrineChapter": doctrine_chapter},
        "totalIllustrationsInLibrary": db.scalar("SELECT COUNT(*) FROM inline_tags WHERE tag_type = 'illustration'"),
        "count": min(len(illustrations), limit),
        "tip": "Use these illustrations in your sermon to make doctrines concrete and memorable",
    }
