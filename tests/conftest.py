"""
Pytest configuration and fixtures for sacred-notes tests.
"""

import pytest
from pathlib import Path


# Small corpus: one part, two chapters, sections and a subsection.
# The section row comes before its parent chapter on purpose.
THEOLOGY_CORPUS = {
    "systematic_theology": [
        {
            "id": "ch32-a",
            "entry_type": "section",
            "part_number": 4,
            "chapter_number": 32,
            "section_letter": "A",
            "title": "The Cause of the Atonement",
            "content": "The cause of the atonement is the love and justice of God.",
            "summary": "God's love and justice",
            "parent_id": "ch32",
            "sort_order": 1,
        },
        {
            "id": "part4",
            "entry_type": "part",
            "part_number": 4,
            "title": "The Doctrines of Christ and the Holy Spirit",
            "sort_order": 0,
        },
        {
            "id": "ch32",
            "entry_type": "chapter",
            "part_number": 4,
            "chapter_number": 32,
            "title": "The Atonement",
            "content": "The atonement is the work Christ did in his life and death to earn our salvation.",
            "summary": "Christ's work to earn our salvation",
            "parent_id": "part4",
            "sort_order": 1,
        },
        {
            "id": "ch32-a-1",
            "entry_type": "subsection",
            "part_number": 4,
            "chapter_number": 32,
            "section_letter": "A",
            "subsection_number": 1,
            "title": "The Love of God",
            "content": "God so loved the world that he gave his only Son.",
            "parent_id": "ch32-a",
            "sort_order": 2,
        },
        {
            "id": "ch32-b",
            "entry_type": "section",
            "part_number": 4,
            "chapter_number": 32,
            "section_letter": "B",
            "title": "The Nature of the Atonement",
            "content": "Christ bore the penalty for our sins as a substitute.",
            "summary": "Penal substitution",
            "parent_id": "ch32",
            "sort_order": 3,
        },
        {
            "id": "ch36",
            "entry_type": "chapter",
            "part_number": 4,
            "chapter_number": 36,
            "title": "Justification",
            "content": "Justification is an instantaneous legal act of God declaring us righteous.",
            "summary": "Right legal standing before God",
            "parent_id": "part4",
            "sort_order": 5,
        },
    ],
    "scripture_index": [
        {
            "id": "si-1",
            "systematic_id": "ch32",
            "book": "ROM",
            "chapter": 3,
            "start_verse": 25,
            "end_verse": 26,
            "is_primary": True,
            "context_snippet": "a propitiation by his blood",
        },
        {
            "id": "si-2",
            "systematic_id": "ch32-a",
            "book": "JHN",
            "chapter": 3,
            "start_verse": 16,
            "end_verse": None,
            "is_primary": False,
        },
        {
            "id": "si-3",
            "systematic_id": "ch36",
            "book": "ROM",
            "chapter": 3,
            "start_verse": 21,
            "end_verse": 28,
            "is_primary": False,
            "context_snippet": "justified by his grace as a gift",
        },
    ],
    "chapter_tags": [
        {"chapter_number": 32, "tag_id": "doctrine-christ-spirit"},
        {"chapter_number": 36, "tag_id": "doctrine-salvation"},
    ],
    "related": [
        {"id": "rel-1", "source_chapter": 32, "target_chapter": 36, "relationship_type": "see_also"},
    ],
}


@pytest.fixture
def db(tmp_path: Path):
    """Create an initialized database in a temp directory."""
    from sacred_notes.db import Database

    database = Database(tmp_path / "sacred.db")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def theology_corpus():
    """The sample theology corpus as parsed JSON."""
    return THEOLOGY_CORPUS


@pytest.fixture
def theology_db(db):
    """Database with the sample theology corpus loaded."""
    from sacred_notes.loader import import_corpus

    import_corpus(db, THEOLOGY_CORPUS)
    return db


@pytest.fixture
def make_note(db):
    """Factory creating notes with sensible defaults."""
    from sacred_notes.models import NoteInput
    from sacred_notes.notes import create_note

    def _make(**fields):
        values = {"book": "ROM", "startChapter": 3, "endChapter": 3, "title": "Note", "content": "<p>Text</p>"}
        values.update(fields)
        return create_note(db, NoteInput.model_validate(values))

    return _make


@pytest.fixture
def sample_notes(theology_db, make_note):
    """A handful of notes around Romans 3 and John 3."""
    return {
        "righteousness": make_note(
            title="Righteousness of God",
            startVerse=21,
            endVerse=26,
            content="<p>The righteousness of God is revealed apart from the law. [[ST:Ch36]]</p>",
            type="commentary",
        ),
        "propitiation": make_note(
            title="Propitiation",
            startVerse=25,
            endVerse=25,
            content="<p>Wrath satisfied [[ST:Ch32:A]]</p>",
        ),
        "sermon": make_note(
            title="Justified Freely",
            startChapter=3,
            startVerse=21,
            endChapter=4,
            endVerse=8,
            content="<p>Grace alone.</p>",
            type="sermon",
        ),
        "john": make_note(
            book="JHN",
            title="God so loved",
            startVerse=16,
            endVerse=16,
            content="<p>The heart of the gospel [[ST:Ch32]]</p>",
        ),
    }


@pytest.fixture
def patched_db(db, monkeypatch):
    """Patch the global database used by the MCP tools."""
    from sacred_notes import db as db_module

    monkeypatch.setattr(db_module, "_database", db)
    return db


@pytest.fixture
def auth_enabled(monkeypatch):
    """Configure a password so authentication is required."""
    from sacred_notes.config import settings

    monkeypatch.setattr(settings, "auth_password", "hunter2")
    return "hunter2"
