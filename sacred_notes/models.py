"""
Pydantic models for Sacred Notes.

Rows are validated from their storage (snake_case) column names and
serialized for clients with camelCase aliases via ``to_api()``.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self, **kwargs: Any) -> dict[str, Any]:
        return self.model_dump(by_alias=True, **kwargs)


# ============== Notes ==============

class NoteMetadata(ApiModel):
    """Note without its content body."""

    id: str
    book: str
    start_chapter: int
    start_verse: int | None = None
    end_chapter: int
    end_verse: int | None = None
    title: str = ""
    type: str = "note"
    primary_topic_id: str | None = None
    series_id: str | None = None
    created_at: str
    updated_at: str


class Note(NoteMetadata):
    """A verse-range-scoped rich-text note."""

    content: str = ""


class NoteInput(ApiModel):
    """Fields accepted when creating or updating a note. All optional; handlers validate."""

    id: str | None = None
    book: str | None = None
    start_chapter: int | None = None
    start_verse: int | None = None
    end_chapter: int | None = None
    end_verse: int | None = None
    title: str | None = None
    content: str | None = None
    type: str | None = None
    primary_topic_id: str | None = None
    series_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class NoteSearchResult(Note):
    snippet: str = ""


# ============== Topics ==============

class Topic(ApiModel):
    id: str
    name: str
    parent_id: str | None = None
    sort_order: int = 0
    systematic_tag_id: str | None = None
    created_at: str
    updated_at: str


class TopicInput(ApiModel):
    name: str | None = None
    parent_id: str | None = None
    sort_order: int | None = None
    systematic_tag_id: str | None = None


# ============== Inline tags ==============

class InlineTagType(ApiModel):
    id: str
    name: str
    color: str
    icon: str | None = None
    is_default: bool = False
    sort_order: int = 0
    created_at: str


class InlineTagTypeInput(ApiModel):
    name: str | None = None
    color: str | None = None
    icon: str | None = None
    sort_order: int | None = None


class InlineTag(ApiModel):
    """A labeled span inside a note, joined with its note's passage."""

    id: str
    note_id: str
    tag_type: str
    text_content: str
    html_fragment: str | None = None
    position_start: int | None = None
    position_end: int | None = None
    created_at: str
    note_title: str | None = None
    book: str | None = None
    start_chapter: int | None = None
    start_verse: int | None = None
    end_chapter: int | None = None
    end_verse: int | None = None


class InlineTagInput(ApiModel):
    tag_type: str
    text_content: str
    html_fragment: str | None = None
    position_start: int | None = None
    position_end: int | None = None


# ============== Systematic theology ==============

class SystematicEntry(ApiModel):
    id: str
    entry_type: str
    part_number: int | None = None
    chapter_number: int | None = None
    section_letter: str | None = None
    subsection_number: int | None = None
    title: str
    content: str | None = None
    summary: str | None = None
    parent_id: str | None = None
    sort_order: int = 0
    word_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None


class ScriptureReference(ApiModel):
    id: str
    systematic_id: str
    book: str
    chapter: int
    start_verse: int | None = None
    end_verse: int | None = None
    is_primary: bool = False
    context_snippet: str | None = None


class Annotation(ApiModel):
    id: str
    systematic_id: str
    annotation_type: str
    color: str | None = None
    content: str | None = None
    text_selection: str | None = None
    position_start: int | None = None
    position_end: int | None = None
    created_at: str
    updated_at: str


class AnnotationInput(ApiModel):
    annotation_type: str | None = None
    color: str | None = None
    content: str | None = None
    text_selection: str | None = None
    position_start: int | None = None
    position_end: int | None = None


class SystematicTag(ApiModel):
    id: str
    name: str
    color: str | None = None
    sort_order: int = 0
    chapter_count: int | None = None


class SystematicRef(BaseModel):
    """Address of a theology entry decoded from a ``[[ST:...]]`` token."""

    chapter_number: int
    section_letter: str | None = None
    subsection_number: int | None = None


# ============== Series & sessions ==============

class Series(ApiModel):
    id: str
    name: str
    description: str | None = None
    created_at: str
    updated_at: str
    sermon_count: int | None = None


class SeriesInput(ApiModel):
    name: str | None = None
    description: str | None = None


class StudySession(ApiModel):
    id: str
    session_type: str
    reference_id: str
    reference_label: str | None = None
    duration_seconds: int | None = None
    created_at: str


class StudySessionInput(ApiModel):
    session_type: str | None = None
    reference_id: str | None = None
    reference_label: str | None = None
    duration_seconds: int | None = None


# ============== References, backup, bible ==============

class VerseReference(ApiModel):
    """A parsed human-readable passage such as "Romans 3:21-26"."""

    book: str
    book_name: str
    start_chapter: int
    start_verse: int | None = None
    end_chapter: int
    end_verse: int | None = None
    is_whole_chapter: bool = False


class ImportRowError(BaseModel):
    id: str | None = None
    error: str


class ImportResult(BaseModel):
    """Model for the result of a bulk import."""

    success: bool
    inserted: int = 0
    updated: int = 0
    errors: list[ImportRowError] | None = None


class BibleVerse(BaseModel):
    verse: int
    text: str


class BibleChapter(BaseModel):
    reference: str
    translation: str
    verses: list[BibleVerse]
