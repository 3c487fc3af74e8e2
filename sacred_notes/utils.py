"""
Utility functions and compiled regex patterns for Sacred Notes.

Contains the exception hierarchy, reference parsing/formatting, verse
reference parsing, and input validation.
"""

import re
import uuid
from datetime import datetime, timezone

from .books import BOOKS_BY_CODE, resolve_book
from .config import NOTE_TYPES, settings
from .models import SystematicRef, VerseReference

# Pre-compiled regex patterns for performance
REFERENCE_TOKEN_PATTERN = re.compile(r'\[\[ST:Ch(\d+)(?::([A-Z])(?:\.(\d+))?)?\]\]', re.IGNORECASE)
REFERENCE_PATTERN = re.compile(r'^Ch(\d+)(?::([A-Z])(?:\.(\d+))?)?$', re.IGNORECASE)
UUID_PATTERN = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)
VERSE_REFERENCE_PATTERN = re.compile(r'^(.+?)\s+(\d+)(?::(\d+)(?:-(\d+)(?::(\d+))?)?)?$')
COLOR_PATTERN = re.compile(r'^#[0-9a-fA-F]{6}$')
HTML_TAG_PATTERN = re.compile(r'<[^>]*>')
SLUG_PATTERN = re.compile(r'[^a-z0-9]+')


# ============== Exceptions ==============

class SacredNotesError(Exception):
    """Base class for errors surfaced to API and tool callers."""
    pass


class ValidationError(SacredNotesError):
    """Raised when request input is missing or invalid."""
    pass


class NotFoundError(SacredNotesError):
    """Raised when a referenced record does not exist."""
    pass


class AuthenticationError(SacredNotesError):
    """Raised when a password or session is rejected."""
    pass


class TreeIntegrityError(SacredNotesError):
    """Raised when parent pointers form a cycle."""
    pass


class BibleApiError(SacredNotesError):
    """Raised when the external Bible-text API fails."""
    pass


# ============== Helper Functions ==============

def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


def slugify(text: str) -> str:
    return SLUG_PATTERN.sub("-", text.lower()).strip("-")


def strip_html(html: str | None) -> str:
    return HTML_TAG_PATTERN.sub("", html or "")


# ============== Systematic references ==============

def parse_reference(text: str | None) -> SystematicRef | None:
    """Decode a systematic theology reference.

    Accepts the bracketed token form (``[[ST:Ch32:A.1]]``) or the bare form
    (``Ch32:A.1``), case-insensitively. Malformed input returns None.
    """
    if not text:
        return None
    text = text.strip()
    match = REFERENCE_TOKEN_PATTERN.fullmatch(text) or REFERENCE_PATTERN.match(text)
    if not match:
        return None

    chapter, letter, subsection = match.groups()
    return SystematicRef(
        chapter_number=int(chapter),
        section_letter=letter.upper() if letter else None,
        subsection_number=int(subsection) if subsection else None,
    )


def find_reference_tokens(content: str | None) -> list[str]:
    """Return every ``[[ST:...]]`` token in a note body, in order."""
    return [m.group(0) for m in REFERENCE_TOKEN_PATTERN.finditer(content or "")]


def format_reference(
    chapter_number: int | None,
    section_letter: str | None = None,
    subsection_number: int | None = None,
) -> str | None:
    """Produce the link token for an entry; None for entries without a chapter."""
    if chapter_number is None:
        return None
    if section_letter and subsection_number is not None:
        return f"[[ST:Ch{chapter_number}:{section_letter}.{subsection_number}]]"
    if section_letter:
        return f"[[ST:Ch{chapter_number}:{section_letter}]]"
    return f"[[ST:Ch{chapter_number}]]"


# ============== Verse references ==============

def parse_verse_reference(text: str | None) -> VerseReference | None:
    """Parse a passage like "Romans 3:21-26" into a VerseReference.

    Supported forms: "John 3:16", "Rom 1:1-7", "1 Corinthians 13",
    "Genesis 1:1-2:3". The book may be a name, code or abbreviation.
    Chapters are validated against the book, and the start may not come
    after the end. Unparseable input returns None.
    """
    if not text or not text.strip():
        return None

    match = VERSE_REFERENCE_PATTERN.match(text.strip())
    if not match:
        return None

    book_text, chapter, start_verse, end_part, end_verse = match.groups()
    book = resolve_book(book_text)
    if not book:
        return None

    start_chapter = int(chapter)
    start = int(start_verse) if start_verse else None
    end_chapter = start_chapter
    end = None

    if end_part:
        if end_verse:
            # Genesis 1:1-2:3
            end_chapter = int(end_part)
            end = int(end_verse)
        else:
            end = int(end_part)
    elif start is not None:
        end = start

    if not (1 <= start_chapter <= book.chapters) or not (1 <= end_chapter <= book.chapters):
        return None
    if start_chapter > end_chapter:
        return None
    if start_chapter == end_chapter and start is not None and end is not None and start > end:
        return None

    return VerseReference(
        book=book.code,
        book_name=book.name,
        start_chapter=start_chapter,
        start_verse=start,
        end_chapter=end_chapter,
        end_verse=end,
        is_whole_chapter=start is None,
    )


def format_passage(
    book: str,
    start_chapter: int,
    start_verse: int | None = None,
    end_chapter: int | None = None,
    end_verse: int | None = None,
    use_name: bool = False,
) -> str:
    """Format a verse range for display ("ROM 3:21-26", "Genesis 1:1-2:3")."""
    label = BOOKS_BY_CODE[book].name if use_name and book in BOOKS_BY_CODE else book
    end_chapter = end_chapter if end_chapter is not None else start_chapter

    if start_verse is None:
        if end_chapter != start_chapter:
            return f"{label} {start_chapter}-{end_chapter}"
        return f"{label} {start_chapter}"
    if end_chapter != start_chapter:
        if end_verse is None:
            return f"{label} {start_chapter}:{start_verse}-{end_chapter}"
        return f"{label} {start_chapter}:{start_verse}-{end_chapter}:{end_verse}"
    if end_verse is None or end_verse == start_verse:
        return f"{label} {start_chapter}:{start_verse}"
    return f"{label} {start_chapter}:{start_verse}-{end_verse}"


def is_verse_in_range(chapter: int, verse: int, start_chapter: int, start_verse: int | None,
                      end_chapter: int, end_verse: int | None) -> bool:
    """Check whether a verse falls inside a (possibly multi-chapter) range.

    Missing verse bounds mean the range covers the whole chapter.
    """
    if chapter < start_chapter or chapter > end_chapter:
        return False
    if chapter == start_chapter and start_verse is not None and verse < start_verse:
        return False
    if chapter == end_chapter and end_verse is not None and verse > end_verse:
        return False
    return True


# ============== Validation ==============

def require_fields(data: dict, fields: dict[str, str]) -> None:
    """Raise ValidationError listing the client names of missing fields.

    Args:
        data: Input values keyed by attribute name
        fields: Attribute name -> client-facing field name
    """
    missing = [label for name, label in fields.items() if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def validate_book(book: str) -> str:
    code = book.strip().upper()
    if code not in BOOKS_BY_CODE:
        resolved = resolve_book(book)
        if not resolved:
            raise ValidationError(f"Unknown book: {book}")
        code = resolved.code
    return code


def validate_note_type(note_type: str) -> str:
    if note_type not in NOTE_TYPES:
        raise ValidationError(f"Invalid note type '{note_type}'. Valid types: {', '.join(NOTE_TYPES)}")
    return note_type


def validate_color(color: str) -> str:
    if not COLOR_PATTERN.match(color or ""):
        raise ValidationError("Color must be a hex color like #60a5fa")
    return color


def validate_title(title: str) -> str:
    if len(title) > settings.max_title_length:
        raise ValidationError(f"Title exceeds maximum length of {settings.max_title_length} characters")
    return title


def validate_content_size(content: str) -> str:
    """Validate content size.

    Raises:
        ValidationError: If the content exceeds size limits
    """
    content_bytes = len(content.encode("utf-8"))

    if content_bytes > settings.max_content_size:
        max_mb = settings.max_content_size / (1024 * 1024)
        actual_mb = content_bytes / (1024 * 1024)
        raise ValidationError(
            f"Content size ({actual_mb:.2f}MB) exceeds maximum allowed size ({max_mb}MB)"
        )

    return content
