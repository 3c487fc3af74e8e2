"""
Tests for reference parsing, passage formatting and validation helpers.
"""

import pytest


class TestParseReference:
    """Tests for systematic theology reference decoding."""

    def test_chapter_token(self):
        """A bracketed chapter token decodes to its chapter number."""
        from sacred_notes.utils import parse_reference

        ref = parse_reference("[[ST:Ch32]]")
        assert ref.chapter_number == 32
        assert ref.section_letter is None
        assert ref.subsection_number is None

    def test_subsection_token(self):
        """Section letter and subsection number are decoded."""
        from sacred_notes.utils import parse_reference

        ref = parse_reference("[[ST:Ch32:A.1]]")
        assert (ref.chapter_number, ref.section_letter, ref.subsection_number) == (32, "A", 1)

    def test_bare_form_case_insensitive(self):
        """The bare form is accepted in any case and letters are upper-cased."""
        from sacred_notes.utils import parse_reference

        ref = parse_reference("ch5:b")
        assert ref.chapter_number == 5
        assert ref.section_letter == "B"

    @pytest.mark.parametrize("text", [None, "", "[[ST:Chapter1]]", "[[ST:Ch]]", "Ch32:AB", "Romans 3"])
    def test_malformed_returns_none(self, text):
        """Malformed references resolve to None rather than raising."""
        from sacred_notes.utils import parse_reference

        assert parse_reference(text) is None

    def test_find_reference_tokens(self):
        """All tokens are found in document order."""
        from sacred_notes.utils import find_reference_tokens

        content = "<p>See [[ST:Ch32]] and [[ST:Ch36:B.2]], not [[ST:X]].</p>"
        assert find_reference_tokens(content) == ["[[ST:Ch32]]", "[[ST:Ch36:B.2]]"]
        assert find_reference_tokens(None) == []

    def test_format_reference(self):
        """Tokens are produced per entry level; parts have none."""
        from sacred_notes.utils import format_reference

        assert format_reference(32) == "[[ST:Ch32]]"
        assert format_reference(32, "A") == "[[ST:Ch32:A]]"
        assert format_reference(32, "A", 1) == "[[ST:Ch32:A.1]]"
        assert format_reference(None) is None


class TestParseVerseReference:
    """Tests for human-readable passage parsing."""

    def test_verse_range(self):
        """'Romans 3:21-26' parses to a single-chapter range."""
        from sacred_notes.utils import parse_verse_reference

        ref = parse_verse_reference("Romans 3:21-26")
        assert ref.book == "ROM"
        assert ref.book_name == "Romans"
        assert (ref.start_chapter, ref.start_verse, ref.end_chapter, ref.end_verse) == (3, 21, 3, 26)
        assert ref.is_whole_chapter is False

    def test_abbreviation_single_verse(self):
        """An abbreviation with one verse sets both bounds to that verse."""
        from sacred_notes.utils import parse_verse_reference

        ref = parse_verse_reference("Rom 1:1")
        assert ref.book == "ROM"
        assert ref.start_verse == ref.end_verse == 1

    def test_numbered_book_whole_chapter(self):
        """'1 Corinthians 13' is a whole-chapter reference."""
        from sacred_notes.utils import parse_verse_reference

        ref = parse_verse_reference("1 Corinthians 13")
        assert ref.book == "1CO"
        assert ref.start_verse is None
        assert ref.is_whole_chapter is True

    def test_cross_chapter_range(self):
        """'Genesis 1:1-2:3' spans two chapters."""
        from sacred_notes.utils import parse_verse_reference

        ref = parse_verse_reference("Genesis 1:1-2:3")
        assert (ref.start_chapter, ref.start_verse, ref.end_chapter, ref.end_verse) == (1, 1, 2, 3)

    @pytest.mark.parametrize("text", ["", "Hezekiah 1:1", "Romans 17", "Romans 3:26-21", "Genesis 2:1-1:3", "Romans"])
    def test_invalid_returns_none(self, text):
        """Unknown books, chapters past the end and reversed ranges are rejected."""
        from sacred_notes.utils import parse_verse_reference

        assert parse_verse_reference(text) is None

    def test_to_api_is_camel_case(self):
        """Serialized references use client field names."""
        from sacred_notes.utils import parse_verse_reference

        data = parse_verse_reference("John 3:16").to_api()
        assert data["bookName"] == "John"
        assert data["startChapter"] == 3


class TestFormatPassage:
    """Tests for passage display strings."""

    def test_forms(self):
        """Each range shape has its own compact form."""
        from sacred_notes.utils import format_passage

        assert format_passage("ROM", 3) == "ROM 3"
        assert format_passage("ROM", 3, None, 4) == "ROM 3-4"
        assert format_passage("ROM", 3, 21, 3, 26) == "ROM 3:21-26"
        assert format_passage("ROM", 3, 21, 3, 21) == "ROM 3:21"
        assert format_passage("GEN", 1, 1, 2, 3, use_name=True) == "Genesis 1:1-2:3"

    def test_is_verse_in_range(self):
        """Missing verse bounds cover the whole chapter."""
        from sacred_notes.utils import is_verse_in_range

        assert is_verse_in_range(3, 22, 3, 21, 3, 26)
        assert not is_verse_in_range(3, 27, 3, 21, 3, 26)
        assert is_verse_in_range(4, 50, 3, 21, 5, None)
        assert not is_verse_in_range(2, 1, 3, None, 3, None)


class TestValidation:
    """Tests for input validators."""

    def test_require_fields_lists_client_names(self):
        """Missing fields are reported by their client-facing names."""
        from sacred_notes.utils import ValidationError, require_fields

        with pytest.raises(ValidationError, match="startChapter, endChapter"):
            require_fields({"book": "ROM", "start_chapter": None}, {
                "book": "book", "start_chapter": "startChapter", "end_chapter": "endChapter",
            })

    def test_validate_book_accepts_names(self):
        """Book names and codes normalize to codes."""
        from sacred_notes.utils import ValidationError, validate_book

        assert validate_book("rom") == "ROM"
        assert validate_book("Romans") == "ROM"
        with pytest.raises(ValidationError):
            validate_book("Nope")

    def test_validate_color(self):
        """Only #rrggbb colors are accepted."""
        from sacred_notes.utils import ValidationError, validate_color

        assert validate_color("#60a5fa") == "#60a5fa"
        with pytest.raises(ValidationError):
            validate_color("blue")

    def test_validate_content_size(self, monkeypatch):
        """Content over the configured size is rejected."""
        from sacred_notes.config import settings
        from sacred_notes.utils import ValidationError, validate_content_size

        monkeypatch.setattr(settings, "max_content_size", 10)
        with pytest.raises(ValidationError, match="exceeds maximum"):
            validate_content_size("x" * 11)
