"""
Bible text proxy for Sacred Notes.

Fetches a chapter from an external API and normalizes it to
``{reference, translation, verses: [{verse, text}]}``:

- web: bible-api.com (no key)
- esv: api.esv.org (requires SACRED_ESV_API_KEY)
"""

import re
from typing import Any

import requests
import structlog

from .books import BOOKS_BY_CODE, Book
from .config import settings
from .models import BibleChapter, BibleVerse
from .utils import BibleApiError, ValidationError

logger = structlog.get_logger(__name__)

WEB_API_URL = "https://bible-api.com/{book}+{chapter}"
ESV_API_URL = "https://api.esv.org/v3/passage/text/"

# ESV text marks verses as "[1] In the beginning... [2] The earth was..."
ESV_VERSE_PATTERN = re.compile(r"\[(\d+)\]\s*([^\[]*)")

TRANSLATIONS = ("web", "esv")


def parse_esv_verses(text: str) -> list[BibleVerse]:
    verses = []
    for match in ESV_VERSE_PATTERN.finditer(text or ""):
        number = int(match.group(1))
        body = match.group(2).strip()
        if number and body:
            verses.append(BibleVerse(verse=number, text=body))
    return verses


def _get_json(url: str, **kwargs: Any) -> dict[str, Any]:
    try:
        response = requests.get(url, timeout=settings.bible_api_timeout, **kwargs)
    except requests.RequestException as e:
        raise BibleApiError(f"Bible API request failed: {e}") from e

    if response.status_code == 401:
        raise BibleApiError("Invalid ESV API key")
    if not response.ok:
        raise BibleApiError(f"Bible API error: {response.status_code}")
    try:
        return response.json()
    except ValueError as e:
        raise BibleApiError("Bible API returned invalid JSON") from e


def fetch_web(book: Book, chapter: int) -> BibleChapter:
    data = _get_json(WEB_API_URL.format(book=book.api_name, chapter=chapter), params={"translation": "web"})
    return BibleChapter(
        reference=data.get("reference") or f"{book.name} {chapter}",
        translation="WEB",
        verses=[BibleVerse(verse=v["verse"], text=v["text"].strip()) for v in data.get("verses") or []],
    )


def fetch_esv(book: Book, chapter: int) -> BibleChapter:
    if not settings.esv_api_key:
        raise BibleApiError("ESV API key not configured")

    data = _get_json(
        ESV_API_URL,
        params={
            "q": f"{book.name} {chapter}",
            "include-verse-numbers": "true",
            "include-footnotes": "false",
            "include-headings": "false",
            "include-short-copyright": "false",
            "include-passage-references": "false",
        },
        headers={"Authorization": f"Token {settings.esv_api_key}"},
    )
    passages = data.get("passages") or []
    if not passages:
        raise BibleApiError("No passage found")
    return BibleChapter(reference=f"{book.name} {chapter}", translation="ESV", verses=parse_esv_verses(passages[0]))


def fetch_chapter(translation: str, book_code: str, chapter: int | str) -> BibleChapter:
    """Fetch one chapter in the given translation.

    Raises:
        ValidationError: On an unknown translation or book, or a bad chapter number
        BibleApiError: If the upstream API fails
    """
    try:
        chapter_number = int(chapter)
    except (TypeError, ValueError):
        raise ValidationError("Invalid chapter number") from None
    if chapter_number < 1:
        raise ValidationError("Invalid chapter number")

    translation = (translation or "").lower()
    if translation not in TRANSLATIONS:
        raise ValidationError(f"Unknown translation: {translation}")

    book = BOOKS_BY_CODE.get((book_code or "").upper())
    if book is None:
        raise ValidationError(f"Unknown book ID: {book_code}")

    logger.debug("bible_fetch", translation=translation, book=book.code, chapter=chapter_number)
    try:
        if translation == "esv":
            return fetch_esv(book, chapter_number)
        return fetch_web(book, chapter_number)
    except BibleApiError as e:
        logger.warning("bible_fetch_failed", translation=translation, book=book.code, chapter=chapter_number,
                       error=str(e))
        raise


def status() -> dict[str, Any]:
    return {
        "ok": True,
        "translations": {"web": True, "esv": bool(settings.esv_api_key)},
    }
