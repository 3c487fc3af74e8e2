"""
Tests for the Bible text proxy.
"""

import pytest
import requests


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


@pytest.fixture
def fake_get(monkeypatch):
    """Replace requests.get; records calls and returns a queued response."""
    calls = []
    response = {"value": FakeResponse(payload={})}

    def _get(url, **kwargs):
        calls.append((url, kwargs))
        result = response["value"]
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr("sacred_notes.bible.requests.get", _get)

    def _set(value):
        response["value"] = value

    _get.respond = _set
    _get.calls = calls
    return _get


class TestFetchChapter:
    """Tests for fetching and normalizing chapters."""

    def test_web(self, fake_get):
        """WEB chapters are normalized to reference, translation and verses."""
        from sacred_notes.bible import fetch_chapter

        fake_get.respond(FakeResponse(payload={
            "reference": "Romans 3",
            "verses": [{"verse": 1, "text": "What advantage then...\n"}, {"verse": 2, "text": "Much every way."}],
        }))
        chapter = fetch_chapter("WEB", "rom", "3")
        assert chapter.translation == "WEB"
        assert chapter.reference == "Romans 3"
        assert [v.text for v in chapter.verses] == ["What advantage then...", "Much every way."]
        assert fake_get.calls[0][0] == "https://bible-api.com/romans+3"

    def test_esv(self, fake_get, monkeypatch):
        """ESV text is split on bracketed verse numbers."""
        from sacred_notes.bible import fetch_chapter
        from sacred_notes.config import settings

        monkeypatch.setattr(settings, "esv_api_key", "key")
        fake_get.respond(FakeResponse(payload={"passages": ["[1] In the beginning. [2] The earth was void. "]}))
        chapter = fetch_chapter("esv", "GEN", 1)
        assert chapter.translation == "ESV"
        assert [(v.verse, v.text) for v in chapter.verses] == [(1, "In the beginning."), (2, "The earth was void.")]
        assert fake_get.calls[0][1]["headers"] == {"Authorization": "Token key"}

    def test_esv_requires_key(self, fake_get, monkeypatch):
        """Without a key the ESV translation is unavailable."""
        from sacred_notes.bible import fetch_chapter, status
        from sacred_notes.config import settings
        from sacred_notes.utils import BibleApiError

        monkeypatch.setattr(settings, "esv_api_key", None)
        assert status()["translations"] == {"web": True, "esv": False}
        with pytest.raises(BibleApiError, match="not configured"):
            fetch_chapter("esv", "GEN", 1)
        assert fake_get.calls == []

    @pytest.mark.parametrize("translation, book, chapter, message", [
        ("kjv", "GEN", 1, "Unknown translation"),
        ("web", "XYZ", 1, "Unknown book"),
        ("web", "GEN", "one", "Invalid chapter"),
        ("web", "GEN", 0, "Invalid chapter"),
    ])
    def test_bad_input(self, fake_get, translation, book, chapter, message):
        """Bad inputs are rejected before any request is made."""
        from sacred_notes.bible import fetch_chapter
        from sacred_notes.utils import ValidationError

        with pytest.raises(ValidationError, match=message):
            fetch_chapter(translation, book, chapter)
        assert fake_get.calls == []

    def test_upstream_failures(self, fake_get):
        """HTTP errors and network errors surface as BibleApiError."""
        from sacred_notes.bible import fetch_chapter
        from sacred_notes.utils import BibleApiError

        fake_get.respond(FakeResponse(status_code=503))
        with pytest.raises(BibleApiError, match="503"):
            fetch_chapter("web", "ROM", 3)

        fake_get.respond(requests.ConnectionError("down"))
        with pytest.raises(BibleApiError, match="request failed"):
            fetch_chapter("web", "ROM", 3)

        fake_get.respond(FakeResponse(payload=None))
        with pytest.raises(BibleApiError, match="invalid JSON"):
            fetch_chapter("web", "ROM", 3)
