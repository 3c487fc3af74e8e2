"""
Tests for the HTTP API.
"""

import pytest


@pytest.fixture
def client(db):
    """TestClient over an app bound to the test database."""
    from fastapi.testclient import TestClient

    from sacred_notes.api import create_app

    return TestClient(create_app(db))


NEW_NOTE = {"book": "ROM", "startChapter": 5, "endChapter": 5, "title": "Peace with God", "content": "<p>Peace</p>"}


class TestNotesApi:
    """Tests for /api/notes."""

    def test_crud(self, client):
        """Notes can be created, read, updated and deleted."""
        created = client.post("/api/notes", json=NEW_NOTE)
        assert created.status_code == 201
        note_id = created.json()["id"]

        assert client.get(f"/api/notes/{note_id}").json()["title"] == "Peace with God"

        updated = client.put(f"/api/notes/{note_id}", json={"title": "Peace"})
        assert updated.status_code == 200
        assert updated.json()["content"] == "<p>Peace</p>"

        assert client.delete(f"/api/notes/{note_id}").status_code == 204
        missing = client.get(f"/api/notes/{note_id}")
        assert missing.status_code == 404
        assert missing.json() == {"error": "Note not found"}

    def test_validation_errors_are_400(self, client):
        """Domain and request validation failures both answer 400."""
        response = client.post("/api/notes", json={"book": "ROM"})
        assert response.status_code == 400
        assert "Missing required fields" in response.json()["error"]

        response = client.post("/api/notes", json={**NEW_NOTE, "startChapter": "five"})
        assert response.status_code == 400
        assert client.get("/api/notes/search").status_code == 400

    def test_unknown_references_are_400(self, client):
        """A missing primary topic or series is a client error with a JSON body."""
        response = client.post("/api/notes", json={**NEW_NOTE, "primaryTopicId": "ghost"})
        assert response.status_code == 400
        assert response.json() == {"error": "Topic not found"}

        note_id = client.post("/api/notes", json=NEW_NOTE).json()["id"]
        response = client.put(f"/api/notes/{note_id}", json={"seriesId": "ghost"})
        assert response.status_code == 400
        assert response.json() == {"error": "Series not found"}

    def test_database_errors_are_json(self, client, monkeypatch):
        """SQLite failures answer 500 with an error body."""
        import sqlite3

        def _locked(db):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr("sacred_notes.notes.get_notes_summary", _locked)
        response = client.get("/api/notes/summary")
        assert response.status_code == 500
        assert response.json() == {"error": "Database error: database is locked"}

    def test_inline_tags_synced(self, client):
        """Saving content refreshes the note's inline tags."""
        note_id = client.post("/api/notes", json={
            **NEW_NOTE, "content": '<span data-inline-tag="quote">Justified by faith</span>',
        }).json()["id"]
        tags = client.get(f"/api/notes/{note_id}/inline-tags").json()
        assert [t["textContent"] for t in tags] == ["Justified by faith"]

        client.put(f"/api/notes/{note_id}", json={"content": "<p>none</p>"})
        assert client.get(f"/api/notes/{note_id}/inline-tags").json() == []

    def test_queries(self, client, sample_notes):
        """Chapter, book, summary and search endpoints return client-shaped data."""
        assert len(client.get("/api/notes").json()) == 4
        assert [n["title"] for n in client.get("/api/notes/chapter/ROM/4").json()] == ["Justified Freely"]
        assert len(client.get("/api/notes/book/jhn").json()) == 1
        assert client.get("/api/notes/summary").json()["total"] == 4
        assert client.get("/api/notes/books").json()[0] == {"book": "JHN", "count": 1}
        results = client.get("/api/notes/search", params={"q": "righteousness"}).json()
        assert results[0]["title"] == "Righteousness of God"
        metadata = client.get("/api/notes/metadata", params={"type": "sermon"}).json()
        assert metadata["total"] == 1

    def test_note_topics(self, client, make_note):
        """Topic assignment round-trips and validates the tags array."""
        note = make_note()
        topic_id = client.post("/api/topics", json={"name": "Grace"}).json()["id"]

        response = client.put(f"/api/notes/{note.id}/topics", json={"primaryTopicId": topic_id, "tags": []})
        assert response.json()["primaryTopicId"] == topic_id
        assert client.get(f"/api/notes/{note.id}/topics").json()["primaryTopicId"] == topic_id
        assert client.put(f"/api/notes/{note.id}/topics", json={"tags": "x"}).status_code == 400


class TestBackupApi:
    """Tests for export, import and bulk endpoints."""

    def test_export_import(self, client, make_note):
        """Fixed backup paths are not captured by /{note_id}."""
        make_note()
        exported = client.get("/api/notes/export").json()
        assert exported["version"] == 1

        result = client.post("/api/notes/import", json=exported).json()
        assert result == {"success": True, "inserted": 0, "updated": 1}
        assert client.get("/api/notes/count").json() == {"count": 1}
        assert client.get("/api/notes/lastModified").json()["lastModified"]

        assert client.delete("/api/notes").json() == {"success": True, "deleted": 1}

    def test_full_backup(self, client, make_note):
        """Full exports re-import; other versions are rejected."""
        make_note()
        bundle = client.get("/api/notes/full-export").json()
        assert client.post("/api/notes/full-import", json=bundle).json()["imported"]["notes"] == 1
        assert client.post("/api/notes/full-import", json={"version": 1}).status_code == 400


class TestTopicsAndTagsApi:
    """Tests for topics and inline tag endpoints."""

    def test_topics(self, client):
        """Topics are created, nested, moved and deleted."""
        parent = client.post("/api/topics", json={"name": "Doctrine"}).json()
        child = client.post("/api/topics", json={"name": "Grace", "parentId": parent["id"]})
        assert child.status_code == 201

        tree = client.get("/api/topics").json()
        assert tree[0]["children"][0]["name"] == "Grace"
        cycle = client.put(f"/api/topics/{parent['id']}", json={"parentId": child.json()["id"]})
        assert cycle.status_code == 400

        linked = client.put(f"/api/topics/{parent['id']}", json={"systematicTagId": "doctrine-god"})
        assert linked.json()["systematicTagId"] == "doctrine-god"
        unlinked = client.put(f"/api/topics/{parent['id']}", json={"systematicTagId": None})
        assert unlinked.json()["systematicTagId"] is None

        assert client.delete(f"/api/topics/{parent['id']}").status_code == 204
        assert client.get("/api/topics/flat").json() == []
        assert client.get(f"/api/topics/{parent['id']}").status_code == 404

    def test_seed_topics_twice(self, client):
        """Seeding a second time is refused."""
        assert client.post("/api/topics/seed").status_code == 201
        assert client.post("/api/topics/seed").status_code == 400

    def test_tag_types(self, client):
        """Custom types can be added; defaults cannot be deleted."""
        created = client.post("/api/inline-tags/types", json={"name": "Prayer", "color": "#aabbcc"})
        assert created.status_code == 201
        assert len(client.get("/api/inline-tags/types").json()) == 6
        assert client.delete("/api/inline-tags/types/quote").status_code == 400
        assert client.delete("/api/inline-tags/types/prayer").status_code == 204
        assert client.get("/api/inline-tags/search").status_code == 400


class TestSystematicApi:
    """Tests for /api/systematic."""

    def test_lookups(self, client, theology_db):
        """Outline, chapter, reference and passage lookups."""
        assert client.get("/api/systematic").json()[0]["id"] == "part4"
        assert client.get("/api/systematic/chapter/36").json()["title"] == "Justification"
        assert client.get("/api/systematic/chapter/99").status_code == 404
        assert client.get("/api/systematic/ref/Ch32:A").json()["id"] == "ch32-a"
        found = client.get("/api/systematic/for-passage/ROM/3", params={"verse": 22}).json()
        assert [e["id"] for e in found] == ["ch36"]
        assert client.get("/api/systematic/summary").json()["chapters"] == 2

    def test_annotations(self, client, theology_db):
        """Annotations are added to entries and deleted by id."""
        created = client.post("/api/systematic/ch32/annotations", json={"annotationType": "note", "content": "Key"})
        assert created.status_code == 201
        assert len(client.get("/api/systematic/ch32/annotations").json()) == 1
        assert client.delete(f"/api/systematic/annotations/{created.json()['id']}").status_code == 204


class TestSeriesAndSessionsApi:
    """Tests for series and study session endpoints."""

    def test_series(self, client, make_note):
        """Sermons are added to and removed from a series."""
        sermon = make_note(type="sermon")
        series_id = client.post("/api/series", json={"name": "Romans"}).json()["id"]
        assert client.post(f"/api/series/{series_id}/sermons/{sermon.id}").json() == {"success": True}
        assert client.get(f"/api/series/{series_id}").json()["sermonCount"] == 1
        assert client.delete(f"/api/series/{series_id}/sermons/{sermon.id}").json() == {"success": True}
        assert client.post("/api/series", json={}).status_code == 400

    def test_sessions(self, client):
        """Sessions are logged, listed and summarized."""
        response = client.post("/api/sessions", json={"sessionType": "bible", "referenceId": "ROM:3"})
        assert response.status_code == 201
        assert client.get("/api/sessions", params={"type": "bible"}).json()["total"] == 1
        last = client.get("/api/sessions/last", params={"sessionType": "bible", "referenceId": "ROM:3"}).json()
        assert last["totalTimesStudied"] == 1
        assert client.get("/api/sessions/summary").json()["byType"] == {"bible": 1}
        assert client.delete("/api/sessions").status_code == 400


class TestAuthApi:
    """Tests for the session cookie and the auth middleware."""

    def test_open_without_password(self, client, monkeypatch):
        """Without a configured password every route is open."""
        from sacred_notes.config import settings

        monkeypatch.setattr(settings, "auth_password", None)
        assert client.get("/api/notes").status_code == 200
        assert client.get("/api/auth/me").json() == {"authenticated": True, "authRequired": False}

    def test_login_flow(self, client, auth_enabled):
        """Protected routes need the session cookie set by login."""
        assert client.get("/api/notes").status_code == 401
        assert client.get("/api/notes").json() == {"error": "Unauthorized"}
        assert client.get("/api/health").status_code == 200
        assert client.get("/api/bible/status").status_code == 200

        assert client.post("/api/auth/login", json={"password": "wrong"}).status_code == 401
        login = client.post("/api/auth/login", json={"password": auth_enabled})
        assert login.status_code == 200
        assert "sacred_session" in login.cookies

        assert client.get("/api/notes").status_code == 200
        assert client.get("/api/auth/me").json() == {"authenticated": True, "authRequired": True}

        client.post("/api/auth/logout")
        assert client.get("/api/notes").status_code == 401


class TestBibleApi:
    """Tests for the Bible proxy endpoints."""

    def test_bad_translation(self, client):
        """Unknown translations are a client error."""
        assert client.get("/api/bible/kjv/GEN/1").status_code == 400

    def test_upstream_error_is_502(self, client, monkeypatch):
        """Upstream failures answer 502."""
        from sacred_notes.utils import BibleApiError

        def _fail(book, chapter):
            raise BibleApiError("Bible API error: 500")

        monkeypatch.setattr("sacred_notes.bible.fetch_web", _fail)
        response = client.get("/api/bible/web/GEN/1")
        assert response.status_code == 502
        assert response.json() == {"error": "Bible API error: 500"}
