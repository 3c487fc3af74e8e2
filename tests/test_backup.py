"""
Tests for notes export/import, full backups and bulk deletion.
"""

import pytest


class TestExportImport:
    """Tests for the version 1 notes backup."""

    def test_export_format(self, sample_notes, db):
        """Exports carry a version, a timestamp and camelCase notes."""
        from sacred_notes.backup import export_notes

        data = export_notes(db)
        assert data["version"] == 1
        assert data["exportedAt"]
        assert len(data["notes"]) == 4
        assert "startChapter" in data["notes"][0]

    def test_import_into_empty_database(self, sample_notes, db, tmp_path):
        """Exported notes import cleanly into a fresh database."""
        from sacred_notes.backup import export_notes, import_notes
        from sacred_notes.db import Database

        exported = export_notes(db)
        fresh = Database(tmp_path / "fresh.db")
        fresh.initialize()
        try:
            result = import_notes(fresh, exported)
            assert result.success is True
            assert result.inserted == 4
            assert result.updated == 0
            assert result.errors is None
        finally:
            fresh.close()

    def test_reimport_updates(self, sample_notes, db):
        """Importing existing ids updates rows instead of duplicating them."""
        from sacred_notes.backup import count_notes, export_notes, import_notes

        exported = export_notes(db)
        exported["notes"][0]["title"] = "Renamed"
        result = import_notes(db, exported)
        assert result.updated == 4
        assert count_notes(db) == {"count": 4}

    def test_bad_rows_are_reported(self, db):
        """Invalid rows are collected as errors while valid rows are kept."""
        from sacred_notes.backup import count_notes, import_notes

        result = import_notes(db, {"version": 1, "notes": [
            {"id": "ok", "book": "ROM", "startChapter": 1, "endChapter": 1},
            {"id": "no-book", "startChapter": 1, "endChapter": 1},
            {"id": "bad-type", "book": "ROM", "startChapter": 1, "endChapter": 1, "type": "essay"},
            "not a note",
        ]})
        assert result.inserted == 1
        assert [e.id for e in result.errors] == ["no-book", "bad-type", None]
        assert "book" in result.errors[0].error
        assert count_notes(db) == {"count": 1}

    def test_numeric_ids_are_reported(self, db):
        """A bad row with a numeric id is reported with the id as text."""
        from sacred_notes.backup import import_notes

        result = import_notes(db, {"notes": [{"id": 42, "startChapter": 1, "endChapter": 1}]})
        assert result.inserted == 0
        assert [e.id for e in result.errors] == ["42"]

    def test_database_error_skips_only_that_row(self, db):
        """A row SQLite rejects is rolled back to its savepoint; later rows still import."""
        from sacred_notes.backup import count_notes, import_notes

        result = import_notes(db, {"notes": [
            {"id": "first", "book": "ROM", "startChapter": 1, "endChapter": 1},
            {"id": "unbindable", "book": "ROM", "startChapter": 2, "endChapter": 2, "content": {"html": "<p/>"}},
            {"id": "last", "book": "ROM", "startChapter": 3, "endChapter": 3},
        ]})
        assert result.inserted == 2
        assert [e.id for e in result.errors] == ["unbindable"]
        assert count_notes(db) == {"count": 2}
        assert not db.conn.in_transaction
        assert db.fetchone("SELECT id FROM notes WHERE id = 'unbindable'") is None

    def test_notes_array_required(self, db):
        """A payload without a notes array is rejected."""
        from sacred_notes.backup import import_notes
        from sacred_notes.utils import ValidationError

        with pytest.raises(ValidationError, match="notes array required"):
            import_notes(db, {"version": 1, "notes": "nope"})


class TestFullBackup:
    """Tests for the version 2 full backup."""

    def test_round_trip_restores_user_data(self, db, make_note, tmp_path):
        """Notes, topics, topic tags and inline tags survive a full backup."""
        from sacred_notes.backup import full_export, full_import
        from sacred_notes.db import Database
        from sacred_notes.inline_tags import get_note_tags, sync_note_tags
        from sacred_notes.models import TopicInput
        from sacred_notes.notes import get_note_topics, set_note_topics
        from sacred_notes.topics import create_topic

        parent = create_topic(db, TopicInput(name="Doctrine"))
        child = create_topic(db, TopicInput(name="Grace", parentId=parent.id))
        note = make_note(content='<p><span data-inline-tag="illustration">A gift</span></p>')
        sync_note_tags(db, note.id, note.content)
        set_note_topics(db, note.id, child.id, [parent.id])

        bundle = full_export(db)
        assert bundle["version"] == 2
        assert bundle["counts"]["topics"] == 2
        # Children before parents must still import
        bundle["topics"].reverse()

        fresh = Database(tmp_path / "restore.db")
        fresh.initialize()
        try:
            result = full_import(fresh, bundle)
            assert result["imported"]["notes"] == 1
            assert get_note_topics(fresh, note.id)["primaryTopicId"] == child.id
            assert [t.text_content for t in get_note_tags(fresh, note.id)] == ["A gift"]
        finally:
            fresh.close()

    def test_wrong_version(self, db):
        """Only version 2 bundles are accepted."""
        from sacred_notes.backup import full_import
        from sacred_notes.utils import ValidationError

        with pytest.raises(ValidationError, match="expected version 2"):
            full_import(db, {"version": 1, "notes": []})

    def test_failed_import_rolls_back(self, db):
        """A bad row aborts the whole full import."""
        from sacred_notes.backup import count_notes, full_import
        from sacred_notes.utils import ValidationError

        bundle = {
            "version": 2,
            "notes": [{
                "id": "n1", "book": "ROM", "start_chapter": 1, "end_chapter": 1, "title": "", "content": "",
                "type": "note", "created_at": "2024-01-01T00:00:00Z", "updated_at": "2024-01-01T00:00:00Z",
            }],
            "note_tags": [{"note_id": "n1"}],
        }
        with pytest.raises(ValidationError, match="note_tags row without"):
            full_import(db, bundle)
        assert count_notes(db) == {"count": 0}

    def test_dangling_reference_rolls_back(self, db, make_note):
        """A row pointing at a missing topic is named and nothing is imported."""
        from sacred_notes.backup import count_notes, full_import
        from sacred_notes.db import Database
        from sacred_notes.utils import ValidationError

        bundle = {
            "version": 2,
            "notes": [{
                "id": "n1", "book": "ROM", "start_chapter": 1, "end_chapter": 1, "title": "", "content": "",
                "type": "note", "primary_topic_id": "ghost",
                "created_at": "2024-01-01T00:00:00Z", "updated_at": "2024-01-01T00:00:00Z",
            }],
        }
        with pytest.raises(ValidationError, match="notes n1 -> topics"):
            full_import(db, bundle)
        assert not db.conn.in_transaction
        assert count_notes(db) == {"count": 0}

        # The connection is still usable and commits
        note = make_note(title="Kept")
        db.close()
        reopened = Database(db.path)
        try:
            assert reopened.fetchone("SELECT title FROM notes WHERE id = ?", (note.id,))["title"] == "Kept"
        finally:
            reopened.close()


class TestBulkOperations:
    """Tests for delete-all, count and last-modified."""

    def test_delete_all(self, sample_notes, db):
        """All notes are removed and the count reported."""
        from sacred_notes.backup import count_notes, delete_all_notes

        assert delete_all_notes(db) == {"success": True, "deleted": 4}
        assert count_notes(db) == {"count": 0}

    def test_last_modified(self, db, make_note):
        """lastModified tracks the newest updated_at, or None."""
        from sacred_notes.backup import last_modified

        assert last_modified(db) == {"lastModified": None}
        note = make_note()
        assert last_modified(db) == {"lastModified": note.updated_at}
