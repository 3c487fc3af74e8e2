"""
Tests for the MCP tool and resource handlers.
"""

import json

import pytest


def _text(result):
    assert len(result) == 1
    return result[0].text


async def _call(name, arguments):
    """Call a tool through the server's request handler, as a client would."""
    from mcp.types import CallToolRequest, CallToolRequestParams

    from sacred_notes.tools import server

    request = CallToolRequest(method="tools/call", params=CallToolRequestParams(name=name, arguments=arguments))
    response = await server.request_handlers[CallToolRequest](request)
    return response.root


class TestListTools:
    """Tests for the tool catalogue."""

    @pytest.mark.asyncio
    async def test_every_tool_is_dispatched(self):
        """Every advertised tool has a branch in the dispatcher."""
        import inspect

        from sacred_notes.tools import _run_tool, list_tools

        tools = await list_tools()
        names = [t.name for t in tools]
        assert len(names) == len(set(names))
        assert {"create_note", "sermon_prep_bundle", "get_systematic_section"} <= set(names)
        assert {"create_topic", "import_notes", "list_inline_tag_types"} <= set(names)

        source = inspect.getsource(_run_tool)
        for tool in tools:
            assert tool.inputSchema["type"] == "object"
            assert f'"{tool.name}"' in source

    @pytest.mark.asyncio
    async def test_unknown_tool(self, patched_db):
        """Unknown tool names are rejected."""
        from sacred_notes.tools import call_tool
        from sacred_notes.utils import ValidationError

        with pytest.raises(ValidationError, match="Unknown tool: nope"):
            await call_tool("nope", {})


class TestToolErrors:
    """Tests for how failures reach MCP clients."""

    @pytest.mark.asyncio
    async def test_domain_errors_are_flagged(self, patched_db):
        """A domain error comes back as an isError result carrying the message."""
        result = await _call("get_note", {"id": "missing"})
        assert result.isError is True
        assert _text(result.content) == "Note not found"

        result = await _call("nope", {})
        assert result.isError is True
        assert _text(result.content) == "Unknown tool: nope"

    @pytest.mark.asyncio
    async def test_success_is_not_flagged(self, patched_db, make_note):
        """Successful calls return JSON text without the error flag."""
        note = make_note(title="Found")
        result = await _call("get_note", {"id": note.id})
        assert result.isError is False
        assert json.loads(_text(result.content))["title"] == "Found"

    @pytest.mark.asyncio
    async def test_argument_errors(self, patched_db):
        """Arguments the models cannot parse become validation errors."""
        from sacred_notes.tools import call_tool
        from sacred_notes.utils import ValidationError

        with pytest.raises(ValidationError, match="Missing required fields"):
            await call_tool("create_note", {"book": "ROM"})
        with pytest.raises(ValidationError, match="Invalid arguments: 1 invalid field"):
            await call_tool("create_note", {"book": "ROM", "startChapter": "three", "endChapter": 3})

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self, patched_db, monkeypatch):
        """SQLite failures are reported as database errors."""
        import sqlite3

        def _locked(db):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr("sacred_notes.notes.get_notes_summary", _locked)
        result = await _call("get_notes_summary", {})
        assert result.isError is True
        assert _text(result.content) == "Database error: database is locked"

    @pytest.mark.asyncio
    async def test_unknown_topic_is_an_error(self, patched_db):
        """A note pointing at a missing topic is rejected before touching SQLite."""
        result = await _call("create_note", {
            "book": "ROM", "startChapter": 1, "endChapter": 1, "primaryTopicId": "ghost",
        })
        assert result.isError is True
        assert _text(result.content) == "Topic not found"


class TestNoteTools:
    """Tests for note tools."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, patched_db):
        """Created notes come back as camelCase JSON with synced inline tags."""
        from sacred_notes.inline_tags import get_note_tags
        from sacred_notes.tools import call_tool

        created = json.loads(_text(await call_tool("create_note", {
            "book": "ROM", "startChapter": 8, "endChapter": 8, "title": "No condemnation",
            "content": '<span data-inline-tag="keypoint">No condemnation</span>',
        })))
        assert created["success"] is True
        note_id = created["note"]["id"]
        assert created["note"]["startChapter"] == 8
        assert len(get_note_tags(patched_db, note_id)) == 1

        fetched = json.loads(_text(await call_tool("get_note", {"id": note_id})))
        assert fetched["title"] == "No condemnation"

    @pytest.mark.asyncio
    async def test_search_without_results(self, patched_db):
        """An empty search returns a readable message."""
        from sacred_notes.tools import call_tool

        assert _text(await call_tool("search_notes", {"query": "nothing"})) == "No notes found for query: 'nothing'"

    @pytest.mark.asyncio
    async def test_update_and_delete(self, patched_db, make_note):
        """Updates are partial and deletes report the id."""
        from sacred_notes.tools import call_tool

        note = make_note(title="Old")
        updated = json.loads(_text(await call_tool("update_note", {"id": note.id, "title": "New"})))
        assert updated["note"]["title"] == "New"
        assert updated["note"]["content"] == note.content

        deleted = json.loads(_text(await call_tool("delete_note", {"id": note.id})))
        assert deleted == {"success": True, "deleted": note.id}

    @pytest.mark.asyncio
    async def test_delete_all_requires_confirm(self, patched_db, make_note):
        """delete_all_notes refuses without confirm=true."""
        from sacred_notes.tools import call_tool
        from sacred_notes.utils import ValidationError

        make_note()
        with pytest.raises(ValidationError, match="Set confirm=true"):
            await call_tool("delete_all_notes", {})
        result = json.loads(_text(await call_tool("delete_all_notes", {"confirm": True})))
        assert result["deleted"] == 1


class TestTopicTools:
    """Tests for topic tools."""

    @pytest.mark.asyncio
    async def test_find_topic_by_name(self, patched_db, make_note):
        """Matching topics come back with their note counts."""
        from sacred_notes.models import TopicInput
        from sacred_notes.notes import set_note_topics
        from sacred_notes.topics import create_topic
        from sacred_notes.tools import call_tool

        grace = create_topic(patched_db, TopicInput(name="Grace"))
        create_topic(patched_db, TopicInput(name="Prayer"))
        set_note_topics(patched_db, make_note().id, grace.id)

        result = json.loads(_text(await call_tool("find_topic_by_name", {"query": "gra"})))
        assert result["count"] == 1
        assert result["results"][0]["name"] == "Grace"
        assert result["results"][0]["noteCount"] == 1

        result = await _call("find_topic_by_name", {"query": " "})
        assert result.isError is True
        assert _text(result.content) == "Topic name is required"

    @pytest.mark.asyncio
    async def test_topic_crud(self, patched_db):
        """Topics can be created, read, moved, unlinked and deleted."""
        from sacred_notes.tools import call_tool
        from sacred_notes.utils import NotFoundError, ValidationError

        parent = json.loads(_text(await call_tool("create_topic", {"name": "Doctrine"})))["topic"]
        child = json.loads(_text(await call_tool("create_topic", {
            "name": "God", "parentId": parent["id"], "systematicTagId": "doctrine-god",
        })))["topic"]
        assert child["parentId"] == parent["id"]
        assert json.loads(_text(await call_tool("get_topic", {"id": child["id"]})))["name"] == "God"
        with pytest.raises(ValidationError, match="Circular reference"):
            await call_tool("update_topic", {"id": parent["id"], "parentId": child["id"]})

        updated = json.loads(_text(await call_tool("update_topic", {
            "id": child["id"], "parentId": None, "systematicTagId": None,
        })))["topic"]
        assert updated["parentId"] is None
        assert updated["systematicTagId"] is None

        deleted = json.loads(_text(await call_tool("delete_topic", {"id": parent["id"]})))
        assert deleted == {"success": True, "deleted": parent["id"]}
        with pytest.raises(NotFoundError):
            await call_tool("get_topic", {"id": parent["id"]})

    @pytest.mark.asyncio
    async def test_seed_topics(self, patched_db):
        """The starter hierarchy is seeded once."""
        from sacred_notes.tools import call_tool
        from sacred_notes.utils import ValidationError

        assert json.loads(_text(await call_tool("seed_topics", {})))["created"] == 21
        with pytest.raises(ValidationError, match="Topics already exist"):
            await call_tool("seed_topics", {})


class TestBackupTools:
    """Tests for notes export/import tools."""

    @pytest.mark.asyncio
    async def test_export_and_import(self, patched_db, make_note):
        """Exported notes re-import as updates; bad rows are reported."""
        from sacred_notes.tools import call_tool

        make_note(title="One")
        make_note(book="JHN", title="Two")
        exported = json.loads(_text(await call_tool("export_notes", {})))
        assert exported["version"] == 1
        assert len(exported["notes"]) == 2

        result = json.loads(_text(await call_tool("import_notes", {
            "notes": [*exported["notes"], {"id": "bad", "startChapter": 1, "endChapter": 1}],
        })))
        assert result["updated"] == 2
        assert result["inserted"] == 0
        assert [e["id"] for e in result["errors"]] == ["bad"]

    @pytest.mark.asyncio
    async def test_books_with_notes(self, patched_db, make_note):
        """Books are listed with their note counts."""
        from sacred_notes.tools import call_tool

        make_note()
        make_note()
        make_note(book="JHN")
        books = json.loads(_text(await call_tool("get_books_with_notes", {})))
        assert books == [{"book": "JHN", "count": 1}, {"book": "ROM", "count": 2}]


class TestInlineTagTools:
    """Tests for inline tag type and tag instance tools."""

    @pytest.mark.asyncio
    async def test_type_management(self, patched_db):
        """Custom types are created, edited and deleted; defaults are restored by seeding."""
        from sacred_notes.tools import call_tool
        from sacred_notes.utils import ValidationError

        assert len(json.loads(_text(await call_tool("list_inline_tag_types", {})))) == 5

        created = json.loads(_text(await call_tool("create_inline_tag_type", {"name": "Prayer", "color": "#aabbcc"})))
        assert created["id"] == "prayer"
        updated = json.loads(_text(await call_tool("update_inline_tag_type", {"id": "prayer", "icon": "🙏"})))
        assert updated["icon"] == "🙏"
        assert updated["color"] == "#aabbcc"

        with pytest.raises(ValidationError, match="Cannot delete default"):
            await call_tool("delete_inline_tag_type", {"id": "quote"})
        assert json.loads(_text(await call_tool("delete_inline_tag_type", {"id": "prayer"})))["deleted"] == "prayer"

        await call_tool("update_inline_tag_type", {"id": "quote", "name": "Citation"})
        seeded = json.loads(_text(await call_tool("seed_inline_tag_types", {})))
        assert [t["name"] for t in seeded if t["id"] == "quote"] == ["Quote"]

    @pytest.mark.asyncio
    async def test_tag_queries(self, patched_db, make_note):
        """Tagged spans can be listed, counted by type and searched."""
        from sacred_notes.inline_tags import sync_note_tags
        from sacred_notes.tools import call_tool
        from sacred_notes.utils import ValidationError

        note = make_note(content='<span data-inline-tag="quote">Grace upon grace</span>'
                                 '<span data-inline-tag="keypoint">Faith alone</span>')
        sync_note_tags(patched_db, note.id, note.content)

        quotes = json.loads(_text(await call_tool("list_inline_tags", {"tagType": "quote"})))
        assert [t["textContent"] for t in quotes] == ["Grace upon grace"]
        assert quotes[0]["book"] == "ROM"

        counts = {t["id"]: t["count"] for t in json.loads(_text(await call_tool("get_inline_tags_by_type", {})))}
        assert counts["quote"] == 1
        assert counts["illustration"] == 0

        found = json.loads(_text(await call_tool("search_inline_tags", {"query": "faith"})))
        assert found["count"] == 1
        assert found["results"][0]["tagType"] == "keypoint"
        with pytest.raises(ValidationError):
            await call_tool("search_inline_tags", {"query": ""})


class TestTheologyTools:
    """Tests for systematic theology and sermon tools."""

    @pytest.mark.asyncio
    async def test_section_lookup(self, theology_db, patched_db):
        """Sections are looked up by reference."""
        from sacred_notes.tools import call_tool

        entry = json.loads(_text(await call_tool("get_systematic_section", {"reference": "[[ST:Ch32:B]]"})))
        assert entry["title"] == "The Nature of the Atonement"

    @pytest.mark.asyncio
    async def test_find_doctrines_for_passage(self, theology_db, patched_db):
        """Doctrines for a passage are wrapped with the passage and count."""
        from sacred_notes.tools import call_tool

        result = json.loads(_text(await call_tool("find_doctrines_for_passage", {"book": "rom", "chapter": 3})))
        assert result["passage"] == {"book": "ROM", "chapter": 3, "verse": None}
        assert result["count"] == 2

    @pytest.mark.asyncio
    async def test_parse_verse_reference(self, patched_db):
        """References parse to camelCase JSON; bad ones are errors."""
        from sacred_notes.tools import call_tool
        from sacred_notes.utils import ValidationError

        parsed = json.loads(_text(await call_tool("parse_verse_reference", {"reference": "John 3:16"})))
        assert parsed["book"] == "JHN"
        assert parsed["startVerse"] == 16
        with pytest.raises(ValidationError, match="Could not parse reference: 'Book 1'"):
            await call_tool("parse_verse_reference", {"reference": "Book 1"})

    @pytest.mark.asyncio
    async def test_sermon_prep_bundle(self, sample_notes, patched_db):
        """The bundle tool maps passage arguments."""
        from sacred_notes.tools import call_tool

        bundle = json.loads(_text(await call_tool("sermon_prep_bundle", {"book": "ROM", "startChapter": 3})))
        assert bundle["passage"]["reference"] == "ROM 3"
        assert bundle["counts"]["notes"] == 3


class TestResources:
    """Tests for sacred:// resources."""

    @pytest.mark.asyncio
    async def test_static_resources(self, patched_db):
        """The fixed resources are listed and readable."""
        from sacred_notes.tools import list_resources, read_resource

        uris = [str(r.uri) for r in await list_resources()]
        assert "sacred://notes/summary" in uris
        summary = json.loads(await read_resource("sacred://notes/summary"))
        assert summary["total"] == 0

    @pytest.mark.asyncio
    async def test_templated_resources(self, sample_notes, patched_db):
        """Notes can be read by id, book and chapter."""
        from sacred_notes.tools import read_resource

        note = sample_notes["john"]
        assert json.loads(await read_resource(f"sacred://notes/{note.id}"))["title"] == "God so loved"
        assert len(json.loads(await read_resource("sacred://notes/book/JHN"))) == 1
        assert len(json.loads(await read_resource("sacred://notes/chapter/ROM/4"))) == 1

    @pytest.mark.asyncio
    async def test_unknown_and_missing(self, patched_db):
        """Unknown URIs and missing notes return an error object."""
        from sacred_notes.tools import read_resource

        assert json.loads(await read_resource("sacred://nope"))["error"] == "Unknown resource: sacred://nope"
        assert json.loads(await read_resource("sacred://notes/missing")) == {"error": "Note not found"}
