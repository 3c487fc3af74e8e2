"""
MCP Tools module for Sacred Notes.

Contains the MCP tool handlers (list_tools and call_tool) and the
``sacred://`` resources. Every tool result is JSON text; failures are
raised and reach the client as ``isError`` results carrying the message.
"""

import json
import re
import sqlite3
from typing import Any

import structlog
from mcp.server import Server
from mcp.types import (
    Resource,
    ResourceTemplate,
    TextContent,
    Tool,
)
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from . import backup, inline_tags, notes, sermon, series, sessions, systematic, topics
from .config import settings
from .db import Database, get_database
from .models import ApiModel, InlineTagTypeInput, NoteInput, SeriesInput, StudySessionInput, TopicInput
from .utils import SacredNotesError, ValidationError, parse_verse_reference

logger = structlog.get_logger(__name__)

# Initialize server
server = Server("sacred-notes")

NOTE_ID_RESOURCE = re.compile(r"^sacred://notes/([^/]+)$")
BOOK_RESOURCE = re.compile(r"^sacred://notes/book/([^/]+)$")
CHAPTER_RESOURCE = re.compile(r"^sacred://notes/chapter/([^/]+)/(\d+)$")


# ============== Shared schema fragments ==============

NOTE_PROPERTIES = {
    "book": {"type": "string", "description": "3-letter book code (e.g., 'ROM', 'JHN', 'GEN')"},
    "startChapter": {"type": "integer", "description": "Starting chapter"},
    "startVerse": {"type": "integer", "description": "Starting verse (omit for whole chapter)"},
    "endChapter": {"type": "integer", "description": "Ending chapter"},
    "endVerse": {"type": "integer", "description": "Ending verse (omit for whole chapter)"},
    "title": {"type": "string", "description": "Note title"},
    "content": {"type": "string", "description": "Note body (HTML)"},
    "type": {
        "type": "string",
        "enum": ["note", "commentary", "sermon"],
        "description": "Note type (default: note)"
    },
    "primaryTopicId": {"type": "string", "description": "Primary topic id"},
    "seriesId": {"type": "string", "description": "Sermon series id"},
}

PASSAGE_PROPERTIES = {
    "book": {"type": "string", "description": "3-letter book code (e.g., 'ROM')"},
    "startChapter": {"type": "integer", "description": "Starting chapter"},
    "startVerse": {"type": "integer", "description": "Starting verse"},
    "endChapter": {"type": "integer", "description": "Ending chapter (default: startChapter)"},
    "endVerse": {"type": "integer", "description": "Ending verse"},
}

TOPIC_PROPERTIES = {
    "name": {"type": "string", "description": "Topic name"},
    "parentId": {"type": ["string", "null"], "description": "Parent topic id (omit or null for a root topic)"},
    "sortOrder": {"type": "integer", "description": "Position among siblings"},
    "systematicTagId": {"type": ["string", "null"], "description": "Linked systematic theology tag id"},
}

TAG_EXTRACT_PROPERTIES = {
    "book": {"type": "string", "description": "Limit to one book code"},
    "search": {"type": "string", "description": "Text the tagged span must contain"},
    "limit": {"type": "integer", "description": "Maximum number of results (default: 50)", "default": 50},
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        # ---------- Notes: query ----------
        Tool(
            name="list_notes",
            description="List Bible study notes, most recently updated first.",
            inputSchema={
                "type": "object",
                "properties": {
                    "limit": {"type": "integer", "description": "Maximum number of notes"},
                    "offset": {"type": "integer", "description": "Notes to skip (default: 0)", "default": 0}
                }
            }
        ),
        Tool(
            name="get_note",
            description="Read one note with its full content.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Note id"}},
                "required": ["id"]
            }
        ),
        Tool(
            name="get_chapter_notes",
            description="Get all notes whose verse range touches a Bible chapter.",
            inputSchema={
                "type": "object",
                "properties": {
                    "book": {"type": "string", "description": "3-letter book code (e.g., 'ROM')"},
                    "chapter": {"type": "integer", "description": "Chapter number"}
                },
                "required": ["book", "chapter"]
            }
        ),
        Tool(
            name="get_notes_summary",
            description="Counts of notes by type and book plus the most recently updated notes.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="get_note_metadata",
            description="Read one note without its content (cheap for large notes).",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Note id"}},
                "required": ["id"]
            }
        ),
        Tool(
            name="list_notes_metadata",
            description="List notes without content, optionally filtered by book and type.",
            inputSchema={
                "type": "object",
                "properties": {
                    "book": {"type": "string", "description": "3-letter book code"},
                    "type": {"type": "string", "enum": ["note", "commentary", "sermon"], "description": "Note type"},
                    "limit": {"type": "integer", "description": "Maximum number of notes (default: 50)", "default": 50},
                    "offset": {"type": "integer", "description": "Notes to skip (default: 0)", "default": 0}
                }
            }
        ),
        Tool(
            name="search_notes",
            description="Full-text search over note titles and content. Returns notes with highlighted snippets.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query"},
                    "limit": {"type": "integer", "description": "Maximum number of results (default: 20)", "default": 20}
                },
                "required": ["query"]
            }
        ),
        # ---------- Notes: CRUD ----------
        Tool(
            name="create_note",
            description="Create a note scoped to a verse range. Inline tag spans in the content are indexed.",
            inputSchema={
                "type": "object",
                "properties": NOTE_PROPERTIES,
                "required": ["book", "startChapter", "endChapter"]
            }
        ),
        Tool(
            name="update_note",
            description="Update a note. Only the given fields change.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Note id"}, **NOTE_PROPERTIES},
                "required": ["id"]
            }
        ),
        Tool(
            name="delete_note",
            description="Delete a note and its topic tags and inline tags.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Note id"}},
                "required": ["id"]
            }
        ),
        # ---------- Topics ----------
        Tool(
            name="list_topics",
            description="The topic hierarchy with note counts.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="get_topic_notes",
            description="Notes tagged with a topic or any of its descendants.",
            inputSchema={
                "type": "object",
                "properties": {"topicId": {"type": "string", "description": "Topic id"}},
                "required": ["topicId"]
            }
        ),
        Tool(
            name="find_topic_by_name",
            description="Search topics by name (case-insensitive partial match), with note counts.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query for topic name"},
                    "limit": {"type": "integer", "description": "Maximum number of results (default: 10)", "default": 10}
                },
                "required": ["query"]
            }
        ),
        Tool(
            name="set_note_topics",
            description="Set a note's primary topic and replace its secondary topic tags.",
            inputSchema={
                "type": "object",
                "properties": {
                    "noteId": {"type": "string", "description": "Note id"},
                    "primaryTopicId": {"type": "string", "description": "Primary topic id"},
                    "tagIds": {"type": "array", "items": {"type": "string"}, "description": "Secondary topic ids"}
                },
                "required": ["noteId"]
            }
        ),
        Tool(
            name="get_topic",
            description="Read one topic.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Topic id"}},
                "required": ["id"]
            }
        ),
        Tool(
            name="create_topic",
            description="Create a topic, optionally under a parent topic.",
            inputSchema={
                "type": "object",
                "properties": TOPIC_PROPERTIES,
                "required": ["name"]
            }
        ),
        Tool(
            name="update_topic",
            description="Rename, reorder or move a topic. Pass parentId or systematicTagId as null to clear them.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Topic id"}, **TOPIC_PROPERTIES},
                "required": ["id"]
            }
        ),
        Tool(
            name="delete_topic",
            description="Delete a topic and its subtree. Notes are unlinked, not deleted.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Topic id"}},
                "required": ["id"]
            }
        ),
        Tool(
            name="seed_topics",
            description="Create the starter topic hierarchy. Only works when no topics exist.",
            inputSchema={"type": "object", "properties": {}}
        ),
        # ---------- Backup ----------
        Tool(
            name="full_export",
            description="Export notes, topics, topic tags, inline tags, series and annotations as one backup.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="full_import",
            description="Import a full backup (version 2). Existing rows with the same id are overwritten.",
            inputSchema={
                "type": "object",
                "properties": {"data": {"type": "object", "description": "Backup object from full_export"}},
                "required": ["data"]
            }
        ),
        Tool(
            name="delete_all_notes",
            description="Delete every note. Requires confirm=true.",
            inputSchema={
                "type": "object",
                "properties": {"confirm": {"type": "boolean", "description": "Must be true"}},
                "required": ["confirm"]
            }
        ),
        Tool(
            name="get_last_modified",
            description="Timestamp of the most recent note change.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="export_notes",
            description="Export every note (without topics or tags) in the versioned backup format.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="import_notes",
            description="Upsert notes by id. Invalid rows are reported in errors and skipped.",
            inputSchema={
                "type": "object",
                "properties": {
                    "notes": {
                        "type": "array",
                        "items": {"type": "object"},
                        "description": "Notes as produced by export_notes"
                    }
                },
                "required": ["notes"]
            }
        ),
        Tool(
            name="get_books_with_notes",
            description="Bible books that have notes, with note counts.",
            inputSchema={"type": "object", "properties": {}}
        ),
        # ---------- Inline tags ----------
        Tool(
            name="list_inline_tag_types",
            description="Inline tag types (illustration, application, keypoint, ...) in display order.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="create_inline_tag_type",
            description="Create a custom inline tag type. Its id is derived from the name.",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Type name"},
                    "color": {"type": "string", "description": "Hex color, e.g. '#60a5fa'"},
                    "icon": {"type": "string", "description": "Icon (emoji)"}
                },
                "required": ["name", "color"]
            }
        ),
        Tool(
            name="update_inline_tag_type",
            description="Update an inline tag type. Only the given fields change.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Tag type id"},
                    "name": {"type": "string", "description": "Type name"},
                    "color": {"type": "string", "description": "Hex color"},
                    "icon": {"type": "string", "description": "Icon (emoji)"},
                    "sortOrder": {"type": "integer", "description": "Display order"}
                },
                "required": ["id"]
            }
        ),
        Tool(
            name="delete_inline_tag_type",
            description="Delete a custom inline tag type and its tag instances. Default types cannot be deleted.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Tag type id"}},
                "required": ["id"]
            }
        ),
        Tool(
            name="seed_inline_tag_types",
            description="Restore the default inline tag types.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="list_inline_tags",
            description="Browse tagged spans with their note's passage, in canonical order.",
            inputSchema={
                "type": "object",
                "properties": {
                    "tagType": {"type": "string", "description": "Tag type id"},
                    "book": {"type": "string", "description": "3-letter book code"},
                    "search": {"type": "string", "description": "Text the tagged span must contain"},
                    "limit": {"type": "integer", "description": "Maximum number of results (default: 100)", "default": 100},
                    "offset": {"type": "integer", "description": "Results to skip (default: 0)", "default": 0}
                }
            }
        ),
        Tool(
            name="get_inline_tags_by_type",
            description="Every inline tag type with its number of tagged spans.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="search_inline_tags",
            description="Search the text of tagged spans.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search text"},
                    "limit": {"type": "integer", "description": "Maximum number of results (default: 50)", "default": 50}
                },
                "required": ["query"]
            }
        ),
        # ---------- Systematic theology ----------
        Tool(
            name="search_systematic_theology",
            description="Full-text search of the systematic theology with highlighted snippets.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query"},
                    "limit": {"type": "integer", "description": "Maximum number of results (default: 20)", "default": 20}
                },
                "required": ["query"]
            }
        ),
        Tool(
            name="get_systematic_section",
            description="Read a theology entry by reference ('ch32', 'ch32:A', 'ch32:A.1', '[[ST:Ch32]]') or id.",
            inputSchema={
                "type": "object",
                "properties": {"reference": {"type": "string", "description": "Entry reference or id"}},
                "required": ["reference"]
            }
        ),
        Tool(
            name="find_doctrines_for_passage",
            description="Theology entries that cite a Bible passage.",
            inputSchema={
                "type": "object",
                "properties": {
                    "book": {"type": "string", "description": "3-letter book code"},
                    "chapter": {"type": "integer", "description": "Chapter number"},
                    "verse": {"type": "integer", "description": "Verse number"}
                },
                "required": ["book", "chapter"]
            }
        ),
        Tool(
            name="summarize_doctrine_for_sermon",
            description="A doctrine chapter condensed for preaching: summary, sections and key verses.",
            inputSchema={
                "type": "object",
                "properties": {"chapterNumber": {"type": "integer", "description": "Chapter number"}},
                "required": ["chapterNumber"]
            }
        ),
        Tool(
            name="extract_doctrines_from_note",
            description="Resolve the [[ST:...]] links in a note's content.",
            inputSchema={
                "type": "object",
                "properties": {"noteId": {"type": "string", "description": "Note id"}},
                "required": ["noteId"]
            }
        ),
        Tool(
            name="explain_doctrine_simply",
            description="Plain-language view of a doctrine chapter.",
            inputSchema={
                "type": "object",
                "properties": {"chapterNumber": {"type": "integer", "description": "Chapter number"}},
                "required": ["chapterNumber"]
            }
        ),
        Tool(
            name="get_systematic_summary",
            description="Counts of parts, chapters, sections, scripture references and annotations.",
            inputSchema={"type": "object", "properties": {}}
        ),
        # ---------- Series ----------
        Tool(
            name="list_series",
            description="List sermon series with their sermon counts.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="get_series",
            description="A sermon series with its sermons.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Series id"}},
                "required": ["id"]
            }
        ),
        Tool(
            name="create_series",
            description="Create a sermon series.",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Series name"},
                    "description": {"type": "string", "description": "Series description"}
                },
                "required": ["name"]
            }
        ),
        Tool(
            name="add_sermon_to_series",
            description="Add a sermon-type note to a series.",
            inputSchema={
                "type": "object",
                "properties": {
                    "seriesId": {"type": "string", "description": "Series id"},
                    "noteId": {"type": "string", "description": "Sermon note id"}
                },
                "required": ["seriesId", "noteId"]
            }
        ),
        Tool(
            name="remove_sermon_from_series",
            description="Remove a sermon from its series. The note itself is kept.",
            inputSchema={
                "type": "object",
                "properties": {
                    "seriesId": {"type": "string", "description": "Series id"},
                    "noteId": {"type": "string", "description": "Sermon note id"}
                },
                "required": ["seriesId", "noteId"]
            }
        ),
        # ---------- Study sessions ----------
        Tool(
            name="log_study_session",
            description="Record that a Bible chapter, doctrine or note was studied.",
            inputSchema={
                "type": "object",
                "properties": {
                    "sessionType": {"type": "string", "enum": ["bible", "doctrine", "note"], "description": "What was studied"},
                    "referenceId": {"type": "string", "description": "e.g. 'ROM:3', 'ch32', or a note id"},
                    "referenceLabel": {"type": "string", "description": "Human-readable label"},
                    "durationSeconds": {"type": "integer", "description": "Time spent"}
                },
                "required": ["sessionType", "referenceId"]
            }
        ),
        Tool(
            name="get_recent_sessions",
            description="Recent study sessions, newest first.",
            inputSchema={
                "type": "object",
                "properties": {
                    "sessionType": {"type": "string", "enum": ["bible", "doctrine", "note"], "description": "Filter by type"},
                    "startDate": {"type": "string", "description": "ISO date lower bound"},
                    "endDate": {"type": "string", "description": "ISO date upper bound"},
                    "limit": {"type": "integer", "description": "Maximum number of sessions (default: 50)", "default": 50}
                }
            }
        ),
        Tool(
            name="get_study_summary",
            description="Study activity over the last N days: counts, most studied items and daily activity.",
            inputSchema={
                "type": "object",
                "properties": {"days": {"type": "integer", "description": "Period in days (default: 30)", "default": 30}}
            }
        ),
        Tool(
            name="find_related_sessions",
            description="Earlier sessions in the same Bible book or on the same doctrine chapter.",
            inputSchema={
                "type": "object",
                "properties": {
                    "book": {"type": "string", "description": "3-letter book code"},
                    "chapter": {"type": "integer", "description": "Chapter number"},
                    "doctrineChapter": {"type": "integer", "description": "Theology chapter number"}
                }
            }
        ),
        Tool(
            name="get_last_studied",
            description="When an item was last studied and how often.",
            inputSchema={
                "type": "object",
                "properties": {
                    "sessionType": {"type": "string", "enum": ["bible", "doctrine", "note"], "description": "Item type"},
                    "referenceId": {"type": "string", "description": "Item reference id"}
                },
                "required": ["sessionType", "referenceId"]
            }
        ),
        # ---------- Sermon helpers ----------
        Tool(
            name="parse_verse_reference",
            description="Parse a reference like 'Romans 3:21-26' or '1 Cor 13' into book code and verse range.",
            inputSchema={
                "type": "object",
                "properties": {"reference": {"type": "string", "description": "Human-readable reference"}},
                "required": ["reference"]
            }
        ),
        Tool(
            name="sermon_prep_bundle",
            description="Everything for preparing a sermon on a passage: notes, doctrines, illustrations, applications.",
            inputSchema={"type": "object", "properties": PASSAGE_PROPERTIES, "required": ["book", "startChapter"]}
        ),
        Tool(
            name="doctrine_study_bundle",
            description="A doctrine chapter with its sections, scripture, related chapters and the notes linking to it.",
            inputSchema={
                "type": "object",
                "properties": {"chapterNumber": {"type": "integer", "description": "Chapter number"}},
                "required": ["chapterNumber"]
            }
        ),
        Tool(
            name="suggest_topics_for_passage",
            description="Topics suggested for a passage from the doctrines that cite it.",
            inputSchema={
                "type": "object",
                "properties": {
                    "book": {"type": "string", "description": "3-letter book code"},
                    "chapter": {"type": "integer", "description": "Chapter number"},
                    "verse": {"type": "integer", "description": "Verse number"}
                },
                "required": ["book", "chapter"]
            }
        ),
        Tool(
            name="extract_illustrations",
            description="Collect illustration spans tagged inside notes.",
            inputSchema={"type": "object", "properties": TAG_EXTRACT_PROPERTIES}
        ),
        Tool(
            name="extract_applications",
            description="Collect application spans tagged inside notes.",
            inputSchema={"type": "object", "properties": TAG_EXTRACT_PROPERTIES}
        ),
        Tool(
            name="find_related_notes",
            description="Notes related to a note by passage, shared topics or shared doctrine links.",
            inputSchema={
                "type": "object",
                "properties": {
                    "noteId": {"type": "string", "description": "Note id"},
                    "limit": {"type": "integer", "description": "Maximum number of results (default: 10)", "default": 10}
                },
                "required": ["noteId"]
            }
        ),
        Tool(
            name="summarize_topic_notes",
            description="All notes under a topic, grouped by book and type.",
            inputSchema={
                "type": "object",
                "properties": {"topicId": {"type": "string", "description": "Topic id"}},
                "required": ["topicId"]
            }
        ),
        Tool(
            name="create_enriched_note",
            description="Create a note and get topic and doctrine-link suggestions for its passage.",
            inputSchema={
                "type": "object",
                "properties": NOTE_PROPERTIES,
                "required": ["book", "startChapter", "endChapter"]
            }
        ),
        Tool(
            name="auto_tag_note",
            description="Suggest topics for a note from its passage's doctrines, optionally applying them.",
            inputSchema={
                "type": "object",
                "properties": {
                    "noteId": {"type": "string", "description": "Note id"},
                    "applyPrimary": {"type": "boolean", "description": "Set the primary topic if none", "default": False},
                    "applySecondary": {"type": "boolean", "description": "Add the other suggestions as tags", "default": False}
                },
                "required": ["noteId"]
            }
        ),
        Tool(
            name="insert_doctrine_links",
            description="Preview, or append, [[ST:ChN]] links for the primary doctrines of a note's passage.",
            inputSchema={
                "type": "object",
                "properties": {
                    "noteId": {"type": "string", "description": "Note id"},
                    "apply": {"type": "boolean", "description": "Write the links into the note", "default": False}
                },
                "required": ["noteId"]
            }
        ),
        Tool(
            name="get_similar_sermons",
            description="Sermon notes matching a passage, topic or keyword.",
            inputSchema={
                "type": "object",
                "properties": {
                    "book": {"type": "string", "description": "3-letter book code"},
                    "chapter": {"type": "integer", "description": "Chapter number"},
                    "topic": {"type": "string", "description": "Topic name"},
                    "keyword": {"type": "string", "description": "Keyword in title or content"},
                    "limit": {"type": "integer", "description": "Maximum number of results (default: 20)", "default": 20}
                }
            }
        ),
        Tool(
            name="compile_illustrations_for_topic",
            description="Illustrations from notes under a topic or linked to a doctrine chapter.",
            inputSchema={
                "type": "object",
                "properties": {
                    "topic": {"type": "string", "description": "Topic name"},
                    "doctrineChapter": {"type": "integer", "description": "Theology chapter number"},
                    "limit": {"type": "integer", "description": "Maximum number of results (default: 30)", "default": 30}
                }
            }
        ),
        Tool(
            name="generate_sermon_structure",
            description="A sermon outline scaffold for a passage, seeded with material from existing notes.",
            inputSchema={
                "type": "object",
                "properties": {
                    **PASSAGE_PROPERTIES,
                    "sermonTitle": {"type": "string", "description": "Working title"},
                    "mainTheme": {"type": "string", "description": "Main theme"}
                },
                "required": ["book", "startChapter"]
            }
        ),
    ]


def _encode(value: Any) -> Any:
    if isinstance(value, ApiModel):
        return value.to_api()
    if isinstance(value, BaseModel):
        return value.model_dump()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=_encode)


def _passage_args(arguments: dict[str, Any]) -> dict[str, Any]:
    return {
        "book": arguments.get("book", ""),
        "start_chapter": arguments.get("startChapter"),
        "start_verse": arguments.get("startVerse"),
        "end_chapter": arguments.get("endChapter"),
        "end_verse": arguments.get("endVerse"),
    }


def _run_tool(db: Database, name: str, arguments: dict[str, Any]) -> Any:
    """Dispatch one tool call. Returns JSON-serializable data, or text."""

    # Notes: query
    if name == "list_notes":
        return notes.list_notes(db, arguments.get("limit"), arguments.get("offset", 0))

    elif name == "get_note":
        return notes.get_note(db, arguments.get("id", ""))

    elif name == "get_chapter_notes":
        book = arguments.get("book", "")
        chapter = arguments.get("chapter")
        found = notes.get_chapter_notes(db, book, chapter)
        return {"book": book.upper(), "chapter": chapter, "count": len(found), "notes": found}

    elif name == "get_notes_summary":
        return notes.get_notes_summary(db)

    elif name == "get_note_metadata":
        return notes.get_note_metadata(db, arguments.get("id", ""))

    elif name == "list_notes_metadata":
        return notes.list_notes_metadata(
            db,
            book=arguments.get("book"),
            note_type=arguments.get("type"),
            limit=arguments.get("limit", 50),
            offset=arguments.get("offset", 0),
        )

    elif name == "search_notes":
        query = arguments.get("query", "")
        limit = min(arguments.get("limit", 20), settings.max_search_results)
        results = notes.search_notes(db, query, limit)
        if not results:
            return f"No notes found for query: '{query}'"
        return {"query": query, "count": len(results), "results": results}

    # Notes: CRUD
    elif name == "create_note":
        note = notes.create_note(db, NoteInput.model_validate(arguments))
        inline_tags.sync_note_tags(db, note.id, note.content)
        return {"success": True, "note": note}

    elif name == "update_note":
        note_id = arguments.get("id", "")
        data = NoteInput.model_validate({k: v for k, v in arguments.items() if k != "id"})
        note = notes.update_note(db, note_id, data)
        if data.content is not None:
            inline_tags.sync_note_tags(db, note.id, note.content)
        return {"success": True, "note": note}

    elif name == "delete_note":
        note_id = arguments.get("id", "")
        notes.delete_note(db, note_id)
        return {"success": True, "deleted": note_id}

    # Topics
    elif name == "list_topics":
        return topics.get_topic_tree(db)

    elif name == "get_topic_notes":
        topic_id = arguments.get("topicId", "")
        topic = topics.get_topic(db, topic_id)
        found = topics.get_topic_notes(db, topic_id)
        return {"topic": topic, "count": len(found), "notes": found}

    elif name == "find_topic_by_name":
        query = arguments.get("query", "")
        found = topics.find_topic_by_name(db, query, arguments.get("limit", 10))
        results = [{**t.to_api(), "noteCount": len(topics.get_topic_notes(db, t.id))} for t in found]
        return {"query": query, "count": len(results), "results": results}

    elif name == "set_note_topics":
        return notes.set_note_topics(
            db, arguments.get("noteId", ""), arguments.get("primaryTopicId"), arguments.get("tagIds")
        )

    elif name == "get_topic":
        return topics.get_topic(db, arguments.get("id", ""))

    elif name == "create_topic":
        return {"success": True, "topic": topics.create_topic(db, TopicInput.model_validate(arguments))}

    elif name == "update_topic":
        data = TopicInput.model_validate({k: v for k, v in arguments.items() if k != "id"})
        return {"success": True, "topic": topics.update_topic(db, arguments.get("id", ""), data)}

    elif name == "delete_topic":
        topic_id = arguments.get("id", "")
        topics.delete_topic(db, topic_id)
        return {"success": True, "deleted": topic_id}

    elif name == "seed_topics":
        return topics.seed_topics(db)

    # Backup
    elif name == "full_export":
        return backup.full_export(db)

    elif name == "full_import":
        return backup.full_import(db, arguments.get("data"))

    elif name == "delete_all_notes":
        if arguments.get("confirm") is not True:
            raise ValidationError("Set confirm=true to delete all notes")
        return backup.delete_all_notes(db)

    elif name == "get_last_modified":
        return backup.last_modified(db)

    elif name == "export_notes":
        return backup.export_notes(db)

    elif name == "import_notes":
        return backup.import_notes(db, arguments).model_dump(exclude_none=True)

    elif name == "get_books_with_notes":
        return notes.get_books_with_notes(db)

    # Inline tags
    elif name == "list_inline_tag_types":
        return inline_tags.list_types(db)

    elif name == "create_inline_tag_type":
        return inline_tags.create_type(db, InlineTagTypeInput.model_validate(arguments))

    elif name == "update_inline_tag_type":
        data = InlineTagTypeInput.model_validate({k: v for k, v in arguments.items() if k != "id"})
        return inline_tags.update_type(db, arguments.get("id", ""), data)

    elif name == "delete_inline_tag_type":
        type_id = arguments.get("id", "")
        inline_tags.delete_type(db, type_id)
        return {"success": True, "deleted": type_id}

    elif name == "seed_inline_tag_types":
        return inline_tags.seed_types(db)

    elif name == "list_inline_tags":
        return inline_tags.list_tags(
            db,
            tag_type=arguments.get("tagType"),
            book=arguments.get("book"),
            search=arguments.get("search"),
            limit=arguments.get("limit", 100),
            offset=arguments.get("offset", 0),
        )

    elif name == "get_inline_tags_by_type":
        return inline_tags.tags_by_type(db)

    elif name == "search_inline_tags":
        query = arguments.get("query", "")
        results = inline_tags.search_tags(db, query, arguments.get("limit", 50))
        return {"query": query, "count": len(results), "results": results}

    # Systematic theology
    elif name == "search_systematic_theology":
        query = arguments.get("query", "")
        results = systematic.search(db, query, min(arguments.get("limit", 20), settings.max_search_results))
        if not results:
            return f"No theology entries found for query: '{query}'"
        return {"query": query, "count": len(results), "results": results}

    elif name == "get_systematic_section":
        return systematic.get_entry_by_reference(db, arguments.get("reference", ""))

    elif name == "find_doctrines_for_passage":
        book = arguments.get("book", "")
        chapter = arguments.get("chapter")
        verse = arguments.get("verse")
        found = systematic.find_for_passage(db, book, chapter, verse)
        return {"passage": {"book": book.upper(), "chapter": chapter, "verse": verse}, "count": len(found),
                "doctrines": found}

    elif name == "summarize_doctrine_for_sermon":
        return systematic.summarize_for_sermon(db, arguments.get("chapterNumber"))

    elif name == "extract_doctrines_from_note":
        return systematic.extract_doctrines_from_note(db, arguments.get("noteId", ""))

    elif name == "explain_doctrine_simply":
        return systematic.explain_simply(db, arguments.get("chapterNumber"))

    elif name == "get_systematic_summary":
        return systematic.get_summary(db)

    # Series
    elif name == "list_series":
        return series.list_series(db)

    elif name == "get_series":
        return series.get_series(db, arguments.get("id", ""))

    elif name == "create_series":
        return series.create_series(db, SeriesInput.model_validate(arguments))

    elif name == "add_sermon_to_series":
        return series.add_sermon(db, arguments.get("seriesId", ""), arguments.get("noteId", ""))

    elif name == "remove_sermon_from_series":
        return series.remove_sermon(db, arguments.get("seriesId", ""), arguments.get("noteId", ""))

    # Study sessions
    elif name == "log_study_session":
        return sessions.log_session(db, StudySessionInput.model_validate(arguments))

    elif name == "get_recent_sessions":
        return sessions.list_sessions(
            db,
            session_type=arguments.get("sessionType"),
            start_date=arguments.get("startDate"),
            end_date=arguments.get("endDate"),
            limit=arguments.get("limit", 50),
        )

    elif name == "get_study_summary":
        return sessions.get_summary(db, arguments.get("days", 30))

    elif name == "find_related_sessions":
        return sessions.find_related(
            db, arguments.get("book"), arguments.get("chapter"), arguments.get("doctrineChapter")
        )

    elif name == "get_last_studied":
        return sessions.get_last_studied(db, arguments.get("sessionType", ""), arguments.get("referenceId", ""))

    # Sermon helpers
    elif name == "parse_verse_reference":
        text = arguments.get("reference", "")
        parsed = parse_verse_reference(text)
        if parsed is None:
            raise ValidationError(f"Could not parse reference: '{text}'")
        return parsed

    elif name == "sermon_prep_bundle":
        return sermon.sermon_prep_bundle(db, **_passage_args(arguments))

    elif name == "doctrine_study_bundle":
        return systematic.doctrine_study_bundle(db, arguments.get("chapterNumber"))

    elif name == "suggest_topics_for_passage":
        return sermon.suggest_topics_for_passage(
            db, arguments.get("book", ""), arguments.get("chapter"), arguments.get("verse")
        )

    elif name in ("extract_illustrations", "extract_applications"):
        tag_type = "illustration" if name == "extract_illustrations" else "application"
        return inline_tags.extract_tags(
            db, tag_type, book=arguments.get("book"), search=arguments.get("search"), limit=arguments.get("limit", 50)
        )

    elif name == "find_related_notes":
        return sermon.find_related_notes(db, arguments.get("noteId", ""), arguments.get("limit", 10))

    elif name == "summarize_topic_notes":
        return sermon.summarize_topic_notes(db, arguments.get("topicId", ""))

    elif name == "create_enriched_note":
        return sermon.create_enriched_note(db, NoteInput.model_validate(arguments))

    elif name == "auto_tag_note":
        return sermon.auto_tag_note(
            db,
            arguments.get("noteId", ""),
            apply_primary=arguments.get("applyPrimary", False),
            apply_secondary=arguments.get("applySecondary", False),
        )

    elif name == "insert_doctrine_links":
        return sermon.insert_doctrine_links(db, arguments.get("noteId", ""), apply=arguments.get("apply", False))

    elif name == "get_similar_sermons":
        return sermon.get_similar_sermons(
            db,
            book=arguments.get("book"),
            chapter=arguments.get("chapter"),
            topic=arguments.get("topic"),
            keyword=arguments.get("keyword"),
            limit=arguments.get("limit", 20),
        )

    elif name == "compile_illustrations_for_topic":
        return sermon.compile_illustrations_for_topic(
            db,
            topic=arguments.get("topic"),
            doctrine_chapter=arguments.get("doctrineChapter"),
            limit=arguments.get("limit", 30),
        )

    elif name == "generate_sermon_structure":
        return sermon.generate_sermon_structure(
            db,
            **_passage_args(arguments),
            sermon_title=arguments.get("sermonTitle"),
            main_theme=arguments.get("mainTheme"),
        )

    raise ValidationError(f"Unknown tool: {name}")


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls.

    Failures are raised, so the server returns them as ``isError`` results.
    """
    db = get_database()
    try:
        result = _run_tool(db, name, arguments or {})
    except SacredNotesError as e:
        logger.warning("tool_failed", tool=name, error=str(e))
        raise
    except PydanticValidationError as e:
        logger.warning("tool_invalid_arguments", tool=name, errors=e.error_count())
        raise ValidationError(f"Invalid arguments: {e.error_count()} invalid field(s)") from e
    except sqlite3.Error as e:
        logger.error("tool_database_error", tool=name, error=str(e), exc_type=type(e).__name__)
        raise SacredNotesError(f"Database error: {e}") from e

    if isinstance(result, str):
        return [TextContent(type="text", text=result)]
    return [TextContent(type="text", text=to_json(result))]


# ============== Resources ==============

@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri="sacred://notes/all",
            name="All Notes",
            description="Every note, most recently updated first",
            mimeType="application/json"
        ),
        Resource(
            uri="sacred://notes/summary",
            name="Notes Summary",
            description="Note counts by type and book plus recent notes",
            mimeType="application/json"
        ),
        Resource(
            uri="sacred://systematic/summary",
            name="Systematic Theology Summary",
            description="Counts of theology entries, scripture references and annotations",
            mimeType="application/json"
        ),
    ]


@server.list_resource_templates()
async def list_resource_templates() -> list[ResourceTemplate]:
    """List parameterized resources."""
    return [
        ResourceTemplate(
            uriTemplate="sacred://notes/{id}",
            name="Note",
            description="One note by id",
            mimeType="application/json"
        ),
        ResourceTemplate(
            uriTemplate="sacred://notes/book/{book}",
            name="Book Notes",
            description="Notes in a Bible book",
            mimeType="application/json"
        ),
        ResourceTemplate(
            uriTemplate="sacred://notes/chapter/{book}/{chapter}",
            name="Chapter Notes",
            description="Notes touching a Bible chapter",
            mimeType="application/json"
        ),
    ]


@server.read_resource()
async def read_resource(uri: Any) -> str:
    """Read a resource."""
    uri = str(uri)
    db = get_database()
    try:
        if uri == "sacred://notes/all":
            return to_json(notes.list_notes(db))
        if uri == "sacred://notes/summary":
            return to_json(notes.get_notes_summary(db))
        if uri == "sacred://systematic/summary":
            return to_json(systematic.get_summary(db))

        match = CHAPTER_RESOURCE.match(uri)
        if match:
            return to_json(notes.get_chapter_notes(db, match.group(1), int(match.group(2))))
        match = BOOK_RESOURCE.match(uri)
        if match:
            return to_json(notes.get_book_notes(db, match.group(1)))
        match = NOTE_ID_RESOURCE.match(uri)
        if match:
            return to_json(notes.get_note(db, match.group(1)))
    except SacredNotesError as e:
        return json.dumps({"error": str(e)})

    return json.dumps({"error": f"Unknown resource: {uri}"})
