"""
HTTP API for Sacred Notes.

FastAPI application serving the web client under ``/api``. Domain
errors map to status codes and ``{"error": message}`` bodies; SQLite
errors become 500 with the same body shape.
"""

import sqlite3
from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from . import auth, backup, bible, inline_tags, notes, series, sessions, systematic, topics
from .config import AUTH_COOKIE_NAME, settings
from .db import Database, get_database
from .models import (
    AnnotationInput,
    InlineTagTypeInput,
    NoteInput,
    SeriesInput,
    StudySessionInput,
    TopicInput,
)
from .utils import (
    AuthenticationError,
    BibleApiError,
    NotFoundError,
    SacredNotesError,
    TreeIntegrityError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

STATUS_CODES: dict[type[SacredNotesError], int] = {
    ValidationError: 400,
    AuthenticationError: 401,
    NotFoundError: 404,
    TreeIntegrityError: 500,
    BibleApiError: 502,
}

# Reachable without a session when auth is enabled
PUBLIC_PATHS = ("/api/auth/", "/api/bible/status", "/api/health")


def get_db(request: Request) -> Database:
    return request.app.state.db


def _no_content() -> Response:
    return Response(status_code=204)


# ============== Notes ==============

notes_router = APIRouter(prefix="/api/notes", tags=["notes"])


@notes_router.get("")
def list_all_notes(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [n.to_api() for n in notes.list_notes(db)["notes"]]


@notes_router.get("/summary")
def notes_summary(db: Database = Depends(get_db)) -> dict[str, Any]:
    return notes.get_notes_summary(db)


@notes_router.get("/books")
def books_with_notes(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return notes.get_books_with_notes(db)


@notes_router.get("/search")
def search_notes(
    q: str = Query(..., description="Full-text query"),
    limit: int = Query(20, ge=1),
    db: Database = Depends(get_db),
) -> list[dict[str, Any]]:
    return [r.to_api() for r in notes.search_notes(db, q, min(limit, settings.max_search_results))]


@notes_router.get("/metadata")
def notes_metadata(
    book: str | None = None,
    type: str | None = None,
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    db: Database = Depends(get_db),
) -> dict[str, Any]:
    return notes.list_notes_metadata(db, book=book, note_type=type, limit=limit, offset=offset)


@notes_router.get("/chapter/{book}/{chapter}")
def chapter_notes(book: str, chapter: int, db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [n.to_api() for n in notes.get_chapter_notes(db, book, chapter)]


@notes_router.get("/book/{book}")
def book_notes(book: str, db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [n.to_api() for n in notes.get_book_notes(db, book)]


@notes_router.get("/{note_id}")
def get_note(note_id: str, db: Database = Depends(get_db)) -> dict[str, Any]:
    return notes.get_note(db, note_id).to_api()


@notes_router.post("", status_code=201)
def create_note(payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    note = notes.create_note(db, NoteInput.model_validate(payload))
    inline_tags.sync_note_tags(db, note.id, note.content)
    return note.to_api()


@notes_router.put("/{note_id}")
def update_note(note_id: str, payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    data = NoteInput.model_validate(payload)
    note = notes.update_note(db, note_id, data)
    if data.content is not None:
        inline_tags.sync_note_tags(db, note.id, note.content)
    return note.to_api()


@notes_router.delete("/{note_id}", status_code=204)
def delete_note(note_id: str, db: Database = Depends(get_db)) -> Response:
    notes.delete_note(db, note_id)
    return _no_content()


@notes_router.get("/{note_id}/topics")
def note_topics(note_id: str, db: Database = Depends(get_db)) -> dict[str, Any]:
    return notes.get_note_topics(db, note_id)


@notes_router.put("/{note_id}/topics")
def set_note_topics(note_id: str, payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    tags = payload.get("tags")
    if tags is not None and not isinstance(tags, list):
        raise ValidationError("tags must be an array")
    return notes.set_note_topics(db, note_id, payload.get("primaryTopicId"), tags)


@notes_router.get("/{note_id}/inline-tags")
def note_inline_tags(note_id: str, db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    notes.get_note_metadata(db, note_id)
    return [t.to_api() for t in inline_tags.get_note_tags(db, note_id)]


# ============== Backup ==============

# Shares the /api/notes prefix; included before the notes router so its
# fixed paths win over /{note_id}
backup_router = APIRouter(prefix="/api/notes", tags=["backup"])


@backup_router.get("/export")
def export_notes(db: Database = Depends(get_db)) -> dict[str, Any]:
    return backup.export_notes(db)


@backup_router.post("/import")
def import_notes(payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    return backup.import_notes(db, payload).model_dump(exclude_none=True)


@backup_router.get("/full-export")
def full_export(db: Database = Depends(get_db)) -> dict[str, Any]:
    return backup.full_export(db)


@backup_router.post("/full-import")
def full_import(payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    return backup.full_import(db, payload)


@backup_router.delete("")
def delete_all_notes(db: Database = Depends(get_db)) -> dict[str, Any]:
    return backup.delete_all_notes(db)


@backup_router.get("/count")
def count_notes(db: Database = Depends(get_db)) -> dict[str, int]:
    return backup.count_notes(db)


@backup_router.get("/lastModified")
def last_modified(db: Database = Depends(get_db)) -> dict[str, str | None]:
    return backup.last_modified(db)


# ============== Topics ==============

topics_router = APIRouter(prefix="/api/topics", tags=["topics"])


@topics_router.get("")
def topic_tree(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return topics.get_topic_tree(db)


@topics_router.get("/flat")
def topics_flat(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [t.to_api() for t in topics.list_topics_flat(db)]


@topics_router.post("/seed", status_code=201)
def seed_topics(db: Database = Depends(get_db)) -> dict[str, Any]:
    return topics.seed_topics(db)


@topics_router.get("/{topic_id}")
def get_topic(topic_id: str, db: Database = Depends(get_db)) -> dict[str, Any]:
    return topics.get_topic(db, topic_id).to_api()


@topics_router.get("/{topic_id}/notes")
def topic_notes(topic_id: str, db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    topics.get_topic(db, topic_id)
    return [n.to_api() for n in topics.get_topic_notes(db, topic_id)]


@topics_router.post("", status_code=201)
def create_topic(payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    return topics.create_topic(db, TopicInput.model_validate(payload)).to_api()


@topics_router.put("/{topic_id}")
def update_topic(topic_id: str, payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    return topics.update_topic(db, topic_id, TopicInput.model_validate(payload)).to_api()


@topics_router.delete("/{topic_id}", status_code=204)
def delete_topic(topic_id: str, db: Database = Depends(get_db)) -> Response:
    topics.delete_topic(db, topic_id)
    return _no_content()


# ============== Inline tags ==============

inline_tags_router = APIRouter(prefix="/api/inline-tags", tags=["inline-tags"])


@inline_tags_router.get("/types")
def tag_types(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [t.to_api() for t in inline_tags.list_types(db)]


@inline_tags_router.post("/types", status_code=201)
def create_tag_type(payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    return inline_tags.create_type(db, InlineTagTypeInput.model_validate(payload)).to_api()


@inline_tags_router.post("/types/seed")
def seed_tag_types(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [t.to_api() for t in inline_tags.seed_types(db)]


@inline_tags_router.put("/types/{type_id}")
def update_tag_type(type_id: str, payload: dict[str, Any] = Body(...),
                    db: Database = Depends(get_db)) -> dict[str, Any]:
    return inline_tags.update_type(db, type_id, InlineTagTypeInput.model_validate(payload)).to_api()


@inline_tags_router.delete("/types/{type_id}", status_code=204)
def delete_tag_type(type_id: str, db: Database = Depends(get_db)) -> Response:
    inline_tags.delete_type(db, type_id)
    return _no_content()


@inline_tags_router.get("")
def list_inline_tags(
    tagType: str | None = None,
    book: str | None = None,
    search: str | None = None,
    limit: int = Query(100, ge=1),
    offset: int = Query(0, ge=0),
    db: Database = Depends(get_db),
) -> list[dict[str, Any]]:
    tags = inline_tags.list_tags(db, tag_type=tagType, book=book, search=search, limit=limit, offset=offset)
    return [t.to_api() for t in tags]


@inline_tags_router.get("/by-type")
def inline_tags_by_type(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return inline_tags.tags_by_type(db)


@inline_tags_router.get("/search")
def search_inline_tags(
    q: str | None = None,
    limit: int = Query(50, ge=1),
    db: Database = Depends(get_db),
) -> list[dict[str, Any]]:
    return [t.to_api() for t in inline_tags.search_tags(db, q, limit)]


# ============== Systematic theology ==============

systematic_router = APIRouter(prefix="/api/systematic", tags=["systematic"])


@systematic_router.get("")
def theology_tree(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return systematic.get_tree(db)


@systematic_router.get("/flat")
def theology_flat(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [e.to_api() for e in systematic.list_flat(db)]


@systematic_router.get("/chapter/{chapter_number}")
def theology_chapter(chapter_number: int, db: Database = Depends(get_db)) -> dict[str, Any]:
    return systematic.get_chapter(db, chapter_number)


@systematic_router.get("/for-passage/{book}/{chapter}")
def doctrines_for_passage(book: str, chapter: int, verse: int | None = None,
                          db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return systematic.find_for_passage(db, book, chapter, verse)


@systematic_router.get("/tags")
def theology_tags(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [t.to_api() for t in systematic.list_tags(db)]


@systematic_router.get("/by-tag/{tag_id}")
def chapters_by_tag(tag_id: str, db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [e.to_api() for e in systematic.chapters_by_tag(db, tag_id)]


@systematic_router.get("/search")
def search_theology(
    q: str = "",
    limit: int = Query(20, ge=1),
    db: Database = Depends(get_db),
) -> list[dict[str, Any]]:
    return systematic.search(db, q, min(limit, settings.max_search_results))


@systematic_router.get("/summary")
def theology_summary(db: Database = Depends(get_db)) -> dict[str, int]:
    return systematic.get_summary(db)


@systematic_router.get("/ref/{reference}")
def theology_by_reference(reference: str, db: Database = Depends(get_db)) -> dict[str, Any]:
    return systematic.get_entry_by_reference(db, reference)


@systematic_router.delete("/annotations/{annotation_id}", status_code=204)
def delete_annotation(annotation_id: str, db: Database = Depends(get_db)) -> Response:
    systematic.delete_annotation(db, annotation_id)
    return _no_content()


@systematic_router.get("/{entry_id}")
def theology_entry(entry_id: str, db: Database = Depends(get_db)) -> dict[str, Any]:
    return systematic.get_entry(db, entry_id)


@systematic_router.get("/{entry_id}/annotations")
def list_annotations(entry_id: str, db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [a.to_api() for a in systematic.list_annotations(db, entry_id)]


@systematic_router.post("/{entry_id}/annotations", status_code=201)
def add_annotation(entry_id: str, payload: dict[str, Any] = Body(...),
                   db: Database = Depends(get_db)) -> dict[str, Any]:
    return systematic.add_annotation(db, entry_id, AnnotationInput.model_validate(payload)).to_api()


@systematic_router.get("/{entry_id}/referencing-notes")
def referencing_notes(entry_id: str, db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return systematic.referencing_notes(db, entry_id)


# ============== Series ==============

series_router = APIRouter(prefix="/api/series", tags=["series"])


@series_router.get("")
def list_series(db: Database = Depends(get_db)) -> list[dict[str, Any]]:
    return [s.to_api() for s in series.list_series(db)]


@series_router.get("/{series_id}")
def get_series(series_id: str, db: Database = Depends(get_db)) -> dict[str, Any]:
    return series.get_series(db, series_id)


@series_router.post("", status_code=201)
def create_series(payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    return series.create_series(db, SeriesInput.model_validate(payload)).to_api()


@series_router.put("/{series_id}")
def update_series(series_id: str, payload: dict[str, Any] = Body(...),
                  db: Database = Depends(get_db)) -> dict[str, Any]:
    return series.update_series(db, series_id, SeriesInput.model_validate(payload)).to_api()


@series_router.delete("/{series_id}", status_code=204)
def delete_series(series_id: str, db: Database = Depends(get_db)) -> Response:
    series.delete_series(db, series_id)
    return _no_content()


@series_router.post("/{series_id}/sermons/{note_id}")
def add_sermon(series_id: str, note_id: str, db: Database = Depends(get_db)) -> dict[str, bool]:
    return series.add_sermon(db, series_id, note_id)


@series_router.delete("/{series_id}/sermons/{note_id}")
def remove_sermon(series_id: str, note_id: str, db: Database = Depends(get_db)) -> dict[str, bool]:
    return series.remove_sermon(db, series_id, note_id)


# ============== Study sessions ==============

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@sessions_router.post("", status_code=201)
def log_session(payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, Any]:
    return sessions.log_session(db, StudySessionInput.model_validate(payload)).to_api()


@sessions_router.get("")
def list_sessions(
    type: str | None = None,
    startDate: str | None = None,
    endDate: str | None = None,
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    db: Database = Depends(get_db),
) -> dict[str, Any]:
    return sessions.list_sessions(db, type, startDate, endDate, limit, offset)


@sessions_router.get("/summary")
def session_summary(days: int = Query(30, ge=1), db: Database = Depends(get_db)) -> dict[str, Any]:
    return sessions.get_summary(db, days)


@sessions_router.get("/related")
def related_sessions(
    book: str | None = None,
    chapter: int | None = None,
    doctrineChapter: int | None = None,
    db: Database = Depends(get_db),
) -> dict[str, Any]:
    return sessions.find_related(db, book, chapter, doctrineChapter)


@sessions_router.get("/last")
def last_studied(sessionType: str, referenceId: str, db: Database = Depends(get_db)) -> dict[str, Any]:
    return sessions.get_last_studied(db, sessionType, referenceId)


@sessions_router.delete("")
def prune_sessions(olderThan: str | None = None, db: Database = Depends(get_db)) -> dict[str, Any]:
    return sessions.delete_older_than(db, olderThan)


# ============== Auth ==============

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/login")
def login(response: Response, payload: dict[str, Any] = Body(...), db: Database = Depends(get_db)) -> dict[str, bool]:
    session = auth.login(db, payload.get("password"))
    response.set_cookie(
        AUTH_COOKIE_NAME,
        session["sessionId"],
        max_age=session["maxAge"],
        path="/",
        httponly=True,
        samesite="strict",
    )
    return {"success": True}


@auth_router.post("/logout")
def logout(request: Request, response: Response, db: Database = Depends(get_db)) -> dict[str, bool]:
    auth.logout(db, request.cookies.get(AUTH_COOKIE_NAME))
    response.delete_cookie(AUTH_COOKIE_NAME, path="/", httponly=True, samesite="strict")
    return {"success": True}


@auth_router.get("/me")
def me(request: Request, db: Database = Depends(get_db)) -> dict[str, bool]:
    return auth.auth_status(db, request.cookies.get(AUTH_COOKIE_NAME))


# ============== Bible ==============

bible_router = APIRouter(prefix="/api/bible", tags=["bible"])


@bible_router.get("/status")
def bible_status() -> dict[str, Any]:
    return bible.status()


@bible_router.get("/{translation}/{book}/{chapter}")
def bible_chapter(translation: str, book: str, chapter: str) -> dict[str, Any]:
    return bible.fetch_chapter(translation, book, chapter).model_dump()


ROUTERS = (
    backup_router,
    notes_router,
    topics_router,
    inline_tags_router,
    systematic_router,
    series_router,
    sessions_router,
    auth_router,
    bible_router,
)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(db: Database | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        db: Database to serve; the process-wide database when omitted
    """
    app = FastAPI(title="Sacred Notes API", version="1.0.0")
    app.state.db = db or get_database()

    @app.middleware("http")
    async def require_session(request: Request, call_next):
        path = request.url.path
        if (
            auth.is_auth_enabled()
            and path.startswith("/api/")
            and not path.startswith(PUBLIC_PATHS)
            and not auth.validate_session(app.state.db, request.cookies.get(AUTH_COOKIE_NAME))
        ):
            return _error_response(401, "Unauthorized")
        return await call_next(request)

    @app.exception_handler(SacredNotesError)
    async def domain_error(request: Request, exc: SacredNotesError) -> JSONResponse:
        status_code = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
        if status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=str(exc), status=status_code)
        return _error_response(status_code, str(exc))

    @app.exception_handler(sqlite3.Error)
    async def database_error(request: Request, exc: sqlite3.Error) -> JSONResponse:
        logger.error("database_error", path=request.url.path, error=str(exc), exc_type=type(exc).__name__)
        return _error_response(500, f"Database error: {exc}")

    @app.exception_handler(PydanticValidationError)
    async def invalid_payload(request: Request, exc: PydanticValidationError) -> JSONResponse:
        return _error_response(400, f"Invalid request body: {exc.error_count()} invalid field(s)")

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = errors[0].get("msg", "invalid") if errors else "invalid"
        field = ".".join(str(p) for p in errors[0].get("loc", ())) if errors else ""
        return _error_response(400, f"Invalid request: {field} {detail}".strip())

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    for router in ROUTERS:
        app.include_router(router)

    return app
