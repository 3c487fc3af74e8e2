"""
Sermon series functions for Sacred Notes.
"""

from typing import Any

import structlog

from .db import Database
from .models import NoteMetadata, Series, SeriesInput
from .notes import METADATA_COLUMNS
from .utils import NotFoundError, ValidationError, new_id, now_iso

logger = structlog.get_logger(__name__)


def _require_name(name: str | None) -> str:
    if not name or not name.strip():
        raise ValidationError("Name is required")
    return name.strip()


def _fetch_series(db: Database, series_id: str) -> Series:
    row = db.fetchone("SELECT * FROM series WHERE id = ?", (series_id,))
    if row is None:
        raise NotFoundError("Series not found")
    return Series.model_validate(dict(row))


def list_series(db: Database) -> list[Series]:
    """All series with their sermon counts, most recently touched first."""
    rows = db.fetchall(
        """SELECT s.*, COUNT(n.id) AS sermon_count
           FROM series s
           LEFT JOIN notes n ON n.series_id = s.id AND n.type = 'sermon'
           GROUP BY s.id
           ORDER BY s.updated_at DESC"""
    )
    return [Series.model_validate(dict(r)) for r in rows]


def get_series(db: Database, series_id: str) -> dict[str, Any]:
    """A series with its sermons in the order they were written."""
    series = _fetch_series(db, series_id)
    rows = db.fetchall(
        f"""SELECT {METADATA_COLUMNS} FROM notes
            WHERE series_id = ? AND type = 'sermon'
            ORDER BY created_at ASC""",
        (series_id,),
    )
    sermons = [NoteMetadata.model_validate(dict(r)).to_api() for r in rows]
    return {**series.to_api(exclude={"sermon_count"}), "sermons": sermons, "sermonCount": len(sermons)}


def create_series(db: Database, data: SeriesInput) -> Series:
    name = _require_name(data.name)
    series_id = new_id()
    now = now_iso()
    db.execute(
        "INSERT INTO series (id, name, description, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (series_id, name, data.description or None, now, now),
    )
    logger.info("series_created", id=series_id, name=name)
    return _fetch_series(db, series_id)


def update_series(db: Database, series_id: str, data: SeriesInput) -> Series:
    name = _require_name(data.name)
    _fetch_series(db, series_id)
    db.execute(
        "UPDATE series SET name = ?, description = ?, updated_at = ? WHERE id = ?",
        (name, data.description or None, now_iso(), series_id),
    )
    return _fetch_series(db, series_id)


def delete_series(db: Database, series_id: str) -> None:
    """Delete a series. Its sermons remain, detached from the series."""
    _fetch_series(db, series_id)
    db.execute("DELETE FROM series WHERE id = ?", (series_id,))
    logger.info("series_deleted", id=series_id)


def add_sermon(db: Database, series_id: str, note_id: str) -> dict[str, bool]:
    """Attach a sermon note to a series.

    Raises:
        NotFoundError: If the series or note does not exist
        ValidationError: If the note is not a sermon
    """
    _fetch_series(db, series_id)
    note = db.fetchone("SELECT type FROM notes WHERE id = ?", (note_id,))
    if note is None:
        raise NotFoundError("Note not found")
    if note["type"] != "sermon":
        raise ValidationError("Only sermon-type notes can be added to series")

    now = now_iso()
    with db.transaction() as conn:
        conn.execute("UPDATE notes SET series_id = ?, updated_at = ? WHERE id = ?", (series_id, now, note_id))
        conn.execute("UPDATE series SET updated_at = ? WHERE id = ?", (now, series_id))
    logger.info("sermon_added_to_series", series_id=series_id, note_id=note_id)
    return {"success": True}


def remove_sermon(db: Database, series_id: str, note_id: str) -> dict[str, bool]:
    if db.fetchone("SELECT id FROM notes WHERE id = ? AND series_id = ?", (note_id, series_id)) is None:
        raise NotFoundError("Sermon not found in this series")

    now = now_iso()
    with db.transaction() as conn:
        conn.execute("UPDATE notes SET series_id = NULL, updated_at = ? WHERE id = ?", (now, note_id))
        conn.execute("UPDATE series SET updated_at = ? WHERE id = ?", (now, series_id))
    logger.info("sermon_removed_from_series", series_id=series_id, note_id=note_id)
    return {"success": True}
