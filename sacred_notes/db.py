"""
SQLite storage for Sacred Notes.

One connection per process, opened lazily. Statements outside of
``transaction()`` autocommit; ``transaction()`` wraps a block in
BEGIN/COMMIT and rolls back on any exception.
"""

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

from .config import DEFAULT_INLINE_TAG_TYPES, DEFAULT_SYSTEMATIC_TAGS, settings
from .utils import ValidationError, now_iso

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS series (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS systematic_tags (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    color TEXT,
    sort_order INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS topics (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    parent_id TEXT REFERENCES topics(id) ON DELETE CASCADE,
    sort_order INTEGER DEFAULT 0,
    systematic_tag_id TEXT REFERENCES systematic_tags(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    book TEXT NOT NULL,
    start_chapter INTEGER NOT NULL,
    start_verse INTEGER,
    end_chapter INTEGER NOT NULL,
    end_verse INTEGER,
    title TEXT DEFAULT '',
    content TEXT DEFAULT '',
    type TEXT DEFAULT 'note',
    primary_topic_id TEXT REFERENCES topics(id) ON DELETE SET NULL,
    series_id TEXT REFERENCES series(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notes_book_chapter ON notes(book, start_chapter, end_chapter);
CREATE INDEX IF NOT EXISTS idx_notes_updated ON notes(updated_at);

CREATE TABLE IF NOT EXISTS note_tags (
    note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    topic_id TEXT NOT NULL REFERENCES topics(id) ON DELETE CASCADE,
    PRIMARY KEY (note_id, topic_id)
);

CREATE TABLE IF NOT EXISTS inline_tag_types (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    color TEXT NOT NULL,
    icon TEXT,
    is_default INTEGER DEFAULT 0,
    sort_order INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS inline_tags (
    id TEXT PRIMARY KEY,
    note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    tag_type TEXT NOT NULL REFERENCES inline_tag_types(id) ON DELETE CASCADE,
    text_content TEXT NOT NULL,
    html_fragment TEXT,
    position_start INTEGER,
    position_end INTEGER,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_inline_tags_note ON inline_tags(note_id);
CREATE INDEX IF NOT EXISTS idx_inline_tags_type ON inline_tags(tag_type);

CREATE TABLE IF NOT EXISTS systematic_theology (
    id TEXT PRIMARY KEY,
    entry_type TEXT NOT NULL CHECK (entry_type IN ('part', 'chapter', 'section', 'subsection')),
    part_number INTEGER,
    chapter_number INTEGER,
    section_letter TEXT,
    subsection_number INTEGER,
    title TEXT NOT NULL,
    content TEXT,
    summary TEXT,
    parent_id TEXT REFERENCES systematic_theology(id) ON DELETE CASCADE,
    sort_order INTEGER DEFAULT 0,
    word_count INTEGER DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_systematic_chapter ON systematic_theology(chapter_number, section_letter, subsection_number);
CREATE INDEX IF NOT EXISTS idx_systematic_parent ON systematic_theology(parent_id);

CREATE TABLE IF NOT EXISTS systematic_scripture_index (
    id TEXT PRIMARY KEY,
    systematic_id TEXT NOT NULL REFERENCES systematic_theology(id) ON DELETE CASCADE,
    book TEXT NOT NULL,
    chapter INTEGER NOT NULL,
    start_verse INTEGER,
    end_verse INTEGER,
    is_primary INTEGER DEFAULT 0,
    context_snippet TEXT,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_scripture_passage ON systematic_scripture_index(book, chapter);

CREATE TABLE IF NOT EXISTS systematic_annotations (
    id TEXT PRIMARY KEY,
    systematic_id TEXT NOT NULL REFERENCES systematic_theology(id) ON DELETE CASCADE,
    annotation_type TEXT NOT NULL CHECK (annotation_type IN ('highlight', 'note')),
    color TEXT,
    content TEXT,
    text_selection TEXT,
    position_start INTEGER,
    position_end INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS systematic_related (
    id TEXT PRIMARY KEY,
    source_chapter INTEGER NOT NULL,
    target_chapter INTEGER NOT NULL,
    relationship_type TEXT DEFAULT 'see_also',
    note TEXT,
    created_at TEXT,
    UNIQUE (source_chapter, target_chapter)
);

CREATE TABLE IF NOT EXISTS systematic_chapter_tags (
    chapter_number INTEGER NOT NULL,
    tag_id TEXT NOT NULL REFERENCES systematic_tags(id) ON DELETE CASCADE,
    PRIMARY KEY (chapter_number, tag_id)
);

CREATE TABLE IF NOT EXISTS study_sessions (
    id TEXT PRIMARY KEY,
    session_type TEXT NOT NULL CHECK (session_type IN ('bible', 'doctrine', 'note')),
    reference_id TEXT NOT NULL,
    reference_label TEXT,
    duration_seconds INTEGER,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_created ON study_sessions(created_at);
CREATE INDEX IF NOT EXISTS idx_sessions_reference ON study_sessions(session_type, reference_id);

CREATE TABLE IF NOT EXISTS auth_sessions (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
    title, content,
    content='notes', content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS notes_ai AFTER INSERT ON notes BEGIN
    INSERT INTO notes_fts(rowid, title, content) VALUES (new.rowid, new.title, new.content);
END;

CREATE TRIGGER IF NOT EXISTS notes_ad AFTER DELETE ON notes BEGIN
    INSERT INTO notes_fts(notes_fts, rowid, title, content) VALUES ('delete', old.rowid, old.title, old.content);
END;

CREATE TRIGGER IF NOT EXISTS notes_au AFTER UPDATE ON notes BEGIN
    INSERT INTO notes_fts(notes_fts, rowid, title, content) VALUES ('delete', old.rowid, old.title, old.content);
    INSERT INTO notes_fts(rowid, title, content) VALUES (new.rowid, new.title, new.content);
END;

CREATE VIRTUAL TABLE IF NOT EXISTS systematic_theology_fts USING fts5(
    title, content, summary,
    content='systematic_theology', content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS systematic_ai AFTER INSERT ON systematic_theology BEGIN
    INSERT INTO systematic_theology_fts(rowid, title, content, summary)
    VALUES (new.rowid, new.title, new.content, new.summary);
END;

CREATE TRIGGER IF NOT EXISTS systematic_ad AFTER DELETE ON systematic_theology BEGIN
    INSERT INTO systematic_theology_fts(systematic_theology_fts, rowid, title, content, summary)
    VALUES ('delete', old.rowid, old.title, old.content, old.summary);
END;

CREATE TRIGGER IF NOT EXISTS systematic_au AFTER UPDATE ON systematic_theology BEGIN
    INSERT INTO systematic_theology_fts(systematic_theology_fts, rowid, title, content, summary)
    VALUES ('delete', old.rowid, old.title, old.content, old.summary);
    INSERT INTO systematic_theology_fts(rowid, title, content, summary)
    VALUES (new.rowid, new.title, new.content, new.summary);
END;
"""


def _connect_sqlite(path: Path) -> sqlite3.Connection:
    # Autocommit; transaction() issues BEGIN/COMMIT explicitly
    conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class Database:
    """Single shared SQLite connection with transaction helpers."""

    def __init__(self, path: Path):
        self.path = path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = _connect_sqlite(self.path)
            logger.info("database_opened", path=str(self.path))
        return self._conn

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self.fetchone(sql, params)
        return row[0] if row is not None else None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically. Nested calls join the outer transaction."""
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self.conn
                finally:
                    self._depth -= 1
                return

            self.conn.execute("BEGIN")
            self._depth = 1
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                try:
                    self.conn.execute("COMMIT")
                except sqlite3.Error:
                    # A failed COMMIT (e.g. deferred foreign keys) leaves the transaction open
                    if self.conn.in_transaction:
                        self.conn.execute("ROLLBACK")
                    raise
            finally:
                self._depth = 0

    def initialize(self) -> None:
        """Create the schema and insert default tag types and doctrine tags."""
        with self._lock:
            self.conn.executescript(SCHEMA)
        self.seed_defaults()

    def seed_defaults(self) -> None:
        now = now_iso()
        with self.transaction() as conn:
            conn.executemany(
                """INSERT OR IGNORE INTO inline_tag_types (id, name, color, icon, is_default, sort_order, created_at)
                   VALUES (?, ?, ?, ?, 1, ?, ?)""",
                [(tid, name, color, icon, order, now) for tid, name, color, icon, order in DEFAULT_INLINE_TAG_TYPES],
            )
            conn.executemany(
                """INSERT OR IGNORE INTO systematic_tags (id, name, color, sort_order, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                [(tid, name, color, order, now) for tid, name, color, order in DEFAULT_SYSTEMATIC_TAGS],
            )

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def check_foreign_keys(conn: sqlite3.Connection) -> None:
    """Raise ValidationError listing rows whose foreign keys point nowhere.

    Used before committing a transaction that deferred its foreign keys.
    """
    violations = conn.execute("PRAGMA foreign_key_check").fetchall()
    if not violations:
        return

    dangling = []
    for table, rowid, parent, _ in violations[:10]:
        key = conn.execute(f"SELECT * FROM {table} WHERE rowid = ?", (rowid,)).fetchone()
        label = key["id"] if key is not None and "id" in key.keys() else f"rowid {rowid}"
        dangling.append(f"{table} {label} -> {parent}")
    more = f" (and {len(violations) - 10} more)" if len(violations) > 10 else ""
    raise ValidationError(f"Missing referenced rows: {'; '.join(dangling)}{more}")


def placeholders(values: Sequence[Any]) -> str:
    """Return "?, ?, ?" for an IN clause."""
    return ", ".join("?" for _ in values)


_database: Database | None = None


def get_database() -> Database:
    """Return the process-wide database, creating and initializing it on first use."""
    global _database
    if _database is None:
        _database = Database(settings.db_path)
        _database.initialize()
    return _database
