"""
Topic functions for Sacred Notes.

User-defined hierarchical topics: tree with note counts, CRUD with
cycle checks, subtree note queries and the starter hierarchy.
"""

from typing import Any

import structlog

from .config import DEFAULT_TOPICS
from .db import Database, placeholders
from .models import Note, Topic, TopicInput
from .notes import row_to_note
from .tree import build_tree, descendant_ids
from .utils import NotFoundError, ValidationError, new_id, now_iso

logger = structlog.get_logger(__name__)

# Fields an update may set back to null
CLEARABLE_FIELDS = ("parent_id", "systematic_tag_id")


def _topic_sort_key(node: dict[str, Any]) -> tuple[int, str]:
    return (node.get("sortOrder") or 0, node.get("name") or "")


def _all_topics(db: Database) -> list[Topic]:
    return [Topic.model_validate(dict(r)) for r in db.fetchall("SELECT * FROM topics")]


def _subtree_ids(db: Database, topic_id: str) -> list[str]:
    pairs = [(r["id"], r["parent_id"]) for r in db.fetchall("SELECT id, parent_id FROM topics")]
    return descendant_ids(pairs, topic_id)


def get_topic_tree(db: Database) -> list[dict[str, Any]]:
    """Return the topic forest; each node's noteCount covers its whole subtree.

    A note counts once per subtree even if it is linked both as primary
    topic and as a secondary tag.
    """
    notes_by_topic: dict[str, set[str]] = {}
    for row in db.fetchall(
        """SELECT primary_topic_id AS topic_id, id AS note_id FROM notes WHERE primary_topic_id IS NOT NULL
           UNION
           SELECT topic_id, note_id FROM note_tags"""
    ):
        notes_by_topic.setdefault(row["topic_id"], set()).add(row["note_id"])

    tree = build_tree((t.to_api() for t in _all_topics(db)), sort_key=_topic_sort_key)

    def _count(node: dict[str, Any]) -> set[str]:
        note_ids = set(notes_by_topic.get(node["id"], set()))
        for child in node["children"]:
            note_ids |= _count(child)
        node["noteCount"] = len(note_ids)
        return note_ids

    for root in tree:
        _count(root)
    return tree


def list_topics_flat(db: Database) -> list[Topic]:
    return [Topic.model_validate(dict(r)) for r in db.fetchall("SELECT * FROM topics ORDER BY name")]


def get_topic(db: Database, topic_id: str) -> Topic:
    row = db.fetchone("SELECT * FROM topics WHERE id = ?", (topic_id,))
    if row is None:
        raise NotFoundError("Topic not found")
    return Topic.model_validate(dict(row))


def find_topic_by_name(db: Database, name: str, limit: int = 10) -> list[Topic]:
    """Case-insensitive lookup: exact matches, then prefix matches, then the rest."""
    if not name or not name.strip():
        raise ValidationError("Topic name is required")
    name = name.strip()
    rows = db.fetchall(
        """SELECT * FROM topics WHERE name LIKE ?
           ORDER BY CASE WHEN LOWER(name) = LOWER(?) THEN 0 WHEN name LIKE ? THEN 1 ELSE 2 END, name
           LIMIT ?""",
        (f"%{name}%", name, f"{name}%", limit),
    )
    return [Topic.model_validate(dict(r)) for r in rows]


def get_topic_notes(db: Database, topic_id: str) -> list[Note]:
    """Notes linked to the topic or any descendant, in canonical passage order."""
    get_topic(db, topic_id)
    ids = _subtree_ids(db, topic_id)
    marks = placeholders(ids)
    rows = db.fetchall(
        f"""SELECT DISTINCT n.* FROM notes n
            LEFT JOIN note_tags nt ON n.id = nt.note_id
            WHERE n.primary_topic_id IN ({marks}) OR nt.topic_id IN ({marks})
            ORDER BY n.book, n.start_chapter, n.start_verse""",
        (*ids, *ids),
    )
    return [row_to_note(r) for r in rows]


def create_topic(db: Database, data: TopicInput) -> Topic:
    """Create a topic under an optional parent.

    Raises:
        ValidationError: If the name is blank or the parent does not exist
    """
    if not data.name or not data.name.strip():
        raise ValidationError("Topic name is required")
    if data.parent_id and db.fetchone("SELECT id FROM topics WHERE id = ?", (data.parent_id,)) is None:
        raise ValidationError("Parent topic not found")

    topic_id = new_id()
    now = now_iso()
    db.execute(
        """INSERT INTO topics (id, name, parent_id, sort_order, systematic_tag_id, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (topic_id, data.name.strip(), data.parent_id, data.sort_order or 0, data.systematic_tag_id, now, now),
    )
    logger.info("topic_created", id=topic_id, name=data.name.strip(), parent_id=data.parent_id)
    return get_topic(db, topic_id)


def update_topic(db: Database, topic_id: str, data: TopicInput) -> Topic:
    """Rename, reorder or move a topic.

    Raises:
        ValidationError: On a blank name, a missing parent, a self-parent,
            or a move under one of the topic's own descendants
    """
    existing = get_topic(db, topic_id)
    changes = data.model_dump(exclude_unset=True)

    if "name" in changes and (not changes["name"] or not changes["name"].strip()):
        raise ValidationError("Topic name is required")

    parent_id = changes.get("parent_id", existing.parent_id)
    if "parent_id" in changes and parent_id:
        if parent_id == topic_id:
            raise ValidationError("Topic cannot be its own parent")
        if db.fetchone("SELECT id FROM topics WHERE id = ?", (parent_id,)) is None:
            raise ValidationError("Parent topic not found")
        if parent_id in _subtree_ids(db, topic_id):
            raise ValidationError("Circular reference detected")

    merged = existing.model_copy(update={k: v for k, v in changes.items() if v is not None or k in CLEARABLE_FIELDS})
    db.execute(
        """UPDATE topics SET name = ?, parent_id = ?, sort_order = ?, systematic_tag_id = ?, updated_at = ?
           WHERE id = ?""",
        (merged.name.strip(), merged.parent_id, merged.sort_order, merged.systematic_tag_id, now_iso(), topic_id),
    )
    logger.info("topic_updated", id=topic_id, fields=sorted(changes))
    return get_topic(db, topic_id)


def delete_topic(db: Database, topic_id: str) -> None:
    """Delete a topic and its subtree, unlinking any notes that used them."""
    get_topic(db, topic_id)
    ids = _subtree_ids(db, topic_id)
    marks = placeholders(ids)
    with db.transaction() as conn:
        conn.execute(f"UPDATE notes SET primary_topic_id = NULL WHERE primary_topic_id IN ({marks})", ids)
        conn.execute(f"DELETE FROM note_tags WHERE topic_id IN ({marks})", ids)
        conn.execute("DELETE FROM topics WHERE id = ?", (topic_id,))
    logger.info("topic_deleted", id=topic_id, removed=len(ids))


def seed_topics(db: Database) -> dict[str, Any]:
    """Create the starter hierarchy. Refuses when any topic already exists.

    Raises:
        ValidationError: If topics already exist
    """
    if db.scalar("SELECT COUNT(*) FROM topics"):
        raise ValidationError("Topics already exist. Delete all topics first to reseed.")

    now = now_iso()
    created = 0
    with db.transaction() as conn:
        for group_order, (group, children) in enumerate(DEFAULT_TOPICS.items()):
            group_id = new_id()
            conn.execute(
                "INSERT INTO topics (id, name, parent_id, sort_order, created_at, updated_at) VALUES (?, ?, NULL, ?, ?, ?)",
                (group_id, group, group_order, now, now),
            )
            created += 1
            for child_order, child in enumerate(children):
                conn.execute(
                    "INSERT INTO topics (id, name, parent_id, sort_order, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (new_id(), child, group_id, child_order, now, now),
                )
                created += 1

    logger.info("topics_seeded", created=created)
    return {"success": True, "message": "Default topics seeded successfully", "created": created}
