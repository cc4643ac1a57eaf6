"""
lorekit Item Store

SQLite-backed record store: item CRUD, embedding storage, usage tracking,
and the aggregate queries the retrieval tiers read from.
Schema and connection handling live in db.py.
"""

import json
import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Optional

from lorekit.core.db import (
    connect,
    deserialize_embedding,
    init_db,
    serialize_embedding,
    utc_now,
)
from lorekit.types import Category, Item, ProjectFingerprint

logger = logging.getLogger(__name__)

# Public API input limits
MAX_SUMMARY_LENGTH = 500
MAX_CONTENT_LENGTH = 50_000
MAX_LIST_ENTRIES = 50

# Columns that update_item() may change
_UPDATABLE_FIELDS = {
    "project", "file_context", "category", "summary", "content",
    "decision_rationale", "alternatives_considered", "solution_verified",
    "tags", "related_issues",
}
_JSON_LIST_FIELDS = {"alternatives_considered", "tags", "related_issues"}


def _dump_list(values: Optional[list[str]]) -> Optional[str]:
    if not values:
        return None
    return json.dumps(list(values)[:MAX_LIST_ENTRIES])


def _load_list(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Malformed JSON list column: %s", raw[:100])
        return None
    return values or None


def row_to_item(row: sqlite3.Row) -> Item:
    """Deserialize a knowledge_items row."""
    keys = row.keys()
    return Item(
        id=row["id"],
        category=Category(row["category"]),
        project=row["project"],
        file_context=row["file_context"],
        summary=row["summary"],
        content=row["content"],
        decision_rationale=row["decision_rationale"] or None,
        alternatives_considered=_load_list(row["alternatives_considered"]),
        solution_verified=bool(row["solution_verified"]),
        tags=_load_list(row["tags"]),
        related_issues=_load_list(row["related_issues"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        access_count=row["access_count"] if "access_count" in keys else 0,
        first_accessed_at=row["first_accessed_at"] if "first_accessed_at" in keys else None,
        last_accessed_at=row["last_accessed_at"] if "last_accessed_at" in keys else None,
        embedding_model=row["embedding_model"] if "embedding_model" in keys else None,
        embedding_generated_at=row["embedding_generated_at"] if "embedding_generated_at" in keys else None,
    )


def _filters(project: Optional[str], category: Optional[Category]) -> tuple[list[str], list]:
    conditions: list[str] = []
    params: list = []
    if project:
        conditions.append("project = ?")
        params.append(project)
    if category:
        conditions.append("category = ?")
        params.append(Category(category).value)
    return conditions, params


def _where(conditions: list[str]) -> str:
    return f"WHERE {' AND '.join(conditions)}" if conditions else ""


class SQLiteItemStore:
    """ItemStore backed by a single SQLite file.

    Every method opens and closes its own connection, so one store can be
    shared between request threads and the background worker.
    """

    def __init__(self, db_path: Path, initialize: bool = True):
        self.db_path = Path(db_path)
        if initialize:
            init_db(self.db_path)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_item(
        self,
        project: str,
        file_context: str,
        category: Category | str,
        summary: str,
        content: str,
        decision_rationale: Optional[str] = None,
        alternatives_considered: Optional[list[str]] = None,
        solution_verified: bool = False,
        tags: Optional[list[str]] = None,
        related_issues: Optional[list[str]] = None,
        item_id: Optional[str] = None,
    ) -> Item:
        """
        Store a new knowledge item.

        Embeddings are not computed here; queue a generate_embedding job on
        the background worker (or call embed_item) afterwards.

        Raises:
            ValueError: unknown category, or empty project/summary/content
        """
        category = Category(category)
        if not project or not project.strip():
            raise ValueError("project is required")
        if not summary or not summary.strip():
            raise ValueError("summary is required")
        if not content:
            raise ValueError("content is required")

        # Input validation
        if len(summary) > MAX_SUMMARY_LENGTH:
            summary = summary[:MAX_SUMMARY_LENGTH]
        if len(content) > MAX_CONTENT_LENGTH:
            content = content[:MAX_CONTENT_LENGTH]

        item_id = item_id or f"ki_{uuid.uuid4().hex[:12]}"
        now = utc_now()

        with connect(self.db_path) as db:
            db.execute("""
                INSERT INTO knowledge_items (
                    id, project, file_context, category, summary, content,
                    decision_rationale, alternatives_considered, solution_verified,
                    tags, related_issues, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                item_id,
                project.strip(),
                file_context or "",
                category.value,
                summary,
                content,
                decision_rationale or None,
                _dump_list(alternatives_considered),
                1 if solution_verified else 0,
                _dump_list(tags),
                _dump_list(related_issues),
                now,
                now,
            ))
            db.commit()

        logger.debug("Stored item %s (%s/%s)", item_id, project, category.value)
        return self.get_item_by_id(item_id)

    def get_item_by_id(self, item_id: str) -> Optional[Item]:
        with connect(self.db_path) as db:
            row = db.execute(
                "SELECT * FROM knowledge_items WHERE id = ?", (item_id,)
            ).fetchone()
        return row_to_item(row) if row else None

    def list_items(
        self,
        project: Optional[str] = None,
        category: Optional[Category] = None,
        limit: Optional[int] = None,
    ) -> list[Item]:
        conditions, params = _filters(project, category)
        query = f"SELECT * FROM knowledge_items {_where(conditions)} ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with connect(self.db_path) as db:
            rows = db.execute(query, params).fetchall()
        return [row_to_item(r) for r in rows]

    def update_item(self, item_id: str, **fields) -> Optional[Item]:
        """Update selected fields. Returns the updated item, or None if missing.

        Changing summary or content clears the stored embedding so it gets
        regenerated.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        assignments = []
        params: list = []
        for name, value in fields.items():
            if name == "category":
                value = Category(value).value
            elif name in _JSON_LIST_FIELDS:
                value = _dump_list(value)
            elif name == "solution_verified":
                value = 1 if value else 0
            elif name == "summary" and value and len(value) > MAX_SUMMARY_LENGTH:
                value = value[:MAX_SUMMARY_LENGTH]
            elif name == "content" and value and len(value) > MAX_CONTENT_LENGTH:
                value = value[:MAX_CONTENT_LENGTH]
            assignments.append(f"{name} = ?")
            params.append(value)

        if {"summary", "content"} & set(fields):
            assignments.append("embedding = NULL, embedding_model = NULL, embedding_generated_at = NULL")

        if not assignments:
            return self.get_item_by_id(item_id)

        assignments.append("updated_at = ?")
        params.extend([utc_now(), item_id])

        with connect(self.db_path) as db:
            cursor = db.execute(
                f"UPDATE knowledge_items SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            db.commit()
            if cursor.rowcount == 0:
                return None
        return self.get_item_by_id(item_id)

    def delete_item(self, item_id: str) -> bool:
        with connect(self.db_path) as db:
            cursor = db.execute("DELETE FROM knowledge_items WHERE id = ?", (item_id,))
            deleted = cursor.rowcount > 0
            db.commit()
        return deleted

    # ------------------------------------------------------------------
    # EMBEDDINGS
    # ------------------------------------------------------------------

    def update_item_embedding(self, item_id: str, embedding: list[float], model: str) -> bool:
        with connect(self.db_path) as db:
            cursor = db.execute("""
                UPDATE knowledge_items
                SET embedding = ?, embedding_model = ?, embedding_generated_at = ?
                WHERE id = ?
            """, (serialize_embedding(embedding), model, utc_now(), item_id))
            db.commit()
            updated = cursor.rowcount > 0
        return updated

    def get_item_embedding(self, item_id: str) -> Optional[list[float]]:
        with connect(self.db_path) as db:
            row = db.execute(
                "SELECT embedding FROM knowledge_items WHERE id = ?", (item_id,)
            ).fetchone()
        return deserialize_embedding(row["embedding"]) if row else None

    def get_items_with_vectors(
        self,
        project: Optional[str] = None,
        category: Optional[Category] = None,
    ) -> list[tuple[Item, list[float]]]:
        """All items carrying an embedding, with their vectors."""
        conditions, params = _filters(project, category)
        conditions.insert(0, "embedding IS NOT NULL")
        with connect(self.db_path) as db:
            rows = db.execute(
                f"SELECT * FROM knowledge_items {_where(conditions)}", params
            ).fetchall()
        return [(row_to_item(r), deserialize_embedding(r["embedding"])) for r in rows]

    def get_items_without_vectors(self, limit: int = 50) -> list[Item]:
        """Items still waiting for an embedding, newest first."""
        with connect(self.db_path) as db:
            rows = db.execute("""
                SELECT * FROM knowledge_items
                WHERE embedding IS NULL
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
            """, (limit,)).fetchall()
        return [row_to_item(r) for r in rows]

    # ------------------------------------------------------------------
    # RETRIEVAL QUERIES
    # ------------------------------------------------------------------

    def get_recent_items(
        self,
        project: Optional[str] = None,
        category: Optional[Category] = None,
        limit: int = 20,
    ) -> list[Item]:
        """Most recently created items matching the filters."""
        return self.list_items(project=project, category=category, limit=limit)

    def get_recent_high_value_items(self, project: Optional[str] = None, limit: int = 5) -> list[Item]:
        """Most recent 'win' items."""
        return self.list_items(project=project, category=Category.WIN, limit=limit)

    def get_aggregate_fingerprint(self, project: Optional[str] = None, top_n: int = 5) -> ProjectFingerprint:
        """Counts by category plus the most-accessed and most-recent items."""
        conditions, params = _filters(project, None)
        where = _where(conditions)

        with connect(self.db_path) as db:
            total = db.execute(
                f"SELECT COUNT(*) FROM knowledge_items {where}", params
            ).fetchone()[0]

            category_rows = db.execute(f"""
                SELECT category, COUNT(*) AS count
                FROM knowledge_items
                {where}
                GROUP BY category
                ORDER BY count DESC
            """, params).fetchall()

            accessed_rows = db.execute(f"""
                SELECT id, summary, access_count
                FROM knowledge_items
                {where}
                ORDER BY access_count DESC, last_accessed_at DESC
                LIMIT ?
            """, params + [top_n]).fetchall()

            recent_rows = db.execute(f"""
                SELECT id, summary, created_at
                FROM knowledge_items
                {where}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
            """, params + [top_n]).fetchall()

        return ProjectFingerprint(
            project=project,
            total_items=total,
            category_counts={r["category"]: r["count"] for r in category_rows},
            most_accessed=[dict(r) for r in accessed_rows],
            recently_created=[dict(r) for r in recent_rows],
        )

    # ------------------------------------------------------------------
    # USAGE TRACKING
    # ------------------------------------------------------------------

    def record_access(self, item_id: str) -> None:
        """Increment access_count, set last_accessed_at, and set
        first_accessed_at on the first access. Unknown ids are a no-op."""
        now = utc_now()
        with connect(self.db_path) as db:
            db.execute("""
                UPDATE knowledge_items
                SET access_count = access_count + 1,
                    last_accessed_at = ?,
                    first_accessed_at = COALESCE(first_accessed_at, ?)
                WHERE id = ?
            """, (now, now, item_id))
            db.commit()

    def get_frequently_accessed_items(
        self,
        project: Optional[str] = None,
        category: Optional[Category] = None,
        limit: int = 10,
        min_access_count: Optional[int] = None,
    ) -> list[Item]:
        conditions, params = _filters(project, category)
        conditions.insert(0, "access_count > 0")
        if min_access_count is not None:
            conditions.append("access_count >= ?")
            params.append(min_access_count)
        params.append(limit)

        with connect(self.db_path) as db:
            rows = db.execute(f"""
                SELECT * FROM knowledge_items
                {_where(conditions)}
                ORDER BY access_count DESC, last_accessed_at DESC
                LIMIT ?
            """, params).fetchall()
        return [row_to_item(r) for r in rows]
