"""SQLite persistence for links, tags and AI usage."""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Generator
from urllib.parse import urlparse

from .models import (
    AIAnalysis,
    Link,
    LinkError,
    LinkStatus,
    Priority,
    Tag,
    TagProvenance,
    normalize_tag_name,
)

SCHEMA_SQL = """
-- Saved links; tag_ids is a JSON array and may hold ids of deleted tags
CREATE TABLE IF NOT EXISTS links (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    url TEXT NOT NULL,
    title TEXT,
    description TEXT,
    domain TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    tag_ids TEXT NOT NULL DEFAULT '[]',
    is_read INTEGER NOT NULL DEFAULT 0,
    is_bookmarked INTEGER NOT NULL DEFAULT 0,
    is_archived INTEGER NOT NULL DEFAULT 0,
    priority TEXT NOT NULL DEFAULT 'medium',
    ai_analysis TEXT,
    error TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    UNIQUE (user_id, url)
);

-- Tag vocabulary, unique per user by normalized name
CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    name_key TEXT NOT NULL,
    provenance TEXT NOT NULL DEFAULT 'manual',
    created_at TIMESTAMP NOT NULL,
    UNIQUE (user_id, name_key)
);

-- One row per AI request that reached the provider
CREATE TABLE IF NOT EXISTS ai_usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    link_id TEXT,
    tokens_used INTEGER NOT NULL DEFAULT 0,
    cost REAL NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_links_user_status ON links(user_id, status);
CREATE INDEX IF NOT EXISTS idx_links_user_created ON links(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_ai_usage_user_created ON ai_usage(user_id, created_at);
"""

# Columns update_link() may write
UPDATABLE_COLUMNS = {
    "title",
    "description",
    "status",
    "tag_ids",
    "is_read",
    "is_bookmarked",
    "is_archived",
    "priority",
    "ai_analysis",
    "error",
}


def new_id() -> str:
    return uuid.uuid4().hex


def _serialize(value: Any) -> Any:
    """Convert a model value to its column representation."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    if isinstance(value, (AIAnalysis, LinkError)):
        return json.dumps(value.to_dict())
    return value


class Database:
    """SQLite database operations for link and tag storage."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._init_schema()

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._connection() as conn:
            conn.executescript(SCHEMA_SQL)

    # ---- Links ----

    def insert_link(self, link: Link) -> str:
        """Insert a new link, return its ID."""
        now = datetime.now()
        link.id = link.id or new_id()
        link.domain = link.domain or urlparse(link.url).netloc
        link.created_at = link.created_at or now
        link.updated_at = now

        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO links (id, user_id, url, title, description, domain,
                                   status, tag_ids, is_read, is_bookmarked,
                                   is_archived, priority, ai_analysis, error,
                                   created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    link.id,
                    link.user_id,
                    link.url,
                    link.title,
                    link.description,
                    link.domain,
                    link.status.value,
                    _serialize(link.tag_ids),
                    int(link.is_read),
                    int(link.is_bookmarked),
                    int(link.is_archived),
                    link.priority.value,
                    _serialize(link.ai_analysis),
                    _serialize(link.error),
                    link.created_at.isoformat(),
                    link.updated_at.isoformat(),
                ),
            )
        return link.id

    def get_link(self, link_id: str) -> Link | None:
        """Get a link by ID."""
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM links WHERE id = ?", (link_id,)).fetchone()
            return self._row_to_link(row) if row else None

    def find_link_by_url(self, user_id: str, url: str) -> Link | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM links WHERE user_id = ? AND url = ?", (user_id, url)
            ).fetchone()
            return self._row_to_link(row) if row else None

    def list_links(
        self,
        user_id: str,
        status: LinkStatus | None = None,
        limit: int | None = None,
    ) -> list[Link]:
        """List a user's links, newest first, optionally filtered by status."""
        query = "SELECT * FROM links WHERE user_id = ?"
        params: list = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_link(row) for row in rows]

    def count_links(self, user_id: str) -> int:
        with self._connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM links WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

    def count_links_created_since(self, user_id: str, since: datetime) -> int:
        with self._connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM links WHERE user_id = ? AND created_at >= ?",
                (user_id, since.isoformat()),
            ).fetchone()[0]

    def update_link(self, user_id: str, link_id: str, **changes: Any) -> bool:
        """Update columns of one of the user's links.

        Returns False when the user has no such link, e.g. it was deleted.
        """
        unknown = set(changes) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update link columns: {sorted(unknown)}")
        if not changes:
            link = self.get_link(link_id)
            return link is not None and link.user_id == user_id

        columns = list(changes)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [_serialize(changes[column]) for column in columns]
        params += [datetime.now().isoformat(), link_id, user_id]

        with self._connection() as conn:
            cursor = conn.execute(
                f"UPDATE links SET {assignments}, updated_at = ? WHERE id = ? AND user_id = ?",
                params,
            )
            return cursor.rowcount > 0

    def delete_link(self, user_id: str, link_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM links WHERE id = ? AND user_id = ?", (link_id, user_id)
            )
            return cursor.rowcount > 0

    # ---- Tags ----

    def insert_tag(
        self,
        user_id: str,
        name: str,
        provenance: TagProvenance = TagProvenance.MANUAL,
        tag_id: str | None = None,
        max_tags: int | None = None,
    ) -> Tag | None:
        """Insert a tag unless one with the same normalized name exists.

        Returns the stored tag, which is the pre-existing one on a clash.
        With ``max_tags`` set, returns None instead of inserting when the user
        already has that many tags. The count and the insert run in one
        write transaction.
        """
        name = name.strip()
        if not name:
            raise ValueError("Tag name must not be blank")
        name_key = normalize_tag_name(name)

        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM tags WHERE user_id = ? AND name_key = ?",
                (user_id, name_key),
            ).fetchone()
            if row:
                return self._row_to_tag(row)

            if max_tags is not None:
                count = conn.execute(
                    "SELECT COUNT(*) FROM tags WHERE user_id = ?", (user_id,)
                ).fetchone()[0]
                if count >= max_tags:
                    return None

            conn.execute(
                """
                INSERT INTO tags (id, user_id, name, name_key, provenance, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    tag_id or new_id(),
                    user_id,
                    name,
                    name_key,
                    provenance.value,
                    datetime.now().isoformat(),
                ),
            )
            row = conn.execute(
                "SELECT * FROM tags WHERE user_id = ? AND name_key = ?",
                (user_id, name_key),
            ).fetchone()
            return self._row_to_tag(row)

    def get_tags(self, user_id: str) -> list[Tag]:
        """Get a user's whole tag vocabulary."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM tags WHERE user_id = ? ORDER BY created_at, name",
                (user_id,),
            ).fetchall()
            return [self._row_to_tag(row) for row in rows]

    def count_tags(self, user_id: str) -> int:
        with self._connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM tags WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

    def delete_tag(self, user_id: str, tag_id: str) -> bool:
        """Delete one of the user's tags. Links referencing it keep the dangling id."""
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM tags WHERE id = ? AND user_id = ?", (tag_id, user_id)
            )
            return cursor.rowcount > 0

    # ---- AI usage ----

    def record_ai_usage(
        self,
        user_id: str,
        tokens_used: int,
        cost: float,
        link_id: str | None = None,
        at: datetime | None = None,
    ) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO ai_usage (user_id, link_id, tokens_used, cost, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, link_id, tokens_used, cost, (at or datetime.now()).isoformat()),
            )

    def get_ai_usage(self, user_id: str, since: datetime | None = None) -> dict:
        """Request count, tokens and cost of a user's AI requests, optionally since a time."""
        query = """
            SELECT COUNT(*) AS requests,
                   COALESCE(SUM(tokens_used), 0) AS tokens,
                   COALESCE(SUM(cost), 0) AS cost
            FROM ai_usage WHERE user_id = ?
        """
        params: list = [user_id]
        if since is not None:
            query += " AND created_at >= ?"
            params.append(since.isoformat())

        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
            return {"requests": row["requests"], "tokens": row["tokens"], "cost": row["cost"]}

    def get_stats(self, user_id: str) -> dict:
        """Get database statistics."""
        with self._connection() as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM links WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            by_status = {
                row["status"]: row["count"]
                for row in conn.execute(
                    """
                    SELECT status, COUNT(*) AS count FROM links
                    WHERE user_id = ? GROUP BY status
                    """,
                    (user_id,),
                ).fetchall()
            }
            tags = conn.execute(
                "SELECT COUNT(*) FROM tags WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

        stats = {"total_links": total, "tags": tags}
        for status in LinkStatus:
            stats[status.value] = by_status.get(status.value, 0)
        usage = self.get_ai_usage(user_id)
        stats["ai_requests"] = usage["requests"]
        stats["ai_tokens"] = usage["tokens"]
        stats["ai_cost"] = usage["cost"]
        return stats

    def _row_to_link(self, row: sqlite3.Row) -> Link:
        """Convert database row to Link."""
        ai_analysis = json.loads(row["ai_analysis"]) if row["ai_analysis"] else None
        error = json.loads(row["error"]) if row["error"] else None
        return Link(
            id=row["id"],
            user_id=row["user_id"],
            url=row["url"],
            title=row["title"],
            description=row["description"],
            domain=row["domain"],
            status=LinkStatus(row["status"]),
            tag_ids=json.loads(row["tag_ids"]),
            is_read=bool(row["is_read"]),
            is_bookmarked=bool(row["is_bookmarked"]),
            is_archived=bool(row["is_archived"]),
            priority=Priority(row["priority"]),
            ai_analysis=AIAnalysis.from_dict(ai_analysis) if ai_analysis else None,
            error=LinkError.from_dict(error) if error else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_tag(self, row: sqlite3.Row) -> Tag:
        return Tag(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            provenance=TagProvenance(row["provenance"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
