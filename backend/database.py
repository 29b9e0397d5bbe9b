"""SQLite storage: content store, options, snapshots and entities.

Tables:
- items (id, title, body, type, status, url, updated_at)
- item_meta (item_id, meta_key, meta_value JSON)
- options (name, value JSON)
- transients (key, value JSON, expires_at) – see transients.py
- site_snapshots (id, snapshot_date, avg_score, scanned_count, created_at)
- entities (id, name, slug, type, created_at, updated_at)
- entity_items (entity_id, item_id, role, confidence, first_seen, last_seen)
"""

import json
import os
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from models import Item, SiteSnapshot

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

DB_PATH = Path(os.getenv("DB_PATH", "").strip() or Path(__file__).parent / "visibility.db")

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS items (
        id INTEGER PRIMARY KEY,
        title TEXT NOT NULL DEFAULT '',
        body TEXT NOT NULL DEFAULT '',
        type TEXT NOT NULL DEFAULT 'post',
        status TEXT NOT NULL DEFAULT 'draft',
        url TEXT NOT NULL DEFAULT '',
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS item_meta (
        item_id INTEGER NOT NULL,
        meta_key TEXT NOT NULL,
        meta_value TEXT NOT NULL,
        PRIMARY KEY (item_id, meta_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS options (
        name TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transients (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        expires_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS site_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        snapshot_date TEXT NOT NULL,
        avg_score REAL,
        scanned_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_site_snapshots_date ON site_snapshots (snapshot_date)",
    """
    CREATE TABLE IF NOT EXISTS entities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT NOT NULL,
        type TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (slug, type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entity_items (
        entity_id INTEGER NOT NULL,
        item_id INTEGER NOT NULL,
        role TEXT NOT NULL,
        confidence INTEGER NOT NULL,
        first_seen TEXT NOT NULL,
        last_seen TEXT NOT NULL
    )
    """,
]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", str(value or "").lower()).strip("-")
    return slug


def get_connection(db_path: Path | str | None = None) -> sqlite3.Connection:
    """Return a connection to the SQLite database."""
    conn = sqlite3.connect(db_path or DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path | str | None = None) -> None:
    """Create all tables if they do not exist."""
    conn = get_connection(db_path)
    try:
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def _decode(raw: str | None, default=None):
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


class ContentStore:
    """Content store backed by SQLite.

    Exposes item lookup, published id listing and arbitrary per-item
    metadata, plus the site-level option, snapshot and entity tables
    the backend needs.
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path or DB_PATH

    def connect(self) -> sqlite3.Connection:
        return get_connection(self.db_path)

    # --- Items ---

    def get_item(self, item_id: int) -> Item | None:
        conn = self.connect()
        try:
            row = conn.execute(
                "SELECT id, title, body, type, status, url FROM items WHERE id = ?",
                (int(item_id),),
            ).fetchone()
            if row is None:
                return None
            return {
                "id": row["id"],
                "title": row["title"],
                "body": row["body"],
                "type": row["type"],
                "status": row["status"],
                "url": row["url"],
            }
        finally:
            conn.close()

    def upsert_item(self, item: Item) -> None:
        conn = self.connect()
        try:
            conn.execute(
                """
                INSERT INTO items (id, title, body, type, status, url, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    body = excluded.body,
                    type = excluded.type,
                    status = excluded.status,
                    url = excluded.url,
                    updated_at = excluded.updated_at
                """,
                (
                    int(item["id"]),
                    item.get("title", ""),
                    item.get("body", ""),
                    item.get("type", "post"),
                    item.get("status", "draft"),
                    item.get("url", ""),
                    now_iso(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def list_published_ids(self, types: list[str]) -> list[int]:
        """Return ids of published items of the given types, ascending."""
        types = [t for t in types if t]
        if not types:
            return []
        placeholders = ", ".join("?" for _ in types)
        conn = self.connect()
        try:
            rows = conn.execute(
                f"SELECT id FROM items WHERE status = 'publish' AND type IN ({placeholders}) ORDER BY id ASC",
                tuple(types),
            ).fetchall()
            return [int(row["id"]) for row in rows]
        finally:
            conn.close()

    def search_published_titles(
        self,
        terms: list[str],
        types: list[str],
        exclude_id: int,
        limit: int = 6,
    ) -> list[Item]:
        """Published items whose title contains any of `terms`, newest first."""
        terms = [t.strip() for t in terms if t and t.strip()]
        if not terms or not types:
            return []
        like_clauses = " OR ".join("title LIKE ? ESCAPE '\\'" for _ in terms)
        like_params = [
            "%" + t.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%" for t in terms
        ]
        type_placeholders = ", ".join("?" for _ in types)
        conn = self.connect()
        try:
            rows = conn.execute(
                f"""
                SELECT id, title, body, type, status, url
                FROM items
                WHERE status = 'publish'
                  AND type IN ({type_placeholders})
                  AND id <> ?
                  AND ({like_clauses})
                ORDER BY updated_at DESC, id DESC
                LIMIT ?
                """,
                (*types, int(exclude_id), *like_params, int(limit)),
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def find_item_id_by_url(self, url: str) -> int | None:
        url = str(url or "").strip().rstrip("/")
        if not url:
            return None
        conn = self.connect()
        try:
            row = conn.execute(
                "SELECT id FROM items WHERE url <> '' AND (url = ? OR url = ?) LIMIT 1",
                (url, url + "/"),
            ).fetchone()
            return int(row["id"]) if row else None
        finally:
            conn.close()

    # --- Item metadata ---

    def get_meta(self, item_id: int, key: str, default=None):
        conn = self.connect()
        try:
            row = conn.execute(
                "SELECT meta_value FROM item_meta WHERE item_id = ? AND meta_key = ?",
                (int(item_id), key),
            ).fetchone()
            return _decode(row["meta_value"], default) if row else default
        finally:
            conn.close()

    def set_meta(self, item_id: int, key: str, value) -> None:
        conn = self.connect()
        try:
            conn.execute(
                """
                INSERT INTO item_meta (item_id, meta_key, meta_value) VALUES (?, ?, ?)
                ON CONFLICT(item_id, meta_key) DO UPDATE SET meta_value = excluded.meta_value
                """,
                (int(item_id), key, json.dumps(value)),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_meta(self, item_id: int, key: str) -> None:
        conn = self.connect()
        try:
            conn.execute(
                "DELETE FROM item_meta WHERE item_id = ? AND meta_key = ?",
                (int(item_id), key),
            )
            conn.commit()
        finally:
            conn.close()

    def list_published_meta(self, key: str, types: list[str]) -> list:
        """Return decoded `key` values for published items of `types`."""
        types = [t for t in types if t]
        if not types:
            return []
        placeholders = ", ".join("?" for _ in types)
        conn = self.connect()
        try:
            rows = conn.execute(
                f"""
                SELECT m.meta_value AS value
                FROM item_meta m
                INNER JOIN items i ON i.id = m.item_id
                WHERE m.meta_key = ?
                  AND i.type IN ({placeholders})
                  AND i.status = 'publish'
                ORDER BY i.id ASC
                """,
                (key, *types),
            ).fetchall()
            return [_decode(row["value"]) for row in rows]
        finally:
            conn.close()

    # --- Options ---

    def get_option(self, name: str, default=None):
        conn = self.connect()
        try:
            row = conn.execute("SELECT value FROM options WHERE name = ?", (name,)).fetchone()
            return _decode(row["value"], default) if row else default
        finally:
            conn.close()

    def set_option(self, name: str, value) -> None:
        conn = self.connect()
        try:
            conn.execute(
                "INSERT INTO options (name, value) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
                (name, json.dumps(value)),
            )
            conn.commit()
        finally:
            conn.close()

    def set_options(self, values: dict) -> None:
        """Write several options in one transaction."""
        conn = self.connect()
        try:
            conn.executemany(
                "INSERT INTO options (name, value) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
                [(name, json.dumps(value)) for name, value in values.items()],
            )
            conn.commit()
        finally:
            conn.close()

    # --- Site snapshots ---

    def insert_snapshot(self, snapshot: SiteSnapshot) -> int:
        conn = self.connect()
        try:
            cursor = conn.execute(
                "INSERT INTO site_snapshots (snapshot_date, avg_score, scanned_count, created_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    snapshot["snapshot_date"],
                    snapshot["avg_score"],
                    int(snapshot["scanned_count"]),
                    now_iso(),
                ),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def list_snapshots(self, limit: int | None = None) -> list[SiteSnapshot]:
        sql = (
            "SELECT snapshot_date, avg_score, scanned_count FROM site_snapshots "
            "ORDER BY snapshot_date DESC, id DESC"
        )
        params: tuple = ()
        if isinstance(limit, int) and limit > 0:
            sql += " LIMIT ?"
            params = (limit,)
        conn = self.connect()
        try:
            rows = conn.execute(sql, params).fetchall()
            return [
                {
                    "snapshot_date": row["snapshot_date"],
                    "avg_score": row["avg_score"],
                    "scanned_count": int(row["scanned_count"]),
                }
                for row in rows
            ]
        finally:
            conn.close()

    # --- Entities ---

    def replace_item_entities(self, item_id: int, entities: list[dict]) -> int:
        """Replace the entity mappings of an item; returns mappings written."""
        now = now_iso()
        written = 0
        conn = self.connect()
        try:
            conn.execute("DELETE FROM entity_items WHERE item_id = ?", (int(item_id),))
            for entity in entities:
                name = entity["name"]
                slug = slugify(name)
                if not slug:
                    continue
                row = conn.execute(
                    "SELECT id FROM entities WHERE slug = ? AND type = ? LIMIT 1",
                    (slug, entity["type"]),
                ).fetchone()
                if row:
                    entity_id = int(row["id"])
                    conn.execute("UPDATE entities SET updated_at = ? WHERE id = ?", (now, entity_id))
                else:
                    cursor = conn.execute(
                        "INSERT INTO entities (name, slug, type, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                        (name, slug, entity["type"], now, now),
                    )
                    entity_id = int(cursor.lastrowid)
                conn.execute(
                    "INSERT INTO entity_items (entity_id, item_id, role, confidence, first_seen, last_seen) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (entity_id, int(item_id), entity["role"], int(entity["confidence"]), now, now),
                )
                written += 1
            conn.commit()
            return written
        finally:
            conn.close()

    def get_item_entities(self, item_id: int) -> list[dict]:
        conn = self.connect()
        try:
            rows = conn.execute(
                """
                SELECT e.name, e.type, ei.role, ei.confidence
                FROM entity_items ei
                INNER JOIN entities e ON ei.entity_id = e.id
                WHERE ei.item_id = ?
                ORDER BY ei.confidence DESC, e.id ASC
                """,
                (int(item_id),),
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()
