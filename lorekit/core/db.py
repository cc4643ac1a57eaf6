"""
lorekit Database Infrastructure

Connection management, schema initialization, migrations, and embedding
serialization. SQLiteItemStore builds on these helpers.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)

CATEGORIES = ("solution", "pattern", "gotcha", "win", "troubleshooting")


def _apply_pragmas(db: sqlite3.Connection):
    """Apply standard SQLite pragmas for safety and concurrency."""
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA busy_timeout=5000")
    db.execute("PRAGMA foreign_keys=ON")


def get_db(db_path: Path) -> sqlite3.Connection:
    """Open a connection to the item database.

    NOTE: Each call opens a new connection. The background worker and the
    request path each open their own, so no connection crosses threads.
    """
    db = sqlite3.connect(str(db_path))
    db.row_factory = sqlite3.Row
    _apply_pragmas(db)
    return db


@contextmanager
def connect(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Context manager for database connections; closes on exception."""
    db = get_db(db_path)
    try:
        yield db
    finally:
        db.close()


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string (microsecond precision)."""
    return datetime.now(timezone.utc).isoformat()


def _ensure_migration_table(db: sqlite3.Connection):
    """Create the schema_migrations tracking table if it doesn't exist."""
    db.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)
    db.commit()


def run_migration(db: sqlite3.Connection, version: int, description: str, migrate_fn: Callable[[sqlite3.Connection], None]):
    """
    Run a schema migration if it hasn't been applied yet.

    Checks schema_migrations for the version. If not present, runs migrate_fn
    inside a transaction and records the version. If already applied, skips silently.

    Args:
        db: Open database connection
        version: Integer migration version (must be unique, monotonically increasing)
        description: Human-readable description of what this migration does
        migrate_fn: Callable that takes a db connection and performs the migration
    """
    existing = db.execute(
        "SELECT version FROM schema_migrations WHERE version = ?", (version,)
    ).fetchone()
    if existing:
        return

    logger.info(f"Running migration {version}: {description}")
    try:
        migrate_fn(db)
        db.execute(
            "INSERT INTO schema_migrations (version, description) VALUES (?, ?)",
            (version, description)
        )
        db.commit()
        logger.info(f"Migration {version} applied successfully")
    except Exception:
        db.rollback()
        logger.error(f"Migration {version} failed, rolled back", exc_info=True)
        raise


def get_schema_version(db: sqlite3.Connection) -> int:
    row = db.execute("SELECT MAX(version) AS version FROM schema_migrations").fetchone()
    return row["version"] or 0


def init_db(db_path: Path):
    """Initialize database schema and apply pending migrations."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with connect(db_path) as db:
        _ensure_migration_table(db)

        # Version 1: knowledge_items table
        def _migrate_items(db: sqlite3.Connection):
            category_list = ", ".join(f"'{c}'" for c in CATEGORIES)
            db.execute(f"""
                CREATE TABLE IF NOT EXISTS knowledge_items (
                    id TEXT PRIMARY KEY,
                    project TEXT NOT NULL,
                    file_context TEXT NOT NULL,
                    category TEXT NOT NULL CHECK(category IN ({category_list})),
                    summary TEXT NOT NULL,
                    content TEXT NOT NULL,
                    decision_rationale TEXT,
                    alternatives_considered TEXT,
                    solution_verified INTEGER NOT NULL DEFAULT 0,
                    tags TEXT,
                    related_issues TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            db.execute("CREATE INDEX IF NOT EXISTS idx_items_project ON knowledge_items(project)")
            db.execute("CREATE INDEX IF NOT EXISTS idx_items_category ON knowledge_items(category)")
            db.execute("CREATE INDEX IF NOT EXISTS idx_items_created_at ON knowledge_items(created_at DESC)")
            db.execute("CREATE INDEX IF NOT EXISTS idx_items_project_category ON knowledge_items(project, category)")

        run_migration(db, 1, "knowledge_items table", _migrate_items)

        # Version 2: embedding columns (vector stored as JSON text)
        def _migrate_embeddings(db: sqlite3.Connection):
            db.execute("ALTER TABLE knowledge_items ADD COLUMN embedding TEXT DEFAULT NULL")
            db.execute("ALTER TABLE knowledge_items ADD COLUMN embedding_model TEXT DEFAULT NULL")
            db.execute("ALTER TABLE knowledge_items ADD COLUMN embedding_generated_at TEXT DEFAULT NULL")
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_items_embedding "
                "ON knowledge_items(id) WHERE embedding IS NOT NULL"
            )

        run_migration(db, 2, "Embedding columns", _migrate_embeddings)

        # Version 3: usage tracking columns
        def _migrate_usage(db: sqlite3.Connection):
            db.execute("ALTER TABLE knowledge_items ADD COLUMN access_count INTEGER NOT NULL DEFAULT 0")
            db.execute("ALTER TABLE knowledge_items ADD COLUMN first_accessed_at TEXT DEFAULT NULL")
            db.execute("ALTER TABLE knowledge_items ADD COLUMN last_accessed_at TEXT DEFAULT NULL")
            db.execute("CREATE INDEX IF NOT EXISTS idx_items_access_count ON knowledge_items(access_count DESC)")

        run_migration(db, 3, "Usage tracking columns", _migrate_usage)

    # SQLite stores data in plaintext; restrict the file to its owner.
    try:
        os.chmod(db_path, 0o600)
        for suffix in ("-wal", "-shm"):
            wal_path = str(db_path) + suffix
            if os.path.exists(wal_path):
                os.chmod(wal_path, 0o600)
    except OSError:
        logger.debug("Could not set restrictive permissions on database files")


# ============================================================================
# EMBEDDING SERIALIZATION
# ============================================================================

def serialize_embedding(embedding: list[float]) -> str:
    """Convert an embedding to its stored JSON form."""
    return json.dumps([float(x) for x in embedding])


def deserialize_embedding(raw: Optional[str]) -> Optional[list[float]]:
    if not raw:
        return None
    return json.loads(raw)
