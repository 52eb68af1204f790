"""
SQLite database for the EAV core.

This module owns the single SQLite file that stores:
- Attributes (the registry, unique by name)
- Entities (generic typed nodes)
- Entity values (one typed fact per entity/attribute pair)
- Entity relations (directed, soft-activatable, typed edges)
- Accounts (login identities, optionally bound to an entity)

Invariants:
    - Foreign keys are enforced on every connection
    - The schema exists before the first statement of a Database instance runs
    - Multi-statement writes run inside BEGIN IMMEDIATE ... COMMIT
    - sqlite3 errors leave this module as InfrastructureError

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION and add an idempotent migration step
    - Keep the typed value columns in sync with schema/values.py

Table schema:
    attributes:
        - id TEXT (UUID) PRIMARY KEY
        - name TEXT UNIQUE
        - display_name, data_type, category TEXT
        - entity_types TEXT (JSON list)
        - is_required INTEGER, description TEXT
        - created_at, updated_at INTEGER (Unix ms)

    entities:
        - id TEXT (UUID) PRIMARY KEY
        - type TEXT, name TEXT, description TEXT
        - is_active INTEGER
        - created_at, updated_at INTEGER

    entity_values:
        - id TEXT PRIMARY KEY
        - entity_id -> entities.id, attribute_id -> attributes.id
        - value_string, value_number, value_bool, value_date,
          value_datetime, value_text (exactly one non-null)
        - UNIQUE (entity_id, attribute_id)

    entity_relations:
        - id TEXT PRIMARY KEY
        - from_entity_id, to_entity_id -> entities.id
        - relation_type TEXT, is_active INTEGER
        - start_date, end_date INTEGER (end_date nullable)
        - metadata TEXT (JSON, opaque)
        - INDEX (from_entity_id, relation_type), (to_entity_id, relation_type)

    accounts:
        - id TEXT PRIMARY KEY, email TEXT UNIQUE
        - password_hash, role TEXT, is_active, must_change_password INTEGER
        - temp_password TEXT, last_login INTEGER
        - entity_id -> entities.id (nullable, ON DELETE SET NULL)
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..config import StorageConfig
from ..errors import InfrastructureError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current time as Unix milliseconds."""
    return int(time.time() * 1000)


class Database:
    """SQLite database shared by all EAV stores.

    Thread safety:
        Each operation opens its own connection.
        SQLite serializes writers; BEGIN IMMEDIATE takes the write lock up front.

    Example:
        >>> db = Database("/var/lib/campus/campus.db")
        >>> await db.initialize()
        >>> with db.transaction("create_entity") as conn:
        ...     conn.execute("INSERT INTO entities ...")
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        database_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database handle.

        Args:
            database_path: Path of the SQLite file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.path = Path(database_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._schema_ready = False

    @classmethod
    def from_config(cls, config: StorageConfig) -> Database:
        """Create a database handle from storage configuration."""
        return cls(
            config.database_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            cache_size_pages=config.cache_size_pages,
        )

    @contextmanager
    def connect(self, operation: str = "query") -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Args:
            operation: Name of the calling operation, used in error reports

        Yields:
            SQLite connection in autocommit mode

        Raises:
            InfrastructureError: If the database cannot be opened or a query fails
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            logger.error(f"Cannot open database {self.path}: {e}", exc_info=True)
            raise InfrastructureError(f"Cannot open database: {e}", operation=operation) from e

        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")
            if not self._schema_ready:
                self._create_schema(conn)
                self._schema_ready = True

            yield conn
        except sqlite3.Error as e:
            logger.error(
                f"Database operation failed: {e}",
                exc_info=True,
                extra={"operation": operation},
            )
            raise InfrastructureError(
                f"Database operation '{operation}' failed: {e}", operation=operation
            ) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self, operation: str = "write") -> Iterator[sqlite3.Connection]:
        """Run a block inside BEGIN IMMEDIATE ... COMMIT.

        Any exception rolls the transaction back and propagates.
        """
        with self.connect(operation) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Attribute registry
            CREATE TABLE IF NOT EXISTS attributes (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                display_name TEXT NOT NULL,
                data_type TEXT NOT NULL,
                category TEXT NOT NULL,
                entity_types TEXT NOT NULL DEFAULT '[]',
                is_required INTEGER NOT NULL DEFAULT 0,
                description TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            -- Entities
            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                name TEXT,
                description TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type, is_active);

            -- Values: one typed fact per (entity, attribute)
            CREATE TABLE IF NOT EXISTS entity_values (
                id TEXT PRIMARY KEY,
                entity_id TEXT NOT NULL REFERENCES entities(id),
                attribute_id TEXT NOT NULL REFERENCES attributes(id),
                value_string TEXT,
                value_number REAL,
                value_bool INTEGER,
                value_date TEXT,
                value_datetime TEXT,
                value_text TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (entity_id, attribute_id)
            );

            CREATE INDEX IF NOT EXISTS idx_values_attribute ON entity_values(attribute_id);

            -- Relations between entities
            CREATE TABLE IF NOT EXISTS entity_relations (
                id TEXT PRIMARY KEY,
                from_entity_id TEXT NOT NULL REFERENCES entities(id),
                to_entity_id TEXT NOT NULL REFERENCES entities(id),
                relation_type TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                start_date INTEGER,
                end_date INTEGER,
                metadata TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_relations_from
                ON entity_relations(from_entity_id, relation_type);
            CREATE INDEX IF NOT EXISTS idx_relations_to
                ON entity_relations(to_entity_id, relation_type);

            -- Login identities
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                must_change_password INTEGER NOT NULL DEFAULT 0,
                temp_password TEXT,
                last_login INTEGER,
                entity_id TEXT REFERENCES entities(id) ON DELETE SET NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_accounts_entity ON accounts(entity_id);

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist.

        The schema is also created lazily by the first connect().
        """
        self._schema_ready = False
        with self.connect("initialize"):
            pass
        logger.info(f"Initialized EAV database: {self.path}")

    async def get_stats(self) -> dict[str, int]:
        """Row counts per table."""
        stats = {}
        with self.connect("get_stats") as conn:
            for table in ("attributes", "entities", "entity_values", "entity_relations", "accounts"):
                cursor = conn.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = cursor.fetchone()[0]
        return stats
