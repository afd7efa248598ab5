#!/usr/bin/env python3
"""
Database migration runner for ckptstash
Brings a catalog database from any historical schema version up to the current one.

Version history:
  1 - flat models table plus per-location host_models (or mac_models) / stash_models tables
  2 - compatibility marker, no structural change
  3 - unified catalog_models / model_dependencies tables; legacy rows merged in
"""

import argparse
import sqlite3
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set, Tuple

from classifier import MODEL_KINDS

SCHEMA_VERSION_KEY = 'schema_version'
LATEST_VERSION = 3

# Host auxiliary table: 'host_models' here, 'mac_models' in databases written
# by the desktop app
HOST_TABLES = ('host_models', 'mac_models')

# Children before parent so foreign keys never dangle
LEGACY_TABLES = HOST_TABLES + ('stash_models', 'models')


def check_existing_tables(conn: sqlite3.Connection) -> Set[str]:
    """Names of the tables present in the database"""
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    return {row[0] for row in cursor.fetchall()}


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Stored schema version, 0 when the config table or key is absent"""
    try:
        row = conn.execute(
            "SELECT value FROM config WHERE key = ?", (SCHEMA_VERSION_KEY,)
        ).fetchone()
    except sqlite3.OperationalError:
        return 0
    if row is None:
        return 0
    try:
        return int(row[0])
    except (TypeError, ValueError):
        return 0


def set_schema_version(conn: sqlite3.Connection, version: int):
    conn.execute("""
        INSERT OR REPLACE INTO config (key, value, updated_at)
        VALUES (?, ?, CURRENT_TIMESTAMP)
    """, (SCHEMA_VERSION_KEY, str(version)))


@contextmanager
def migration_step(conn: sqlite3.Connection):
    """Run a block as one transaction, DDL included"""
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


def create_config_table(conn: sqlite3.Connection):
    conn.execute("""
        CREATE TABLE IF NOT EXISTS config (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)


def create_legacy_tables(conn: sqlite3.Connection, host_table: str = 'host_models'):
    """Version 1 layout"""
    if host_table not in HOST_TABLES:
        raise ValueError(f"Unknown host table: {host_table}")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS models (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            filename TEXT NOT NULL UNIQUE,
            display_name TEXT,
            model_type TEXT NOT NULL CHECK(model_type IN ('model', 'lora', 'controlnet')),
            file_size INTEGER,
            checksum TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Models visible on the host, with their order
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {host_table} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            model_id INTEGER NOT NULL UNIQUE,
            display_order INTEGER NOT NULL,
            is_visible INTEGER DEFAULT 1,
            custom_name TEXT,
            lora_strength REAL,
            FOREIGN KEY (model_id) REFERENCES models(id) ON DELETE CASCADE
        )
    """)

    # Models copied to the stash
    conn.execute("""
        CREATE TABLE IF NOT EXISTS stash_models (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            model_id INTEGER NOT NULL UNIQUE,
            stash_path TEXT NOT NULL,
            last_synced TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (model_id) REFERENCES models(id) ON DELETE CASCADE
        )
    """)

    create_config_table(conn)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_models_type ON models (model_type)")
    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{host_table}_order ON {host_table} (display_order)")


def create_catalog_tables(conn: sqlite3.Connection):
    """Version 3 layout"""
    kinds = ", ".join(f"'{kind}'" for kind in MODEL_KINDS)
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS catalog_models (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            filename TEXT NOT NULL UNIQUE,
            display_name TEXT,
            kind TEXT NOT NULL DEFAULT 'unknown' CHECK(kind IN ({kinds})),
            kind_source TEXT NOT NULL DEFAULT 'default',
            file_size INTEGER,
            checksum TEXT,
            source_path TEXT,
            exists_host INTEGER NOT NULL DEFAULT 0,
            exists_stash INTEGER NOT NULL DEFAULT 0,
            host_display_order INTEGER,
            strength INTEGER,  -- value x 10 (75 = 7.5)
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS model_dependencies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            parent_filename TEXT NOT NULL,
            child_filename TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (parent_filename) REFERENCES catalog_models (filename) ON DELETE CASCADE,
            FOREIGN KEY (child_filename) REFERENCES catalog_models (filename) ON DELETE CASCADE,
            UNIQUE(parent_filename, child_filename)
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_catalog_models_kind ON catalog_models (kind)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_catalog_models_order ON catalog_models (host_display_order)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_dependencies_parent ON model_dependencies (parent_filename)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_dependencies_child ON model_dependencies (child_filename)")


def host_relation(host_tables: Sequence[str]) -> str:
    """SQL relation over the host auxiliary tables present in the database"""
    columns = "id, model_id, display_order, is_visible, custom_name, lora_strength"
    tables = [table for table in HOST_TABLES if table in host_tables]
    if not tables:
        raise ValueError("No host auxiliary table to migrate from")
    if len(tables) == 1:
        return tables[0]
    return "(" + " UNION ALL ".join(f"SELECT {columns} FROM {table}" for table in tables) + ")"


def migrate_legacy_rows(conn: sqlite3.Connection,
                        host_tables: Sequence[str] = ('host_models',)) -> int:
    """Copy every legacy model into catalog_models, returns rows migrated

    Left joins keep models that have no host or stash row; their location flags
    stay 0. Fractional strengths become x10 integers (SQLite ROUND rounds half
    away from zero).
    """
    cursor = conn.execute(f"""
        INSERT OR IGNORE INTO catalog_models (
            filename, display_name, kind, kind_source, file_size, checksum,
            source_path, exists_host, exists_stash, host_display_order, strength,
            created_at, updated_at
        )
        SELECT
            m.filename,
            COALESCE(h.custom_name, m.display_name),
            CASE m.model_type
                WHEN 'controlnet' THEN 'control'
                WHEN 'lora' THEN 'lora'
                WHEN 'model' THEN 'model'
                ELSE 'unknown'
            END,
            'heuristic',
            m.file_size,
            m.checksum,
            s.stash_path,
            CASE WHEN h.id IS NOT NULL AND COALESCE(h.is_visible, 1) = 1 THEN 1 ELSE 0 END,
            CASE WHEN s.id IS NOT NULL THEN 1 ELSE 0 END,
            h.display_order,
            CASE WHEN h.lora_strength IS NULL THEN NULL
                 ELSE CAST(ROUND(h.lora_strength * 10) AS INTEGER) END,
            COALESCE(m.created_at, CURRENT_TIMESTAMP),
            COALESCE(m.updated_at, CURRENT_TIMESTAMP)
        FROM models m
        LEFT JOIN {host_relation(host_tables)} h ON h.model_id = m.id
        LEFT JOIN stash_models s ON s.model_id = m.id
        ORDER BY m.id
    """)
    migrated = cursor.rowcount

    missing = conn.execute("""
        SELECT COUNT(*) FROM models m
        WHERE NOT EXISTS (SELECT 1 FROM catalog_models c WHERE c.filename = m.filename)
    """).fetchone()[0]
    if missing:
        raise sqlite3.IntegrityError(f"{missing} legacy models were not migrated")

    return migrated


def drop_legacy_tables(conn: sqlite3.Connection):
    for table in LEGACY_TABLES:
        conn.execute(f"DROP TABLE IF EXISTS {table}")


def _migrate_v1(conn: sqlite3.Connection) -> Optional[str]:
    create_legacy_tables(conn)
    return "Created base tables"


def _migrate_v2(conn: sqlite3.Connection) -> Optional[str]:
    return None


def _migrate_v3(conn: sqlite3.Connection) -> Optional[str]:
    existing_tables = check_existing_tables(conn)
    create_catalog_tables(conn)

    if 'models' not in existing_tables:
        return "Created catalog tables"

    host_tables = [table for table in HOST_TABLES if table in existing_tables]
    # Auxiliary tables may be missing in hand-edited databases
    create_legacy_tables(conn, host_tables[0] if host_tables else 'host_models')
    migrated = migrate_legacy_rows(conn, host_tables or ('host_models',))
    drop_legacy_tables(conn)
    return f"Migrated {migrated} legacy models into catalog_models"


MIGRATIONS: List[Tuple[int, Callable[[sqlite3.Connection], Optional[str]]]] = [
    (1, _migrate_v1),
    (2, _migrate_v2),
    (3, _migrate_v3),
]


def migrate_database(conn: sqlite3.Connection, quiet: bool = True) -> int:
    """Apply every pending migration step, returns the resulting version

    Each step runs in its own transaction together with its version bump; a
    failing step is rolled back and the error propagates with the version left
    at the last completed step.
    """
    version = get_schema_version(conn)

    for target, step in MIGRATIONS:
        if version >= target:
            continue
        with migration_step(conn):
            message = step(conn)
            create_config_table(conn)
            set_schema_version(conn, target)
        version = target
        if not quiet:
            print(f"✓ Schema version {target}" + (f": {message}" if message else ""))

    return version


def main():
    """Migrate a catalog database file in place"""
    parser = argparse.ArgumentParser(
        description="Upgrade a ckptstash catalog database to the current schema",
        prog="db_update"
    )
    parser.add_argument("db_path", help="Path to ckptstash.db")
    args = parser.parse_args()

    db_path = Path(args.db_path).expanduser()
    if not db_path.exists():
        print(f"Error: Database file not found at {db_path}")
        sys.exit(1)

    print(f"Found database at: {db_path}")

    try:
        conn = sqlite3.connect(db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            before = get_schema_version(conn)
            print(f"Existing tables: {', '.join(sorted(check_existing_tables(conn)))}")
            if before >= LATEST_VERSION:
                print("Schema is current. Migration not needed.")
                return
            after = migrate_database(conn, quiet=False)
            print(f"✓ Database migrated from version {before} to {after}")
        finally:
            conn.close()
    except sqlite3.Error as e:
        print(f"Database error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
