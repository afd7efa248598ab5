#!/usr/bin/env python3
"""
Database operations for ckptstash
Catalog of model files (host and stash locations), their dependencies and app config
"""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from classifier import MODEL_KINDS, KIND_SOURCES, should_replace_kind
from db_update import migrate_database, get_schema_version
from errors import NotFoundError
from manifest import strength_from_fixed

LOCATIONS = ('host', 'stash')

UPSERT_INSERTED = 'inserted'
UPSERT_UPDATED = 'updated'
UPSERT_UNCHANGED = 'unchanged'

MODEL_COLUMNS = """
    filename, display_name, kind, kind_source, file_size, checksum, source_path,
    exists_host, exists_stash, host_display_order, strength, created_at, updated_at
"""


@dataclass
class ModelEntry:
    """Model data structure"""
    filename: str
    display_name: Optional[str] = None
    kind: str = 'unknown'
    kind_source: str = 'default'
    file_size: Optional[int] = None
    checksum: Optional[str] = None
    source_path: Optional[str] = None
    exists_host: bool = False
    exists_stash: bool = False
    host_display_order: Optional[int] = None
    strength: Optional[int] = None  # value x 10
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def strength_value(self) -> Optional[float]:
        return strength_from_fixed(self.strength)


@dataclass
class DependencyEdge:
    """Parent model -> encoder dependency"""
    id: int
    parent_filename: str
    child_filename: str
    created_at: Optional[str] = None


@dataclass
class ModelListing:
    """Model plus host visibility, as returned to the UI"""
    model: ModelEntry
    is_on_host: bool


def _row_to_entry(row: sqlite3.Row) -> ModelEntry:
    data = dict(row)
    data['exists_host'] = bool(data['exists_host'])
    data['exists_stash'] = bool(data['exists_stash'])
    return ModelEntry(**data)


def merge_entry(existing: ModelEntry, discovered: ModelEntry, user_action: bool = False) -> ModelEntry:
    """Combine a stored entry with freshly discovered data

    Location flags are only ever raised here. Manifest-sourced metadata fills
    null fields and never replaces a display name that is already set; a user
    action replaces display name and kind outright.
    """
    merged = replace(existing)

    if user_action:
        if discovered.display_name is not None:
            merged.display_name = discovered.display_name
        merged.kind = discovered.kind
        merged.kind_source = 'user'
    else:
        if merged.display_name is None:
            merged.display_name = discovered.display_name
        if should_replace_kind(existing.kind_source, discovered.kind_source):
            merged.kind = discovered.kind
            merged.kind_source = discovered.kind_source

    if discovered.file_size is not None:
        if existing.file_size is not None and discovered.file_size != existing.file_size:
            # File changed on disk; the old digest no longer applies
            merged.checksum = None
        merged.file_size = discovered.file_size
    if discovered.checksum is not None:
        merged.checksum = discovered.checksum
    if discovered.source_path is not None:
        merged.source_path = discovered.source_path

    merged.exists_host = existing.exists_host or discovered.exists_host
    merged.exists_stash = existing.exists_stash or discovered.exists_stash

    if merged.host_display_order is None:
        merged.host_display_order = discovered.host_display_order
    if merged.strength is None:
        merged.strength = discovered.strength

    return merged


class CatalogDB:
    """Catalog store backed by a single sqlite connection

    All access is serialized through ``lock``. Multi-statement work must go
    through ``transaction()`` so it holds the lock for the whole unit.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.conn = None
        self.lock = threading.RLock()

    def connect(self):
        """Open the database and bring its schema up to date"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        with self.lock:
            migrate_database(self.conn)

    def disconnect(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.disconnect()

    @contextmanager
    def transaction(self):
        """Hold the lock and run the block as one all-or-nothing unit"""
        with self.lock:
            if self.conn.in_transaction:
                yield self.conn
                return
            self.conn.execute("BEGIN")
            try:
                yield self.conn
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

    def get_schema_version(self) -> int:
        with self.lock:
            return get_schema_version(self.conn)

    # Config operations
    def get_config(self, key: str) -> Optional[str]:
        with self.lock:
            row = self.conn.execute(
                "SELECT value FROM config WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def set_config(self, key: str, value: str):
        with self.transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO config (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
            """, (key, str(value)))

    def delete_config(self, key: str):
        with self.transaction() as conn:
            conn.execute("DELETE FROM config WHERE key = ?", (key,))

    # Model queries
    def get_models(self, kind: Optional[str] = None) -> List[ModelListing]:
        """Models ordered host-visible by display order first (nulls last), then by filename"""
        query = f"SELECT {MODEL_COLUMNS} FROM catalog_models"
        params = []
        if kind:
            query += " WHERE kind = ?"
            params.append(kind)
        query += """
            ORDER BY
                CASE WHEN exists_host = 1 AND host_display_order IS NOT NULL THEN 0 ELSE 1 END,
                CASE WHEN exists_host = 1 THEN host_display_order END,
                filename
        """
        with self.lock:
            rows = self.conn.execute(query, params).fetchall()

        listings = []
        for row in rows:
            entry = _row_to_entry(row)
            listings.append(ModelListing(model=entry, is_on_host=entry.exists_host))
        return listings

    def get_model(self, filename: str) -> Optional[ModelEntry]:
        with self.lock:
            row = self.conn.execute(
                f"SELECT {MODEL_COLUMNS} FROM catalog_models WHERE filename = ?", (filename,)
            ).fetchone()
        return _row_to_entry(row) if row else None

    def require_model(self, filename: str) -> ModelEntry:
        model = self.get_model(filename)
        if model is None:
            raise NotFoundError(f"Model not found: {filename}")
        return model

    def model_exists(self, filename: str) -> bool:
        with self.lock:
            row = self.conn.execute(
                "SELECT 1 FROM catalog_models WHERE filename = ?", (filename,)
            ).fetchone()
        return row is not None

    def get_model_count(self, kind: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM catalog_models"
        params = []
        if kind:
            query += " WHERE kind = ?"
            params.append(kind)
        with self.lock:
            return self.conn.execute(query, params).fetchone()[0]

    def get_filenames(self, location: Optional[str] = None) -> List[str]:
        query = "SELECT filename FROM catalog_models"
        if location:
            query += f" WHERE {_location_column(location)} = 1"
        query += " ORDER BY filename"
        with self.lock:
            return [row[0] for row in self.conn.execute(query).fetchall()]

    # Model writes
    def upsert_model(self, entry: ModelEntry, user_action: bool = False) -> str:
        """Insert a new row or merge into the existing one (see merge_entry)

        Returns 'inserted', 'updated' or 'unchanged'. Unchanged rows are not
        written, so their updated_at stays put.
        """
        _check_kind(entry.kind, entry.kind_source)
        with self.transaction() as conn:
            existing = self.get_model(entry.filename)
            if existing is None:
                if user_action:
                    entry = replace(entry, kind_source='user')
                conn.execute("""
                    INSERT INTO catalog_models (
                        filename, display_name, kind, kind_source, file_size, checksum,
                        source_path, exists_host, exists_stash, host_display_order, strength
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    entry.filename, entry.display_name, entry.kind, entry.kind_source,
                    entry.file_size, entry.checksum, entry.source_path,
                    int(entry.exists_host), int(entry.exists_stash),
                    entry.host_display_order, entry.strength,
                ))
                return UPSERT_INSERTED

            merged = merge_entry(existing, entry, user_action=user_action)
            if merged == existing:
                return UPSERT_UNCHANGED

            conn.execute("""
                UPDATE catalog_models SET
                    display_name = ?, kind = ?, kind_source = ?, file_size = ?,
                    checksum = ?, source_path = ?, exists_host = ?, exists_stash = ?,
                    host_display_order = ?, strength = ?, updated_at = CURRENT_TIMESTAMP
                WHERE filename = ?
            """, (
                merged.display_name, merged.kind, merged.kind_source, merged.file_size,
                merged.checksum, merged.source_path,
                int(merged.exists_host), int(merged.exists_stash),
                merged.host_display_order, merged.strength, merged.filename,
            ))
            return UPSERT_UPDATED

    def _update_one(self, sql: str, params: Sequence, filename: str):
        with self.transaction() as conn:
            cursor = conn.execute(sql, params)
            if cursor.rowcount == 0:
                raise NotFoundError(f"Model not found: {filename}")

    def set_host_visibility(self, filename: str, visible: bool, display_order: Optional[int] = None):
        """Show or hide a model on the host; hiding clears its order"""
        if visible:
            sql = """
                UPDATE catalog_models
                SET exists_host = 1,
                    host_display_order = COALESCE(?, host_display_order),
                    updated_at = CURRENT_TIMESTAMP
                WHERE filename = ?
            """
            self._update_one(sql, (display_order, filename), filename)
        else:
            sql = """
                UPDATE catalog_models
                SET exists_host = 0, host_display_order = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE filename = ?
            """
            self._update_one(sql, (filename,), filename)

    def set_location_flag(self, filename: str, location: str, present: bool):
        column = _location_column(location)
        sql = f"""
            UPDATE catalog_models SET {column} = ?, updated_at = CURRENT_TIMESTAMP
            WHERE filename = ?
        """
        self._update_one(sql, (int(present), filename), filename)

    def clear_missing(self, location: str, present: Iterable[str], kind: Optional[str] = None) -> List[str]:
        """Drop the location flag from rows whose file was not seen, returns their filenames"""
        column = _location_column(location)
        present = set(present)
        with self.transaction() as conn:
            query = f"SELECT filename FROM catalog_models WHERE {column} = 1"
            params = []
            if kind:
                query += " AND kind = ?"
                params.append(kind)
            flagged = [row[0] for row in conn.execute(query, params).fetchall()]
            missing = [filename for filename in flagged if filename not in present]
            for filename in missing:
                extra = ", host_display_order = NULL" if location == 'host' else ""
                conn.execute(f"""
                    UPDATE catalog_models SET {column} = 0{extra}, updated_at = CURRENT_TIMESTAMP
                    WHERE filename = ?
                """, (filename,))
        return missing

    def update_display_orders(self, orders: Sequence[Tuple[str, int]]):
        """Batch order update; any unknown filename rolls back the whole batch"""
        with self.transaction() as conn:
            for filename, order in orders:
                cursor = conn.execute("""
                    UPDATE catalog_models
                    SET host_display_order = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE filename = ?
                """, (int(order), filename))
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Model not found: {filename}")

    def update_display_name(self, filename: str, display_name: Optional[str]):
        self._update_one("""
            UPDATE catalog_models SET display_name = ?, updated_at = CURRENT_TIMESTAMP
            WHERE filename = ?
        """, (display_name, filename), filename)

    def update_strength(self, filename: str, strength: Optional[int]):
        self._update_one("""
            UPDATE catalog_models SET strength = ?, updated_at = CURRENT_TIMESTAMP
            WHERE filename = ?
        """, (strength, filename), filename)

    def update_checksum(self, filename: str, checksum: Optional[str]):
        self._update_one("""
            UPDATE catalog_models SET checksum = ?, updated_at = CURRENT_TIMESTAMP
            WHERE filename = ?
        """, (checksum, filename), filename)

    def set_kind(self, filename: str, kind: str, source: str = 'user'):
        _check_kind(kind, source)
        self._update_one("""
            UPDATE catalog_models SET kind = ?, kind_source = ?, updated_at = CURRENT_TIMESTAMP
            WHERE filename = ?
        """, (kind, source, filename), filename)

    def delete_model(self, filename: str) -> bool:
        """Delete the catalog row (edges cascade); files are left alone"""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM catalog_models WHERE filename = ?", (filename,))
            return cursor.rowcount > 0

    # Relationship operations
    def add_relationship(self, parent: str, child: str) -> bool:
        """Insert an edge if absent, returns True when a new edge was stored

        Both endpoints must already be catalog rows; a missing endpoint raises
        sqlite3.IntegrityError from the foreign key check.
        """
        with self.transaction() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO model_dependencies (parent_filename, child_filename)
                VALUES (?, ?)
            """, (parent, child))
            return cursor.rowcount > 0

    def _get_edges(self, where: str = "", params: Sequence = ()) -> List[DependencyEdge]:
        query = """
            SELECT id, parent_filename, child_filename, created_at
            FROM model_dependencies
        """
        if where:
            query += " WHERE " + where
        query += " ORDER BY parent_filename, id"
        with self.lock:
            rows = self.conn.execute(query, params).fetchall()
        return [DependencyEdge(**dict(row)) for row in rows]

    def get_relationships(self, parent: str) -> List[DependencyEdge]:
        return self._get_edges("parent_filename = ?", (parent,))

    def get_parents(self, child: str) -> List[DependencyEdge]:
        return self._get_edges("child_filename = ?", (child,))

    def get_all_relationships(self) -> List[DependencyEdge]:
        return self._get_edges()

    def delete_relationship(self, parent: str, child: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("""
                DELETE FROM model_dependencies
                WHERE parent_filename = ? AND child_filename = ?
            """, (parent, child))
            return cursor.rowcount > 0


def _location_column(location: str) -> str:
    if location not in LOCATIONS:
        raise ValueError(f"Unknown location: {location}")
    return f"exists_{location}"


def _check_kind(kind: str, source: str):
    if kind not in MODEL_KINDS:
        raise ValueError(f"Unknown model kind: {kind}")
    if source not in KIND_SOURCES:
        raise ValueError(f"Unknown kind source: {source}")
