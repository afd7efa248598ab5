#!/usr/bin/env python3
"""
Command surface for ckptstash
AppContext owns the catalog connection, settings, log store and sync worker;
Commands is the narrow API a UI (or the CLI) drives
"""

from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import file_ops
from classifier import MODEL_KINDS
from config import ConfigManager
from database import CatalogDB, DependencyEdge, ModelListing
from errors import ConflictError, NotConfiguredError, NotFoundError
from logger import LogEvent, LogStore
from manifest import strength_to_fixed
from relationships import resolve_relationships
from scanner import ScanResult, import_directory
from sync import (
    HOST_DIR_KEY, STASH_DIR_KEY, INIT_STATUS_KEY, STATUS_IN_PROGRESS,
    build_classifier, read_status, start_background_sync,
)
from transfer import transfer_file


class AppContext:
    """Everything a command needs, passed explicitly instead of held in globals"""

    def __init__(self, config_manager: ConfigManager, log: Optional[LogStore] = None,
                 session=None):
        self.config_manager = config_manager
        self.settings = config_manager.get_config()
        self.db_path = config_manager.get_db_path()
        self.registry_cache = config_manager.get_registry_cache_dir()
        self.log = log or LogStore(self.settings.log_retention)
        self.session = session
        self.db = CatalogDB(self.db_path)
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='ckptstash-sync')

    def open(self):
        self.db.connect()
        return self

    def close(self):
        self.executor.shutdown(wait=True)
        self.db.disconnect()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _configured_path(self, key: str, fallback: Optional[str]) -> Optional[Path]:
        value = self.db.get_config(key) or fallback
        if not value:
            return None
        return Path(value).expanduser()

    def host_dir(self) -> Optional[Path]:
        return self._configured_path(HOST_DIR_KEY, self.settings.host_dir)

    def stash_dir(self) -> Optional[Path]:
        return self._configured_path(STASH_DIR_KEY, self.settings.stash_dir)

    def get_host_dir(self) -> Path:
        path = self.host_dir()
        if path is None:
            raise NotConfiguredError("Host directory is not configured")
        return path

    def get_stash_dir(self) -> Path:
        path = self.stash_dir()
        if path is None:
            raise NotConfiguredError("Stash directory is not configured")
        return path

    def models_dir(self, base: Optional[Path]) -> Optional[Path]:
        if base is None:
            return None
        return base / self.settings.models_subdir


class Commands:
    """Operations exposed to the UI layer"""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.db = ctx.db
        self.log = ctx.log

    # Config
    def get_config(self, key: str) -> Optional[str]:
        return self.db.get_config(key)

    def set_config(self, key: str, value: str):
        self.db.set_config(key, value)

    def get_paths(self) -> Dict[str, Optional[str]]:
        host_dir = self.ctx.host_dir()
        stash_dir = self.ctx.stash_dir()
        return {
            'host_dir': str(host_dir) if host_dir else None,
            'stash_dir': str(stash_dir) if stash_dir else None,
        }

    def set_stash_dir(self, path: str) -> Path:
        """Create the stash (and its models directory) and remember it"""
        stash_dir = Path(path).expanduser().resolve()
        file_ops.ensure_directory(stash_dir / self.ctx.settings.models_subdir)
        self.db.set_config(STASH_DIR_KEY, str(stash_dir))
        self.log.success(f"Stash directory set to {stash_dir}")
        return stash_dir

    # Catalog
    def list_models(self, kind: Optional[str] = None) -> List[ModelListing]:
        return self.db.get_models(kind)

    def set_host_visibility(self, filename: str, visible: bool, order: Optional[int] = None):
        self.db.set_host_visibility(filename, visible, order)

    def reorder(self, orders: Sequence[Tuple[str, int]]):
        self.db.update_display_orders(orders)
        self.log.info(f"Reordered {len(orders)} models")

    def update_display_name(self, filename: str, display_name: Optional[str]):
        self.db.update_display_name(filename, display_name or None)

    def update_strength(self, filename: str, value: Optional[float]):
        strength = strength_to_fixed(value) if value is not None else None
        self.db.update_strength(filename, strength)

    def set_kind(self, filename: str, kind: str):
        self.db.set_kind(filename, kind, source='user')

    def get_relationships(self, filename: str) -> List[DependencyEdge]:
        self.db.require_model(filename)
        return self.db.get_relationships(filename)

    def get_parents(self, filename: str) -> List[DependencyEdge]:
        self.db.require_model(filename)
        return self.db.get_parents(filename)

    def remove_relationship(self, parent: str, child: str) -> bool:
        return self.db.delete_relationship(parent, child)

    # File operations
    def scan(self, kind: Optional[str] = None) -> ScanResult:
        """Rescan the configured locations, optionally only one kind"""
        if kind is not None and kind not in MODEL_KINDS:
            raise ValueError(f"Unknown model kind: {kind}")

        host_models = self.ctx.models_dir(self.ctx.host_dir())
        stash_models = self.ctx.models_dir(self.ctx.stash_dir())
        if host_models is None and stash_models is None:
            raise NotConfiguredError("Neither host nor stash directory is configured")

        settings = self.ctx.settings
        classifier, manifest, warnings = build_classifier(
            settings, host_models or stash_models, stash_models, self.ctx.registry_cache,
            refresh_registry=False, session=self.ctx.session)
        for message in warnings:
            self.log.warning(message)

        result = ScanResult()
        for location, directory in (('host', host_models), ('stash', stash_models)):
            if directory is None:
                continue
            result.merge(import_directory(
                self.db, directory, location, classifier, manifest,
                extensions=settings.file_extensions, kind=kind,
                compute_checksums=settings.compute_checksums))

        resolve_relationships(self.db, manifest)

        for message in result.errors:
            self.log.error(message)
        self.log.info(f"Scanned {result.scanned_count} files, {result.imported_count} new")
        return result

    def copy_to_stash(self, filename: str) -> Path:
        """Copy one cataloged model into the stash

        Raises ConflictError when the stash already holds the file.
        """
        stash_models = self.ctx.models_dir(self.ctx.get_stash_dir())
        model = self.db.require_model(filename)

        source = None
        host_models = self.ctx.models_dir(self.ctx.host_dir())
        if host_models is not None and (host_models / filename).is_file():
            source = host_models / filename
        elif model.source_path and Path(model.source_path).is_file():
            source = Path(model.source_path)
        if source is None:
            raise NotFoundError(f"No source file found for {filename}")
        if source.parent.resolve() == stash_models.resolve():
            raise ConflictError(f"{filename} is already in the stash")

        # The stored digest may be older than the file, hash what is on disk now
        expected = None
        if self.ctx.settings.verify_checksums:
            expected = file_ops.calculate_checksum(source)

        self.log.info(f"Copying {filename} to stash")
        destination = transfer_file(source, stash_models, expected_checksum=expected,
                                    space_margin=self.ctx.settings.space_margin,
                                    unconditional=True)

        with self.db.transaction():
            self.db.set_location_flag(filename, 'stash', True)
            if expected and model.checksum != expected:
                self.db.update_checksum(filename, expected)
        self.log.success(f"Copied {filename} to {destination}")
        return destination

    def delete(self, filename: str, delete_files: bool = True) -> List[Path]:
        """Remove a model from the catalog, and its files when asked

        Files are removed first; if one cannot be deleted the row stays.
        """
        self.db.require_model(filename)

        deleted = []
        if delete_files:
            for base in (self.ctx.host_dir(), self.ctx.stash_dir()):
                models_dir = self.ctx.models_dir(base)
                if models_dir is None:
                    continue
                if file_ops.delete_file(models_dir / filename):
                    deleted.append(models_dir / filename)
                    self.log.info(f"Deleted {models_dir / filename}")

        self.db.delete_model(filename)
        self.log.success(f"Removed {filename} from catalog")
        return deleted

    # Initialization and sync
    def initialize(self, host_dir: str, stash_dir: str) -> Future:
        """Remember both locations and start the first sync in the background"""
        host_path = Path(host_dir).expanduser().resolve()
        if not host_path.is_dir():
            raise NotFoundError(f"Host directory not found: {host_path}")

        self.db.set_config(HOST_DIR_KEY, str(host_path))
        self.set_stash_dir(stash_dir)
        return self.sync()

    def sync(self) -> Future:
        self.ctx.get_host_dir()
        self.ctx.get_stash_dir()
        # Visible to pollers before the worker picks the job up
        self.db.set_config(INIT_STATUS_KEY, STATUS_IN_PROGRESS)
        return start_background_sync(self.ctx)

    def get_initialization_status(self) -> Dict[str, Any]:
        return read_status(self.db)

    def get_logs(self) -> List[LogEvent]:
        return self.log.get_logs()
