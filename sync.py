#!/usr/bin/env python3
"""
Sync orchestrator for ckptstash
Mirrors manifests and model files from host to stash, rescans both locations,
resolves dependency edges and records the run status in the catalog
"""

import json
import sqlite3
from concurrent.futures import Future
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import file_ops
from classifier import ModelClassifier
from config import Config
from database import CatalogDB
from errors import StashError
from logger import LogStore
from manifest import ManifestIndex, parse_from_directory
from registry import RegistryFetcher
from relationships import resolve_relationships
from scanner import ScanResult, import_directory
from transfer import COPIED, SKIPPED, sync_file

# Config table keys
HOST_DIR_KEY = 'HOST_DIR'
STASH_DIR_KEY = 'STASH_DIR'
INIT_STATUS_KEY = 'INIT_STATUS'
INIT_ERRORS_KEY = 'INIT_ERRORS'
STASH_EXISTS_KEY = 'STASH_EXISTS'

STATUS_NOT_STARTED = 'not_started'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETE = 'complete'
STATUS_ERROR = 'error'

MANIFEST_PATTERN = '*.json'


@dataclass
class SyncReport:
    """Aggregate counts and messages for one sync run"""
    status: str = STATUS_NOT_STARTED
    stash_exists: bool = False
    manifests_copied: int = 0
    copied_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    host_scan: ScanResult = field(default_factory=ScanResult)
    stash_scan: ScanResult = field(default_factory=ScanResult)
    relationships_added: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_manifest(host_models: Path, stash_models: Optional[Path],
                  manifest_files: List[str]) -> ManifestIndex:
    """Parse the host manifests, falling back to the stash copies"""
    manifest = parse_from_directory(host_models, manifest_files)
    if manifest.is_empty() and stash_models is not None:
        fallback = parse_from_directory(stash_models, manifest_files)
        if not fallback.is_empty():
            fallback.errors = manifest.errors + fallback.errors
            return fallback
    return manifest


def build_classifier(settings: Config, host_models: Path, stash_models: Optional[Path],
                     registry_cache: Path, refresh_registry: bool = False,
                     session=None) -> Tuple[ModelClassifier, ManifestIndex, List[str]]:
    """Classifier over the current manifest and registry, plus non-fatal load warnings"""
    manifest = load_manifest(host_models, stash_models, settings.manifest_files)
    fetcher = RegistryFetcher(
        settings.registry_urls,
        registry_cache,
        timeout=settings.registry_timeout,
        enabled=settings.registry_enabled,
        session=session,
    )
    registry, registry_errors = fetcher.load(refresh=refresh_registry)
    warnings = list(manifest.errors) + registry_errors
    return ModelClassifier(manifest, registry), manifest, warnings


def read_status(db: CatalogDB) -> Dict[str, Any]:
    """Persisted status of the last initialization/sync run"""
    raw_errors = db.get_config(INIT_ERRORS_KEY)
    try:
        errors = json.loads(raw_errors) if raw_errors else []
    except ValueError:
        errors = [raw_errors]
    return {
        'status': db.get_config(INIT_STATUS_KEY) or STATUS_NOT_STARTED,
        'stash_exists': db.get_config(STASH_EXISTS_KEY) == 'true',
        'errors': errors,
    }


class SyncOrchestrator:
    """One host -> stash synchronisation run"""

    def __init__(self, db: CatalogDB, settings: Config, host_dir: Path, stash_dir: Path,
                 log: LogStore, registry_cache: Path, refresh_registry: bool = True,
                 session=None):
        self.db = db
        self.settings = settings
        self.host_models = Path(host_dir) / settings.models_subdir
        self.stash_models = Path(stash_dir) / settings.models_subdir
        self.log = log
        self.registry_cache = Path(registry_cache)
        self.refresh_registry = refresh_registry
        self.session = session
        self.report = SyncReport()
        self.copied_checksums: Dict[str, str] = {}

    def _error(self, message: str):
        self.report.errors.append(message)
        self.log.error(message)

    def _warning(self, message: str):
        self.report.warnings.append(message)
        self.log.warning(message)

    def _set_status(self, status: str):
        self.report.status = status
        self.db.set_config(INIT_STATUS_KEY, status)

    def ensure_stash(self) -> bool:
        try:
            file_ops.ensure_directory(self.stash_models)
        except StashError as e:
            self._error(f"Could not create stash directory: {e}")
        self.report.stash_exists = self.stash_models.is_dir()
        return self.report.stash_exists

    def mirror_manifests(self):
        """Copy JSON manifests that are newer on the host"""
        if not self.host_models.is_dir():
            return
        for source in sorted(self.host_models.glob(MANIFEST_PATTERN)):
            if not source.is_file():
                continue
            outcome = sync_file(source, self.stash_models, space_margin=self.settings.space_margin)
            if outcome.status == COPIED:
                self.report.manifests_copied += 1
                self.log.info(f"Mirrored {source.name}")
            elif not outcome.ok:
                self._error(f"Failed to mirror {source.name}: {outcome.reason}")

    def _source_checksum(self, source: Path) -> Optional[str]:
        # Digest of the file as it is now; a stored digest may predate an
        # in-place rewrite that kept the size
        if self.settings.verify_checksums:
            return file_ops.calculate_checksum(source)
        return None

    def transfer_models(self):
        """Copy missing or stale model files from host to stash"""
        try:
            sources = file_ops.scan_directory(self.host_models, self.settings.file_extensions)
        except StashError as e:
            self._error(str(e))
            return

        for source in sources:
            destination = self.stash_models / source.name
            if not file_ops.needs_copy(source, destination):
                self.report.skipped_count += 1
                continue

            try:
                size = file_ops.get_file_size(source)
                expected = self._source_checksum(source)
            except StashError as e:
                self.report.failed_count += 1
                self._error(f"{source.name}: {e}")
                continue

            self.log.info(f"Copying {source.name} ({file_ops.format_size(size)})")
            outcome = sync_file(source, self.stash_models, expected_checksum=expected,
                                space_margin=self.settings.space_margin)
            if outcome.status == COPIED:
                self.report.copied_count += 1
                if expected:
                    self.copied_checksums[source.name] = expected
                self.log.success(f"Copied {source.name}")
            elif outcome.status == SKIPPED:
                self.report.skipped_count += 1
            else:
                self.report.failed_count += 1
                self._error(f"{source.name}: {outcome.reason}")

    def scan_locations(self, classifier: ModelClassifier, manifest: ManifestIndex):
        extensions = self.settings.file_extensions
        compute = self.settings.compute_checksums

        self.report.host_scan = import_directory(
            self.db, self.host_models, 'host', classifier, manifest,
            extensions=extensions, compute_checksums=compute)
        self.report.stash_scan = import_directory(
            self.db, self.stash_models, 'stash', classifier, manifest,
            extensions=extensions, compute_checksums=compute)

        for scan in (self.report.host_scan, self.report.stash_scan):
            for message in scan.errors:
                self._error(message)

        # Digests verified during the copy describe the current file
        for filename, checksum in self.copied_checksums.items():
            model = self.db.get_model(filename)
            if model and model.checksum != checksum:
                self.db.update_checksum(filename, checksum)

        total = self.report.host_scan.imported_count + self.report.stash_scan.imported_count
        self.log.info(f"Scanned host and stash, {total} new models")

    def run(self) -> SyncReport:
        """Run every step; step failures are recorded and later steps still run"""
        self._set_status(STATUS_IN_PROGRESS)
        self.db.set_config(INIT_ERRORS_KEY, json.dumps([]))
        self.log.info(f"Sync started: {self.host_models} -> {self.stash_models}")

        try:
            if self.ensure_stash():
                self.mirror_manifests()
                self.transfer_models()

            classifier, manifest, warnings = build_classifier(
                self.settings, self.host_models, self.stash_models, self.registry_cache,
                refresh_registry=self.refresh_registry, session=self.session)
            for message in warnings:
                self._warning(message)

            self.scan_locations(classifier, manifest)
            self.report.relationships_added = resolve_relationships(self.db, manifest)
        except (StashError, sqlite3.Error, OSError) as e:
            self._error(f"Sync aborted: {e}")

        self.finish()
        return self.report

    def finish(self):
        status = STATUS_ERROR if self.report.errors else STATUS_COMPLETE
        try:
            self.db.set_config(STASH_EXISTS_KEY, 'true' if self.report.stash_exists else 'false')
            self.db.set_config(INIT_ERRORS_KEY, json.dumps(self.report.errors))
            self._set_status(status)
        except sqlite3.Error as e:
            self.report.errors.append(f"Failed to record sync status: {e}")
            self.report.status = STATUS_ERROR
            self.log.error(self.report.errors[-1])
            return

        if status == STATUS_COMPLETE:
            self.log.success(
                f"Sync complete: {self.report.copied_count} copied, "
                f"{self.report.skipped_count} up to date, "
                f"{self.report.relationships_added} new relationships")
        else:
            self.log.error(f"Sync finished with {len(self.report.errors)} errors")


def run_sync(db_path: Path, settings: Config, host_dir: Path, stash_dir: Path,
             log: LogStore, registry_cache: Path, session=None) -> SyncReport:
    """Open a dedicated catalog connection and run one sync

    Never raises: a failure to even open the catalog comes back as an error report.
    """
    try:
        with CatalogDB(db_path) as db:
            orchestrator = SyncOrchestrator(db, settings, host_dir, stash_dir, log,
                                            registry_cache, session=session)
            return orchestrator.run()
    except (StashError, sqlite3.Error, OSError) as e:
        message = f"Sync failed: {e}"
        log.error(message)
        return SyncReport(status=STATUS_ERROR, errors=[message])


def start_background_sync(ctx) -> Future:
    """Submit a sync to the context's worker; the future resolves to a SyncReport"""
    return ctx.executor.submit(
        run_sync,
        ctx.db_path,
        ctx.settings,
        ctx.get_host_dir(),
        ctx.get_stash_dir(),
        ctx.log,
        ctx.registry_cache,
        ctx.session,
    )
