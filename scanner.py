#!/usr/bin/env python3
"""
Directory scanner for ckptstash
Finds model files in one location, classifies them and records them in the catalog
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import file_ops
from classifier import ModelClassifier
from database import CatalogDB, ModelEntry, UPSERT_INSERTED, UPSERT_UPDATED, LOCATIONS
from errors import StashError
from manifest import ManifestIndex


@dataclass
class ScanResult:
    """Aggregate outcome of scanning one directory"""
    scanned_count: int = 0
    imported_count: int = 0
    updated_count: int = 0
    missing: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def merge(self, other: 'ScanResult'):
        self.scanned_count += other.scanned_count
        self.imported_count += other.imported_count
        self.updated_count += other.updated_count
        self.missing.extend(other.missing)
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_entry(file_path: Path, location: str, classifier: ModelClassifier,
                manifest: ManifestIndex, existing: Optional[ModelEntry] = None,
                compute_checksum: bool = False) -> ModelEntry:
    """Describe a file found on disk as a catalog entry"""
    filename = file_path.name
    result = classifier.classify_model(filename)

    entry = ModelEntry(
        filename=filename,
        display_name=manifest.get_display_name(filename),
        kind=result.kind,
        kind_source=result.source,
        file_size=file_ops.get_file_size(file_path),
    )

    if compute_checksum:
        entry.checksum = file_ops.calculate_checksum(file_path)

    # The host copy is the canonical source; a stash path is only a fallback
    if location == 'host' or existing is None or existing.source_path is None:
        entry.source_path = str(file_path.resolve())

    if location == 'host':
        entry.exists_host = True
        entry.host_display_order = manifest.get_display_order(filename)
    else:
        entry.exists_stash = True

    if result.kind == 'lora':
        entry.strength = manifest.get_strength(filename)

    return entry


def import_model_file(db: CatalogDB, file_path: Path, location: str,
                      classifier: ModelClassifier, manifest: ManifestIndex,
                      compute_checksum: bool = False) -> str:
    """Upsert a single file, returns the upsert outcome"""
    existing = db.get_model(file_path.name)
    entry = build_entry(file_path, location, classifier, manifest,
                        existing=existing, compute_checksum=compute_checksum)
    return db.upsert_model(entry)


def import_directory(db: CatalogDB, directory: Path, location: str,
                     classifier: ModelClassifier, manifest: ManifestIndex,
                     extensions: Iterable[str] = file_ops.DEFAULT_MODEL_EXTENSIONS,
                     kind: Optional[str] = None,
                     compute_checksums: bool = False) -> ScanResult:
    """Scan one location and upsert every model file found

    A file that cannot be read is reported in ``errors`` and the scan moves
    on. With no kind filter the scan is complete for the location, so rows
    whose file has disappeared lose that location's flag.
    """
    if location not in LOCATIONS:
        raise ValueError(f"Unknown location: {location}")

    result = ScanResult()
    directory = Path(directory)

    try:
        model_files = file_ops.scan_directory(directory, extensions)
    except StashError as e:
        result.errors.append(str(e))
        return result

    for file_path in model_files:
        filename = file_path.name
        if kind and classifier.classify(filename) != kind:
            continue

        result.scanned_count += 1
        try:
            outcome = import_model_file(db, file_path, location, classifier, manifest,
                                        compute_checksum=compute_checksums)
        except StashError as e:
            result.errors.append(f"{filename}: {e}")
            continue

        if outcome == UPSERT_INSERTED:
            result.imported_count += 1
        elif outcome == UPSERT_UPDATED:
            result.updated_count += 1

    if kind is None:
        present = [file_path.name for file_path in model_files]
        result.missing = db.clear_missing(location, present)

    return result
