#!/usr/bin/env python3
"""
File transfer for ckptstash
Copies model files into a destination directory with staleness checks,
free-space admission control and post-copy checksum verification
"""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import file_ops
from errors import (
    ConflictError, IOFailure, InsufficientSpaceError, IntegrityFailure, NotFoundError,
    StashError,
)

DEFAULT_SPACE_MARGIN = 1.1

PARTIAL_SUFFIX = ".partial"

COPIED = 'copied'
SKIPPED = 'skipped'
FAILED = 'failed'


@dataclass
class TransferOutcome:
    """Result of syncing one file"""
    status: str
    source: Path
    destination: Path
    reason: Optional[str] = None
    error: Optional[StashError] = None
    checksum: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED


def partial_path(destination: Path) -> Path:
    """Hidden sibling the copy is written to before it replaces destination"""
    return destination.with_name(f".{destination.name}{PARTIAL_SUFFIX}")


def check_space(source: Path, dest_dir: Path, margin: float = DEFAULT_SPACE_MARGIN) -> int:
    """Raise InsufficientSpaceError unless dest_dir has room for source plus margin

    Returns the number of bytes the copy needs. An existing destination is not
    counted as free: it stays on disk until the new copy is renamed over it.
    """
    size = file_ops.get_file_size(source)
    required = int(size * margin)
    available = file_ops.get_available_space(dest_dir)
    if available <= required:
        raise InsufficientSpaceError(required, available, dest_dir)
    return required


def transfer_file(source: Path, dest_dir: Path, expected_checksum: Optional[str] = None,
                  space_margin: float = DEFAULT_SPACE_MARGIN,
                  unconditional: bool = False) -> Path:
    """Copy source into dest_dir and return the destination path

    The copy is written to a hidden partial file and renamed into place only
    once it is complete (and, when expected_checksum is given, verified), so
    a failed refresh leaves any previous destination untouched. On a checksum
    mismatch the partial copy is deleted and IntegrityFailure raised. The
    source is never touched. With unconditional=True an existing destination
    is a ConflictError instead of being replaced.
    """
    source = Path(source)
    dest_dir = Path(dest_dir)
    destination = dest_dir / source.name
    partial = partial_path(destination)

    if not source.is_file():
        raise NotFoundError(f"Source file not found: {source}")
    if unconditional and destination.exists():
        raise ConflictError(f"Destination already exists: {destination}")

    file_ops.ensure_directory(dest_dir)
    check_space(source, dest_dir, space_margin)

    try:
        shutil.copy2(source, partial)
    except OSError as e:
        file_ops.delete_file(partial)
        raise IOFailure(f"Failed to copy {source.name}: {e}", destination) from e

    if expected_checksum:
        try:
            actual = file_ops.calculate_checksum(partial)
        except IOFailure:
            file_ops.delete_file(partial)
            raise
        if actual != expected_checksum:
            file_ops.delete_file(partial)
            raise IntegrityFailure(destination, expected_checksum, actual)

    try:
        os.replace(partial, destination)
    except OSError as e:
        file_ops.delete_file(partial)
        raise IOFailure(f"Failed to move {source.name} into place: {e}", destination) from e

    return destination


def sync_file(source: Path, dest_dir: Path, expected_checksum: Optional[str] = None,
              space_margin: float = DEFAULT_SPACE_MARGIN) -> TransferOutcome:
    """Copy source only if the destination is absent or stale

    Never raises for transfer problems; failures come back as a FAILED outcome
    carrying the typed error.
    """
    source = Path(source)
    dest_dir = Path(dest_dir)
    destination = dest_dir / source.name

    if not file_ops.needs_copy(source, destination):
        return TransferOutcome(SKIPPED, source, destination, reason="up to date")

    try:
        transfer_file(source, dest_dir, expected_checksum=expected_checksum,
                      space_margin=space_margin)
    except StashError as e:
        return TransferOutcome(FAILED, source, destination, reason=str(e), error=e)

    return TransferOutcome(COPIED, source, destination, checksum=expected_checksum)
