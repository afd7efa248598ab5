#!/usr/bin/env python3
"""
File system helpers for ckptstash
Checksums, sizes, directory scanning, free space and staleness checks
"""

import hashlib
import os
import shutil
from pathlib import Path
from typing import Iterable, List

from errors import IOFailure, format_size

CHUNK_SIZE = 8 * 1024 * 1024

DEFAULT_MODEL_EXTENSIONS = ['.ckpt', '.safetensors', '.pt', '.pth']


def calculate_checksum(file_path: Path) -> str:
    """Calculate SHA256 hex digest of a file"""
    hash_sha256 = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                hash_sha256.update(chunk)
    except OSError as e:
        raise IOFailure(f"Failed to read {file_path}: {e}", file_path) from e
    return hash_sha256.hexdigest()


def get_file_size(file_path: Path) -> int:
    """Size of a file in bytes"""
    try:
        return Path(file_path).stat().st_size
    except OSError as e:
        raise IOFailure(f"Failed to get file size for {file_path}: {e}", file_path) from e


def get_available_space(directory: Path) -> int:
    """Free bytes on the volume holding directory"""
    try:
        return shutil.disk_usage(directory).free
    except OSError as e:
        raise IOFailure(f"Failed to get available space for {directory}: {e}", directory) from e


def normalize_extensions(extensions: Iterable[str]) -> List[str]:
    """Lower-case extensions with a leading dot"""
    normalized = []
    for ext in extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        if not ext.startswith('.'):
            ext = '.' + ext
        normalized.append(ext)
    return normalized


def scan_directory(directory: Path, extensions: Iterable[str]) -> List[Path]:
    """List model files directly inside directory, sorted by name

    Non-recursive. Hidden files, subdirectories and symlinks to directories are
    ignored. A missing directory gives an empty list rather than an error.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    wanted = set(normalize_extensions(extensions))
    model_files = []
    try:
        entries = list(directory.iterdir())
    except OSError as e:
        raise IOFailure(f"Failed to read directory {directory}: {e}", directory) from e

    for file_path in entries:
        if file_path.name.startswith('.'):
            continue
        if not file_path.is_file():
            continue
        if file_path.suffix.lower() in wanted:
            model_files.append(file_path)

    return sorted(model_files, key=lambda p: p.name)


def needs_copy(source: Path, destination: Path) -> bool:
    """True if destination is absent, a different size, or older than source"""
    if not destination.exists():
        return True
    try:
        src_stat = source.stat()
        dest_stat = destination.stat()
    except OSError:
        # Unreadable metadata: copy again
        return True
    if src_stat.st_size != dest_stat.st_size:
        return True
    return src_stat.st_mtime > dest_stat.st_mtime


def ensure_directory(directory: Path) -> Path:
    """mkdir -p"""
    directory = Path(directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IOFailure(f"Failed to create directory {directory}: {e}", directory) from e
    return directory


def delete_file(file_path: Path) -> bool:
    """Remove a file if present, returns True when something was deleted"""
    file_path = Path(file_path)
    if not file_path.exists():
        return False
    try:
        os.remove(file_path)
    except OSError as e:
        raise IOFailure(f"Failed to delete {file_path}: {e}", file_path) from e
    return True
