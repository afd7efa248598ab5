#!/usr/bin/env python3
"""
Error types for ckptstash
Every failure raised by the catalog, transfer and sync code derives from StashError
"""

from pathlib import Path
from typing import Optional


def format_size(num_bytes: int) -> str:
    """Human readable size (binary units)"""
    size = float(num_bytes)
    for unit in ('B', 'KB', 'MB'):
        if abs(size) < 1024.0:
            return f"{size:.1f} {unit}" if unit != 'B' else f"{int(size)} B"
        size /= 1024.0
    return f"{size:.2f} GB"


class StashError(RuntimeError):
    """Base error type"""


class ConfigError(StashError):
    """Configuration file could not be read or is malformed"""


class NotConfiguredError(StashError):
    """A required path (host or stash directory) has not been configured"""


class NotFoundError(StashError):
    """Referenced model or file does not exist"""


class IOFailure(StashError):
    """Read/write/copy failure, wrapping the underlying OS error"""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class InsufficientSpaceError(StashError):
    """Admission control refused a transfer"""

    def __init__(self, required: int, available: int, path: Optional[Path] = None):
        self.required = required
        self.available = available
        self.path = path
        super().__init__(
            f"Insufficient disk space. Required: {format_size(required)}, "
            f"Available: {format_size(available)}"
        )


class IntegrityFailure(StashError):
    """Post-copy checksum mismatch; the unverified copy has been removed"""

    def __init__(self, path: Path, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum verification failed for {path.name} - copy corrupted "
            f"(expected {expected[:12]}..., got {actual[:12]}...)"
        )


class ConflictError(StashError):
    """Destination already present where an unconditional copy was requested"""


class ManifestParseError(StashError):
    """Malformed manifest JSON or registry list"""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path
