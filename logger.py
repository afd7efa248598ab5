#!/usr/bin/env python3
"""
Log store for ckptstash
Messages are printed to the console and kept in a capped in-memory buffer for display
"""

import sys
import threading
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, List

LEVELS = ('info', 'success', 'warning', 'error')

# Console prefix per level, info lines print bare
LEVEL_MARKERS = {'info': '', 'success': '✓', 'warning': '⚠', 'error': '✗'}

DEFAULT_RETENTION = 1000


@dataclass
class LogEvent:
    """A single log line"""
    timestamp: str
    level: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class LogStore:
    """Append-only log buffer, oldest entries dropped past the retention count"""

    def __init__(self, retention: int = DEFAULT_RETENTION, echo: bool = True):
        self.retention = retention
        self.echo = echo
        self._events = deque(maxlen=retention)
        self._lock = threading.Lock()

    def emit(self, level: str, message: str) -> LogEvent:
        """Record a message and echo it to the console"""
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")

        event = LogEvent(
            timestamp=datetime.now().strftime("%H:%M:%S"),
            level=level,
            message=message,
        )
        with self._lock:
            self._events.append(event)

        if self.echo:
            stream = sys.stderr if level == 'error' else sys.stdout
            marker = LEVEL_MARKERS[level]
            line = f"{marker} {message}" if marker else message
            print(line, file=stream, flush=True)
        return event

    def info(self, message: str) -> LogEvent:
        return self.emit('info', message)

    def success(self, message: str) -> LogEvent:
        return self.emit('success', message)

    def warning(self, message: str) -> LogEvent:
        return self.emit('warning', message)

    def error(self, message: str) -> LogEvent:
        return self.emit('error', message)

    def get_logs(self) -> List[LogEvent]:
        """Snapshot of retained events, oldest first"""
        with self._lock:
            return list(self._events)

    def clear(self):
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
