#!/usr/bin/env python3
"""
Remote model registry for ckptstash
Plain-text lists of known filenames per kind, fetched over HTTP and cached on disk
"""

from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import requests

# Registry list name -> kind assigned to files on that list, in lookup order
REGISTRY_LISTS = [
    ('models', 'model'),
    ('loras', 'lora'),
    ('controlnets', 'control'),
    ('embeddings', 'embedding'),
]


def parse_registry_text(text: str) -> Set[str]:
    """One filename per line; blank lines and '#' comments are ignored"""
    filenames = set()
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        filenames.add(line)
    return filenames


class ModelTypeRegistry:
    """Known filenames per registry list"""

    def __init__(self, lists: Optional[Dict[str, Set[str]]] = None):
        self.lists: Dict[str, Set[str]] = {name: set() for name, _ in REGISTRY_LISTS}
        if lists:
            for name, filenames in lists.items():
                self.lists[name] = set(filenames)

    def get_kind(self, filename: str) -> Optional[str]:
        """Kind for a filename, or None when no list contains it"""
        for name, kind in REGISTRY_LISTS:
            if filename in self.lists.get(name, ()):
                return kind
        return None

    def count(self) -> int:
        return sum(len(filenames) for filenames in self.lists.values())

    def is_empty(self) -> bool:
        return self.count() == 0


class RegistryFetcher:
    """Downloads registry lists and keeps a local cache for offline use"""

    def __init__(self, urls: Dict[str, str], cache_dir: Path, timeout: int = 10,
                 enabled: bool = True, session: Optional[requests.Session] = None):
        self.urls = {name: url for name, url in (urls or {}).items() if url}
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self.enabled = enabled
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'ckptstash/0.1'
        })

    def _cache_path(self, name: str) -> Path:
        return self.cache_dir / f"{name}.txt"

    def download_list(self, url: str) -> str:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    def read_cached(self, name: str) -> Optional[str]:
        cache_path = self._cache_path(name)
        if not cache_path.exists():
            return None
        return cache_path.read_text(encoding='utf-8')

    def write_cache(self, name: str, text: str):
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._cache_path(name).write_text(text, encoding='utf-8')

    def load(self, refresh: bool = True) -> Tuple[ModelTypeRegistry, List[str]]:
        """Build a registry from remote lists, falling back to the cache

        Returns the registry and a list of error messages. Failures are not
        fatal: a list that cannot be fetched or read is simply empty.
        """
        lists: Dict[str, Set[str]] = {}
        errors = []

        for name, _kind in REGISTRY_LISTS:
            text = None
            url = self.urls.get(name)

            if refresh and self.enabled and url:
                try:
                    text = self.download_list(url)
                    self.write_cache(name, text)
                except requests.RequestException as e:
                    errors.append(f"Failed to download {name} registry from {url}: {e}")
                except OSError as e:
                    errors.append(f"Failed to cache {name} registry: {e}")

            if text is None:
                try:
                    text = self.read_cached(name)
                except (OSError, UnicodeDecodeError) as e:
                    errors.append(f"Failed to read cached {name} registry: {e}")

            if text is not None:
                lists[name] = parse_registry_text(text)

        return ModelTypeRegistry(lists), errors
