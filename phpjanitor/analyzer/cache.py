"""Incremental per-file cache for collector results.

Repeat runs skip parsing for files whose (mtime, size) fingerprint is
unchanged. Layout under the cache directory:

    manifest.json          {version, created, files: {path: {fingerprint, blob_ref}}}
    <md5(path)>.json       {symbols: [...], references: [...], use_statements: [...]}

A manifest written by another version is discarded together with every blob.
"""
import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from phpjanitor.analyzer.models import Reference, Symbol, UseStatement
from phpjanitor.config import __version__


logger = logging.getLogger(__name__)

MANIFEST_NAME = 'manifest.json'
CACHE_VERSION = __version__


@dataclass
class CacheEntry:
    """Collector output for one file."""
    symbols: List[Symbol] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)
    use_statements: List[UseStatement] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'symbols': [s.to_dict() for s in self.symbols],
            'references': [r.to_dict() for r in self.references],
            'use_statements': [u.to_dict() for u in self.use_statements],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'CacheEntry':
        return cls(
            symbols=[Symbol.from_dict(s) for s in data.get('symbols', [])],
            references=[Reference.from_dict(r) for r in data.get('references', [])],
            use_statements=[UseStatement.from_dict(u) for u in data.get('use_statements', [])],
        )


def fingerprint(file_path: str | Path) -> Optional[str]:
    """mtime:size of a file, or None if it cannot be stat'ed."""
    try:
        stat = Path(file_path).stat()
    except OSError:
        return None
    return f"{stat.st_mtime}:{stat.st_size}"


class CacheManager:
    """Manifest plus one JSON blob per analysed file.

    Safe to call from collector worker threads: a lock guards the manifest
    and the hit/miss counters.
    """

    def __init__(self, cache_dir: str | Path, enabled: bool = True):
        """Open (or create) a cache directory.

        Args:
            cache_dir: Directory holding the manifest and blobs
            enabled: When False every operation is a no-op
        """
        self.cache_dir = Path(cache_dir)
        self.manifest_path = self.cache_dir / MANIFEST_NAME
        self.enabled = enabled
        self.hits = 0
        self.misses = 0
        self.writes = 0
        self._lock = threading.Lock()
        self._manifest = self._empty_manifest()
        if enabled:
            self._load_manifest()

    @staticmethod
    def _empty_manifest() -> Dict:
        return {'version': CACHE_VERSION, 'created': datetime.now().isoformat(), 'files': {}}

    def _load_manifest(self):
        try:
            with open(self.manifest_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable cache manifest %s: %s", self.manifest_path, e)
            return

        if not isinstance(data, dict) or data.get('version') != CACHE_VERSION:
            logger.info("Cache version mismatch (found %s, expected %s); clearing cache",
                        data.get('version') if isinstance(data, dict) else None, CACHE_VERSION)
            self.clear()
            return
        data.setdefault('files', {})
        self._manifest = data

    @staticmethod
    def _blob_ref(file_path: str) -> str:
        return hashlib.md5(file_path.encode('utf-8')).hexdigest() + '.json'

    # -- lookups -----------------------------------------------------------

    def is_valid(self, file_path: str | Path) -> bool:
        """True if a cached entry exists and the file is unchanged since."""
        if not self.enabled:
            return False
        key = str(file_path)
        with self._lock:
            record = self._manifest['files'].get(key)
        if record is None:
            return False
        current = fingerprint(key)
        return current is not None and current == record.get('fingerprint')

    def get(self, file_path: str | Path) -> Optional[CacheEntry]:
        """Load the cached entry for a file, or None on miss.

        A stale fingerprint or a corrupt blob counts as a miss; corrupt
        entries are dropped from the manifest.
        """
        if not self.enabled:
            return None
        key = str(file_path)
        if not self.is_valid(key):
            with self._lock:
                self.misses += 1
            return None

        with self._lock:
            blob = self.cache_dir / self._manifest['files'][key]['blob_ref']
        try:
            with open(blob, 'r', encoding='utf-8') as f:
                entry = CacheEntry.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.debug("Dropping corrupt cache entry for %s: %s", key, e)
            with self._lock:
                self._manifest['files'].pop(key, None)
                self.misses += 1
            return None

        with self._lock:
            self.hits += 1
        return entry

    def set(self, file_path: str | Path, entry: CacheEntry):
        """Store the collector output for a file under its current fingerprint."""
        if not self.enabled:
            return
        key = str(file_path)
        current = fingerprint(key)
        if current is None:
            return

        blob_ref = self._blob_ref(key)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(self.cache_dir / blob_ref, 'w', encoding='utf-8') as f:
                json.dump(entry.to_dict(), f, ensure_ascii=False)
        except OSError as e:
            logger.warning("Could not write cache entry for %s: %s", key, e)
            return

        with self._lock:
            self._manifest['files'][key] = {'fingerprint': current, 'blob_ref': blob_ref}
            self.writes += 1

    def save_metadata(self):
        """Write the manifest to disk atomically."""
        if not self.enabled:
            return
        with self._lock:
            data = json.loads(json.dumps(self._manifest))
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            # Write to temp file first for atomic operation
            temp_path = self.manifest_path.with_suffix('.tmp')
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_path.replace(self.manifest_path)
        except OSError as e:
            logger.warning("Could not write cache manifest %s: %s", self.manifest_path, e)

    def clear(self):
        """Delete the manifest and every blob."""
        with self._lock:
            self._manifest = self._empty_manifest()
        if not self.cache_dir.exists():
            return
        for path in self.cache_dir.glob('*.json'):
            try:
                path.unlink()
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)
        temp_path = self.manifest_path.with_suffix('.tmp')
        if temp_path.exists():
            temp_path.unlink()

    def stats(self) -> Dict:
        """Entry count, disk size and this run's hit/miss counters."""
        with self._lock:
            file_count = len(self._manifest['files'])
            hits, misses, writes = self.hits, self.misses, self.writes
        size = 0
        if self.cache_dir.exists():
            size = sum(p.stat().st_size for p in self.cache_dir.glob('*.json') if p.is_file())
        lookups = hits + misses
        return {
            'enabled': self.enabled,
            'directory': str(self.cache_dir),
            'file_count': file_count,
            'size': size,
            'hits': hits,
            'misses': misses,
            'writes': writes,
            'hit_rate': hits / lookups if lookups else 0.0,
        }
