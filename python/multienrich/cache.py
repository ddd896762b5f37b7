"""
Cache Manager for MultiEnrich

Simple file-based JSON cache with a time-to-live, shared by the identifier
lookups (mygene.info) and the gene set sources.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Optional


DEFAULT_CACHE_DIR = Path.home() / '.multienrich' / 'cache'
DEFAULT_TTL = 30 * 24 * 3600  # 30 days


class CacheManager:
    """
    File-based cache.

    Each key is stored as one JSON file named after the SHA256 of the key, so
    arbitrary strings (gene lists, URLs) can be used as keys.
    """

    def __init__(self, cache_dir: Optional[Path] = None, ttl: Optional[int] = DEFAULT_TTL):
        """
        Initialize cache manager.

        Args:
            cache_dir: Directory for cache files
            ttl: Default time-to-live in seconds (None keeps entries forever)
        """
        self.cache_dir = Path(cache_dir) if cache_dir else DEFAULT_CACHE_DIR
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.ttl = ttl

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode('utf-8')).hexdigest()[:32]
        return self.cache_dir / f"{digest}.json"

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached item.

        Args:
            key: Cache key

        Returns:
            Cached data or None when missing, expired or unreadable
        """
        cache_file = self._path(key)
        if not cache_file.exists():
            return None
        try:
            with open(cache_file, 'r', encoding='utf-8') as f:
                cached = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"Cache read error for {cache_file.name}: {e}")
            return None

        expires = cached.get('expires')
        if expires is not None and time.time() > expires:
            logging.info(f"Cache expired: {key[:60]}")
            return None
        return cached.get('data')

    def set(self, key: str, value: Any, ttl: Optional[int] = None):
        """
        Set cache item.

        Args:
            key: Cache key
            value: JSON-serializable data to cache
            ttl: Time-to-live in seconds (defaults to the manager TTL)
        """
        ttl = self.ttl if ttl is None else ttl
        payload = {
            'key': key[:200],
            'timestamp': time.time(),
            'expires': time.time() + ttl if ttl is not None else None,
            'data': value,
        }
        try:
            with open(self._path(key), 'w', encoding='utf-8') as f:
                json.dump(payload, f)
        except OSError as e:
            logging.warning(f"Cache write error: {e}")

    def delete(self, key: str):
        """Delete cached item"""
        self._path(key).unlink(missing_ok=True)

    def clear(self):
        """Clear all cache"""
        for file in self.cache_dir.glob("*.json"):
            file.unlink()
