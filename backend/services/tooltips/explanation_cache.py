"""
Persistent term -> explanation cache consulted before any generation call.
"""
import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from core.config import TOOLTIP_CACHE_KEY

logger = logging.getLogger(__name__)


class ExplanationCache:
    """Caches generated explanations so terms are never requested twice."""

    def __init__(self, backend, key: str = TOOLTIP_CACHE_KEY):
        self.backend = backend
        self.key = key
        self._entries: Optional[Dict[str, str]] = None
        # Entries stored while the persisted map could not be read
        self._pending: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        """
        Populate the in-memory mirror from the store on first use.

        A failed read leaves the mirror unloaded so the next call reads
        again; until then only the pending entries are served.
        """
        if self._entries is not None:
            return self._entries

        try:
            stored = self.backend.get(self.key)
        except Exception as e:
            logger.warning(f"Cache read error, serving {len(self._pending)} unsaved entries: {e}")
            return self._pending

        if isinstance(stored, dict):
            entries = {
                term: text
                for term, text in stored.items()
                if isinstance(term, str) and isinstance(text, str) and text
            }
        else:
            if stored is not None:
                logger.warning(f"Ignoring malformed cache document under '{self.key}'")
            entries = {}

        entries.update(self._pending)
        self._pending = {}
        self._entries = entries
        return self._entries

    def lookup(self, terms: Iterable[str]) -> Tuple[Dict[str, str], List[str]]:
        """Split terms into cache hits and misses (misses keep input order)."""
        hits: Dict[str, str] = {}
        misses: List[str] = []
        with self._lock:
            entries = self._load()
            for term in terms:
                if term in entries:
                    hits[term] = entries[term]
                else:
                    misses.append(term)
        return hits, misses

    def get(self, term: str) -> Optional[str]:
        with self._lock:
            return self._load().get(term)

    def store(self, entries: Dict[str, str]) -> None:
        """Merge entries into the cache and persist the whole map."""
        if not entries:
            return

        # Persist under the lock so an older snapshot never lands after a newer one
        with self._lock:
            cached = self._load()
            cached.update(entries)
            if self._entries is None:
                # Never write a partial map over a document we could not read
                logger.warning(f"Cache not loaded, {len(entries)} entries kept in memory only")
                return
            try:
                self.backend.set(self.key, dict(cached))
            except Exception as e:
                logger.warning(f"Cache write error ({len(entries)} entries kept in memory only): {e}")

    def clear(self) -> None:
        """Forget every cached explanation."""
        with self._lock:
            self._entries = {}
            self._pending = {}

        try:
            self.backend.delete(self.key)
        except Exception as e:
            logger.warning(f"Cache delete error: {e}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._load())
