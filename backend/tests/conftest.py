"""
Shared fakes for the tooltip scheduler tests.
"""
import os
import tempfile
import threading
import time

# Keep the module-level SQLite store out of the working tree
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="glossa-tests-")
os.environ.setdefault("GLOSSA_DATA_DIR", _TEST_DATA_DIR)
os.environ.setdefault("GLOSSA_DB_PATH", os.path.join(_TEST_DATA_DIR, "glossa-test.db"))

import random

import pytest

from core.database import InMemoryStore
from services.tooltips.batch_size_selector import BatchSizeSelector
from services.tooltips.explanation_cache import ExplanationCache
from services.tooltips.scheduler import TooltipScheduler


def explain(term):
    return f"### {term}\n\nExplanation of **{term}**."


class FakeGenerator:
    """
    Stand-in for the generation service.

    ``respond`` maps the requested terms to a response dict (or raises);
    by default every term is explained. Calls are recorded, and the peak
    number of simultaneous calls is tracked.
    """

    def __init__(self, respond=None, delay: float = 0.0):
        self.respond = respond or (lambda terms: {term: explain(term) for term in terms})
        self.delay = delay
        self.calls = []
        self.contexts = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def generate(self, terms, context=None):
        with self._lock:
            self.calls.append(list(terms))
            self.contexts.append(context)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            return self.respond(list(terms))
        finally:
            with self._lock:
                self.active -= 1


class FailingStore:
    """Store whose every operation fails, like a full or corrupted disk."""

    def get(self, key):
        raise OSError("disk unavailable")

    def set(self, key, value):
        raise OSError("disk unavailable")

    def delete(self, key):
        raise OSError("disk unavailable")


class FlakyReadStore(InMemoryStore):
    """In-memory store whose first ``failing_reads`` reads raise."""

    writes = 0

    def __init__(self, initial=None, failing_reads=1):
        super().__init__(initial)
        self.failing_reads = failing_reads
        self.writes = 0

    def get(self, key):
        if self.failing_reads > 0:
            self.failing_reads -= 1
            raise OSError("transient read failure")
        return super().get(key)

    def set(self, key, value):
        self.writes += 1
        super().set(key, value)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache(store):
    return ExplanationCache(store)


@pytest.fixture
def selector(store):
    return BatchSizeSelector(store, rng=random.Random(7))


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def make_scheduler(cache, selector):
    """Build a scheduler around a generator, with launch delays disabled."""
    def _make(generator, **kwargs):
        kwargs.setdefault("sleep", lambda seconds: None)
        return TooltipScheduler(generator, cache, selector, **kwargs)
    return _make
