"""
Pytest configuration and shared fixtures for factgraph tests.

This module provides the engine fixtures used across test modules,
including scriptable embedders for failure and concurrency tests and
fact record builders.
"""

import time
from typing import Any, Callable, Optional

import pytest

from factgraph.config import FactGraphSettings
from factgraph.core.models import RawFact
from factgraph.core.utils.audit_log import AuditLog
from factgraph.embedding.providers import Embedder, HashingEmbedder
from factgraph.interface.client import FactGraph
from factgraph.privacy.filter import PrivacyFilter
from factgraph.runtime.cache import QueryCache
from factgraph.runtime.coordinator import ConsistencyCoordinator
from factgraph.storage.engine import InMemoryGraphStore
from factgraph.storage.index import InMemoryVectorIndex


DIM = 64


# =============================================================================
# Embedders
# =============================================================================

class ScriptedEmbedder(Embedder):
    """
    Hashing embedder that can be told to fail, stall or run a hook.

    Each behaviour triggers when its marker string occurs in the text.
    """

    def __init__(
        self,
        dim: int = DIM,
        fail_on: Optional[str] = None,
        stall_on: Optional[str] = None,
        stall_seconds: float = 0.5,
        hook_on: Optional[str] = None,
        hook: Optional[Callable[[], Any]] = None,
    ):
        self.dim = dim
        self._inner = HashingEmbedder(dim=dim)
        self.fail_on = fail_on
        self.stall_on = stall_on
        self.stall_seconds = stall_seconds
        self.hook_on = hook_on
        self.hook = hook
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("embedding service unavailable")
        if self.stall_on and self.stall_on in text:
            time.sleep(self.stall_seconds)
        if self.hook is not None and self.hook_on and self.hook_on in text:
            self.hook()
        return self._inner.embed(text)


@pytest.fixture
def scripted_embedder():
    """The ScriptedEmbedder class, for tests that need custom behaviour."""
    return ScriptedEmbedder


@pytest.fixture
def embedder():
    """Deterministic offline embedder."""
    return HashingEmbedder(dim=DIM)


# =============================================================================
# Fact Builders
# =============================================================================

def _edge(subject: str, predicate: str, obj: str, **kwargs: Any) -> dict[str, Any]:
    record = {
        "subject": subject,
        "predicate": predicate,
        "object": obj,
        "object_kind": "service",
        "source": f"repo:{subject}",
    }
    record.update(kwargs)
    return record


def _literal(subject: str, predicate: str, value: Any, **kwargs: Any) -> dict[str, Any]:
    record = {
        "subject": subject,
        "predicate": predicate,
        "object": value,
        "source": f"repo:{subject}",
    }
    record.update(kwargs)
    return record


@pytest.fixture
def edge():
    """Builder for an entity-to-entity fact record."""
    return _edge


@pytest.fixture
def literal():
    """Builder for a literal-valued fact record."""
    return _literal


@pytest.fixture
def raw_edge():
    """Builder for a parsed edge RawFact."""
    def build(subject: str, predicate: str, obj: str, **kwargs: Any) -> RawFact:
        return RawFact.parse(_edge(subject, predicate, obj, **kwargs))
    return build


@pytest.fixture
def raw_literal():
    """Builder for a parsed literal RawFact."""
    def build(subject: str, predicate: str, value: Any, **kwargs: Any) -> RawFact:
        return RawFact.parse(_literal(subject, predicate, value, **kwargs))
    return build


@pytest.fixture
def architecture(edge, literal):
    """A small service graph used by traversal and retrieval tests."""
    return [
        edge("checkout", "depends_on", "payments"),
        edge("checkout", "calls", "inventory"),
        edge("payments", "depends_on", "ledger"),
        edge("inventory", "reads_from", "catalog-db"),
        edge("ledger", "writes_to", "ledger-db"),
        literal("payments", "language", "python"),
        literal("ledger", "runtime", "jvm"),
    ]


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def audit_log():
    log = AuditLog()
    yield log
    log.close()


@pytest.fixture
def privacy(audit_log):
    return PrivacyFilter(audit_log=audit_log)


@pytest.fixture
def make_coordinator():
    """Factory for coordinators; every instance is closed after the test."""
    created = []

    def build(embedder: Optional[Embedder] = None, **kwargs: Any) -> ConsistencyCoordinator:
        coordinator = ConsistencyCoordinator(
            InMemoryGraphStore(),
            InMemoryVectorIndex(),
            embedder or HashingEmbedder(dim=DIM),
            **kwargs,
        )
        created.append(coordinator)
        return coordinator

    yield build
    for coordinator in created:
        coordinator.close()


@pytest.fixture
def coordinator(make_coordinator):
    return make_coordinator()


@pytest.fixture
def cache():
    return QueryCache(max_size=100, default_ttl=60.0)


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return FactGraphSettings(_env_file=None, embedding_dim=DIM)


@pytest.fixture
def make_kg(settings):
    """Factory for FactGraph instances; every instance is closed after the test."""
    created = []

    def build(**kwargs: Any) -> FactGraph:
        kwargs.setdefault("settings", settings)
        kg = FactGraph(**kwargs)
        created.append(kg)
        return kg

    yield build
    for kg in created:
        kg.close()


@pytest.fixture
def kg(make_kg):
    """An empty engine."""
    return make_kg()


@pytest.fixture
def populated_kg(kg, architecture):
    """An engine holding the sample architecture at version 1."""
    kg.submit(architecture)
    return kg


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
