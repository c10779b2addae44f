"""
Tests for settings and logging configuration.
"""

import logging

import pytest
from pydantic import ValidationError

from factgraph.config import FactGraphSettings, configure_logging
from factgraph.core.graph import DEFAULT_EDGE_PRIORITY


class TestSettings:
    """Tests for FactGraphSettings."""

    def test_defaults(self):
        settings = FactGraphSettings(_env_file=None)
        assert settings.embedding_provider == "hashing"
        assert settings.vector_weight == 0.7
        assert settings.graph_weight == 0.3
        assert settings.snapshot_path is None
        assert settings.edge_type_priority == list(DEFAULT_EDGE_PRIORITY)

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("FACTGRAPH_RESULT_TOP_K", "3")
        monkeypatch.setenv("FACTGRAPH_MULTI_VALUED_PREDICATES", '["depends_on", "calls"]')
        monkeypatch.setenv("FACTGRAPH_SNAPSHOT_BACKEND", "sqlite")
        settings = FactGraphSettings(_env_file=None)
        assert settings.result_top_k == 3
        assert settings.multi_valued_predicates == ["depends_on", "calls"]
        assert settings.snapshot_backend == "sqlite"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("FACTGRAPH_GRAPH_DEPTH=4\nFACTGRAPH_LOG_LEVEL=debug\n", encoding="utf-8")
        settings = FactGraphSettings(_env_file=env_file)
        assert settings.graph_depth == 4
        assert settings.log_level == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            FactGraphSettings(_env_file=None, log_level="chatty")

    def test_weights_must_be_positive(self):
        with pytest.raises(ValidationError):
            FactGraphSettings(_env_file=None, vector_weight=0.0, graph_weight=0.0)

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            FactGraphSettings(_env_file=None, snapshot_backend="redis")

    def test_positive_limits(self):
        with pytest.raises(ValidationError):
            FactGraphSettings(_env_file=None, max_batch_size=0)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_quiets_http_clients(self):
        configure_logging("DEBUG")
        assert logging.getLogger("openai").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_engine_applies_log_level(self, make_kg, settings):
        factgraph_logger = logging.getLogger("factgraph")
        previous = factgraph_logger.level
        try:
            make_kg(settings=settings.model_copy(update={"log_level": "DEBUG"}))
            assert factgraph_logger.level == logging.DEBUG
            make_kg(settings=settings.model_copy(update={"log_level": "WARNING"}))
            assert factgraph_logger.level == logging.WARNING
        finally:
            factgraph_logger.setLevel(previous)
