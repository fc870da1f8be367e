"""Unit tests for settings."""

from policy_rag.core.config import (
    DatabaseSettings,
    IngestionSettings,
    RetrievalSettings,
    Settings,
    VectorIndexSettings,
    _asyncpg_url,
)


class TestRetrievalSettings:
    """Tests for the retrieval constants."""

    def test_defaults(self, monkeypatch):
        for name in ("SIMILARITY_THRESHOLD", "OVERFETCH_FACTOR", "SEARCH_TOP_K", "CONFIDENCE_SCALE"):
            monkeypatch.delenv(name, raising=False)

        retrieval = RetrievalSettings()

        assert retrieval.similarity_threshold == 0.7
        assert retrieval.overfetch_factor == 2
        assert retrieval.default_top_k == 5
        assert retrieval.confidence_scale == 1.2
        assert retrieval.history_limit == 10
        assert retrieval.answer_temperature == 0.3
        assert retrieval.answer_max_tokens == 512

    def test_threshold_and_overfetch_are_overridable(self, monkeypatch):
        monkeypatch.setenv("SIMILARITY_THRESHOLD", "0.65")
        monkeypatch.setenv("OVERFETCH_FACTOR", "3")

        retrieval = RetrievalSettings()

        assert retrieval.similarity_threshold == 0.65
        assert retrieval.overfetch_factor == 3


class TestIngestionSettings:
    """Tests for the ingestion constants."""

    def test_defaults(self, monkeypatch):
        for name in ("FACT_WRITE_MODE", "INGESTION_JOB_TIMEOUT_SECONDS", "INGESTION_SHUTDOWN_MODE"):
            monkeypatch.delenv(name, raising=False)

        ingestion = IngestionSettings()

        assert ingestion.fact_char_budget == 12000
        assert ingestion.fact_temperature == 0.1
        assert ingestion.fact_max_tokens == 1024
        assert ingestion.fact_write_mode == "append"
        assert ingestion.job_timeout_seconds == 0
        assert ingestion.shutdown_mode == "drain"

    def test_vector_defaults(self, monkeypatch):
        monkeypatch.delenv("VECTOR_DIMENSIONS", raising=False)
        vector = VectorIndexSettings()

        assert vector.dimensions == 768
        assert vector.content_preview_chars == 500
        assert vector.delete_scan_ceiling == 10000


class TestDatabaseUrls:
    """Tests for connection URL handling."""

    def test_plain_postgres_url_gets_asyncpg_driver(self):
        assert _asyncpg_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
        assert _asyncpg_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
        assert _asyncpg_url("postgresql+asyncpg://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_vector_url_falls_back_to_database_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@main/db")
        monkeypatch.delenv("VECTOR_DATABASE_URL", raising=False)

        config = Settings()

        assert config.database_url == "postgresql+asyncpg://u:p@main/db"
        assert config.vector_database_url == config.database_url

    def test_dedicated_vector_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@main/db")
        monkeypatch.setenv("VECTOR_DATABASE_URL", "postgresql://u:p@vectors/db")

        config = Settings()

        assert config.vector_database_url == "postgresql+asyncpg://u:p@vectors/db"
        assert DatabaseSettings().connection_url == "postgresql+asyncpg://u:p@main/db"
