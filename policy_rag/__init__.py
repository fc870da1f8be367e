"""Policy document ingestion and hybrid retrieval."""

__version__ = "0.1.0"
