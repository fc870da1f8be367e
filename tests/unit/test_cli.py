"""Unit tests for the command-line interface."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from policy_rag.cli import app
from policy_rag.core.exceptions import RetrievalError
from policy_rag.schemas.retrieval import RAGResponse, SearchResult

runner = CliRunner()


@pytest.fixture
def pipeline():
    mock_pipeline = MagicMock()
    with patch("policy_rag.pipeline.build_pipeline", return_value=mock_pipeline), \
            patch("policy_rag.core.database.close_database", new=AsyncMock()):
        yield mock_pipeline


class TestSearchCommand:
    """Tests for `search`."""

    def test_prints_results(self, pipeline):
        pipeline.search = AsyncMock(return_value=[
            SearchResult(
                chunk_id="p-chunk-0",
                content="Live video is covered.",
                page_number=4,
                chunk_index=0,
                similarity=0.91,
                state_name="Texas",
                policy_title="Manual",
            )
        ])

        result = runner.invoke(app, ["search", "live video", "--state", "Texas", "--state", "Ohio"])

        assert result.exit_code == 0
        assert "Texas" in result.output
        assert "0.910" in result.output
        pipeline.search.assert_awaited_once_with("live video", state_filter=["Texas", "Ohio"], top_k=5)

    def test_no_results(self, pipeline):
        pipeline.search = AsyncMock(return_value=[])

        result = runner.invoke(app, ["search", "drones"])

        assert result.exit_code == 0
        assert "No results" in result.output


class TestAskCommand:
    """Tests for `ask`."""

    def test_prints_suggestions_when_nothing_found(self, pipeline):
        pipeline.rag_query = AsyncMock(return_value=RAGResponse(
            answer="Nothing found.",
            confidence=0.0,
            suggested_queries=["What are the consent requirements?"],
        ))

        result = runner.invoke(app, ["ask", "drones?"])

        assert result.exit_code == 0
        assert "Nothing found." in result.output
        assert "What are the consent requirements?" in result.output

    def test_app_error_exits_nonzero(self, pipeline):
        pipeline.rag_query = AsyncMock(side_effect=RetrievalError("Failed to generate answer"))

        result = runner.invoke(app, ["ask", "question"])

        assert result.exit_code == 1
        assert "Failed to generate answer" in result.output


class TestDeleteCommand:
    """Tests for `delete`."""

    def test_invalid_id(self, pipeline):
        result = runner.invoke(app, ["delete", "not-a-uuid"])

        assert result.exit_code == 1
        assert "Invalid policy id" in result.output
        pipeline.delete_policy.assert_not_called()
