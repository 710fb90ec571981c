"""Tests for retrieval query embeddings with mocked OpenAI API."""

from unittest.mock import MagicMock, patch

import pytest

from wafr_engine.core.embeddings import embed_query, embed_query_async


@pytest.fixture
def mock_openai_response():
    """Create a mock OpenAI embeddings response."""

    def _create_response(dimension: int = 1536):
        mock_response = MagicMock()
        mock_embedding = MagicMock()
        mock_embedding.embedding = [0.1] * dimension
        mock_response.data = [mock_embedding]
        return mock_response

    return _create_response


def test_embed_query(mock_openai_response):
    """Embeds one query with the configured model."""
    with patch("wafr_engine.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response()
        mock_get_client.return_value = mock_client

        embedding = embed_query("How do you back up data?")

        assert len(embedding) == 1536
        mock_client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input=["How do you back up data?"]
        )


def test_embed_query_dimension_validation(mock_openai_response):
    """Test that dimension mismatch raises ValueError."""
    with patch("wafr_engine.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response(dimension=512)
        mock_get_client.return_value = mock_client

        with pytest.raises(ValueError, match="Embedding dimension mismatch"):
            embed_query("Test text")


@pytest.mark.asyncio
async def test_embed_query_async(mock_openai_response):
    """Async wrapper returns the same vector."""
    with patch("wafr_engine.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response()
        mock_get_client.return_value = mock_client

        embedding = await embed_query_async("query")

        assert embedding == [0.1] * 1536
