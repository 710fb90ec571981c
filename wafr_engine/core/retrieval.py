"""Knowledge-base retrieval of Well-Architected guidance for one question.

The query text is embedded and matched against the guidance corpus with a
Supabase vector-search RPC. Passages come back in rank order as plain text.
"""

import asyncio

from wafr_engine.core.config import get_settings
from wafr_engine.core.embeddings import embed_query_async
from wafr_engine.core.errors import RetrievalFailure
from wafr_engine.core.logging import get_logger
from wafr_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

QUERY_TEMPLATE = """For each best practice of the question "{question}" in the Well-Architected pillar "{pillar}" provide:
- Recommendations
- Best practices
- Examples
- Risks"""


def build_retrieval_query(pillar: str, question: str) -> str:
    return QUERY_TEMPLATE.format(pillar=pillar, question=question)


class KnowledgeRetriever:
    """Top-K passage retrieval keyed by (pillar, question title)."""

    def __init__(self, match_function: str | None = None, top_k: int | None = None):
        settings = get_settings()
        self.match_function = match_function or settings.KNOWLEDGE_BASE_MATCH_FUNCTION
        self.top_k = top_k or settings.KNOWLEDGE_BASE_TOP_K

    def _match(self, query_embedding: list[float], match_count: int) -> list[dict]:
        supabase = get_supabase()
        response = supabase.rpc(
            self.match_function,
            {
                "query_embedding": query_embedding,
                "match_count": match_count,
            },
        ).execute()
        return response.data or []

    async def retrieve(self, pillar: str, question: str, top_k: int | None = None) -> list[str]:
        """
        Retrieve ranked guidance passages for a question.

        Args:
            pillar: Pillar display name
            question: Question title
            top_k: Override of the configured passage count

        Returns:
            Passage texts, best match first

        Raises:
            RetrievalFailure: If embedding or vector search fails
        """
        match_count = top_k or self.top_k
        try:
            query_embedding = await embed_query_async(build_retrieval_query(pillar, question))
            rows = await asyncio.to_thread(self._match, query_embedding, match_count)
        except Exception as e:
            logger.error(f'Knowledge retrieval failed for "{pillar} - {question}": {e}')
            raise RetrievalFailure(f"Error retrieving from knowledge base: {e}", cause=e) from e

        passages = [row.get("content") or "" for row in rows]
        logger.debug(f'Retrieved {len(passages)} passages for "{question}"')
        return passages
