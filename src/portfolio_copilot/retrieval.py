"""Retrieval tool exposed to the model: search the knowledge base."""

import json
import logging
import re
import time

from portfolio_copilot import vector_store as vs
from portfolio_copilot.errors import RetrievalFailure
from portfolio_copilot.models import RetrievalOutcome, RetrievedPassage

logger = logging.getLogger(__name__)

TOOL_NAME = "search_knowledge_base"

NO_RESULTS = "No relevant information found in the knowledge base."

TOOL_SCHEMA = {
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": (
            "Search the knowledge base for relevant information to answer "
            "user questions. Use this tool when you need to find specific "
            "information from the stored documents."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query to find relevant information",
                },
            },
            "required": ["query"],
        },
    },
}


def _preprocess_query(query: str) -> str:
    """Normalize a query for embedding retrieval.

    Collapses whitespace, strips trailing punctuation that doesn't
    help embedding similarity, and trims leading/trailing space.
    """
    text = re.sub(r"\s+", " ", query).strip()
    text = text.rstrip("?.!,;:")
    return text.strip()


def format_passages(passages: list[RetrievedPassage]) -> str:
    """Format retrieved passages into a single prompt-ready block.

    Returns the ``NO_RESULTS`` sentinel for an empty list.
    """
    if not passages:
        return NO_RESULTS

    blocks = []
    for i, passage in enumerate(passages, start=1):
        block = f"[Source {i}]\n{passage.content}"
        if passage.metadata:
            block += f"\nMetadata: {json.dumps(passage.metadata, default=str)}"
        blocks.append(block)

    body = "\n\n---\n\n".join(blocks)
    return f"Retrieved {len(passages)} relevant document(s):\n\n{body}"


class RetrievalTool:
    """Callable wrapper around a collection search.

    Never raises: a failed search becomes a descriptive string so the
    model can still answer, and the outcome records the error.
    """

    name = TOOL_NAME
    schema = TOOL_SCHEMA

    def __init__(self, collection, top_k: int = 5) -> None:
        self.collection = collection
        self.top_k = top_k

    def __call__(self, query: str) -> RetrievalOutcome:
        search_query = _preprocess_query(query) or query
        start = time.perf_counter()
        try:
            passages = vs.search(self.collection, search_query, k=self.top_k)
        except RetrievalFailure as exc:
            duration = time.perf_counter() - start
            logger.warning("Retrieval failed for %r: %s", search_query[:80], exc)
            return RetrievalOutcome(
                text=f"Error retrieving information: {exc}",
                duration_s=duration,
                error=str(exc),
            )
        duration = time.perf_counter() - start
        logger.debug(
            "Retrieved %d passage(s) in %.1f ms", len(passages), duration * 1000
        )
        return RetrievalOutcome(
            text=format_passages(passages),
            passages=passages,
            duration_s=duration,
        )
