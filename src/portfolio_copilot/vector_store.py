"""Vector store: ChromaDB access and similarity search."""

import logging

import chromadb
from chromadb.utils import embedding_functions

from portfolio_copilot.config import VectorStoreConfig
from portfolio_copilot.errors import RetrievalFailure
from portfolio_copilot.models import RetrievedPassage

logger = logging.getLogger(__name__)

# Module-level cache so the embedding model is loaded once per name.
_embedding_fn_cache: dict[str, object] = {}


def get_client(config: VectorStoreConfig | None = None) -> chromadb.PersistentClient:
    """Return a ChromaDB persistent client for the configured path."""
    cfg = config or VectorStoreConfig()
    return chromadb.PersistentClient(path=cfg.db_path)


def get_embedding_function(
    model_name: str = "all-MiniLM-L6-v2",
) -> embedding_functions.SentenceTransformerEmbeddingFunction:
    """Return a cached SentenceTransformer embedding function.

    Args:
        model_name: HuggingFace model identifier for the embedding model.

    Returns:
        A SentenceTransformerEmbeddingFunction instance (cached).
    """
    if model_name not in _embedding_fn_cache:
        _embedding_fn_cache[model_name] = (
            embedding_functions.SentenceTransformerEmbeddingFunction(
                model_name=model_name,
            )
        )
    return _embedding_fn_cache[model_name]  # type: ignore[return-value]


def get_collection(
    client: chromadb.PersistentClient,
    config: VectorStoreConfig | None = None,
) -> chromadb.Collection:
    """Open the portfolio collection with cosine similarity.

    The index is provisioned elsewhere; opening a missing collection
    creates an empty one, which searches as "no results".

    Args:
        client: An active ChromaDB client.
        config: Vector store settings (collection name, embedding model).
            Uses defaults if not provided.

    Returns:
        A ChromaDB Collection configured with cosine distance.
    """
    cfg = config or VectorStoreConfig()
    ef = get_embedding_function(cfg.embedding_model)
    return client.get_or_create_collection(
        name=cfg.collection_name,
        embedding_function=ef,
        metadata={"hnsw:space": "cosine"},
    )


def _parse_results(results: dict) -> list[RetrievedPassage]:
    """Convert a raw ChromaDB result into passages, best match first.

    Cosine distances are converted to similarity scores (1 - distance).
    """
    documents = (results.get("documents") or [[]])[0]
    metadatas = (results.get("metadatas") or [[]])[0] or [None] * len(documents)
    distances = (results.get("distances") or [[]])[0] or [None] * len(documents)

    passages: list[RetrievedPassage] = []
    for doc, meta, dist in zip(documents, metadatas, distances):
        passages.append(
            RetrievedPassage(
                content=doc,
                metadata=dict(meta or {}),
                relevance=None if dist is None else round(1 - dist, 4),
            )
        )
    return passages


def search(
    collection: chromadb.Collection,
    query_text: str,
    k: int = 5,
) -> list[RetrievedPassage]:
    """Return the ``k`` passages nearest to ``query_text``.

    Raises:
        RetrievalFailure: If the index call fails for any reason.
    """
    try:
        results = collection.query(query_texts=[query_text], n_results=k)
    except Exception as exc:
        raise RetrievalFailure(str(exc) or exc.__class__.__name__) from exc
    return _parse_results(results)
