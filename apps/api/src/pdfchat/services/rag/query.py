from __future__ import annotations

from pdfchat.deadline import Deadline
from pdfchat.errors import InvalidQuery
from pdfchat.services.rag.embedding_client import EmbeddingClient
from pdfchat.services.rag.sqlite_store import VectorIndex, rank_results
from pdfchat.services.rag.types import RetrievalResult


def search_index(
    *,
    query_text: str,
    embedding_client: EmbeddingClient,
    vector_index: VectorIndex,
    top_k: int = 5,
    min_score: float | None = None,
    deadline: Deadline | None = None,
    call_timeout_seconds: float = 30.0,
) -> list[RetrievalResult]:
    """Embed ``query_text`` and return the best matching chunks, best first.

    Hits scoring ``min_score`` or lower are dropped as unrelated.
    """
    normalized_query = query_text.strip()
    if not normalized_query:
        raise InvalidQuery("question must not be empty")

    timeout = deadline.timeout(call_timeout_seconds) if deadline is not None else None
    query_embedding = embedding_client.embed_texts([normalized_query], timeout=timeout)[0]

    if deadline is not None:
        deadline.check()
    hits = rank_results(vector_index.search(query_embedding, top_k=max(1, top_k)))
    if min_score is not None:
        hits = [hit for hit in hits if hit.score > min_score]
    return hits[: max(1, top_k)]
