from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from time import perf_counter
from typing import Any, TypeVar

from pdfchat.config import Settings
from pdfchat.deadline import Deadline
from pdfchat.errors import EmbeddingFailed
from pdfchat.services.queue import ClaimedJob
from pdfchat.services.rag.chunker import chunk_document, validate_chunking
from pdfchat.services.rag.embedding_client import EmbeddingClient
from pdfchat.services.rag.extractor import extract_pdf_text
from pdfchat.services.rag.sqlite_store import VectorIndex
from pdfchat.services.rag.types import EmbeddedChunk, IngestionSummary

T = TypeVar("T")


def batched(items: Sequence[T], size: int) -> Iterator[list[T]]:
    if size <= 0:
        raise ValueError("batch size must be > 0")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def ingest_document(
    *,
    document_id: str,
    path: str | Path,
    chunk_size: int,
    chunk_overlap: int,
    batch_size: int,
    embedding_client: EmbeddingClient,
    vector_index: VectorIndex,
    source_name: str | None = None,
    deadline: Deadline | None = None,
    call_timeout_seconds: float = 30.0,
) -> IngestionSummary:
    """Extract, chunk, embed and upsert one document.

    Batches are embedded and written one after another in ``sequence_index``
    order, so a failure leaves at most the earlier batches in the index.
    """
    validate_chunking(chunk_size, chunk_overlap)
    start = perf_counter()
    file_path = Path(path)

    extracted = extract_pdf_text(file_path)
    chunks = chunk_document(
        extracted,
        document_id=document_id,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        metadata={
            "source": source_name or file_path.name,
            "path": str(file_path),
        },
    )

    batches = 0
    for batch in batched(chunks, batch_size):
        timeout = deadline.timeout(call_timeout_seconds) if deadline is not None else None
        vectors = embedding_client.embed_texts([chunk.text for chunk in batch], timeout=timeout)
        if len(vectors) != len(batch):
            raise EmbeddingFailed(f"expected {len(batch)} vectors, got {len(vectors)}")

        if deadline is not None:
            deadline.check()
        vector_index.upsert(
            [EmbeddedChunk(chunk=chunk, vector=vector) for chunk, vector in zip(batch, vectors)]
        )
        batches += 1

    return IngestionSummary(
        document_id=document_id,
        pages=len(extracted.pages),
        characters=len(extracted.text),
        chunk_count=len(chunks),
        batches=batches,
        duration_ms=int((perf_counter() - start) * 1000),
    )


def build_job_runner(
    settings: Settings,
    *,
    embedding_client: EmbeddingClient,
    vector_index: VectorIndex,
) -> Callable[[ClaimedJob], dict[str, Any]]:
    validate_chunking(settings.rag_chunk_size, settings.rag_chunk_overlap)

    def run(job: ClaimedJob) -> dict[str, Any]:
        summary = ingest_document(
            document_id=job.document_id,
            path=job.payload.get("path", job.path),
            source_name=job.payload.get("name"),
            chunk_size=settings.rag_chunk_size,
            chunk_overlap=settings.rag_chunk_overlap,
            batch_size=settings.rag_upsert_batch_size,
            embedding_client=embedding_client,
            vector_index=vector_index,
            deadline=Deadline.after(settings.job_timeout_seconds, label=f"job {job.id}"),
            call_timeout_seconds=settings.ollama_timeout_seconds,
        )
        return {
            "document_id": summary.document_id,
            "pages": summary.pages,
            "characters": summary.characters,
            "chunks": summary.chunk_count,
            "batches": summary.batches,
            "duration_ms": summary.duration_ms,
        }

    return run
