from __future__ import annotations

from typing import Any

from pdfchat.errors import InvalidConfiguration
from pdfchat.services.rag.types import Chunk, ExtractedText, PageSpan


def validate_chunking(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size <= 0:
        raise InvalidConfiguration("chunk_size must be > 0")
    if chunk_overlap < 0:
        raise InvalidConfiguration("chunk_overlap must be >= 0")
    if chunk_overlap >= chunk_size:
        raise InvalidConfiguration("chunk_overlap must be smaller than chunk_size")


def chunk_text(
    text: str,
    *,
    chunk_size: int,
    chunk_overlap: int,
    document_id: str = "",
    metadata: dict[str, Any] | None = None,
) -> list[Chunk]:
    """Split ``text`` into character windows of ``chunk_size``.

    Windows advance by ``chunk_size - chunk_overlap``; the last one is cut at
    the end of the text. Text is not stripped, so ``text[start:end]`` of every
    chunk is exactly its content.
    """
    validate_chunking(chunk_size, chunk_overlap)

    chunks: list[Chunk] = []
    stride = chunk_size - chunk_overlap
    cursor = 0
    text_length = len(text)

    while cursor < text_length:
        end = min(text_length, cursor + chunk_size)
        index = len(chunks)
        chunks.append(
            Chunk(
                chunk_id=f"{document_id}-{index:04d}",
                document_id=document_id,
                sequence_index=index,
                text=text[cursor:end],
                start_offset=cursor,
                end_offset=end,
                metadata=dict(metadata or {}),
            )
        )

        if end >= text_length:
            break
        cursor += stride

    return chunks


def _page_range(pages: list[PageSpan], start: int, end: int) -> tuple[int, int] | None:
    touched = [
        page.page_number
        for page in pages
        if page.start_offset < end and start < page.end_offset
    ]
    if not touched:
        return None
    return touched[0], touched[-1]


def chunk_document(
    extracted: ExtractedText,
    *,
    document_id: str,
    chunk_size: int,
    chunk_overlap: int,
    metadata: dict[str, Any] | None = None,
) -> list[Chunk]:
    chunks = chunk_text(
        extracted.text,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        document_id=document_id,
        metadata=metadata,
    )
    for chunk in chunks:
        page_range = _page_range(extracted.pages, chunk.start_offset, chunk.end_offset)
        if page_range is not None:
            chunk.metadata["page_start"], chunk.metadata["page_end"] = page_range
    return chunks
