from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PageSpan:
    page_number: int
    start_offset: int
    end_offset: int


@dataclass(frozen=True)
class ExtractedText:
    text: str
    pages: list[PageSpan]


@dataclass(frozen=True)
class Chunk:
    chunk_id: str
    document_id: str
    sequence_index: int
    text: str
    start_offset: int
    end_offset: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EmbeddedChunk:
    chunk: Chunk
    vector: list[float]

    @property
    def chunk_id(self) -> str:
        return self.chunk.chunk_id

    @property
    def dimension(self) -> int:
        return len(self.vector)


@dataclass(frozen=True)
class RetrievalResult:
    chunk: Chunk
    score: float


@dataclass(frozen=True)
class ChatExchange:
    question: str
    answer: str
    sources: list[RetrievalResult]


@dataclass(frozen=True)
class IngestionSummary:
    document_id: str
    pages: int
    characters: int
    chunk_count: int
    batches: int
    duration_ms: int
