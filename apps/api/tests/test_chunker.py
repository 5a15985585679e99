import math

import pytest

from pdfchat.errors import InvalidConfiguration
from pdfchat.services.rag.chunker import chunk_document, chunk_text
from pdfchat.services.rag.types import ExtractedText, PageSpan


def test_chunk_text_small_window_example() -> None:
    chunks = chunk_text("abcdefghij", chunk_size=4, chunk_overlap=1, document_id="doc")

    assert [chunk.text for chunk in chunks] == ["abcd", "defg", "ghij"]
    assert [(chunk.start_offset, chunk.end_offset) for chunk in chunks] == [(0, 4), (3, 7), (6, 10)]
    assert [chunk.sequence_index for chunk in chunks] == [0, 1, 2]
    assert [chunk.chunk_id for chunk in chunks] == ["doc-0000", "doc-0001", "doc-0002"]


@pytest.mark.parametrize(
    ("length", "size", "overlap"),
    [(10, 4, 1), (1000, 1000, 200), (2500, 1000, 200), (2601, 1000, 200), (37, 5, 0), (3, 10, 2)],
)
def test_chunk_count_matches_formula(length: int, size: int, overlap: int) -> None:
    text = "x" * length

    chunks = chunk_text(text, chunk_size=size, chunk_overlap=overlap)

    expected = math.ceil((length - overlap) / (size - overlap)) if length > overlap else 1
    assert len(chunks) == expected


def test_chunks_cover_text_and_respect_size() -> None:
    text = "".join(chr(ord("a") + index % 26) for index in range(2345))

    chunks = chunk_text(text, chunk_size=300, chunk_overlap=50)

    assert chunks[0].start_offset == 0
    assert chunks[-1].end_offset == len(text)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_offset - previous.start_offset == 250
        assert current.start_offset <= previous.end_offset
    for chunk in chunks:
        assert 0 < len(chunk.text) <= 300
        assert text[chunk.start_offset : chunk.end_offset] == chunk.text


def test_chunk_text_is_deterministic() -> None:
    text = "Express is a minimal web framework.\n\n" * 40

    first = chunk_text(text, chunk_size=120, chunk_overlap=30, document_id="d")
    second = chunk_text(text, chunk_size=120, chunk_overlap=30, document_id="d")

    assert first == second


def test_chunk_text_empty_input_yields_no_chunks() -> None:
    assert chunk_text("", chunk_size=4, chunk_overlap=1) == []


def test_chunk_text_does_not_strip_whitespace() -> None:
    chunks = chunk_text("  ab  ", chunk_size=10, chunk_overlap=0)

    assert [chunk.text for chunk in chunks] == ["  ab  "]


@pytest.mark.parametrize(("size", "overlap"), [(0, 0), (-5, 0), (4, 4), (4, 9), (4, -1)])
def test_invalid_chunking_is_rejected(size: int, overlap: int) -> None:
    with pytest.raises(InvalidConfiguration):
        chunk_text("abcdefghij", chunk_size=size, chunk_overlap=overlap)


def test_chunk_document_records_page_range_and_metadata() -> None:
    text = "aaaa\n\nbbbb"
    extracted = ExtractedText(
        text=text,
        pages=[PageSpan(page_number=1, start_offset=0, end_offset=4), PageSpan(page_number=2, start_offset=6, end_offset=10)],
    )

    chunks = chunk_document(
        extracted,
        document_id="doc",
        chunk_size=5,
        chunk_overlap=0,
        metadata={"source": "two.pdf"},
    )

    assert [chunk.text for chunk in chunks] == ["aaaa\n", "\nbbbb"]
    assert chunks[0].metadata == {"source": "two.pdf", "page_start": 1, "page_end": 1}
    assert chunks[1].metadata == {"source": "two.pdf", "page_start": 2, "page_end": 2}
