from __future__ import annotations

from pathlib import Path

import fitz  # PyMuPDF

from pdfchat.errors import DocumentUnavailable, ExtractionFailed
from pdfchat.services.rag.types import ExtractedText, PageSpan

PAGE_SEPARATOR = "\n\n"


def resolve_document(path: str | Path) -> Path:
    file_path = Path(path)
    if not file_path.is_file():
        raise DocumentUnavailable(f"document not found: {file_path}")
    try:
        with file_path.open("rb") as handle:
            handle.read(1)
    except OSError as exc:
        raise DocumentUnavailable(f"document not readable: {file_path} ({exc})") from exc
    return file_path


def extract_pdf_text(path: str | Path) -> ExtractedText:
    """Extract page texts from a PDF and join them with ``PAGE_SEPARATOR``.

    Each page keeps its ``[start, end)`` span in the joined text so chunk
    offsets can be mapped back to page numbers. Pages without text are
    skipped; a document with no text at all is an extraction failure.
    """
    file_path = resolve_document(path)

    try:
        document = fitz.open(str(file_path))
    except Exception as exc:
        raise ExtractionFailed(f"cannot open PDF {file_path.name}: {exc}") from exc

    try:
        if document.needs_pass:
            raise ExtractionFailed(f"PDF is encrypted: {file_path.name}")
        if document.page_count == 0:
            raise ExtractionFailed(f"PDF has no pages: {file_path.name}")

        parts: list[str] = []
        pages: list[PageSpan] = []
        cursor = 0
        for page_index in range(document.page_count):
            try:
                page_text = document[page_index].get_text("text").strip()
            except Exception as exc:
                raise ExtractionFailed(
                    f"cannot read page {page_index + 1} of {file_path.name}: {exc}"
                ) from exc
            if not page_text:
                continue

            if parts:
                parts.append(PAGE_SEPARATOR)
                cursor += len(PAGE_SEPARATOR)
            parts.append(page_text)
            pages.append(
                PageSpan(
                    page_number=page_index + 1,
                    start_offset=cursor,
                    end_offset=cursor + len(page_text),
                )
            )
            cursor += len(page_text)
    finally:
        document.close()

    if not pages:
        raise ExtractionFailed(f"no extractable text in {file_path.name}")

    return ExtractedText(text="".join(parts), pages=pages)
