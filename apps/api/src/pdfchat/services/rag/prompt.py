"""Context assembly and prompt construction for grounded answers."""

from __future__ import annotations

import re

from pdfchat.services.rag.types import RetrievalResult

FALLBACK_ANSWER = "I don't know."
CONTEXT_DELIMITER = "\n\n---\n\n"

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)

SYSTEM_PROMPT = (
    "You answer questions about the user's uploaded PDF documents.\n"
    "Use only the information in the provided context. Do not use prior knowledge.\n"
    "Context passages are separated by lines containing only '---'.\n"
    "If the context does not contain the answer, reply with exactly: "
    f"{FALLBACK_ANSWER}"
)


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))


def _truncate_to_tokens(text: str, max_tokens: int) -> str:
    if max_tokens <= 0:
        return ""
    end = 0
    for count, match in enumerate(_TOKEN_PATTERN.finditer(text), start=1):
        end = match.end()
        if count >= max_tokens:
            break
    return text[:end]


def _source_label(result: RetrievalResult) -> str:
    metadata = result.chunk.metadata
    label = str(metadata.get("source") or result.chunk.document_id)
    page = metadata.get("page_start")
    if page is not None:
        label += f" p.{page}"
    return f"[{label} #{result.chunk.chunk_id}]"


def build_context(
    results: list[RetrievalResult],
    *,
    max_tokens: int,
) -> tuple[str, list[RetrievalResult]]:
    """Join ranked chunks into one context block within ``max_tokens``.

    Chunks are taken in rank order and the first one that does not fit ends
    the context, so the lowest-ranked chunks are the ones dropped. When even
    the top chunk is too large its text is cut to fit after its label; a
    budget too small for the label and any text yields no context at all.
    Returns the context and the results it contains.
    """
    blocks: list[str] = []
    used: list[RetrievalResult] = []
    budget = max_tokens
    delimiter_cost = estimate_token_count(CONTEXT_DELIMITER)

    for result in results:
        header = f"{_source_label(result)}\n"
        block = f"{header}{result.chunk.text}"
        cost = estimate_token_count(block) + (delimiter_cost if blocks else 0)
        if cost <= budget:
            blocks.append(block)
            used.append(result)
            budget -= cost
            continue

        if not used:
            # The label is kept whole; only chunk text is cut.
            truncated = _truncate_to_tokens(result.chunk.text, budget - estimate_token_count(header))
            if truncated:
                blocks.append(f"{header}{truncated}")
                used.append(result)
        break

    return CONTEXT_DELIMITER.join(blocks), used


def build_messages(question: str, context: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"Context:\n{context}\n\nQuestion: {question}",
        },
    ]
