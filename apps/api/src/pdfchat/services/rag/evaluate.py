"""Recall@k evaluation of retrieval over the local vector index.

A case is a hit when any of the top-k retrieved chunks contains its expected
substring (case-insensitive). Recall is hits divided by the number of cases.
"""

from __future__ import annotations

import argparse
from collections.abc import Callable
from dataclasses import dataclass
import json
from pathlib import Path
import sys

from pdfchat.config import get_settings
from pdfchat.errors import PdfChatError
from pdfchat.services.rag.embedding_client import OllamaEmbeddingClient
from pdfchat.services.rag.query import search_index
from pdfchat.services.rag.sqlite_store import SqliteVectorIndex
from pdfchat.services.rag.types import RetrievalResult


@dataclass(frozen=True)
class EvaluationCase:
    question: str
    expected_contains: str


@dataclass(frozen=True)
class CaseOutcome:
    case: EvaluationCase
    hit: bool
    retrieved: list[str]


@dataclass(frozen=True)
class EvaluationReport:
    outcomes: list[CaseOutcome]

    @property
    def hits(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.hit)

    @property
    def recall(self) -> float:
        if not self.outcomes:
            return 0.0
        return self.hits / len(self.outcomes)


DEFAULT_CASES = [
    EvaluationCase("What is a query string?", "query string"),
    EvaluationCase("How do you install Node.js?", "install"),
    EvaluationCase("What is Express?", "express"),
    EvaluationCase("What is MongoDB?", "mongodb"),
    EvaluationCase("What is JWT used for?", "token"),
    EvaluationCase("What is Socket.io?", "socket"),
]


def load_cases(path: Path) -> list[EvaluationCase]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError("cases file must contain a JSON list")

    cases: list[EvaluationCase] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"case {index} must be an object")
        question = item.get("question")
        expected = item.get("expected_contains", item.get("expectedContains"))
        if not isinstance(question, str) or not isinstance(expected, str):
            raise ValueError(f"case {index} needs string 'question' and 'expected_contains'")
        cases.append(EvaluationCase(question=question, expected_contains=expected))
    return cases


def evaluate_recall(
    cases: list[EvaluationCase],
    retrieve: Callable[[str], list[RetrievalResult]],
) -> EvaluationReport:
    outcomes: list[CaseOutcome] = []
    for case in cases:
        texts = [result.chunk.text.lower() for result in retrieve(case.question)]
        expected = case.expected_contains.lower()
        outcomes.append(
            CaseOutcome(
                case=case,
                hit=any(expected in text for text in texts),
                retrieved=texts,
            )
        )
    return EvaluationReport(outcomes=outcomes)


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="pdfchat-eval",
        description="Measure Recall@k of the local retrieval index",
    )
    parser.add_argument("--cases", type=Path, default=None, help="JSON list of {question, expected_contains}")
    parser.add_argument("-k", "--top-k", type=int, default=settings.rag_top_k, help="Chunks retrieved per question")
    parser.add_argument("--db-path", default=settings.rag_db_path, help="Vector index sqlite DB path")
    parser.add_argument("--collection", default=settings.rag_collection, help="Vector index collection")
    return parser


def main() -> None:
    args = _build_parser().parse_args()
    settings = get_settings()

    cases = load_cases(args.cases) if args.cases is not None else DEFAULT_CASES
    embedding_client = OllamaEmbeddingClient(
        base_url=settings.ollama_embed_base_url,
        model=settings.ollama_embed_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )
    vector_index = SqliteVectorIndex(Path(args.db_path), collection=args.collection)

    def retrieve(question: str) -> list[RetrievalResult]:
        return search_index(
            query_text=question,
            embedding_client=embedding_client,
            vector_index=vector_index,
            top_k=args.top_k,
        )

    try:
        report = evaluate_recall(cases, retrieve)
    except PdfChatError as exc:
        print(f"[pdfchat-eval] failed: {exc.describe()}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc
    finally:
        embedding_client.close()

    for outcome in report.outcomes:
        verdict = "HIT" if outcome.hit else "MISS"
        print(
            f"[pdfchat-eval] {verdict} question={outcome.case.question!r} "
            f"expected={outcome.case.expected_contains!r} retrieved={len(outcome.retrieved)}",
            flush=True,
        )
    print(
        f"[pdfchat-eval] Recall@{args.top_k} = {report.hits} / {len(report.outcomes)} = {report.recall:.3f}",
        flush=True,
    )


if __name__ == "__main__":
    main()
