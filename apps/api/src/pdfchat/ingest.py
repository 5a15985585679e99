from __future__ import annotations

import argparse
from pathlib import Path
import sys

from sqlalchemy.exc import SQLAlchemyError

from pdfchat.config import get_settings
from pdfchat.db import get_engine
from pdfchat.errors import PdfChatError
from pdfchat.services.documents import register_document
from pdfchat.services.rag.embedding_client import OllamaEmbeddingClient
from pdfchat.services.rag.ingest import build_job_runner
from pdfchat.services.rag.sqlite_store import SqliteVectorIndex
from pdfchat.services.queue import ack_job, claim_next_job, fail_job
from pdfchat.services.storage import discard_file, store_file


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="pdfchat-ingest",
        description="Upload a local PDF and queue it for ingestion",
    )
    parser.add_argument("pdf", type=Path, help="Path to the PDF to ingest")
    parser.add_argument(
        "--upload-dir",
        default=settings.upload_dir,
        help="Directory the PDF is copied into",
    )
    parser.add_argument(
        "--inline",
        action="store_true",
        help="Run the ingestion pipeline in this process instead of waiting for a worker",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    settings = get_settings()

    source: Path = args.pdf
    if not source.is_file():
        print(f"[pdfchat-ingest] failed: no such file {source}", file=sys.stderr, flush=True)
        raise SystemExit(1)

    with source.open("rb") as handle:
        stored = store_file(Path(args.upload_dir), source.name, handle)
    try:
        registered = register_document(get_engine(), stored, max_attempts=settings.job_max_attempts)
    except SQLAlchemyError as exc:
        discard_file(stored)
        print(f"[pdfchat-ingest] failed: could not register {source.name}: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc
    print(
        "[pdfchat-ingest] queued "
        f"document_id={registered.document_id} "
        f"job_id={registered.job_id} "
        f"path={stored.storage_path}",
        flush=True,
    )
    if not args.inline:
        return

    embedding_client = OllamaEmbeddingClient(
        base_url=settings.ollama_embed_base_url,
        model=settings.ollama_embed_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )
    runner = build_job_runner(
        settings,
        embedding_client=embedding_client,
        vector_index=SqliteVectorIndex(Path(settings.rag_db_path), collection=settings.rag_collection),
    )
    job = claim_next_job(
        get_engine(),
        lease_seconds=settings.job_timeout_seconds,
        job_id=registered.job_id,
    )
    if job is None:
        embedding_client.close()
        print(f"[pdfchat-ingest] job {registered.job_id} was already claimed", file=sys.stderr, flush=True)
        raise SystemExit(1)

    try:
        metrics = runner(job)
    except PdfChatError as exc:
        fail_job(get_engine(), job, exc.describe(), retryable=False)
        print(f"[pdfchat-ingest] failed: {exc.describe()}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc
    finally:
        embedding_client.close()

    ack_job(get_engine(), job, metrics)

    print(
        "[pdfchat-ingest] completed "
        f"document_id={metrics['document_id']} "
        f"chunks={metrics['chunks']} "
        f"batches={metrics['batches']} "
        f"db_path={settings.rag_db_path}",
        flush=True,
    )


if __name__ == "__main__":
    main()
