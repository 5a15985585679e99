from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import uuid

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from pdfchat.models import DocumentRecord
from pdfchat.services.queue import enqueue_job
from pdfchat.services.storage import StoredFile


@dataclass(frozen=True)
class RegisteredDocument:
    document_id: str
    job_id: str
    payload: dict[str, str]


def job_payload(stored: StoredFile) -> dict[str, str]:
    return {
        "name": stored.original_name,
        "path": stored.storage_path,
        "destination": stored.destination,
    }


def register_document(engine: Engine, stored: StoredFile, *, max_attempts: int) -> RegisteredDocument:
    """Record the uploaded document and enqueue its ingestion job atomically."""
    document_id = uuid.uuid4().hex
    payload = job_payload(stored)

    with Session(engine) as session, session.begin():
        session.add(
            DocumentRecord(
                id=document_id,
                original_name=stored.original_name,
                storage_path=stored.storage_path,
                uploaded_at=datetime.now(timezone.utc),
            )
        )
        session.flush()
        job_id = enqueue_job(
            session,
            document_id=document_id,
            payload=payload,
            max_attempts=max_attempts,
        )

    return RegisteredDocument(document_id=document_id, job_id=job_id, payload=payload)
