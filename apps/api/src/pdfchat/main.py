from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pdfchat.config import get_settings
from pdfchat.db import get_engine
from pdfchat.deadline import Deadline
from pdfchat.errors import AnswerGenerationFailed, DeadlineExceeded, InvalidQuery, PdfChatError
from pdfchat.llm import LLMClient, OllamaChatClient
from pdfchat.models import JobRecord
from pdfchat.services.documents import register_document
from pdfchat.services.queue import requeue_failed_job
from pdfchat.services.rag.answer import AnswerGenerator
from pdfchat.services.rag.chunker import validate_chunking
from pdfchat.services.rag.embedding_client import EmbeddingClient, OllamaEmbeddingClient
from pdfchat.services.rag.query import search_index
from pdfchat.services.rag.sqlite_store import SqliteVectorIndex, VectorIndex
from pdfchat.services.rag.types import RetrievalResult
from pdfchat.services.storage import discard_file, store_file

app = FastAPI(title="PDF Chat API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str


@app.on_event("startup")
def startup() -> None:
    settings = get_settings()
    validate_chunking(settings.rag_chunk_size, settings.rag_chunk_overlap)
    get_engine()


@app.on_event("shutdown")
def shutdown() -> None:
    get_vector_index.cache_clear()
    for provider in (get_embedding_client, get_llm_client):
        if provider.cache_info().currsize:
            provider().close()
        provider.cache_clear()


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(status_code=422, content={"error": "; ".join(messages)})


@lru_cache
def get_llm_client() -> LLMClient:
    settings = get_settings()
    return OllamaChatClient(
        base_url=settings.ollama_base_url,
        default_model=settings.ollama_model,
        fallback_model=settings.ollama_fallback_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


@lru_cache
def get_embedding_client() -> EmbeddingClient:
    settings = get_settings()
    return OllamaEmbeddingClient(
        base_url=settings.ollama_embed_base_url,
        model=settings.ollama_embed_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


@lru_cache
def get_vector_index() -> VectorIndex:
    settings = get_settings()
    return SqliteVectorIndex(Path(settings.rag_db_path), collection=settings.rag_collection)


def get_answer_generator(
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
    vector_index: Annotated[VectorIndex, Depends(get_vector_index)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
) -> AnswerGenerator:
    settings = get_settings()
    return AnswerGenerator(
        embedding_client=embedding_client,
        vector_index=vector_index,
        llm_client=llm_client,
        top_k=settings.rag_top_k,
        context_max_tokens=settings.rag_context_max_tokens,
        min_score=settings.rag_min_score,
        timeout_seconds=settings.ask_timeout_seconds,
        call_timeout_seconds=settings.ollama_timeout_seconds,
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _job_summary(job: JobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "document_id": job.document_id,
        "status": job.status,
    }


def _job_detail(job: JobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "document_id": job.document_id,
        "path": job.path,
        "status": job.status,
        "payload_json": job.payload_json,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "enqueued_at": _to_iso(job.enqueued_at),
        "available_at": _to_iso(job.available_at),
        "updated_at": _to_iso(job.updated_at),
        "started_at": _to_iso(job.started_at),
        "finished_at": _to_iso(job.finished_at),
        "error": job.error,
        "result_json": job.result_json,
    }


def _source(result: RetrievalResult) -> dict[str, Any]:
    chunk = result.chunk
    return {
        "pageContent": chunk.text,
        "metadata": {
            **chunk.metadata,
            "chunk_id": chunk.chunk_id,
            "document_id": chunk.document_id,
            "sequence_index": chunk.sequence_index,
        },
        "score": round(result.score, 6),
    }


def _is_pdf(upload: UploadFile) -> bool:
    filename = (upload.filename or "").lower()
    return upload.content_type == "application/pdf" or filename.endswith(".pdf")


@app.get("/", response_class=PlainTextResponse)
def index() -> str:
    return "Hello from server"


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/upload/pdf")
def upload_pdf(pdf: Annotated[UploadFile | None, File()] = None) -> JSONResponse:
    if pdf is None or not pdf.filename:
        return _error(400, "no file uploaded; send a PDF in the 'pdf' field")
    if not _is_pdf(pdf):
        return _error(400, f"only PDF uploads are accepted, got {pdf.content_type or 'unknown'}")

    settings = get_settings()
    stored = store_file(Path(settings.upload_dir), pdf.filename, pdf.file)
    try:
        registered = register_document(get_engine(), stored, max_attempts=settings.job_max_attempts)
    except SQLAlchemyError as exc:
        discard_file(stored)
        return _error(503, f"upload could not be registered: {type(exc).__name__}")

    return JSONResponse(
        status_code=200,
        content={
            "message": "uploaded",
            "file": {
                "originalName": stored.original_name,
                "storagePath": stored.storage_path,
                "filename": stored.filename,
                "size": stored.size,
                "documentId": registered.document_id,
                "jobId": registered.job_id,
            },
        },
    )


@app.post("/chat")
def chat(
    request: ChatRequest,
    generator: Annotated[AnswerGenerator, Depends(get_answer_generator)],
) -> JSONResponse:
    try:
        exchange = generator.answer(request.question)
    except InvalidQuery as exc:
        return _error(400, str(exc))
    except AnswerGenerationFailed as exc:
        status_code = 504 if isinstance(exc.__cause__, DeadlineExceeded) else 502
        return _error(status_code, str(exc))

    return JSONResponse(
        status_code=200,
        content={
            "answer": exchange.answer,
            "sources": [_source(result) for result in exchange.sources],
        },
    )


@app.get("/jobs")
def list_jobs(status: str | None = Query(default=None)) -> list[dict[str, Any]]:
    with Session(get_engine()) as session:
        stmt = select(JobRecord)
        if status is not None:
            stmt = stmt.where(JobRecord.status == status)

        jobs = session.scalars(
            stmt.order_by(JobRecord.enqueued_at.asc(), JobRecord.id.asc())
        ).all()

    return [_job_summary(job) for job in jobs]


@app.get("/jobs/{job_id}")
def get_job(job_id: str) -> JSONResponse:
    with Session(get_engine()) as session:
        job = session.get(JobRecord, job_id)

    if job is None:
        return _error(404, "job not found")
    return JSONResponse(status_code=200, content=_job_detail(job))


@app.post("/jobs/{job_id}/retry")
def retry_job(job_id: str) -> JSONResponse:
    with Session(get_engine()) as session, session.begin():
        try:
            new_job_id = requeue_failed_job(session, job_id)
        except LookupError:
            return _error(404, "job not found")
        except ValueError as exc:
            return _error(409, str(exc))

    return JSONResponse(
        status_code=202,
        content={"job_id": new_job_id, "retry_of": job_id, "status": "queued"},
    )


@app.get("/rag/search")
def rag_search(
    q: str,
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
    vector_index: Annotated[VectorIndex, Depends(get_vector_index)],
    k: int = 5,
) -> JSONResponse:
    settings = get_settings()

    try:
        hits = search_index(
            query_text=q,
            embedding_client=embedding_client,
            vector_index=vector_index,
            top_k=max(1, min(k, 20)),
            deadline=Deadline.after(settings.ask_timeout_seconds, label="search"),
            call_timeout_seconds=settings.ollama_timeout_seconds,
        )
    except InvalidQuery as exc:
        return _error(400, str(exc))
    except DeadlineExceeded as exc:
        return _error(504, exc.describe())
    except PdfChatError as exc:
        return _error(502, exc.describe())

    return JSONResponse(status_code=200, content=[_source(hit) for hit in hits])


def run() -> None:
    import uvicorn

    uvicorn.run("pdfchat.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
