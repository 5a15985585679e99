from pdfchat.services.rag.answer import AnswerGenerator
from pdfchat.services.rag.chunker import chunk_document, chunk_text
from pdfchat.services.rag.ingest import ingest_document
from pdfchat.services.rag.query import search_index
from pdfchat.services.rag.types import ChatExchange, Chunk, IngestionSummary, RetrievalResult

__all__ = [
    "AnswerGenerator",
    "ChatExchange",
    "Chunk",
    "IngestionSummary",
    "RetrievalResult",
    "chunk_document",
    "chunk_text",
    "ingest_document",
    "search_index",
]
