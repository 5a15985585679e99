from __future__ import annotations

from pdfchat.deadline import Deadline
from pdfchat.errors import AnswerGenerationFailed, InvalidQuery, PdfChatError
from pdfchat.llm import LLMClient
from pdfchat.services.rag.embedding_client import EmbeddingClient
from pdfchat.services.rag.prompt import FALLBACK_ANSWER, build_context, build_messages
from pdfchat.services.rag.query import search_index
from pdfchat.services.rag.sqlite_store import VectorIndex
from pdfchat.services.rag.types import ChatExchange, RetrievalResult


class AnswerGenerator:
    """Answers one question from indexed chunks.

    Steps run strictly in order (embed, search, build context, generate) under
    a single per-question deadline. Any collaborator failure is re-raised as
    ``AnswerGenerationFailed`` with the original error as its cause. Nothing is
    cached between questions.
    """

    def __init__(
        self,
        *,
        embedding_client: EmbeddingClient,
        vector_index: VectorIndex,
        llm_client: LLMClient,
        top_k: int = 5,
        context_max_tokens: int = 3000,
        min_score: float | None = 0.0,
        timeout_seconds: float = 120.0,
        call_timeout_seconds: float = 30.0,
    ) -> None:
        self._embedding_client = embedding_client
        self._vector_index = vector_index
        self._llm_client = llm_client
        self._top_k = top_k
        self._context_max_tokens = context_max_tokens
        self._min_score = min_score
        self._timeout_seconds = timeout_seconds
        self._call_timeout_seconds = call_timeout_seconds

    def retrieve(self, question: str, *, deadline: Deadline | None = None) -> list[RetrievalResult]:
        return search_index(
            query_text=question,
            embedding_client=self._embedding_client,
            vector_index=self._vector_index,
            top_k=self._top_k,
            min_score=self._min_score,
            deadline=deadline,
            call_timeout_seconds=self._call_timeout_seconds,
        )

    def answer(self, question: str) -> ChatExchange:
        question = question.strip() if isinstance(question, str) else ""
        if not question:
            raise InvalidQuery("question must not be empty")

        deadline = Deadline.after(self._timeout_seconds, label="answer")
        try:
            hits = self.retrieve(question, deadline=deadline)
            context, sources = build_context(hits, max_tokens=self._context_max_tokens)
            if not sources:
                return ChatExchange(question=question, answer=FALLBACK_ANSWER, sources=[])

            result = self._llm_client.generate(
                build_messages(question, context),
                timeout=self._call_timeout_seconds,
                deadline=deadline,
            )
        except InvalidQuery:
            raise
        except PdfChatError as exc:
            raise AnswerGenerationFailed(
                f"{exc.kind}: {exc}", retryable=exc.retryable
            ) from exc
        except Exception as exc:
            raise AnswerGenerationFailed(f"{type(exc).__name__}: {exc}") from exc

        return ChatExchange(question=question, answer=result.answer, sources=sources)
