import json
from pathlib import Path
import time

import httpx
import pytest

from pdfchat.errors import (
    AnswerGenerationFailed,
    DeadlineExceeded,
    EmbeddingFailed,
    GenerationFailed,
    InvalidQuery,
)
from pdfchat.llm import ChatResult, OllamaChatClient
from pdfchat.services.rag.answer import AnswerGenerator
from pdfchat.services.rag.prompt import FALLBACK_ANSWER
from pdfchat.services.rag.sqlite_store import SqliteVectorIndex
from pdfchat.services.rag.types import Chunk, EmbeddedChunk

VOCABULARY = ("express", "mongodb", "socket", "token")


def _vector(text: str) -> list[float]:
    normalized = text.lower()
    return [float(normalized.count(word)) for word in VOCABULARY]


class FakeEmbeddingClient:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def embed_texts(self, texts: list[str], *, timeout: float | None = None) -> list[list[float]]:
        self.calls.append(list(texts))
        return [_vector(text) for text in texts]


class FakeLLMClient:
    def __init__(self, answer: str = "Express is a web framework.") -> None:
        self.answer = answer
        self.calls: list[list[dict[str, str]]] = []

    def generate(self, messages: list[dict[str, str]], *, timeout: float | None = None, deadline=None) -> ChatResult:
        self.calls.append(messages)
        return ChatResult(answer=self.answer, model="fake-model", used_fallback=False)


class FailingLLMClient:
    def generate(self, messages: list[dict[str, str]], *, timeout: float | None = None, deadline=None) -> ChatResult:
        raise GenerationFailed("simulated failure", retryable=True)


def _seeded_index(tmp_path: Path) -> SqliteVectorIndex:
    index = SqliteVectorIndex(tmp_path / "rag.db", collection="pdf-chunks")
    texts = [
        "Express is a minimal web framework for Node.",
        "MongoDB is a document database.",
        "Socket.io enables realtime socket events.",
        "Express middleware can check a JWT token.",
    ]
    index.upsert(
        [
            EmbeddedChunk(
                chunk=Chunk(
                    chunk_id=f"doc-{position:04d}",
                    document_id="doc",
                    sequence_index=position,
                    text=text,
                    start_offset=0,
                    end_offset=len(text),
                    metadata={"source": "guide.pdf", "page_start": 1},
                ),
                vector=_vector(text),
            )
            for position, text in enumerate(texts)
        ]
    )
    return index


def _generator(tmp_path: Path, llm_client, **kwargs) -> AnswerGenerator:
    return AnswerGenerator(
        embedding_client=FakeEmbeddingClient(),
        vector_index=_seeded_index(tmp_path),
        llm_client=llm_client,
        **kwargs,
    )


def test_answer_returns_model_output_and_context_sources(tmp_path: Path) -> None:
    llm_client = FakeLLMClient()
    generator = _generator(tmp_path, llm_client, top_k=5)

    exchange = generator.answer("  What is Express?  ")

    assert exchange.question == "What is Express?"
    assert exchange.answer == "Express is a web framework."
    assert [source.chunk.sequence_index for source in exchange.sources] == [0, 3]
    assert all(source.score > 0 for source in exchange.sources)
    assert len(llm_client.calls) == 1
    user_message = llm_client.calls[0][1]["content"]
    assert "Express is a minimal web framework for Node." in user_message
    assert "MongoDB" not in user_message


def test_answer_without_related_chunks_returns_fallback_without_llm_call(tmp_path: Path) -> None:
    llm_client = FakeLLMClient()
    generator = _generator(tmp_path, llm_client)

    exchange = generator.answer("What is the weather today?")

    assert exchange.answer == FALLBACK_ANSWER
    assert exchange.sources == []
    assert llm_client.calls == []


def test_answer_on_empty_index_returns_fallback(tmp_path: Path) -> None:
    llm_client = FakeLLMClient()
    generator = AnswerGenerator(
        embedding_client=FakeEmbeddingClient(),
        vector_index=SqliteVectorIndex(tmp_path / "empty.db", collection="pdf-chunks"),
        llm_client=llm_client,
    )

    assert generator.answer("What is Express?").answer == FALLBACK_ANSWER
    assert llm_client.calls == []


@pytest.mark.parametrize("question", ["", "   \n\t"])
def test_blank_question_is_invalid(tmp_path: Path, question: str) -> None:
    generator = _generator(tmp_path, FakeLLMClient())

    with pytest.raises(InvalidQuery):
        generator.answer(question)


def test_generation_failure_is_wrapped_with_cause(tmp_path: Path) -> None:
    generator = _generator(tmp_path, FailingLLMClient())

    with pytest.raises(AnswerGenerationFailed, match="GenerationFailed: simulated failure") as excinfo:
        generator.answer("What is Express?")

    assert isinstance(excinfo.value.__cause__, GenerationFailed)
    assert excinfo.value.retryable is True


def test_embedding_failure_is_wrapped(tmp_path: Path) -> None:
    class BrokenEmbeddingClient:
        def embed_texts(self, texts: list[str], *, timeout: float | None = None) -> list[list[float]]:
            raise EmbeddingFailed("connection refused", retryable=True)

    generator = AnswerGenerator(
        embedding_client=BrokenEmbeddingClient(),
        vector_index=_seeded_index(tmp_path),
        llm_client=FakeLLMClient(),
    )

    with pytest.raises(AnswerGenerationFailed) as excinfo:
        generator.answer("What is Express?")

    assert isinstance(excinfo.value.__cause__, EmbeddingFailed)


def test_unexpected_collaborator_error_is_wrapped(tmp_path: Path) -> None:
    class ExplodingIndex:
        def upsert(self, embedded_chunks) -> None:
            raise NotImplementedError

        def search(self, vector, *, top_k):
            raise KeyError("collection")

    generator = AnswerGenerator(
        embedding_client=FakeEmbeddingClient(),
        vector_index=ExplodingIndex(),
        llm_client=FakeLLMClient(),
    )

    with pytest.raises(AnswerGenerationFailed, match="KeyError") as excinfo:
        generator.answer("What is Express?")

    assert isinstance(excinfo.value.__cause__, KeyError)


def test_expired_question_deadline_is_wrapped(tmp_path: Path) -> None:
    generator = _generator(tmp_path, FakeLLMClient(), timeout_seconds=-1)

    with pytest.raises(AnswerGenerationFailed) as excinfo:
        generator.answer("What is Express?")

    assert isinstance(excinfo.value.__cause__, DeadlineExceeded)


def test_answers_are_stateless_between_questions(tmp_path: Path) -> None:
    llm_client = FakeLLMClient()
    generator = _generator(tmp_path, llm_client)

    first = generator.answer("What is MongoDB?")
    second = generator.answer("What is MongoDB?")

    assert first == second
    assert len(llm_client.calls) == 2


def test_stalled_generation_with_fallback_model_respects_question_deadline(tmp_path: Path) -> None:
    models: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        models.append(json.loads(request.content)["model"])
        time.sleep(request.extensions["timeout"]["read"] + 0.05)
        raise httpx.ReadTimeout("timed out", request=request)

    llm_client = OllamaChatClient(
        base_url="http://localhost:11434/v1",
        default_model="llama3.2",
        fallback_model="qwen2.5",
        timeout_seconds=30,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    generator = _generator(tmp_path, llm_client, timeout_seconds=0.5)
    started = time.monotonic()

    with pytest.raises(AnswerGenerationFailed) as excinfo:
        generator.answer("What is Express?")

    assert time.monotonic() - started < 1.5
    assert isinstance(excinfo.value.__cause__, DeadlineExceeded)
    assert models == ["llama3.2"]


def test_context_budget_too_small_for_any_text_returns_fallback(tmp_path: Path) -> None:
    llm_client = FakeLLMClient()
    generator = _generator(tmp_path, llm_client, context_max_tokens=5)

    exchange = generator.answer("What is Express?")

    assert exchange.answer == FALLBACK_ANSWER
    assert exchange.sources == []
    assert llm_client.calls == []
