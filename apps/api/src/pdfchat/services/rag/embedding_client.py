from __future__ import annotations

from typing import Protocol

import httpx

from pdfchat.errors import EmbeddingFailed, is_retryable_http_error


class EmbeddingClient(Protocol):
    def embed_texts(self, texts: list[str], *, timeout: float | None = None) -> list[list[float]]: ...


class OllamaEmbeddingClient:
    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        timeout_seconds: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._http = http_client or httpx.Client()

    @property
    def model(self) -> str:
        return self._model

    def close(self) -> None:
        self._http.close()

    def embed_texts(self, texts: list[str], *, timeout: float | None = None) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = self._http.post(
                f"{self._base_url}/embeddings",
                json={"model": self._model, "input": texts},
                timeout=timeout if timeout is not None else self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise EmbeddingFailed(
                str(exc) or type(exc).__name__,
                retryable=is_retryable_http_error(exc),
            ) from exc
        except ValueError as exc:
            raise EmbeddingFailed(f"Invalid embeddings payload: {exc}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise EmbeddingFailed("Invalid embeddings payload: missing data")

        vectors: list[list[float]] = []
        for item in data:
            embedding = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(embedding, list) or not embedding:
                raise EmbeddingFailed("Invalid embeddings payload: missing embedding vector")
            vectors.append([float(value) for value in embedding])

        if len(vectors) != len(texts):
            raise EmbeddingFailed(
                f"Invalid embeddings payload: expected {len(texts)} vectors, got {len(vectors)}"
            )

        return vectors
