from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from pdfchat.deadline import Deadline
from pdfchat.errors import DeadlineExceeded, GenerationFailed, is_retryable_http_error

ChatMessages = list[dict[str, str]]


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


class LLMClient(Protocol):
    def generate(
        self,
        messages: ChatMessages,
        *,
        timeout: float | None = None,
        deadline: Deadline | None = None,
    ) -> ChatResult: ...


class OllamaChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str,
        timeout_seconds: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._timeout_seconds = timeout_seconds
        self._http = http_client or httpx.Client()

    def close(self) -> None:
        self._http.close()

    def generate(
        self,
        messages: ChatMessages,
        *,
        timeout: float | None = None,
        deadline: Deadline | None = None,
    ) -> ChatResult:
        """Ask the default model, then the fallback model if the first attempt fails.

        ``timeout`` caps each attempt. With a ``deadline`` every attempt gets the
        smaller of that cap and the time left, and running out of time raises
        ``DeadlineExceeded`` instead of trying the next model.
        """
        cap = timeout if timeout is not None else self._timeout_seconds
        candidates = self._model_candidates()
        for model, used_fallback in candidates:
            call_timeout = deadline.timeout(cap) if deadline is not None else cap
            try:
                content = self._chat_completion(model=model, messages=messages, timeout=call_timeout)
            except httpx.HTTPError as exc:
                if deadline is not None and deadline.remaining() <= 0:
                    raise DeadlineExceeded(f"{deadline.label} deadline exceeded") from exc
                if used_fallback or len(candidates) == 1:
                    raise GenerationFailed(
                        str(exc) or type(exc).__name__,
                        retryable=is_retryable_http_error(exc),
                    ) from exc
                continue
            except ValueError as exc:
                if used_fallback or len(candidates) == 1:
                    raise GenerationFailed(str(exc)) from exc
                continue

            return ChatResult(answer=content, model=model, used_fallback=used_fallback)

        raise GenerationFailed("No model candidates configured")

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._fallback_model and self._fallback_model != self._default_model:
            candidates.append((self._fallback_model, True))
        return candidates

    def _chat_completion(self, *, model: str, messages: ChatMessages, timeout: float) -> str:
        response = self._http.post(
            f"{self._base_url}/chat/completions",
            json={
                "model": model,
                "messages": messages,
                "temperature": 0,
            },
            timeout=timeout,
        )
        response.raise_for_status()

        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("Invalid chat completion payload: expected an object")
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()
