"""Failure kinds shared by the ingestion and question paths.

Every error carries a ``retryable`` flag. The worker re-queues a job only when
the failure that ended it is retryable; the API maps the question-path errors
to status codes.
"""

from __future__ import annotations

import httpx


class PdfChatError(RuntimeError):
    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable

    @property
    def kind(self) -> str:
        return type(self).__name__

    def describe(self) -> str:
        return f"{self.kind}: {self}"


class InvalidConfiguration(PdfChatError, ValueError):
    pass


class DocumentUnavailable(PdfChatError):
    pass


class ExtractionFailed(PdfChatError):
    pass


class EmbeddingFailed(PdfChatError):
    pass


class VectorIndexFailed(PdfChatError):
    pass


class GenerationFailed(PdfChatError):
    pass


class DeadlineExceeded(PdfChatError):
    retryable = True


class InvalidQuery(PdfChatError, ValueError):
    pass


class AnswerGenerationFailed(PdfChatError):
    """Wraps any collaborator failure on the question path; see ``__cause__``."""


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, PdfChatError):
        return exc.describe()
    return f"{type(exc).__name__}: {exc}"


def is_retryable_http_error(exc: httpx.HTTPError) -> bool:
    """Timeouts, transport errors, 429 and 5xx responses are worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500 or exc.response.status_code == 429
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))
