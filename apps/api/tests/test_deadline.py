import pytest

from pdfchat.deadline import Deadline
from pdfchat.errors import AnswerGenerationFailed, DeadlineExceeded, EmbeddingFailed, describe_error


def test_timeout_is_capped_by_remaining_time() -> None:
    deadline = Deadline.after(100, label="job")

    assert deadline.timeout(5.0) == 5.0
    assert 0 < deadline.timeout(500.0) <= 100


def test_expired_deadline_raises_retryable_error() -> None:
    deadline = Deadline.after(-1, label="job abc")

    with pytest.raises(DeadlineExceeded, match="job abc deadline exceeded") as excinfo:
        deadline.check()

    assert excinfo.value.retryable is True
    with pytest.raises(DeadlineExceeded):
        deadline.timeout(5.0)


def test_describe_error_prefixes_kind() -> None:
    assert describe_error(EmbeddingFailed("503 from ollama")) == "EmbeddingFailed: 503 from ollama"
    assert describe_error(FileNotFoundError("gone")) == "FileNotFoundError: gone"


def test_retryable_flag_can_be_overridden_per_instance() -> None:
    assert EmbeddingFailed("x").retryable is False
    assert EmbeddingFailed("x", retryable=True).retryable is True
    assert AnswerGenerationFailed("x").kind == "AnswerGenerationFailed"
