import pytest

from pdfchat.config import get_settings


def test_rag_db_path_uses_explicit_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAG_INDEX_DIR", "data/custom-index")
    monkeypatch.setenv("RAG_DB_PATH", "data/override/r4.db")

    settings = get_settings()

    assert settings.rag_index_dir == "data/custom-index"
    assert settings.rag_db_path == "data/override/r4.db"


def test_rag_db_path_defaults_to_index_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAG_INDEX_DIR", "data/custom-index")
    monkeypatch.delenv("RAG_DB_PATH", raising=False)

    settings = get_settings()

    assert settings.rag_db_path.endswith("data/custom-index/rag.db")


def test_defaults_match_documented_values(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "RAG_CHUNK_SIZE",
        "RAG_CHUNK_OVERLAP",
        "RAG_UPSERT_BATCH_SIZE",
        "RAG_TOP_K",
        "RAG_CONTEXT_MAX_TOKENS",
        "RAG_MIN_SCORE",
        "OLLAMA_EMBED_MODEL",
        "JOB_MAX_ATTEMPTS",
        "JOB_REDELIVERY_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.rag_chunk_size == 1000
    assert settings.rag_chunk_overlap == 200
    assert settings.rag_upsert_batch_size == 50
    assert settings.rag_top_k == 5
    assert settings.rag_context_max_tokens == 3000
    assert settings.rag_min_score == 0.0
    assert settings.ollama_embed_model == "nomic-embed-text"
    assert settings.job_max_attempts == 3
    assert settings.job_redelivery_seconds == 300.0


def test_embed_base_url_falls_back_to_chat_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://ollama:11434/v1")
    monkeypatch.delenv("OLLAMA_EMBED_BASE_URL", raising=False)

    settings = get_settings()

    assert settings.ollama_embed_base_url == "http://ollama:11434/v1"


def test_numeric_settings_are_clamped_to_minimums(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAG_UPSERT_BATCH_SIZE", "0")
    monkeypatch.setenv("JOB_MAX_ATTEMPTS", "-2")

    settings = get_settings()

    assert settings.rag_upsert_batch_size == 1
    assert settings.job_max_attempts == 1
