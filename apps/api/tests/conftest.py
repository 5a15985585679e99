from collections.abc import Callable, Iterator
from pathlib import Path

import fitz
import pytest
from fastapi.testclient import TestClient

from pdfchat.config import get_settings
from pdfchat.db import Base, get_engine
from pdfchat.main import app, get_embedding_client, get_llm_client, get_vector_index


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_embedding_client.cache_clear()
    get_llm_client.cache_clear()
    get_vector_index.cache_clear()
    yield
    get_settings.cache_clear()
    get_engine.cache_clear()
    app.dependency_overrides.clear()


@pytest.fixture
def api_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    sqlite_db_path = tmp_path / "api-tests.db"
    monkeypatch.setenv("API_DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("API_DB_ECHO", "false")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("RAG_INDEX_DIR", str(tmp_path / "rag_index"))
    monkeypatch.delenv("RAG_DB_PATH", raising=False)
    get_settings.cache_clear()
    get_engine.cache_clear()
    return tmp_path


@pytest.fixture
def client(api_env: Path) -> Iterator[TestClient]:
    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    engine.dispose()


@pytest.fixture
def make_pdf(tmp_path: Path) -> Callable[..., Path]:
    def _make_pdf(name: str, pages: list[str]) -> Path:
        path = tmp_path / name
        document = fitz.open()
        for page_text in pages:
            page = document.new_page()
            if page_text:
                page.insert_textbox(fitz.Rect(36, 36, 560, 800), page_text, fontsize=9)
        document.save(str(path))
        document.close()
        return path

    return _make_pdf
