from __future__ import annotations

from array import array
from collections.abc import Iterator
from contextlib import closing, contextmanager
import json
import math
from pathlib import Path
import sqlite3
from typing import Protocol

from pdfchat.errors import VectorIndexFailed
from pdfchat.services.rag.types import Chunk, EmbeddedChunk, RetrievalResult


class VectorIndex(Protocol):
    def upsert(self, embedded_chunks: list[EmbeddedChunk]) -> None: ...

    def search(self, vector: list[float], *, top_k: int) -> list[RetrievalResult]: ...


def _encode_embedding(values: list[float]) -> bytes:
    vector = array("f", values)
    return vector.tobytes()


def _decode_embedding(blob: bytes) -> list[float]:
    vector = array("f")
    vector.frombytes(blob)
    return vector.tolist()


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank_results(results: list[RetrievalResult]) -> list[RetrievalResult]:
    return sorted(
        results,
        key=lambda result: (
            -result.score,
            result.chunk.sequence_index,
            result.chunk.document_id,
        ),
    )


def _ensure_schema(connection: sqlite3.Connection) -> None:
    connection.executescript(
        """
        PRAGMA journal_mode = WAL;

        CREATE TABLE IF NOT EXISTS collections (
            name TEXT PRIMARY KEY,
            dimension INTEGER NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS chunks (
            collection TEXT NOT NULL,
            id TEXT NOT NULL,
            doc_id TEXT NOT NULL,
            chunk_index INTEGER NOT NULL,
            text TEXT NOT NULL,
            start_offset INTEGER NOT NULL,
            end_offset INTEGER NOT NULL,
            metadata_json TEXT NOT NULL,
            embedding BLOB NOT NULL,
            embedding_dim INTEGER NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (collection, id),
            FOREIGN KEY (collection) REFERENCES collections(name),
            UNIQUE (collection, doc_id, chunk_index)
        );

        CREATE INDEX IF NOT EXISTS idx_chunks_collection_doc_id ON chunks(collection, doc_id);
        """
    )


class SqliteVectorIndex:
    """Single named collection of embedded chunks in a local SQLite file.

    The collection records its vector dimension on first write; later writes
    and queries with another dimension are rejected. Chunks are keyed on
    ``(document, sequence_index)`` so writing the same document again replaces
    its chunks instead of duplicating them.
    """

    def __init__(self, db_path: Path, *, collection: str, busy_timeout_seconds: float = 30.0) -> None:
        self._db_path = db_path
        self._collection = collection
        self._busy_timeout_seconds = busy_timeout_seconds
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as connection:
            _ensure_schema(connection)

    @property
    def collection(self) -> str:
        return self._collection

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self._db_path, timeout=self._busy_timeout_seconds)) as connection:
                with connection:
                    yield connection
        except sqlite3.OperationalError as exc:
            # Lock contention and I/O hiccups clear up on their own.
            raise VectorIndexFailed(f"vector index unavailable: {exc}", retryable=True) from exc
        except sqlite3.DatabaseError as exc:
            raise VectorIndexFailed(f"vector index error: {exc}") from exc

    def dimension(self) -> int | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT dimension FROM collections WHERE name = ?",
                (self._collection,),
            ).fetchone()
        return int(row[0]) if row is not None else None

    def upsert(self, embedded_chunks: list[EmbeddedChunk]) -> None:
        if not embedded_chunks:
            return

        dimensions = {item.dimension for item in embedded_chunks}
        if len(dimensions) != 1 or 0 in dimensions:
            raise VectorIndexFailed(f"inconsistent embedding dimensions in batch: {sorted(dimensions)}")
        dimension = dimensions.pop()

        with self._connect() as connection:
            row = connection.execute(
                "SELECT dimension FROM collections WHERE name = ?",
                (self._collection,),
            ).fetchone()
            if row is None:
                connection.execute(
                    "INSERT INTO collections (name, dimension) VALUES (?, ?)",
                    (self._collection, dimension),
                )
            elif int(row[0]) != dimension:
                raise VectorIndexFailed(
                    f"embedding dimension {dimension} does not match collection "
                    f"'{self._collection}' dimension {row[0]}"
                )

            connection.executemany(
                """
                INSERT INTO chunks (
                    collection, id, doc_id, chunk_index, text, start_offset, end_offset,
                    metadata_json, embedding, embedding_dim
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (collection, doc_id, chunk_index) DO UPDATE SET
                    id = excluded.id,
                    text = excluded.text,
                    start_offset = excluded.start_offset,
                    end_offset = excluded.end_offset,
                    metadata_json = excluded.metadata_json,
                    embedding = excluded.embedding,
                    embedding_dim = excluded.embedding_dim
                """,
                [
                    (
                        self._collection,
                        item.chunk.chunk_id,
                        item.chunk.document_id,
                        item.chunk.sequence_index,
                        item.chunk.text,
                        item.chunk.start_offset,
                        item.chunk.end_offset,
                        json.dumps(item.chunk.metadata, ensure_ascii=False, sort_keys=True),
                        sqlite3.Binary(_encode_embedding(item.vector)),
                        item.dimension,
                    )
                    for item in embedded_chunks
                ],
            )

    def search(self, vector: list[float], *, top_k: int) -> list[RetrievalResult]:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT dimension FROM collections WHERE name = ?",
                (self._collection,),
            ).fetchone()
            if row is None:
                return []
            if int(row[0]) != len(vector):
                raise VectorIndexFailed(
                    f"query dimension {len(vector)} does not match collection "
                    f"'{self._collection}' dimension {row[0]}"
                )

            rows = connection.execute(
                """
                SELECT id, doc_id, chunk_index, text, start_offset, end_offset,
                       metadata_json, embedding
                FROM chunks
                WHERE collection = ?
                """,
                (self._collection,),
            ).fetchall()

        results: list[RetrievalResult] = []
        for chunk_id, doc_id, chunk_index, text, start_offset, end_offset, metadata_json, blob in rows:
            chunk = Chunk(
                chunk_id=chunk_id,
                document_id=doc_id,
                sequence_index=int(chunk_index),
                text=text,
                start_offset=int(start_offset),
                end_offset=int(end_offset),
                metadata=json.loads(metadata_json),
            )
            results.append(RetrievalResult(chunk=chunk, score=_cosine(vector, _decode_embedding(blob))))

        return rank_results(results)[: max(1, top_k)]

    def count(self, document_id: str | None = None) -> int:
        query = "SELECT COUNT(*) FROM chunks WHERE collection = ?"
        params: tuple[str, ...] = (self._collection,)
        if document_id is not None:
            query += " AND doc_id = ?"
            params += (document_id,)
        with self._connect() as connection:
            return int(connection.execute(query, params).fetchone()[0])
