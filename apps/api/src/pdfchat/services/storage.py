from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import re
import shutil
from time import time
from typing import BinaryIO
import uuid

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredFile:
    original_name: str
    filename: str
    storage_path: str
    destination: str
    size: int


def _safe_filename(original_name: str) -> str:
    name = Path(original_name).name
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return cleaned or "document.pdf"


def store_file(upload_dir: Path, original_name: str, stream: BinaryIO) -> StoredFile:
    """Write an upload under a unique name; stored files are never overwritten."""
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{int(time() * 1000)}-{uuid.uuid4().hex[:8]}-{_safe_filename(original_name)}"
    target = upload_dir / filename

    with target.open("xb") as handle:
        shutil.copyfileobj(stream, handle)

    return StoredFile(
        original_name=original_name,
        filename=filename,
        storage_path=str(target),
        destination=str(upload_dir),
        size=target.stat().st_size,
    )


def discard_file(stored: StoredFile) -> None:
    """Remove an upload whose registration did not go through."""
    Path(stored.storage_path).unlink(missing_ok=True)
