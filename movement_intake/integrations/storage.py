"""Local filesystem storage for uploaded documents."""

import asyncio
import re
from pathlib import Path
from typing import Optional
from uuid import uuid4

import structlog

from ..config import get_settings

logger = structlog.get_logger()

UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_file_name(file_name: str) -> str:
    """Strip directories and unsafe characters from a client-supplied name."""
    name = Path(file_name or "").name
    name = UNSAFE_CHARS.sub("_", name).strip("._")
    return name or "document"


class LocalDocumentStorage:
    """
    Stores uploads under ``upload_dir`` with a unique prefix.
    The returned handle is the stored file path.
    """

    def __init__(self, upload_dir: Optional[Path] = None):
        self.upload_dir = Path(upload_dir or get_settings().upload_dir)

    def _write(self, target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    async def store(self, document) -> str:
        target = self.upload_dir / f"{uuid4().hex}_{safe_file_name(document.file_name)}"
        await asyncio.to_thread(self._write, target, document.content)
        logger.info("Document stored", path=str(target), size=len(document.content))
        return str(target)
