"""Load local text and Markdown files as documents."""

from __future__ import annotations

from pathlib import Path
from typing import List

from ..models import Document

TEXT_SUFFIXES = (".md", ".markdown", ".txt")


def _to_document(file_path: Path, source_id: str) -> Document:
    return Document(
        id=file_path.stem,
        source=source_id,
        content=file_path.read_text(encoding="utf-8"),
        metadata={"title": file_path.name, "type": "document"},
    )


def load_text_file(path: str | Path, *, source_id: str = "file") -> List[Document]:
    """Load one file, or every text and Markdown file below a directory.

    Each file becomes one document titled with its filename.
    """

    root = Path(path)
    if not root.exists():
        raise FileNotFoundError(f"File not found: {root}")
    if root.is_file():
        return [_to_document(root, source_id)]
    return [
        _to_document(file_path, source_id)
        for file_path in sorted(root.rglob("*"))
        if file_path.is_file() and file_path.suffix.lower() in TEXT_SUFFIXES
    ]
