"""
Reading uploaded documents from disk and writing extraction results.
"""

import hashlib
import json
from pathlib import Path
from typing import Any, Dict


def fingerprint(content: bytes) -> str:
    """SHA256 hex digest of a document's raw bytes."""
    return hashlib.sha256(content).hexdigest()


def read_document(path: Path, max_bytes: int = 0) -> bytes:
    """
    Load a document for extraction.

    Args:
        path: Document on disk
        max_bytes: Upper size limit, 0 for none

    Raises:
        FileNotFoundError: If the path is missing or is a directory
        ValueError: If the document is over max_bytes
    """
    if not path.is_file():
        raise FileNotFoundError(f"Document not found: {path}")

    size = path.stat().st_size
    if max_bytes and size > max_bytes:
        raise ValueError(f"Document too large: {size} bytes (limit {max_bytes})")

    return path.read_bytes()


def write_result(path: Path, result: Dict[str, Any]) -> None:
    # Written beside the target and renamed, so readers never see half a file
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(path.name + ".partial")
    partial.write_text(json.dumps(result, indent=2, ensure_ascii=False), encoding="utf-8")
    partial.replace(path)
