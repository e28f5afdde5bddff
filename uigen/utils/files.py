"""File system and encoding helpers shared across the pipeline."""

from __future__ import annotations

import base64
import hashlib
import json
import mimetypes
import os
from pathlib import Path
from typing import Any

_EXTENSION_OVERRIDES = {"image/jpeg": "jpg", "image/svg+xml": "svg", "video/quicktime": "mov"}


def ensure_dir(path: str | Path) -> Path:
    """Create the directory if it does not exist."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def read_binary(path: str | Path) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


def write_text(path: str | Path, content: str) -> Path:
    """Write UTF-8 text to disk."""
    target = Path(path)
    ensure_dir(target.parent)
    target.write_text(content, encoding="utf-8")
    return target


def write_json(path: str | Path, data: Any) -> Path:
    """Serialize a Python object as JSON to disk."""
    payload = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    return write_text(path, payload)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def b64encode(data: bytes) -> str:
    """Encode bytes to a base64 string without newlines."""
    return base64.b64encode(data).decode("utf-8")


def data_url(data: bytes, mime_type: str) -> str:
    """Return a ``data:`` URL suitable for multi-modal model input."""
    return f"data:{mime_type};base64,{b64encode(data)}"


def extension_for_mime(mime_type: str, default: str = "bin") -> str:
    """Return a file extension (without leading dot) for ``mime_type``."""
    if mime_type in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[mime_type]
    guessed = mimetypes.guess_extension(mime_type or "")
    return guessed[1:] if guessed else default


def mime_for_path(path: str | Path, default: str = "application/octet-stream") -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or default


def atomic_write(path: str | Path, content: bytes) -> Path:
    """Write binary content to disk atomically."""
    target = Path(path)
    ensure_dir(target.parent)
    temp_path = target.with_suffix(target.suffix + ".tmp")
    with open(temp_path, "wb") as handle:
        handle.write(content)
    os.replace(temp_path, target)
    return target
