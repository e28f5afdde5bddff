"""Local content-addressed asset storage."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Optional

from ..utils.files import atomic_write, ensure_dir, extension_for_mime, sha256_hex

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_-]+")


class LocalAssetStorage:
    """Writes assets under ``assets_dir`` and returns a URL for each.

    Files are named ``<name>-<digest>.<ext>`` so identical payloads stored
    under the same name collapse to one file.  When ``base_url`` is set the
    returned URL is ``<base_url>/<file>``; otherwise a ``file://`` URI.
    """

    def __init__(self, assets_dir: str | Path = "assets", base_url: Optional[str] = None) -> None:
        self._assets_dir = ensure_dir(assets_dir)
        self._base_url = base_url.rstrip("/") if base_url else None

    async def store(self, data: bytes, mime_type: str, name: str) -> str:
        if not data:
            raise ValueError(f"Refusing to store empty asset {name!r}")
        return await asyncio.to_thread(self._store_blocking, data, mime_type, name)

    def _store_blocking(self, data: bytes, mime_type: str, name: str) -> str:
        safe_name = _UNSAFE_NAME.sub("_", name).strip("_") or "asset"
        filename = f"{safe_name}-{sha256_hex(data)[:16]}.{extension_for_mime(mime_type, 'png')}"
        path = self._assets_dir / filename
        if not path.exists():
            atomic_write(path, data)
        if self._base_url:
            return f"{self._base_url}/{filename}"
        return path.resolve().as_uri()
