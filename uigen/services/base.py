"""Collaborator protocols consumed by pipeline stages.

Concrete vendor clients live beside this module; tests substitute fakes.
"""

from __future__ import annotations

from typing import Mapping, Optional, Protocol, Sequence, Tuple

from ..types import AppFile, Bounds, CanvasConfig, FileInput


class VisionModel(Protocol):
    """Multi-modal model that reads reference images and videos."""

    async def analyze_layout(self, image: bytes, mime_type: str, prompt: str) -> str:
        ...

    async def analyze_motion(self, videos: Sequence[FileInput], prompt: str) -> str:
        ...


class CodeModel(Protocol):
    """Text model used for routing, structure design and code synthesis."""

    async def plan_route(self, prompt: str) -> str:
        ...

    async def design_structure(self, prompt: str) -> str:
        ...

    async def generate_code(self, prompt: str, image: Optional[Tuple[bytes, str]] = None) -> str:
        ...

    async def edit_code(self, prompt: str) -> str:
        ...


class ImageGenerator(Protocol):
    """Text/image-to-image generator returning encoded image bytes."""

    async def generate_image(self, prompt: str, reference: Optional[bytes] = None) -> bytes:
        ...


class AssetStorage(Protocol):
    """Stores binary assets and returns an addressable URL."""

    async def store(self, data: bytes, mime_type: str, name: str) -> str:
        ...


class Renderer(Protocol):
    """Renders generated files headlessly and returns a PNG screenshot."""

    async def render(self, files: Sequence[AppFile], assets: Mapping[str, str], canvas: CanvasConfig) -> bytes:
        ...


class FidelityScorer(Protocol):
    """Compares a screenshot against the reference image (0-100)."""

    async def score(
        self, reference: bytes, screenshot: bytes, regions: Sequence[Tuple[str, Bounds]] = ()
    ) -> Tuple[float, Mapping[str, float]]:
        ...
