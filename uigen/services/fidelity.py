"""Pixel-level fidelity scoring between a reference image and a screenshot."""

from __future__ import annotations

import asyncio
from typing import Mapping, Sequence, Tuple

from ..errors import RenderFailure
from ..types import Bounds
from ..utils.imaging import similarity


class PixelFidelityScorer:
    """Scores screenshots with the mean absolute RGB difference (0-100, higher is closer)."""

    async def score(
        self, reference: bytes, screenshot: bytes, regions: Sequence[Tuple[str, Bounds]] = ()
    ) -> Tuple[float, Mapping[str, float]]:
        try:
            return await asyncio.to_thread(similarity, reference, screenshot, list(regions))
        except (OSError, ValueError) as err:
            raise RenderFailure(f"Could not compare screenshot with reference: {err}") from err
