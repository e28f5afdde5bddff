"""Photographer stage: synthesizes decorative assets requested by the router."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Sequence

from ..errors import ConfigurationError
from ..services.base import AssetStorage, ImageGenerator
from ..types import AssetMap, FileInput, GeneratedAssetRequest, PipelineMode, RunState
from ..utils.prompts import load_prompt
from .base import BaseNode


class PhotographAssets(BaseNode):
    """Generates one image per requested asset and stores it under the asset name."""

    timing_key = "photographer"

    def __init__(
        self,
        run_id: str,
        logger,
        events,
        generator: ImageGenerator,
        storage: AssetStorage,
        *,
        concurrency: int = 1,
    ) -> None:
        super().__init__(name="PhotographAssets", run_id=run_id, logger=logger, events=events)
        self._generator = generator
        self._storage = storage
        self._concurrency = max(1, concurrency)

    def should_run(self, state: RunState) -> bool:
        strategy = state["strategy"]
        return strategy.mode is not PipelineMode.GENERATE and bool(strategy.execution_plan.generate_assets)

    async def run(self, state: RunState) -> Dict[str, Any]:
        requests = state["strategy"].execution_plan.generate_assets
        return {"generated_assets": await self.generate_assets(requests, state["request"].files)}

    async def generate_assets(self, requests: Sequence[GeneratedAssetRequest], files: Sequence[FileInput]) -> AssetMap:
        reference = self._reference_image(files)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _generate(request: GeneratedAssetRequest) -> Optional[str]:
            async with semaphore:
                return await self._generate_one(request, reference)

        urls = await asyncio.gather(*(_generate(request) for request in requests))
        generated = {request.name: url for request, url in zip(requests, urls) if url}
        self.log_response(generated)
        return generated

    async def _generate_one(self, request: GeneratedAssetRequest, reference: Optional[bytes]) -> Optional[str]:
        prompt = self.build_prompt(request)
        self.log_prompt(prompt, suffix=request.name)
        use_reference = request.source == "reference_image" and reference is not None
        try:
            image = await self._generator.generate_image(prompt, reference if use_reference else None)
            url = await self._storage.store(image, "image/png", request.name)
        except ConfigurationError:
            raise
        except Exception as err:
            self.warn(f"Could not generate asset '{request.name}': {err}", asset=request.name)
            return None
        self.emit(f"Generated asset '{request.name}' for {request.target_element}", asset=request.name)
        return url

    @staticmethod
    def build_prompt(request: GeneratedAssetRequest) -> str:
        return load_prompt(
            "photographer",
            {
                "description": request.description,
                "vibe": request.vibe or "clean, modern",
                "target_element": request.target_element,
                "asset_type": request.type,
            },
        ).strip()

    @staticmethod
    def _reference_image(files: Sequence[FileInput]) -> Optional[bytes]:
        for item in files:
            if item.is_image:
                return item.data
        return None
