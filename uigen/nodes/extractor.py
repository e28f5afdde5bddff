"""Asset extraction stage: crops flagged nodes out of the reference image."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

from ..autofix import crop_candidates
from ..services.base import AssetStorage
from ..types import AssetMap, Bounds, RunState, UINode, VisualManifest
from ..utils.imaging import crop
from .base import BaseNode

Cropper = Callable[[bytes, Bounds], bytes]


class ExtractAssets(BaseNode):
    """Turns every crop-flagged node into a stored asset keyed by node id."""

    timing_key = "extraction"

    def __init__(
        self,
        run_id: str,
        logger,
        events,
        storage: AssetStorage,
        *,
        concurrency: int = 8,
        cropper: Cropper = crop,
    ) -> None:
        super().__init__(name="ExtractAssets", run_id=run_id, logger=logger, events=events)
        self._storage = storage
        self._concurrency = max(1, concurrency)
        self._cropper = cropper

    def should_run(self, state: RunState) -> bool:
        return any(manifest.dom_tree is not None for manifest in state.get("manifests") or [])

    async def run(self, state: RunState) -> Dict[str, Any]:
        request = state["request"]
        manifests = state.get("manifests") or []
        originals = {manifest.file_index: request.files[manifest.file_index].data for manifest in manifests}
        return {"extracted_assets": await self.extract_assets(manifests, originals)}

    async def extract_assets(
        self, manifests: Sequence[VisualManifest], original_images: Mapping[int, bytes]
    ) -> AssetMap:
        """Crop and store each flagged node; per-node failures become warnings."""
        jobs = self._collect_jobs(manifests, original_images)
        if not jobs:
            return {}

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _extract(node_id: str, image: bytes, box: Bounds) -> Tuple[str, str | None]:
            async with semaphore:
                try:
                    data = await asyncio.to_thread(self._cropper, image, box)
                    url = await self._storage.store(data, "image/png", f"crop_{node_id}")
                except Exception as err:
                    self.warn(f"Asset extraction failed for node {node_id}: {err}", node_id=node_id)
                    return node_id, None
            return node_id, url

        results = await asyncio.gather(*(_extract(*job) for job in jobs))
        extracted = {node_id: url for node_id, url in results if url}
        self.emit(f"Extracted {len(extracted)}/{len(jobs)} asset(s)", extracted=sorted(extracted))
        self.log_response(extracted)
        return extracted

    def _collect_jobs(
        self, manifests: Sequence[VisualManifest], original_images: Mapping[int, bytes]
    ) -> List[Tuple[str, bytes, Bounds]]:
        jobs: List[Tuple[str, bytes, Bounds]] = []
        seen: set[str] = set()
        for manifest in manifests:
            tree = manifest.dom_tree
            if tree is None:
                continue
            image = original_images.get(manifest.file_index)
            if image is None:
                self.warn(f"No original image for manifest {manifest.file_index}; skipping extraction.")
                continue
            for node, box in crop_candidates(tree):
                if not self._accept(node, box, seen):
                    continue
                seen.add(node.id)  # type: ignore[arg-type]
                jobs.append((node.id, image, box))  # type: ignore[arg-type]
        return jobs

    def _accept(self, node: UINode, box: Bounds | None, seen: set[str]) -> bool:
        label = node.id or f"<{node.type}>"
        if not node.id:
            self.warn(f"Skipping extraction for {label}: node has no id.")
            return False
        if box is None or not box.is_valid():
            self.warn(f"Skipping extraction for {label}: node has no usable bounds.", node_id=node.id)
            return False
        if node.id in seen:
            self.warn(f"Skipping extraction for {label}: duplicate node id.", node_id=node.id)
            return False
        return True
