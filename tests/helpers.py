"""Offline collaborators and fixtures shared by the test modules."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from PIL import Image

from uigen.events import EventChannel
from uigen.types import AppFile, Bounds, CanvasConfig, FileInput
from uigen.utils.files import b64encode
from uigen.utils.run_logger import RunLogger


def png_bytes(width: int = 64, height: int = 48, color: Tuple[int, int, int] = (15, 23, 42)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def image_file(filename: str = "shot.png", data: Optional[bytes] = None) -> FileInput:
    return FileInput(filename=filename, mime_type="image/png", base64=b64encode(data or png_bytes()))


def video_file(filename: str = "clip.mp4") -> FileInput:
    return FileInput(filename=filename, mime_type="video/mp4", base64=b64encode(b"\x00\x00\x00\x18ftypmp42"))


def run_context(tmp: str, run_id: str = "test-run") -> Tuple[RunLogger, EventChannel]:
    return RunLogger(base_dir=Path(tmp) / "runs"), EventChannel(run_id)


SAMPLE_LAYOUT: Dict[str, Any] = {
    "dom_tree": {
        "type": "div",
        "id": "root",
        "bounds": {"top": 0, "left": 0, "width": 100, "height": 100},
        "styles": {"backgroundColor": "#101010"},
        "children": [
            {
                "type": "header",
                "id": "header",
                "bounds": {"top": 0, "left": 0, "width": 100, "height": 20},
                "styles": {"color": "#fafafa"},
                "children": [
                    {
                        "type": "div",
                        "id": "logo",
                        "bounds": {"top": 10, "left": 2, "width": 20, "height": 80},
                        "visualCategory": "logo",
                    }
                ],
            },
            {
                "type": "img",
                "id": "photo",
                "bounds": {"top": 30, "left": 10, "width": 50, "height": 50},
                "children": [{"type": "span", "id": "ignored"}],
            },
        ],
    },
    "assets_needed": ["logo"],
}


class FakeVision:
    """Returns canned layout text, or raises when given an exception."""

    def __init__(self, layout: Any = None, motion: Any = None) -> None:
        self.layout = json.dumps(SAMPLE_LAYOUT) if layout is None else layout
        self.motion = motion if motion is not None else json.dumps({"component_motions": []})
        self.layout_calls: List[Tuple[bytes, str, str]] = []
        self.motion_calls = 0

    async def analyze_layout(self, image: bytes, mime_type: str, prompt: str) -> str:
        self.layout_calls.append((image, mime_type, prompt))
        if isinstance(self.layout, Exception):
            raise self.layout
        return self.layout

    async def analyze_motion(self, videos: Sequence[FileInput], prompt: str) -> str:
        self.motion_calls += 1
        if isinstance(self.motion, Exception):
            raise self.motion
        return self.motion


DEFAULT_CODE = (
    "--- FILE: App.tsx ---\n"
    "```tsx\n"
    "export default function App() {\n"
    '  return <div data-id="root" className="root">Hello</div>;\n'
    "}\n"
    "```\n"
    "--- FILE: styles.css ---\n"
    "```css\n"
    ".root { background: #101010; color: #fafafa; }\n"
    "```\n"
)


class FakeCodeModel:
    """Scripted code model; each list is consumed in order, the last entry repeating."""

    def __init__(
        self,
        code: Sequence[Any] = (DEFAULT_CODE,),
        route: Any = "{}",
        structure: Any = '{"layout_strategy": "grid", "tree": []}',
        edit: Any = "",
    ) -> None:
        self.code = list(code)
        self.route = route
        self.structure = structure
        self.edit = edit
        self.code_prompts: List[str] = []
        self.code_images: List[Optional[Tuple[bytes, str]]] = []
        self.route_prompts: List[str] = []
        self.edit_prompts: List[str] = []

    @staticmethod
    def _answer(value: Any) -> str:
        if isinstance(value, Exception):
            raise value
        return value

    async def plan_route(self, prompt: str) -> str:
        self.route_prompts.append(prompt)
        return self._answer(self.route)

    async def design_structure(self, prompt: str) -> str:
        return self._answer(self.structure)

    async def generate_code(self, prompt: str, image: Optional[Tuple[bytes, str]] = None) -> str:
        self.code_prompts.append(prompt)
        self.code_images.append(image)
        index = min(len(self.code_prompts), len(self.code)) - 1
        return self._answer(self.code[index])

    async def edit_code(self, prompt: str) -> str:
        self.edit_prompts.append(prompt)
        return self._answer(self.edit)


class FakeImageGenerator:
    """Paints a flat PNG; fails for prompts mentioning any name in ``fail_on``."""

    def __init__(self, fail_on: Sequence[str] = ()) -> None:
        self.fail_on = list(fail_on)
        self.calls: List[Tuple[str, Optional[bytes]]] = []

    async def generate_image(self, prompt: str, reference: Optional[bytes] = None) -> bytes:
        self.calls.append((prompt, reference))
        if any(token in prompt for token in self.fail_on):
            raise RuntimeError("generation quota exceeded")
        return png_bytes(8, 8, (200, 120, 40))


class MemoryStorage:
    def __init__(self) -> None:
        self.stored: Dict[str, bytes] = {}

    async def store(self, data: bytes, mime_type: str, name: str) -> str:
        if not data:
            raise ValueError("empty asset")
        self.stored[name] = data
        return f"https://cdn.test/{name}.png"


class FakeRenderer:
    """Returns a screenshot per call; an exception entry is raised instead."""

    def __init__(self, outcomes: Sequence[Any] = ()) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[Tuple[List[AppFile], Mapping[str, str], CanvasConfig]] = []

    async def render(self, files: Sequence[AppFile], assets: Mapping[str, str], canvas: CanvasConfig) -> bytes:
        self.calls.append((list(files), dict(assets), canvas))
        outcome = self.outcomes[len(self.calls) - 1] if len(self.calls) <= len(self.outcomes) else png_bytes()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeScorer:
    """Yields scripted ``(overall, per_region)`` scores, repeating the last."""

    def __init__(self, scores: Sequence[Tuple[float, Mapping[str, float]]]) -> None:
        self.scores = list(scores)
        self.calls: List[List[Tuple[str, Bounds]]] = []

    async def score(
        self, reference: bytes, screenshot: bytes, regions: Sequence[Tuple[str, Bounds]] = ()
    ) -> Tuple[float, Mapping[str, float]]:
        self.calls.append(list(regions))
        return self.scores[min(len(self.calls), len(self.scores)) - 1]
