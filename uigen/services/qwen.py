"""Client wrapper for the Qwen-VL vision language model."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Optional, Sequence

import dashscope
from dashscope import MultiModalConversation
from dashscope.common import error as dashscope_error

from ..errors import ConfigurationError
from ..types import FileInput
from ..utils.files import data_url

logger = logging.getLogger(__name__)

DashScopeAPIError = getattr(
    dashscope_error,
    "DashScopeAPIError",
    getattr(dashscope_error, "DashScopeException", Exception),
)

_CANVAS_PATTERN = re.compile(r"(\d+)\s*x\s*(\d+)\s*px")


class QwenClient:
    """Analyses reference images and videos via DashScope's Qwen-VL API with mock fallback."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: str = "qwen-vl-max",
        use_mock: bool = True,
        timeout: int = 120,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._model = model
        self._use_mock = use_mock
        self._timeout = timeout

    async def analyze_layout(self, image: bytes, mime_type: str, prompt: str) -> str:
        """Return the raw model text describing the layout of ``image``."""
        if self._use_mock:
            return self._mock_layout(prompt)
        content = [{"image": data_url(image, mime_type)}, {"text": prompt}]
        return await asyncio.to_thread(self._call, content)

    async def analyze_motion(self, videos: Sequence[FileInput], prompt: str) -> str:
        """Return the raw model text describing component motion in ``videos``."""
        if self._use_mock:
            return json.dumps({"component_motions": []})
        content: list[dict[str, Any]] = [
            {"video": data_url(video.data, video.mime_type)} for video in videos
        ]
        content.append({"text": prompt})
        return await asyncio.to_thread(self._call, content)

    def _call(self, content: list[dict[str, Any]]) -> str:
        if not self._api_key:
            raise ConfigurationError("Qwen API key is missing; cannot call DashScope service.")
        if self._api_url:
            dashscope.base_http_api_url = self._api_url

        messages = [{"role": "user", "content": content}]
        try:
            response = MultiModalConversation.call(
                model=self._model,
                messages=messages,
                api_key=self._api_key,
                timeout=self._timeout,
            )
        except DashScopeAPIError as err:
            raise RuntimeError(f"DashScope Qwen-VL call failed: {err}") from err

        status_code = getattr(response, "status_code", 200)
        if status_code and int(status_code) != 200:
            message = getattr(response, "message", "") or "unknown error"
            raise RuntimeError(f"DashScope Qwen-VL call failed [{status_code}]: {message}")

        text = self._extract_text(response)
        if not text:
            raise ValueError("Qwen API response missing text content.")
        logger.debug("Qwen response length: %d", len(text))
        return text

    @staticmethod
    def _extract_text(response) -> str | None:
        """Extract the textual answer from DashScope responses."""
        data: dict | None
        if isinstance(response, dict):
            data = response
        elif hasattr(response, "to_dict"):
            data = response.to_dict()
        else:
            data = None

        if data is None and hasattr(response, "output"):
            data = {"output": getattr(response, "output")}

        if not data:
            return None

        output = data.get("output")
        if isinstance(output, dict):
            choices = output.get("choices")
            if isinstance(choices, list) and choices:
                message = choices[0].get("message")
                if isinstance(message, dict):
                    content = message.get("content")
                    if isinstance(content, str):
                        return content
                    if isinstance(content, list):
                        texts = [str(item["text"]) for item in content if isinstance(item, dict) and item.get("text")]
                        if texts:
                            return "\n".join(texts)
            if isinstance(output.get("text"), str):
                return output["text"]
        return None

    @staticmethod
    def _mock_layout(prompt: str) -> str:
        """Deterministic landing-page tree used when running offline."""
        match = _CANVAS_PATTERN.search(prompt)
        width, height = (int(match.group(1)), int(match.group(2))) if match else (1440, 900)
        tree = {
            "type": "div",
            "id": "page_root",
            "bounds": {"top": 0, "left": 0, "width": 100, "height": 100},
            "styles": {"display": "flex", "flexDirection": "column", "backgroundColor": "#0f172a"},
            "children": [
                {
                    "type": "nav",
                    "id": "navbar",
                    "bounds": {"top": 0, "left": 0, "width": 100, "height": 10},
                    "styles": {"display": "flex", "justifyContent": "space-between", "padding": "16px 48px"},
                    "children": [
                        {
                            "type": "div",
                            "id": "brand_logo",
                            "bounds": {"top": 20, "left": 3, "width": 12, "height": 60},
                            "styles": {},
                            "visualCategory": "logo",
                        },
                        {
                            "type": "button",
                            "id": "nav_cta",
                            "bounds": {"top": 20, "left": 85, "width": 12, "height": 60},
                            "styles": {"backgroundColor": "#6366f1", "color": "#ffffff", "borderRadius": "9999px"},
                            "text": "Get started",
                            "iconName": "ArrowRight",
                            "svgPath": "M5 12h14M12 5l7 7-7 7",
                            "viewBox": "0 0 24 24",
                        },
                    ],
                },
                {
                    "type": "section",
                    "id": "hero",
                    "bounds": {"top": 10, "left": 0, "width": 100, "height": 60},
                    "styles": {
                        "backgroundImage": "linear-gradient(135deg, #667eea 0%, #764ba2 100%)",
                        "padding": "64px 48px",
                    },
                    "children": [
                        {
                            "type": "h1",
                            "id": "hero_title",
                            "bounds": {"top": 15, "left": 5, "width": 45, "height": 20},
                            "styles": {"color": "#ffffff", "fontSize": "56px", "fontWeight": "700"},
                            "text": "Build faster",
                        },
                        {
                            "type": "img",
                            "id": "hero_image",
                            "bounds": {"top": 10, "left": 55, "width": 40, "height": 80},
                            "styles": {"borderRadius": "16px"},
                            "visualCategory": "photograph",
                            "hasImage": True,
                        },
                    ],
                },
            ],
        }
        return json.dumps(
            {"canvas": {"width": width, "height": height, "background": "#0f172a"}, "dom_tree": tree, "assets_needed": []}
        )
