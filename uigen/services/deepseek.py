"""DeepSeek client used for routing, structure design and code synthesis."""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, List, Optional, Tuple

from openai import APIError, AsyncOpenAI

from ..errors import ConfigurationError
from ..utils.prompts import load_prompt

logger = logging.getLogger(__name__)

_HEX_PATTERN = re.compile(r"#(?:[0-9a-fA-F]{6}|[0-9a-fA-F]{3})\b")
_ID_PATTERN = re.compile(r'"id":\s*"([^"]+)"')
_PLAN_BLOCK = re.compile(r"```json\s*(\{.*?\})\s*```", re.DOTALL)
_TSX_BLOCK = re.compile(r"```tsx\s*\n(.*?)```", re.DOTALL)
_DATA_ID_PATTERN = re.compile(r'data-id="([^"]+)"')


class DeepSeekClient:
    """Talks to the OpenAI-compatible DeepSeek API with a deterministic mock fallback."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: str = "deepseek-chat",
        use_mock: bool = True,
        timeout: int = 180,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url or "https://api.deepseek.com/v1"
        self._model = model
        self._use_mock = use_mock
        self._timeout = timeout
        self._client: AsyncOpenAI | None = None

    async def plan_route(self, prompt: str) -> str:
        if self._use_mock:
            return self._mock_route(prompt)
        return await self._complete(prompt, temperature=0.0, json_mode=True)

    async def design_structure(self, prompt: str) -> str:
        if self._use_mock:
            return json.dumps({"layout_strategy": "flex", "tree": []})
        return await self._complete(prompt, temperature=0.2, json_mode=True)

    async def generate_code(self, prompt: str, image: Optional[Tuple[bytes, str]] = None) -> str:
        if self._use_mock:
            return self._mock_code(prompt)
        return await self._complete(prompt, temperature=0.2, image=image)

    async def edit_code(self, prompt: str) -> str:
        if self._use_mock:
            return self._mock_edit(prompt)
        return await self._complete(prompt, temperature=0.1)

    async def _complete(
        self,
        prompt: str,
        *,
        temperature: float,
        image: Optional[Tuple[bytes, str]] = None,
        json_mode: bool = False,
    ) -> str:
        client = self._resolve_client()
        user_content: Any = prompt
        if image is not None:
            data, mime_type = image
            encoded = base64.b64encode(data).decode("utf-8")
            user_content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
            ]

        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": load_prompt("code_system").strip()},
                    {"role": "user", "content": user_content},
                ],
                temperature=temperature,
                **kwargs,
            )
        except APIError as err:
            raise RuntimeError(f"DeepSeek call failed: {err}") from err

        text = self._extract_text(response)
        if text is None:
            raise ValueError(f"DeepSeek API response missing content: {response}")
        logger.debug("DeepSeek response length: %d", len(text))
        return text

    def _resolve_client(self) -> AsyncOpenAI:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ConfigurationError("DeepSeek API key is missing; cannot call service.")
        self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._api_url, timeout=self._timeout)
        return self._client

    @staticmethod
    def _extract_text(response) -> str | None:
        """Extract assistant text content from OpenAI-compatible responses."""
        choices = getattr(response, "choices", None)
        if not choices and isinstance(response, dict):
            choices = response.get("choices")
        if isinstance(choices, list) and choices:
            choice = choices[0]
            message = getattr(choice, "message", None)
            if message is None and isinstance(choice, dict):
                message = choice.get("message")
            if message:
                content = getattr(message, "content", None)
                if content is None and isinstance(message, dict):
                    content = message.get("content")
                if isinstance(content, str):
                    return content
        return None

    @staticmethod
    def _mock_route(prompt: str) -> str:
        # Echo the heuristic plan embedded in the router prompt.
        match = _PLAN_BLOCK.search(prompt)
        return match.group(1) if match else "{}"

    @staticmethod
    def _mock_code(prompt: str) -> str:
        ids: List[str] = []
        for node_id in _ID_PATTERN.findall(prompt):
            if node_id not in ids:
                ids.append(node_id)
        colors: List[str] = []
        for color in _HEX_PATTERN.findall(prompt):
            if color.lower() not in colors:
                colors.append(color.lower())

        body = "\n".join(f'      <div data-id="{node_id}" className="{node_id}" />' for node_id in ids)
        if not body:
            body = '      <main data-id="app_root" className="app_root">Hello</main>'
        css_rules = [f".c{index} {{ color: {color}; }}" for index, color in enumerate(colors)]
        if colors:
            css_rules.insert(0, f"body {{ margin: 0; background: {colors[0]}; }}")
        return (
            "--- FILE: App.tsx ---\n"
            "```tsx\n"
            "import React from 'react';\n"
            "import './styles.css';\n\n"
            "export default function App() {\n"
            "  return (\n"
            "    <>\n"
            f"{body}\n"
            "    </>\n"
            "  );\n"
            "}\n"
            "```\n"
            "--- FILE: styles.css ---\n"
            "```css\n"
            + "\n".join(css_rules)
            + "\n```\n"
        )

    @staticmethod
    def _mock_edit(prompt: str) -> str:
        blocks = _TSX_BLOCK.findall(prompt)
        return blocks[-1] if blocks else ""
