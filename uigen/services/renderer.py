"""Headless rendering of generated React files via Playwright."""

from __future__ import annotations

import json
import logging
import re
from typing import Mapping, Sequence

from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..errors import RenderFailure
from ..types import AppFile, CanvasConfig
from ..utils.imaging import parse_hex_color, to_png

logger = logging.getLogger(__name__)

_IMPORT_LINE = re.compile(r"^\s*import\s[^;]*;?\s*$", re.MULTILINE)
_EXPORT_DEFAULT_DECL = re.compile(r"export\s+default\s+(function|class)\s+")
_EXPORT_DEFAULT_EXPR = re.compile(r"^\s*export\s+default\s+(\w+)\s*;?\s*$", re.MULTILINE)
_FIRST_HEX = re.compile(r"#[0-9a-fA-F]{6}\b")

REACT_UMD = "https://unpkg.com/react@18/umd/react.production.min.js"
REACT_DOM_UMD = "https://unpkg.com/react-dom@18/umd/react-dom.production.min.js"
BABEL_STANDALONE = "https://unpkg.com/@babel/standalone/babel.min.js"

_HARNESS = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<style>html, body {{ margin: 0; padding: 0; }}
{css}</style>
<script src="{react}"></script>
<script src="{react_dom}"></script>
<script src="{babel}"></script>
</head>
<body>
<div id="root"></div>
<script>
window.assets = {assets};
(function () {{
  try {{
    var source = {source};
    var compiled = Babel.transform(source, {{
      filename: "App.tsx",
      presets: [["typescript", {{ isTSX: true, allExtensions: true }}], "react"]
    }}).code;
    new Function("React", "ReactDOM", "assets", compiled)(React, ReactDOM, window.assets);
  }} catch (err) {{
    window.__uigenError = String(err && err.stack || err);
  }}
  window.__uigenRendered = true;
}})();
</script>
</body>
</html>
"""


class PlaywrightRenderer:
    """Renders ``App.tsx`` + ``styles.css`` in headless Chromium and screenshots the viewport."""

    def __init__(self, use_mock: bool = True, timeout_ms: int = 30000) -> None:
        self._use_mock = use_mock
        self._timeout_ms = timeout_ms

    async def render(self, files: Sequence[AppFile], assets: Mapping[str, str], canvas: CanvasConfig) -> bytes:
        sources = {item.path.rsplit("/", 1)[-1]: item.content for item in files}
        app_source = sources.get("App.tsx")
        if not app_source:
            raise RenderFailure("No App.tsx to render.")
        css = sources.get("styles.css", "")

        if self._use_mock:
            return self._mock_screenshot(css, canvas)

        html = build_harness(app_source, css, assets)
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch()
                try:
                    page = await browser.new_page(viewport={"width": canvas.width, "height": canvas.height})
                    await page.set_content(html, wait_until="networkidle", timeout=self._timeout_ms)
                    await page.wait_for_function("window.__uigenRendered === true", timeout=self._timeout_ms)
                    error = await page.evaluate("window.__uigenError || null")
                    if error:
                        raise RenderFailure(f"Generated code failed to render: {error}")
                    return await page.screenshot(full_page=False, type="png")
                finally:
                    await browser.close()
        except PlaywrightError as err:
            raise RenderFailure(f"Headless render failed: {err}") from err

    @staticmethod
    def _mock_screenshot(css: str, canvas: CanvasConfig) -> bytes:
        match = _FIRST_HEX.search(css)
        color = parse_hex_color(match.group(0)) if match else None
        width, height = min(canvas.width, 640), min(canvas.height, 640)
        return to_png(Image.new("RGB", (max(1, width), max(1, height)), color or (255, 255, 255)))


def build_harness(app_source: str, css: str, assets: Mapping[str, str] | None = None) -> str:
    """Return a standalone HTML page that mounts the generated ``App`` component.

    The asset map is exposed to the component as a global ``assets`` object.
    """
    script = _IMPORT_LINE.sub("", app_source)
    script = _EXPORT_DEFAULT_DECL.sub(r"\1 ", script)
    script = _EXPORT_DEFAULT_EXPR.sub("", script)
    script = (
        "const { useState, useEffect, useRef, useMemo, useCallback, Fragment } = React;\n"
        + script
        + "\nReactDOM.createRoot(document.getElementById('root')).render(React.createElement(App));\n"
    )
    return _HARNESS.format(
        css=css.replace("</style>", ""),
        react=REACT_UMD,
        react_dom=REACT_DOM_UMD,
        babel=BABEL_STANDALONE,
        source=json.dumps(script).replace("</", "<\\/"),
        assets=json.dumps(dict(assets or {})).replace("</", "<\\/"),
    )
