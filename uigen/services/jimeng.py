"""即梦 (Jimeng) image generation client used for decorative assets."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Callable, Dict, Iterator, Optional, Tuple
from urllib.parse import urlparse

import requests
from volcengine.visual.VisualService import VisualService

from ..errors import ConfigurationError
from ..utils.files import b64encode
from ..utils.imaging import color_from_text, gradient_png

logger = logging.getLogger(__name__)

JIMENG_T2I_REQ_KEY = "jimeng_t2i_v30"
JIMENG_I2I_REQ_KEY = "jimeng_i2i_v30"
DEFAULT_ASSET_SIZE = (1024, 1024)
FAILED_STATES = {"not_found", "expired", "failed", "error"}
URL_KEYS = {"url", "image_url", "image_urls", "urls"}
OK_CODES = {"0", "10000"}


class JimengClient:
    """Handles communication with 即梦的文生图 / 图生图接口.

    When ``use_mock`` is True the client paints deterministic gradients with
    Pillow so the pipeline stays testable without external services.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        api_url: Optional[str] = None,
        use_mock: bool = True,
        timeout: int = 120,
        poll_interval: float = 2.0,
        max_poll_attempts: int = 150,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._api_url = api_url
        self._use_mock = use_mock
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts
        self._visual_service: VisualService | None = None

        if not self._api_secret and self._api_key and ":" in self._api_key:
            ak, sk = self._api_key.split(":", 1)
            self._api_key, self._api_secret = ak, sk

    async def generate_image(self, prompt: str, reference: Optional[bytes] = None) -> bytes:
        """Generate an image for ``prompt``, optionally guided by ``reference``."""
        if self._use_mock:
            return self._mock_image(prompt, reference)
        form = self._build_form(prompt, reference)
        return await asyncio.to_thread(self._generate_blocking, form)

    def _generate_blocking(self, form: Dict[str, Any]) -> bytes:
        response = self._call_visual_service(form)
        blob = self._extract_base64_blob(response)
        if blob:
            return base64.b64decode(blob)
        media_url = self._extract_media_url(response)
        if media_url:
            return self._download_binary(media_url)
        raise ValueError(f"Jimeng API response missing image payload: {response}")

    @staticmethod
    def _build_form(prompt: str, reference: Optional[bytes]) -> Dict[str, Any]:
        width, height = DEFAULT_ASSET_SIZE
        form: Dict[str, Any] = {
            "req_key": JIMENG_I2I_REQ_KEY if reference else JIMENG_T2I_REQ_KEY,
            "prompt": prompt,
            "seed": -1,
            "width": width,
            "height": height,
            "return_url": True,
        }
        if reference:
            form["binary_data_base64"] = [b64encode(reference)]
        else:
            form["use_pre_llm"] = True
        return form

    def _call_visual_service(self, form: Dict[str, Any]) -> Dict[str, Any]:
        service = self._visual()
        ticket = _raise_for_error(service.cv_sync2async_submit_task(form))
        task_id = _first_string(ticket, ("task_id", "TaskId"))
        if not task_id:
            raise ValueError(f"Jimeng submit returned no task_id: {ticket}")
        return self._poll(service.cv_sync2async_get_result, {"req_key": form["req_key"], "task_id": task_id})

    def _poll(self, fetch: Callable[[Dict[str, Any]], Dict[str, Any]], query: Dict[str, Any]) -> Dict[str, Any]:
        for attempt in range(1, self._max_poll_attempts + 1):
            result = _raise_for_error(fetch(query))
            status = (_first_string(result, ("status",)) or "").lower()
            ready = bool(self._extract_base64_blob(result) or self._extract_media_url(result))
            logger.debug("Jimeng task %s attempt %d: status=%s ready=%s", query["task_id"], attempt, status, ready)
            if status in FAILED_STATES:
                reason = _first_string(result, ("message", "error_message")) or "task failed"
                raise RuntimeError(f"Jimeng task {query['task_id']} ended as {status}: {reason}")
            if ready:
                return result
            time.sleep(self._poll_interval)
        raise TimeoutError(f"Jimeng task {query['task_id']} not ready after {self._max_poll_attempts} polls.")

    def _visual(self) -> VisualService:
        if not self._api_key or not self._api_secret:
            raise ConfigurationError("Jimeng API key/secret is missing; cannot call real service.")
        if self._visual_service is not None:
            return self._visual_service
        service = VisualService()
        service.set_ak(self._api_key)
        service.set_sk(self._api_secret)
        if self._api_url:
            endpoint = urlparse(self._api_url)
            if endpoint.scheme:
                service.set_scheme(endpoint.scheme)
            if endpoint.netloc or endpoint.path:
                service.set_host(endpoint.netloc or endpoint.path)
        service.set_connection_timeout(self._timeout)
        service.set_socket_timeout(self._timeout)
        self._visual_service = service
        return service

    @staticmethod
    def _extract_base64_blob(response: Dict[str, Any]) -> Optional[str]:
        for key, value in _fields(response):
            key = key.lower()
            if "base64" in key or key.endswith("_b64"):
                blob = _first_text(value)
                if blob:
                    return blob
        return None

    @staticmethod
    def _extract_media_url(response: Dict[str, Any]) -> Optional[str]:
        for key, value in _fields(response):
            if key.lower() in URL_KEYS:
                url = _first_text(value)
                if url:
                    return url
        return None

    def _download_binary(self, url: str) -> bytes:
        response = requests.get(url, timeout=self._timeout)
        response.raise_for_status()
        return response.content

    @staticmethod
    def _mock_image(prompt: str, reference: Optional[bytes]) -> bytes:
        start = color_from_text(prompt)
        end = color_from_text(prompt[::-1] + ("ref" if reference else ""))
        return gradient_png(256, 256, start, end)


def _fields(response: Any) -> Iterator[Tuple[str, Any]]:
    """Yield every (key, value) pair of the nested dicts inside a volcengine reply."""
    pending = [response]
    while pending:
        item = pending.pop(0)
        if isinstance(item, dict):
            for key, value in item.items():
                yield str(key), value
                pending.append(value)
        elif isinstance(item, list):
            pending.extend(item)


def _first_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, list):
        return next((item for item in value if isinstance(item, str) and item), None)
    return None


def _first_string(response: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    for key, value in _fields(response):
        if key in keys and isinstance(value, str) and value:
            return value
    return None


def _raise_for_error(response: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(response, dict):
        return response
    code = response.get("code", response.get("Code"))
    if code is not None and str(code) not in OK_CODES:
        raise RuntimeError(f"Jimeng error {code}: {response.get('message') or response.get('Message') or 'unknown'}")
    error = (response.get("ResponseMetadata") or {}).get("Error")
    if isinstance(error, dict):
        error_code = str(error.get("Code") or "").strip()
        if error_code.lower() not in {"", "0", "ok", "success"}:
            raise RuntimeError(f"Jimeng error {error_code}: {error.get('Message') or ''}")
    return response
