#!/usr/bin/env python3
"""Run live connectivity checks against Qwen, DeepSeek, and Jimeng services."""

from __future__ import annotations

import argparse
import asyncio
import sys
import textwrap
from pathlib import Path
from typing import Callable, Iterable

from uigen.config import PipelineConfig
from uigen.nodes.surveyor import parse_layout
from uigen.services.deepseek import DeepSeekClient
from uigen.services.jimeng import JimengClient
from uigen.services.qwen import QwenClient
from uigen.utils.files import mime_for_path, read_binary, write_text
from uigen.utils.imaging import measure
from uigen.utils.prompts import load_prompt


def run_qwen_test(api_key: str, api_url: str | None, image_path: str | None) -> str:
    if not image_path:
        raise ValueError("Qwen test requires a screenshot provided via --qwen-image.")
    path = Path(image_path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Qwen reference image not found: {image_path}")
    image = read_binary(path)
    width, height = measure(image)
    prompt = load_prompt(
        "surveyor",
        {"width": width, "height": height, "aspect_ratio": f"{width / height:.4f}" if height else "1.0000"},
    )
    client = QwenClient(api_key=api_key, api_url=api_url, use_mock=False)
    raw = asyncio.run(client.analyze_layout(image, mime_for_path(path), prompt))
    tree, _ = parse_layout(raw)
    return f"Parsed layout tree with {sum(1 for _ in tree.walk())} node(s)."


def run_deepseek_test(api_key: str, api_url: str | None, instructions: str) -> str:
    client = DeepSeekClient(api_key=api_key, api_url=api_url, use_mock=False)
    prompt = load_prompt("builder", {"sections": f"### INSTRUCTIONS\n{instructions}"})
    return asyncio.run(client.generate_code(prompt))


def run_jimeng_test(
    api_key: str,
    api_secret: str | None,
    api_url: str | None,
    output_path: str,
    prompt: str,
) -> Path:
    client = JimengClient(api_key=api_key, api_secret=api_secret, api_url=api_url, use_mock=False)
    image = asyncio.run(client.generate_image(prompt))
    target = Path(output_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(image)
    return target

def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    env = PipelineConfig.from_env()
    parser = argparse.ArgumentParser(
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=textwrap.dedent(
            """\
            Call the live vision, code and image services once each.
            Keys default to the QWEN_/DEEPSEEK_/JIMENG_ environment variables;
            a service without a key is reported as skipped.
            """
        ),
    )

    vision = parser.add_argument_group("vision (Qwen-VL)")
    vision.add_argument("--qwen-key", default=env.qwen_api_key)
    vision.add_argument("--qwen-url", default=env.qwen_api_url)
    vision.add_argument("--qwen-image", help="Screenshot analysed with the layout prompt.")

    code = parser.add_argument_group("code (DeepSeek)")
    code.add_argument("--deepseek-key", default=env.deepseek_api_key)
    code.add_argument("--deepseek-url", default=env.deepseek_api_url)
    code.add_argument(
        "--deepseek-instructions",
        default="A pricing page with three plan cards and a dark navigation bar.",
    )
    code.add_argument("--deepseek-out", default="outputs/live_check_App.txt")

    images = parser.add_argument_group("images (Jimeng)")
    images.add_argument("--jimeng-key", default=env.jimeng_api_key, help="AK, or AK:SK in one value.")
    images.add_argument("--jimeng-secret", default=env.jimeng_api_secret)
    images.add_argument("--jimeng-url", default=env.jimeng_api_url)
    images.add_argument(
        "--jimeng-prompt",
        default="Seamless brushed walnut wood texture for a user interface button, warm light.",
    )
    images.add_argument("--jimeng-out", default="assets/live_check_texture.png")

    return parser.parse_args(list(argv))


def _deepseek_check(args: argparse.Namespace) -> str:
    raw = run_deepseek_test(args.deepseek_key, args.deepseek_url, args.deepseek_instructions)
    return f"{len(raw)} characters written to {write_text(args.deepseek_out, raw)}"


def _jimeng_check(args: argparse.Namespace) -> str:
    path = run_jimeng_test(args.jimeng_key, args.jimeng_secret, args.jimeng_url, args.jimeng_out, args.jimeng_prompt)
    return f"texture written to {path}"


def main(argv: Iterable[str]) -> int:
    args = parse_args(argv)
    checks: list[tuple[str, str | None, Callable[[], str]]] = [
        ("Qwen", args.qwen_key, lambda: run_qwen_test(args.qwen_key, args.qwen_url, args.qwen_image)),
        ("DeepSeek", args.deepseek_key, lambda: _deepseek_check(args)),
        ("Jimeng", args.jimeng_key, lambda: _jimeng_check(args)),
    ]

    failures = 0
    for name, key, check in checks:
        if not key:
            print(f"[{name}] SKIPPED: no key configured")
            continue
        try:
            print(f"[{name}] OK: {check()}")
        except Exception as exc:  # noqa: BLE001 - report every failing service
            failures += 1
            print(f"[{name}] FAILED: {exc!r}")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
