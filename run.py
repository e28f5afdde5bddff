"""Command-line entry point for the UI code generator."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from uigen.errors import UIGenError
from uigen.logging_config import setup_logger
from uigen.pipeline import UICodeGenerator
from uigen.types import FileInput, PipelineInput
from uigen.utils.files import b64encode, mime_for_path, read_binary, write_json, write_text


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Generate React code from screenshots and instructions.")
    parser.add_argument("instructions", help="What to build or change.")
    parser.add_argument(
        "files",
        nargs="*",
        help="Reference screenshots or screen recordings.",
    )
    parser.add_argument("--code", help="Path to an existing App.tsx to edit or merge into.")
    parser.add_argument(
        "--out",
        default="outputs",
        help="Directory receiving the generated files.",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Overall time limit for the run (seconds).",
    )
    parser.add_argument("--verbose", action="store_true", help="Log node inputs and outputs.")
    return parser.parse_args(argv)


def _load_file(raw_path: str) -> FileInput:
    path = Path(raw_path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Reference file not found: {raw_path}")
    return FileInput(filename=path.name, mime_type=mime_for_path(path), base64=b64encode(read_binary(path)))


def main(argv: list[str] | None = None) -> int:
    """Entry point used by ``python run.py``."""
    args = parse_args(argv if argv is not None else sys.argv[1:])
    setup_logger("uigen", level=logging.DEBUG if args.verbose else logging.INFO)

    request = PipelineInput(
        files=tuple(_load_file(item) for item in args.files),
        instructions=args.instructions,
        current_code=Path(args.code).read_text(encoding="utf-8") if args.code else None,
    )
    try:
        result = UICodeGenerator().run(request, deadline_sec=args.deadline)
    except (UIGenError, TimeoutError) as err:
        print(f"Generation failed: {err}", file=sys.stderr)
        return 1

    out_dir = Path(args.out)
    for item in result.files:
        write_text(out_dir / item.path.lstrip("/"), item.content)
    write_json(out_dir / "result.json", result.to_dict())

    print(f"Generation completed in mode {result.strategy.mode.value}.")
    for warning in result.warnings:
        print(f"  warning: {warning}")
    print(f"Files written to {out_dir}/src; run logs are stored under runs/")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
