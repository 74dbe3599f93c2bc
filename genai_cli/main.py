"""genai CLI: bootstrap the application and report module status."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from genai_core import __version__
from genai_core.app import AppStatus, GenAIApp
from genai_core.builtins import builtin_modules
from genai_core.errors import ServiceNotRegisteredError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="genai", description="genai runtime tools")
    parser.add_argument("--version", action="version", version=f"genai v{__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    commands = parser.add_subparsers(dest="command")

    status = commands.add_parser("status", help="start every module and report the outcome")
    status.add_argument("--json", action="store_true", help="print the status as JSON")

    commands.add_parser("modules", help="list the builtin modules")

    retry = commands.add_parser("retry", help="start the app, then reinitialize one module")
    retry.add_argument("name", help="module name")
    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    start_dir: Path | str | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "modules":
        return _print_modules()
    if args.command == "status":
        return asyncio.run(_status(start_dir, as_json=args.json))
    if args.command == "retry":
        return asyncio.run(_retry(start_dir, args.name))
    parser.print_help()
    return 0


def _print_modules() -> int:
    for spec in builtin_modules():
        dependencies = ", ".join(spec.dependencies) or "-"
        print(f"{spec.name:<20} {spec.tier.value:<8} {dependencies}")
    return 0


async def _status(start_dir: Path | str | None, *, as_json: bool) -> int:
    app = GenAIApp(start_dir=start_dir)
    try:
        status = await app.bootstrap()
    finally:
        await app.shutdown()
    if as_json:
        print(json.dumps(status.as_dict(), indent=2))
    else:
        _print_status(status)
    return 0 if status.ready else 1


async def _retry(start_dir: Path | str | None, name: str) -> int:
    app = GenAIApp(start_dir=start_dir)
    try:
        await app.bootstrap()
        try:
            module = await app.retry(name)
        except ServiceNotRegisteredError as exc:
            print(str(exc))
            return 1
    finally:
        await app.shutdown()
    record = app.orchestrator.get_status().records[name]
    line = f"{name}: {record.status.value}"
    if record.error:
        line += f" ({record.error})"
    print(line)
    return 0 if module is not None else 1


def _print_status(status: AppStatus) -> None:
    orchestrator = status.orchestrator
    print(f"workspace: {status.workspace.root}")
    print(f"phase: {orchestrator.phase.value}")
    print(f"duration: {orchestrator.duration * 1000:.0f}ms")
    for name, record in orchestrator.records.items():
        line = f"  {name:<20} {record.status.value}"
        if record.fallback_active:
            line += " [stand-in]"
        if record.error:
            line += f" error={record.error}"
        elif record.detail:
            line += f" ({record.detail})"
        print(line)
    for notice in status.notices:
        print(notice)
