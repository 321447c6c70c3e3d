#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Command line access to the ownership decision.

    python -m object_distribution owner --max-tasks 4 --format "{{topic}}-{{partition}}-{{start_offset}}" t-5-0
    ls objects | python -m object_distribution plan --max-tasks 4 --format "..." [--task-id 2]
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, TextIO

from .config import Config
from .errors import DistributionError, InvalidConfiguration
from .logger import StructuredLogger
from .planner import filter_owned, plan_assignment
from .resolver import DistributionResolver

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID_CONFIGURATION = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="object_distribution", description="Resolve which task owns an object.")
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--max-tasks", type=int, default=None, help="fleet size (distribution.max_tasks)")
    common.add_argument("--format", dest="expected_format", default=None, help="expected object format (distribution.expected_format)")
    common.add_argument("--type", dest="distribution_type", default=None, help="partition | object_hash (distribution.type)")

    sub = parser.add_subparsers(dest="command", required=True)
    owner = sub.add_parser("owner", parents=[common], help="print the owning task of each descriptor")
    owner.add_argument("descriptors", nargs="+")

    plan = sub.add_parser("plan", parents=[common], help="plan ownership for a listing of descriptors")
    plan.add_argument("--input", type=Path, default=None, help="file with one descriptor per line (default: stdin)")
    plan.add_argument("--task-id", type=int, default=None, help="only print the descriptors owned by this task")
    plan.add_argument("--progress", action="store_true", help="show a progress bar on stderr")
    return parser


def _load_config(args: argparse.Namespace) -> Config:
    overrides = {
        "distribution.max_tasks": args.max_tasks,
        "distribution.expected_format": args.expected_format,
        "distribution.type": args.distribution_type,
    }
    return Config.load(args.config, cli_overrides=overrides)


def _bootstrap(args: argparse.Namespace) -> DistributionResolver:
    try:
        cfg = _load_config(args)
        StructuredLogger.configure_from_config(cfg)
    except (OSError, ValueError, TypeError) as exc:
        # Unreadable or malformed files, bad YAML and bad logger sinks.
        raise InvalidConfiguration(str(exc)) from exc
    return DistributionResolver.from_config(cfg)


def _read_descriptors(handle: TextIO) -> List[str]:
    return [line.strip() for line in handle if line.strip()]


def _emit(out: TextIO, payload: Dict[str, Any]) -> None:
    out.write(json.dumps(payload, ensure_ascii=False) + "\n")


def _run_owner(resolver: DistributionResolver, descriptors: Iterable[str], out: TextIO) -> int:
    status = EXIT_OK
    for descriptor in descriptors:
        try:
            owner = resolver.owner_of_descriptor(descriptor)
        except DistributionError as exc:
            _emit(out, {"descriptor": descriptor, "error": type(exc).__name__, "message": str(exc)})
            status = EXIT_ERROR
            continue
        _emit(out, {"descriptor": descriptor, "owner": owner, "max_tasks": resolver.max_tasks})
    return status


def _run_plan(resolver: DistributionResolver, args: argparse.Namespace, stdin: TextIO, out: TextIO) -> int:
    if args.input is not None:
        with args.input.open("r", encoding="utf-8") as handle:
            descriptors = _read_descriptors(handle)
    else:
        descriptors = _read_descriptors(stdin)
    if args.task_id is not None:
        for descriptor in filter_owned(resolver, args.task_id, descriptors):
            out.write(descriptor + "\n")
        return EXIT_OK
    plan = plan_assignment(resolver, descriptors, show_progress=args.progress)
    _emit(out, plan.summary())
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None, *, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> int:
    args = build_parser().parse_args(argv)
    try:
        resolver = _bootstrap(args)
    except InvalidConfiguration as exc:
        sys.stderr.write(f"invalid configuration: {exc}\n")
        return EXIT_INVALID_CONFIGURATION
    if args.command == "owner":
        return _run_owner(resolver, args.descriptors, stdout)
    try:
        return _run_plan(resolver, args, stdin, stdout)
    except (DistributionError, OSError) as exc:
        sys.stderr.write(f"{type(exc).__name__}: {exc}\n")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
