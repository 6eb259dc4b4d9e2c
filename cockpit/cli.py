from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from .autonomy import AutonomyError, AutonomyRunner, summarize_results
from .service import HeadlessService

# Small CLI for smoke tests: run commands locally, do one completion, or serve.


def _cmd_run(args: argparse.Namespace) -> int:
    runner = AutonomyRunner(args.root, command_timeout=args.timeout)
    try:
        results = runner.run_commands(args.commands, args.cwd)
    except AutonomyError as exc:
        print(f"Rejected: {exc}", file=sys.stderr)
        return 2
    print(json.dumps({"results": results, "state": runner.get_state()}, indent=2))
    _, failed = summarize_results(results)
    return 1 if failed else 0


def _cmd_complete(args: argparse.Namespace) -> int:
    svc = HeadlessService.from_path(args.config)
    print(svc.complete(args.prompt, system=args.system, adapter_name=args.adapter))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cockpit", description="Cockpit coding server tools")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run shell commands through the autonomy runner")
    run.add_argument("--root", default=None, help="Workspace root (default: cwd)")
    run.add_argument("--cwd", default=None, help="Directory inside the root to run in")
    run.add_argument("--timeout", type=float, default=120.0, help="Per-command timeout in seconds")
    run.add_argument("commands", nargs="+", help="Commands, executed in order")
    run.set_defaults(func=_cmd_run)

    complete = sub.add_parser("complete", help="One completion through the adapter config")
    complete.add_argument("--config", default=None, help="Path to adapters.json")
    complete.add_argument("--adapter", default=None, help="Adapter name override")
    complete.add_argument("--system", default=None, help="System prompt")
    complete.add_argument("--prompt", required=True, help="User prompt")
    complete.set_defaults(func=_cmd_complete)

    serve = sub.add_parser("serve", help="Start the HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3030)
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")
    serve.set_defaults(func=_cmd_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=os.environ.get("COCKPIT_LOG_LEVEL", "WARNING").upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
