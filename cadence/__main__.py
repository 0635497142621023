#!/usr/bin/env python3
"""
Cadence CLI Entrypoint

Commands:
    python -m cadence run     Run one session against an HTTP action endpoint
    python -m cadence demo    Simulate several sessions on a virtual clock
    python -m cadence --version

Configuration comes from CADENCE_* environment variables; command line
flags override them.

Usage:
    CADENCE_RESOLVER_URL=https://resolver.example.com/api.php \\
    python -m cadence run --target-ref https://example.com/posts/42 \\
        --count 10 --interval 5 --action-url 'https://api.example.com/{group_key}/share'
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import random
import sys
from typing import Any, Optional, Sequence

from cadence import __version__
from cadence.actions.local import (
    CallableActionExecutor,
    PatternGroupResolver,
    StaticGroupResolver,
)
from cadence.actions.protocols import AttemptOutcome
from cadence.api.handlers import build_router
from cadence.api.router import Request
from cadence.core.config import EngineConfig
from cadence.engine.service import SessionEngine, StartSessionRequest
from cadence.engine.timers import ManualTimerService
from cadence.observability.logging import LogLevel, StructuredLogger, setup_logging

log = StructuredLogger("cadence.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cadence",
        description="Repeating-action session engine",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run one session until it ends")
    run_parser.add_argument("--target-ref", required=True, help="Reference the action targets")
    run_parser.add_argument("--count", type=int, required=True, help="Target repetition count")
    run_parser.add_argument("--interval", type=int, required=True, help="Seconds between attempts")
    run_parser.add_argument("--group-key", help="Skip resolution and use this group key")
    run_parser.add_argument("--resolver-url", help="Override CADENCE_RESOLVER_URL")
    run_parser.add_argument(
        "--action-url",
        help="Override CADENCE_ACTION_URL ({group_key} and {target_ref} are substituted)",
    )
    run_parser.add_argument("--method", help="Override CADENCE_ACTION_METHOD")
    run_parser.add_argument(
        "--header", "-H",
        action="append",
        default=[],
        metavar="NAME:VALUE",
        help="Extra request header (repeatable)",
    )
    run_parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines instead of plain text",
    )

    # demo command
    demo_parser = subparsers.add_parser("demo", help="Simulate sessions on a virtual clock")
    demo_parser.add_argument("--sessions", type=int, default=3, help="Number of sessions")
    demo_parser.add_argument("--count", type=int, default=5, help="Target count per session")
    demo_parser.add_argument("--interval", type=int, default=2, help="Interval in seconds")
    demo_parser.add_argument(
        "--fail-rate",
        type=float,
        default=0.0,
        help="Probability that an attempt fails (default: 0.0)",
    )
    demo_parser.add_argument("--seed", type=int, default=7, help="Random seed")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments and run a command; returns the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        return _run_session(args)
    if args.command == "demo":
        return asyncio.run(_demo(args))
    parser.print_help()
    return 0


# =============================================================================
# RUN
# =============================================================================
def _parse_headers(raw: Sequence[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for item in raw:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"Header must look like NAME:VALUE, got {item!r}")
        headers[name.strip()] = value.strip()
    return headers


def _load_config(args: argparse.Namespace) -> EngineConfig:
    config_result = EngineConfig.from_env()
    if config_result.is_err():
        raise ValueError(config_result.error)
    config = config_result.unwrap()

    overrides: dict[str, Any] = {}
    if args.resolver_url:
        overrides["resolver_url"] = args.resolver_url
    if args.action_url:
        overrides["action_url"] = args.action_url
    if args.method:
        overrides["action_method"] = args.method.upper()
    if overrides:
        config = dataclasses.replace(
            config, http=dataclasses.replace(config.http, **overrides),
        )

    validation = config.validate()
    if validation.is_err():
        raise ValueError(validation.error)
    return config


def _run_session(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        headers = _parse_headers(args.header)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        LogLevel.parse(config.observability.log_level),
        json_output=args.json_logs,
    )
    try:
        return asyncio.run(_run_until_terminal(args, config, headers))
    except KeyboardInterrupt:
        return 130


async def _run_until_terminal(
    args: argparse.Namespace,
    config: EngineConfig,
    headers: dict[str, str],
) -> int:
    resolver = None
    if args.group_key is not None:
        resolver = StaticGroupResolver({}, default=args.group_key)
    elif not config.http.resolver_url:
        print("Either --group-key or a resolver URL is required", file=sys.stderr)
        return 2

    try:
        engine = SessionEngine.from_config(config, resolver=resolver)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    async with engine:
        result = await engine.start_session(StartSessionRequest(
            target_ref=args.target_ref,
            target_count=args.count,
            interval_seconds=args.interval,
            action_context={"headers": headers} if headers else {},
            group_key=args.group_key,
        ))
        if result.is_err():
            print(f"Could not start session: {result.error}", file=sys.stderr)
            return 1

        session_id = result.unwrap()
        log.info("Session started", session_id=session_id)
        try:
            while True:
                await asyncio.sleep(args.interval)
                view = engine.get_session(session_id).unwrap()
                log.info(
                    "Session progress",
                    session_id=session_id,
                    state=view.state.value,
                    completed=view.completed_count,
                    target=view.target_count,
                    progress_percent=view.progress_percent,
                )
                if view.state.is_terminal:
                    break
        except asyncio.CancelledError:
            await engine.stop_session(session_id)
            raise

        view = engine.get_session(session_id).unwrap()
        print(json.dumps(view.to_dict(), indent=2))
        return 0 if view.state.value == "completed" else 1


# =============================================================================
# DEMO
# =============================================================================
async def _demo(args: argparse.Namespace) -> int:
    """Drive several sessions on a ManualTimerService, one virtual second at a time."""
    print("\n" + "=" * 60)
    print(f"Cadence {__version__} - Virtual Clock Demo")
    print("=" * 60 + "\n")

    rng = random.Random(args.seed)

    async def attempt(prepared: Any) -> AttemptOutcome:
        if rng.random() < args.fail_rate:
            return AttemptOutcome.failed("simulated failure")
        return AttemptOutcome.ok()

    clock = ManualTimerService()
    engine = SessionEngine(
        PatternGroupResolver(r"/posts/(?P<group>\w+)"),
        CallableActionExecutor(attempt),
        timer_service=clock,
    )
    router = build_router(engine)

    async with engine:
        for i in range(args.sessions):
            body = json.dumps({
                "target_ref": f"https://example.com/posts/G{i % 2 + 1}?n={i}",
                "target_count": args.count,
                "interval_seconds": args.interval,
            }).encode()
            response = await router.dispatch(Request.from_raw("POST", "/api/sessions", body=body))
            data = response.data()
            if response.status != 200:
                print(f"Start failed: {data['error']}")
                return 1
            print(f"Started {data['session_id'][:8]} group={data['session']['group_key']}")

        horizon = args.count * args.interval + 1
        for _ in range(horizon):
            clock.advance(1)
            await engine.quiesce()

        print(f"\nAfter {horizon}s of virtual time:")
        for view in engine.list_sessions():
            print(
                f"  {view.session_id[:8]}  {view.state.value:<10} "
                f"{view.completed_count}/{view.target_count} ({view.progress_percent}%)"
                + (f"  last_error={view.last_error}" if view.last_error else "")
            )

        response = await router.dispatch(Request.from_raw("GET", "/api/find-by-group/G1"))
        print(f"\nGroup G1: {response.data()['count']} sessions")
        response = await router.dispatch(Request.from_raw("GET", "/health"))
        print(f"Health: {json.dumps(response.data()['sessions'])}")

    print("\nDemo complete")
    print("=" * 60 + "\n")
    return 0


def run() -> None:
    """Synchronous entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
