from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys

from account_reconciler.adapters.accounts_api.instrumentation import InMemoryMetricsSink
from account_reconciler.config import Settings
from account_reconciler.domain.models import ConfigurationError
from account_reconciler.logging_utils import setup_logging
from account_reconciler.observability import configure_telemetry
from account_reconciler.security.redaction import redact_mapping
from account_reconciler.services.gateway_factory import (
    build_account_gateway,
    build_policy_registry,
    build_worker,
)

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="account-reconciler",
        description="Reconcile accounts on the accounts API against their lifecycle policy.",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Optional dotenv file to read settings from (environment variables still win)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the reconciliation worker")
    run_parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    run_parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Stop after this many cycles (default: run until interrupted)",
    )
    run_parser.add_argument(
        "--poll-interval-seconds",
        type=float,
        default=None,
        help="Override POLL_INTERVAL_SECONDS",
    )

    subparsers.add_parser("health", help="List account ids once to check API connectivity")
    subparsers.add_parser("config", help="Print the effective configuration")

    args = parser.parse_args(argv)
    try:
        settings = _load_settings(args.env_file)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    setup_logging(settings.log_level)
    configure_telemetry(settings.telemetry_config())
    logger.info(
        "runtime_prepared",
        extra={"extra": {"command": args.command, "pid": os.getpid()}},
    )

    if args.command == "config":
        return run_print_config(settings)

    try:
        if args.command == "health":
            return asyncio.run(run_health(settings))

        max_cycles = 1 if args.once else args.max_cycles
        if max_cycles is not None and max_cycles < 1:
            print("max-cycles must be >= 1", file=sys.stderr)
            return 2
        if args.poll_interval_seconds is not None:
            if args.poll_interval_seconds <= 0:
                print("poll-interval-seconds must be > 0", file=sys.stderr)
                return 2
            settings = settings.model_copy(
                update={"poll_interval_seconds": args.poll_interval_seconds}
            )
        return asyncio.run(run_worker(settings, max_cycles=max_cycles))
    except ConfigurationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        logger.info("worker_interrupted", extra={"extra": {"reason": "keyboard_interrupt"}})
        print(f"{args.command}: interrupted, shutting down cleanly")
        return 0


def _load_settings(env_file: str | None) -> Settings:
    if env_file in (None, ""):
        return Settings()
    return Settings(_env_file=env_file)


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers; Ctrl+C still
            # surfaces as KeyboardInterrupt.
            continue


async def run_worker(
    settings: Settings,
    *,
    max_cycles: int | None = None,
    stop: asyncio.Event | None = None,
) -> int:
    stop = stop or asyncio.Event()
    _install_stop_handlers(stop)
    registry = build_policy_registry(settings)
    gateway = build_account_gateway(settings, registry)
    worker = build_worker(settings, gateway)
    try:
        await worker.run(stop, max_cycles=max_cycles)
    finally:
        await gateway.close()
    return 0


async def run_health(settings: Settings) -> int:
    metrics = InMemoryMetricsSink()
    gateway = build_account_gateway(settings, build_policy_registry(settings), metrics=metrics)
    try:
        listed = await gateway.list_ids()
    finally:
        await gateway.close()
    print(f"Accounts API: {settings.accounts_api_base_url}{settings.accounts_api_prefix}")
    if listed.is_success:
        print(f"Accounts API health: OK ({len(listed.payload or [])} accounts)")
    else:
        print(f"Accounts API health: FAIL ({listed.kind.value}: {listed.detail})")
    print(f"Attempts: {json.dumps(metrics.snapshot(), sort_keys=True)}")
    return 0 if listed.is_success else 1


def run_print_config(settings: Settings) -> int:
    payload = settings.model_dump(mode="json")
    payload["accounts_api_headers"] = redact_mapping(settings.accounts_api_headers)
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
