"""
CLI entrypoint for tcpping.

Usage: tcpping hostname [port] [-c COUNT] [--json-out PATH] [--log-file PATH]

Resolves the target once, then opens and closes a fresh TCP connection about
once per second until interrupted (SIGINT/SIGTERM) or COUNT attempts were
made, and prints a ping-style summary. Exit status is 1 when no hostname is
given or it cannot be resolved, 0 otherwise.
"""

import sys
import argparse
import signal
import json
import logging
import time
from pathlib import Path
from typing import Optional, Sequence

from tcpping.config import CONFIG, apply_overrides
from tcpping.exceptions import ConfigError, ResolutionError
from tcpping.logging_utils import METRICS, get_logger, configure_file_logger, set_console_level
from tcpping.resolver import resolve
from tcpping.session import CancellationToken, SessionController

logger = get_logger("tcpping")


def write_json_report(json_path: Optional[str], payload: dict, *, quiet: bool = False) -> None:
    """Persist the summary payload to JSON if a path is provided."""

    if not json_path:
        return

    try:
        path = Path(json_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        if not quiet:
            print(f"Wrote JSON report to {path}", file=sys.stderr)
    except OSError as exc:
        print(f"Warning: Failed to write JSON output to {json_path}: {exc}", file=sys.stderr)


def install_signal_handlers(token: CancellationToken) -> dict:
    """Route SIGINT/SIGTERM to the cancellation token; return previous handlers."""

    def signal_handler(signum, frame):
        token.cancel()

    previous = {signal.SIGINT: signal.signal(signal.SIGINT, signal_handler)}
    if hasattr(signal, "SIGTERM"):
        previous[signal.SIGTERM] = signal.signal(signal.SIGTERM, signal_handler)
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcpping",
        description="Measure TCP connection-establishment latency to a host",
    )
    parser.add_argument("hostname", nargs="?", help="Target hostname or address")
    parser.add_argument("port", nargs="?",
                        help=f"Target TCP port (default: {CONFIG['DEFAULT_PORT']})")
    parser.add_argument("-c", "--count", type=int,
                        help="Stop after COUNT attempts (default: run until interrupted)")
    parser.add_argument("--json-out",
                        help="Optional path to write the summary JSON on shutdown")
    parser.add_argument("--log-file",
                        help="Also write structured JSON logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Emit per-attempt structured log records on stderr")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Suppress informational prints (warnings/errors still shown)")
    return parser


def _parse_port(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        port = int(value)
    except ValueError:
        raise ConfigError(f"invalid port: {value}")
    if not (1 <= port <= 65535):
        raise ConfigError(f"port must be 1-65535, got {port}")
    return port


def _configure_logging(args) -> None:
    if args.verbose:
        console_level = logging.INFO
    elif args.quiet:
        console_level = logging.ERROR
    else:
        console_level = logging.WARNING
    set_console_level(console_level, logger)
    # the file gets every INFO record; stderr keeps its own threshold
    logger.setLevel(logging.INFO if args.log_file else console_level)
    if args.log_file:
        path = configure_file_logger(args.log_file, logger)
        logger.info("file logging enabled", extra={"path": str(path)})


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.hostname:
        parser.print_usage()
        return 1

    try:
        cfg = apply_overrides(CONFIG, {"COUNT": args.count})
        port = _parse_port(args.port, cfg["DEFAULT_PORT"])
    except ConfigError as exc:
        print(f"tcpping: {exc}", file=sys.stderr)
        return 1

    _configure_logging(args)

    try:
        endpoint = resolve(args.hostname, port)
    except ResolutionError as exc:
        print(f"tcpping: {exc}", file=sys.stderr)
        logger.error("resolution failed", extra={"hostname": exc.hostname, "code": exc.code,
                                                  "reason": exc.reason})
        return 1

    token = CancellationToken()
    controller = SessionController(endpoint, token=token, cfg=cfg)
    previous = install_signal_handlers(token)
    try:
        summary = controller.run()
    finally:
        restore_signal_handlers(previous)

    print(summary.format(), flush=True)

    payload = {
        "target": str(endpoint),
        "summary": summary.to_dict(),
        "metrics": METRICS.snapshot(),
        "ts_stop_ns": time.time_ns(),
    }
    write_json_report(args.json_out, payload, quiet=args.quiet)
    return 0


if __name__ == "__main__":
    sys.exit(main())
