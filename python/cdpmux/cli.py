"""cdpmux command-line protocol runner."""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
from pathlib import Path
from typing import List

from .repl import ProtocolREPL
from .runner import emit_event, run_lines
from .session import InspectorSession, SessionConfig, SessionError
from .transport import TransportConfig, TransportError

LOG = logging.getLogger("cdpmux.cli")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send inspector protocol commands over a WebSocket")
    parser.add_argument("--url", default=os.environ.get("CDPMUX_URL", TransportConfig.url), help="Inspector WebSocket URL")
    parser.add_argument("--log-level", default=os.environ.get("CDPMUX_LOG", "INFO"), help="Logging level (default INFO)")
    parser.add_argument("--json", action="store_true", help="Emit JSON output")
    parser.add_argument("--timeout", type=float, default=SessionConfig.command_timeout, help="Per-command timeout in seconds")
    parser.add_argument("--ready-event", default=SessionConfig.ready_event, help="Handshake event to wait for")
    parser.add_argument("--ready-timeout", type=float, default=SessionConfig.ready_timeout, help="Seconds to wait for the handshake")
    parser.add_argument("--no-wait-ready", action="store_true", help="Do not wait for the handshake event")
    parser.add_argument("--enable", action="append", default=[], metavar="DOMAIN", help="Enable a domain after connecting (repeatable)")
    parser.add_argument("--listen", metavar="PATTERN", help="Print events whose method matches this regex")
    parser.add_argument(
        "-c",
        "--command",
        action="append",
        default=[],
        help="Execute a command non-interactively, e.g. 'Runtime.evaluate {\"expression\": \"1+1\"}' (repeatable)",
    )
    parser.add_argument("--script", type=Path, help="File with one command per line ('#' starts a comment)")
    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    listen = None
    if args.listen:
        try:
            listen = re.compile(args.listen)
        except re.error as exc:
            parser.error(f"invalid --listen pattern: {exc}")

    session = InspectorSession(
        transport_config=TransportConfig(url=args.url),
        session_config=SessionConfig(
            ready_event=args.ready_event,
            wait_for_ready=not args.no_wait_ready,
            ready_timeout=args.ready_timeout,
            command_timeout=args.timeout,
        ),
    )
    if listen is not None:
        session.bus.subscribe(listen, lambda topic, frame: emit_event(topic, frame, json_output=args.json))
    try:
        session.open()
    except (SessionError, TransportError) as exc:
        LOG.debug("session open failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 2

    try:
        status = 0
        if args.enable:
            try:
                session.enable(args.enable)
            except Exception as exc:
                print(f"error: enable failed: {exc}", file=sys.stderr)
                status = 1
        if args.command or args.script:
            if run_lines(session, args.command, json_output=args.json):
                status = 1
            if args.script:
                lines = args.script.read_text(encoding="utf-8").splitlines()
                if run_lines(session, lines, json_output=args.json):
                    status = 1
            return status
        ProtocolREPL(session, json_output=args.json).run()
        return status
    except KeyboardInterrupt:
        print()
        return 0
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
