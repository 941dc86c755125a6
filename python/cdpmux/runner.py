"""Command-line parsing and execution helpers shared by the CLI and the REPL."""

from __future__ import annotations

import json
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Iterable, Mapping, Optional, Tuple

from .session import InspectorSession


class CommandLineError(ValueError):
    """A command line could not be parsed."""


def parse_command_line(line: str) -> Optional[Tuple[str, str, Mapping[str, Any]]]:
    """Split ``Domain.command {json}`` into (domain, command, params).

    Returns None for blank lines and ``#`` comments.
    """

    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    method, _, rest = stripped.partition(" ")
    domain, _, command = method.partition(".")
    if not domain or not command:
        raise CommandLineError(f"expected Domain.command, got {method!r}")
    rest = rest.strip()
    if not rest:
        return domain, command, {}
    try:
        params = json.loads(rest)
    except json.JSONDecodeError as exc:
        raise CommandLineError(f"invalid JSON params for {method}: {exc.msg}") from exc
    if not isinstance(params, dict):
        raise CommandLineError(f"params for {method} must be a JSON object")
    return domain, command, params


def _json_dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, default=str)


def emit_result(method: str, result: Any, *, json_output: bool) -> None:
    if json_output:
        print(_json_dump({"status": "ok", "method": method, "result": result}))
    else:
        print(f"{method}: {_json_dump(result)}")


def emit_error(method: str, message: str, *, json_output: bool) -> None:
    if json_output:
        print(_json_dump({"status": "error", "method": method, "error": message}))
    else:
        print(f"error: {method}: {message}")


def emit_event(topic: str, frame: Any, *, json_output: bool) -> None:
    params = frame.get("params") if isinstance(frame, dict) else frame
    if json_output:
        print(_json_dump({"event": topic, "params": params}))
    else:
        print(f"[event] {topic} {json.dumps(params, default=str)}")


def run_line(session: InspectorSession, line: str, *, json_output: bool = False, timeout: Optional[float] = None) -> int:
    """Execute one command line; return 0 on success, 1 on failure."""

    try:
        parsed = parse_command_line(line)
    except CommandLineError as exc:
        emit_error(line.strip(), str(exc), json_output=json_output)
        return 1
    if parsed is None:
        return 0
    domain, command, params = parsed
    method = f"{domain}.{command}"
    future = session.controller(domain).send(command, params)
    try:
        result = future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        emit_error(method, "no reply (cancelled)", json_output=json_output)
        return 1
    except Exception as exc:
        emit_error(method, str(exc), json_output=json_output)
        return 1
    emit_result(method, result, json_output=json_output)
    return 0


def run_lines(session: InspectorSession, lines: Iterable[str], **kwargs: Any) -> int:
    status = 0
    for line in lines:
        if run_line(session, line, **kwargs):
            status = 1
    return status
