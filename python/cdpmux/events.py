"""Topic bus and typed event helpers for cdpmux."""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern, Union


logger = logging.getLogger(__name__)

TopicPattern = Union[str, Pattern[str]]
TopicCallback = Callable[[str, Any], None]


def exact_topic(topic: str) -> Pattern[str]:
    """Pattern matching ``topic`` and nothing else (``response:12`` never hits ``response:123``)."""

    return re.compile("^" + re.escape(topic) + "$")


@dataclass
class Subscription:
    token: int
    pattern: Pattern[str]
    callback: TopicCallback

    def matches(self, topic: str) -> bool:
        return self.pattern.search(topic) is not None


class TopicBus:
    """Fan-out published payloads to every subscription whose pattern matches.

    Patterns are regular expressions, given as strings or compiled, and match
    anywhere in the topic (``".*"`` matches everything, ``"console"`` with
    ``re.IGNORECASE`` matches ``Console.messageAdded``).  Use
    :func:`exact_topic` for a whole-topic match.  Callbacks run on the
    publisher's thread in registration order; a callback that raises is
    logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._subs: Dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._next_token = 1

    def subscribe(self, pattern: TopicPattern, callback: TopicCallback) -> int:
        return self._register(pattern, lambda token: callback)

    def once(self, pattern: TopicPattern, callback: TopicCallback) -> int:
        """Subscribe a callback that is removed before its first invocation."""

        fired = threading.Lock()

        def _bind(token: int) -> TopicCallback:
            def _fire(topic: str, payload: Any) -> None:
                if not fired.acquire(blocking=False):
                    return
                self.unsubscribe(token)
                callback(topic, payload)

            return _fire

        return self._register(pattern, _bind)

    def _register(self, pattern: TopicPattern, bind: Callable[[int], TopicCallback]) -> int:
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subs[token] = Subscription(token=token, pattern=compiled, callback=bind(token))
            return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subs.pop(token, None)

    def clear(self) -> None:
        with self._lock:
            self._subs.clear()

    def publish(self, topic: str, payload: Any = None) -> int:
        with self._lock:
            subscriptions = list(self._subs.values())
        notified = 0
        for sub in subscriptions:
            if not sub.matches(topic):
                continue
            with self._lock:
                live = sub.token in self._subs
            if not live:
                continue
            notified += 1
            try:
                sub.callback(topic, payload)
            except Exception:
                logger.exception("subscriber %d failed handling %s", sub.token, topic)
        return notified

    def get_matching_subscriptions(self, topic: str) -> List[int]:
        with self._lock:
            return [token for token, sub in self._subs.items() if sub.matches(topic)]

    def get_subscription_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def __len__(self) -> int:
        return self.get_subscription_count()


# ----------------------------------------------------------------------
# Typed protocol events
# ----------------------------------------------------------------------


def _to_int(value: Any) -> Optional[int]:
    try:
        if value is None or isinstance(value, bool):
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class BaseEvent:
    method: str
    params: Dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)

    @property
    def domain(self) -> str:
        return self.method.partition(".")[0]

    @property
    def name(self) -> str:
        return self.method.partition(".")[2]


@dataclass
class ScriptParsedEvent(BaseEvent):
    script_id: Optional[str] = None
    url: str = ""
    start_line: Optional[int] = None
    start_column: Optional[int] = None
    end_line: Optional[int] = None
    end_column: Optional[int] = None
    execution_context_id: Optional[int] = None
    hash: Optional[str] = None
    is_module: bool = False


@dataclass
class ScriptFailedToParseEvent(BaseEvent):
    script_id: Optional[str] = None
    url: str = ""
    error_message: Optional[str] = None


@dataclass
class PausedEvent(BaseEvent):
    reason: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    call_frames: List[Dict[str, Any]] = field(default_factory=list)
    hit_breakpoints: List[str] = field(default_factory=list)
    async_stack_trace: Optional[Dict[str, Any]] = None


@dataclass
class ResumedEvent(BaseEvent):
    pass


@dataclass
class BreakpointResolvedEvent(BaseEvent):
    breakpoint_id: Optional[str] = None
    location: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConsoleAPICalledEvent(BaseEvent):
    type: Optional[str] = None
    args: List[Dict[str, Any]] = field(default_factory=list)
    execution_context_id: Optional[int] = None
    timestamp: Optional[float] = None
    stack_trace: Optional[Dict[str, Any]] = None

    @property
    def text(self) -> str:
        parts = []
        for arg in self.args:
            if "value" in arg:
                parts.append(str(arg["value"]))
            else:
                parts.append(str(arg.get("description") or arg.get("type") or ""))
        return " ".join(parts)


@dataclass
class ExceptionThrownEvent(BaseEvent):
    timestamp: Optional[float] = None
    exception_details: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        details = self.exception_details
        exception = _as_dict(details.get("exception"))
        return str(exception.get("description") or details.get("text") or "")


@dataclass
class ExecutionContextCreatedEvent(BaseEvent):
    context_id: Optional[int] = None
    context_name: str = ""
    origin: str = ""


@dataclass
class ExecutionContextDestroyedEvent(BaseEvent):
    execution_context_id: Optional[int] = None


@dataclass
class MessageAddedEvent(BaseEvent):
    source: Optional[str] = None
    level: Optional[str] = None
    text: str = ""
    url: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None


@dataclass
class HeapSnapshotChunkEvent(BaseEvent):
    chunk: str = ""


@dataclass
class HeapSnapshotProgressEvent(BaseEvent):
    done: Optional[int] = None
    total: Optional[int] = None
    finished: bool = False


@dataclass
class ConsoleProfileEvent(BaseEvent):
    profile_id: Optional[str] = None
    location: Dict[str, Any] = field(default_factory=dict)
    title: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None


def _parse_script_parsed(method: str, params: Dict[str, Any]) -> BaseEvent:
    return ScriptParsedEvent(
        method=method,
        params=params,
        script_id=_opt_str(params.get("scriptId")),
        url=str(params.get("url") or ""),
        start_line=_to_int(params.get("startLine")),
        start_column=_to_int(params.get("startColumn")),
        end_line=_to_int(params.get("endLine")),
        end_column=_to_int(params.get("endColumn")),
        execution_context_id=_to_int(params.get("executionContextId")),
        hash=_opt_str(params.get("hash")),
        is_module=bool(params.get("isModule")),
    )


def _parse_script_failed(method: str, params: Dict[str, Any]) -> BaseEvent:
    return ScriptFailedToParseEvent(
        method=method,
        params=params,
        script_id=_opt_str(params.get("scriptId")),
        url=str(params.get("url") or ""),
        error_message=_opt_str(params.get("errorMessage")),
    )


def _parse_paused(method: str, params: Dict[str, Any]) -> BaseEvent:
    return PausedEvent(
        method=method,
        params=params,
        reason=_opt_str(params.get("reason")),
        data=_as_dict(params.get("data")),
        call_frames=[frame for frame in _as_list(params.get("callFrames")) if isinstance(frame, dict)],
        hit_breakpoints=[str(bp) for bp in _as_list(params.get("hitBreakpoints"))],
        async_stack_trace=params.get("asyncStackTrace") if isinstance(params.get("asyncStackTrace"), dict) else None,
    )


def _parse_breakpoint_resolved(method: str, params: Dict[str, Any]) -> BaseEvent:
    return BreakpointResolvedEvent(
        method=method,
        params=params,
        breakpoint_id=_opt_str(params.get("breakpointId")),
        location=_as_dict(params.get("location")),
    )


def _parse_console_api(method: str, params: Dict[str, Any]) -> BaseEvent:
    return ConsoleAPICalledEvent(
        method=method,
        params=params,
        type=_opt_str(params.get("type")),
        args=[arg for arg in _as_list(params.get("args")) if isinstance(arg, dict)],
        execution_context_id=_to_int(params.get("executionContextId")),
        timestamp=_to_float(params.get("timestamp")),
        stack_trace=params.get("stackTrace") if isinstance(params.get("stackTrace"), dict) else None,
    )


def _parse_exception_thrown(method: str, params: Dict[str, Any]) -> BaseEvent:
    return ExceptionThrownEvent(
        method=method,
        params=params,
        timestamp=_to_float(params.get("timestamp")),
        exception_details=_as_dict(params.get("exceptionDetails")),
    )


def _parse_context_created(method: str, params: Dict[str, Any]) -> BaseEvent:
    context = _as_dict(params.get("context"))
    return ExecutionContextCreatedEvent(
        method=method,
        params=params,
        context_id=_to_int(context.get("id")),
        context_name=str(context.get("name") or ""),
        origin=str(context.get("origin") or ""),
    )


def _parse_context_destroyed(method: str, params: Dict[str, Any]) -> BaseEvent:
    return ExecutionContextDestroyedEvent(
        method=method,
        params=params,
        execution_context_id=_to_int(params.get("executionContextId")),
    )


def _parse_message_added(method: str, params: Dict[str, Any]) -> BaseEvent:
    message = _as_dict(params.get("message"))
    return MessageAddedEvent(
        method=method,
        params=params,
        source=_opt_str(message.get("source")),
        level=_opt_str(message.get("level")),
        text=str(message.get("text") or ""),
        url=_opt_str(message.get("url")),
        line=_to_int(message.get("line")),
        column=_to_int(message.get("column")),
    )


def _parse_heap_chunk(method: str, params: Dict[str, Any]) -> BaseEvent:
    return HeapSnapshotChunkEvent(method=method, params=params, chunk=str(params.get("chunk") or ""))


def _parse_heap_progress(method: str, params: Dict[str, Any]) -> BaseEvent:
    return HeapSnapshotProgressEvent(
        method=method,
        params=params,
        done=_to_int(params.get("done")),
        total=_to_int(params.get("total")),
        finished=bool(params.get("finished")),
    )


def _parse_console_profile(method: str, params: Dict[str, Any]) -> BaseEvent:
    return ConsoleProfileEvent(
        method=method,
        params=params,
        profile_id=_opt_str(params.get("id")),
        location=_as_dict(params.get("location")),
        title=_opt_str(params.get("title")),
        profile=params.get("profile") if isinstance(params.get("profile"), dict) else None,
    )


_PARSERS: Dict[str, Callable[[str, Dict[str, Any]], BaseEvent]] = {
    "Debugger.scriptParsed": _parse_script_parsed,
    "Debugger.scriptFailedToParse": _parse_script_failed,
    "Debugger.paused": _parse_paused,
    "Debugger.resumed": lambda method, params: ResumedEvent(method=method, params=params),
    "Debugger.breakpointResolved": _parse_breakpoint_resolved,
    "Runtime.consoleAPICalled": _parse_console_api,
    "Runtime.exceptionThrown": _parse_exception_thrown,
    "Runtime.executionContextCreated": _parse_context_created,
    "Runtime.executionContextDestroyed": _parse_context_destroyed,
    "Console.messageAdded": _parse_message_added,
    "HeapProfiler.addHeapSnapshotChunk": _parse_heap_chunk,
    "HeapProfiler.reportHeapSnapshotProgress": _parse_heap_progress,
    "Profiler.consoleProfileStarted": _parse_console_profile,
    "Profiler.consoleProfileFinished": _parse_console_profile,
}


def parse_event(method: str, params: Any = None) -> BaseEvent:
    """Convert a raw protocol event into a typed dataclass."""

    params = _as_dict(params)
    parser = _PARSERS.get(method)
    if parser is None:
        return BaseEvent(method=method, params=params)
    return parser(method, params)
