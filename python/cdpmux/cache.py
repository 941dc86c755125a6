"""Inspector state cache for cdpmux."""

from __future__ import annotations

import re
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional

from .events import (
    BaseEvent,
    BreakpointResolvedEvent,
    ConsoleAPICalledEvent,
    ExceptionThrownEvent,
    ExecutionContextCreatedEvent,
    ExecutionContextDestroyedEvent,
    MessageAddedEvent,
    PausedEvent,
    ResumedEvent,
    ScriptFailedToParseEvent,
    ScriptParsedEvent,
    TopicBus,
    parse_event,
)


def _to_int(value: Any) -> Optional[int]:
    try:
        if value is None:
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def _now() -> float:
    return time.time()


@dataclass
class ScriptInfo:
    """A script reported by ``Debugger.scriptParsed`` (or a failed parse)."""

    script_id: str
    url: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    execution_context_id: Optional[int] = None
    hash: Optional[str] = None
    is_module: bool = False
    failed: bool = False
    error_message: Optional[str] = None
    source: Optional[str] = None
    timestamp: float = field(default_factory=_now)


@dataclass
class Location:
    script_id: Optional[str]
    line_number: Optional[int]
    column_number: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Location":
        script_id = payload.get("scriptId")
        return cls(
            script_id=None if script_id is None else str(script_id),
            line_number=_to_int(payload.get("lineNumber")),
            column_number=_to_int(payload.get("columnNumber")),
        )


@dataclass
class BreakpointInfo:
    breakpoint_id: str
    url: Optional[str] = None
    line_number: Optional[int] = None
    column_number: Optional[int] = None
    condition: str = ""
    locations: List[Location] = field(default_factory=list)


@dataclass
class CallFrame:
    index: int
    call_frame_id: Optional[str]
    function_name: str
    location: Location
    url: Optional[str] = None
    scope_chain: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class PauseState:
    reason: Optional[str]
    call_frames: List[CallFrame] = field(default_factory=list)
    hit_breakpoints: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=_now)

    @property
    def top_frame(self) -> Optional[CallFrame]:
        return self.call_frames[0] if self.call_frames else None


@dataclass
class ExecutionContext:
    context_id: int
    name: str = ""
    origin: str = ""


@dataclass
class ConsoleEntry:
    source: str
    level: str
    text: str
    url: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    timestamp: float = field(default_factory=_now)


@dataclass
class InspectorCache:
    """Aggregates inspector state that can be served without round trips."""

    max_console_entries: int = 500
    scripts: Dict[str, ScriptInfo] = field(default_factory=dict)
    breakpoints: Dict[str, BreakpointInfo] = field(default_factory=dict)
    contexts: Dict[int, ExecutionContext] = field(default_factory=dict)
    pause: Optional[PauseState] = None
    console: Deque[ConsoleEntry] = field(init=False)

    def __post_init__(self) -> None:
        self.console = deque(maxlen=max(1, self.max_console_entries))

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------
    def update_script(self, event: ScriptParsedEvent | ScriptFailedToParseEvent) -> Optional[ScriptInfo]:
        if not event.script_id:
            return None
        if isinstance(event, ScriptFailedToParseEvent):
            info = ScriptInfo(
                script_id=event.script_id,
                url=event.url,
                failed=True,
                error_message=event.error_message,
            )
        else:
            info = ScriptInfo(
                script_id=event.script_id,
                url=event.url,
                start_line=event.start_line,
                end_line=event.end_line,
                execution_context_id=event.execution_context_id,
                hash=event.hash,
                is_module=event.is_module,
            )
        self.scripts[info.script_id] = info
        return info

    def get_script(self, script_id: str) -> Optional[ScriptInfo]:
        return self.scripts.get(str(script_id))

    def find_scripts(self, url: str) -> List[ScriptInfo]:
        """Scripts whose URL equals ``url`` or ends with it (path suffix match)."""

        return [info for info in self.scripts.values() if info.url == url or (url and info.url.endswith(url))]

    def iter_scripts(self, *, include_failed: bool = False) -> List[ScriptInfo]:
        return [info for info in self.scripts.values() if include_failed or not info.failed]

    def cache_source(self, script_id: str, source: str) -> None:
        info = self.scripts.get(str(script_id))
        if info is not None:
            info.source = source

    # ------------------------------------------------------------------
    # Breakpoints
    # ------------------------------------------------------------------
    def record_breakpoint(
        self,
        breakpoint_id: str,
        *,
        url: Optional[str] = None,
        line_number: Optional[int] = None,
        column_number: Optional[int] = None,
        condition: str = "",
        locations: Optional[Iterable[Mapping[str, Any]]] = None,
    ) -> BreakpointInfo:
        info = BreakpointInfo(
            breakpoint_id=str(breakpoint_id),
            url=url,
            line_number=line_number,
            column_number=column_number,
            condition=condition,
            locations=[Location.from_payload(loc) for loc in locations or [] if isinstance(loc, Mapping)],
        )
        self.breakpoints[info.breakpoint_id] = info
        return info

    def resolve_breakpoint(self, breakpoint_id: str, location: Mapping[str, Any]) -> Optional[BreakpointInfo]:
        info = self.breakpoints.get(str(breakpoint_id))
        if info is None:
            info = self.record_breakpoint(str(breakpoint_id))
        info.locations.append(Location.from_payload(location))
        return info

    def remove_breakpoint(self, breakpoint_id: str) -> Optional[BreakpointInfo]:
        return self.breakpoints.pop(str(breakpoint_id), None)

    def breakpoints_for_url(self, url: str) -> List[BreakpointInfo]:
        return [bp for bp in self.breakpoints.values() if bp.url == url]

    # ------------------------------------------------------------------
    # Pause state
    # ------------------------------------------------------------------
    def update_pause(self, event: PausedEvent) -> PauseState:
        frames: List[CallFrame] = []
        for index, raw in enumerate(event.call_frames):
            location = raw.get("location") if isinstance(raw.get("location"), Mapping) else {}
            scope_chain = raw.get("scopeChain")
            frames.append(
                CallFrame(
                    index=index,
                    call_frame_id=raw.get("callFrameId"),
                    function_name=str(raw.get("functionName") or "(anonymous)"),
                    location=Location.from_payload(location),
                    url=raw.get("url"),
                    scope_chain=list(scope_chain) if isinstance(scope_chain, list) else [],
                )
            )
        self.pause = PauseState(
            reason=event.reason,
            call_frames=frames,
            hit_breakpoints=list(event.hit_breakpoints),
            data=dict(event.data),
        )
        return self.pause

    @property
    def paused(self) -> bool:
        return self.pause is not None

    # ------------------------------------------------------------------
    # Console
    # ------------------------------------------------------------------
    def add_console_entry(self, entry: ConsoleEntry) -> ConsoleEntry:
        self.console.append(entry)
        return entry

    def console_entries(self, level: Optional[str] = None) -> List[ConsoleEntry]:
        if level is None:
            return list(self.console)
        return [entry for entry in self.console if entry.level == level]

    def clear_console(self) -> None:
        self.console.clear()

    # ------------------------------------------------------------------
    # Bulk helpers
    # ------------------------------------------------------------------
    def apply_event(self, event: BaseEvent) -> None:
        if isinstance(event, (ScriptParsedEvent, ScriptFailedToParseEvent)):
            self.update_script(event)
        elif isinstance(event, PausedEvent):
            self.update_pause(event)
        elif isinstance(event, ResumedEvent):
            self.pause = None
        elif isinstance(event, BreakpointResolvedEvent):
            if event.breakpoint_id:
                self.resolve_breakpoint(event.breakpoint_id, event.location)
        elif isinstance(event, ExecutionContextCreatedEvent):
            if event.context_id is not None:
                self.contexts[event.context_id] = ExecutionContext(
                    context_id=event.context_id,
                    name=event.context_name,
                    origin=event.origin,
                )
        elif isinstance(event, ExecutionContextDestroyedEvent):
            if event.execution_context_id is not None:
                self.contexts.pop(event.execution_context_id, None)
        elif event.method == "Runtime.executionContextsCleared":
            self.contexts.clear()
        elif isinstance(event, MessageAddedEvent):
            self.add_console_entry(
                ConsoleEntry(
                    source=event.source or "console-api",
                    level=event.level or "log",
                    text=event.text,
                    url=event.url,
                    line=event.line,
                    column=event.column,
                )
            )
        elif isinstance(event, ConsoleAPICalledEvent):
            self.add_console_entry(ConsoleEntry(source="console-api", level=event.type or "log", text=event.text))
        elif isinstance(event, ExceptionThrownEvent):
            self.add_console_entry(ConsoleEntry(source="exception", level="error", text=event.text))

    def clear(self) -> None:
        self.scripts.clear()
        self.breakpoints.clear()
        self.contexts.clear()
        self.pause = None
        self.console.clear()


class CacheController:
    """Optional helper that wires an InspectorCache to a TopicBus."""

    DEFAULT_PATTERN = re.compile(r"^(Debugger|Runtime|Console)\.")

    def __init__(self, cache: InspectorCache, bus: TopicBus, *, pattern: Any = None) -> None:
        self.cache = cache
        self.bus = bus
        self.token: Optional[int] = bus.subscribe(pattern or self.DEFAULT_PATTERN, self._handle)

    def _handle(self, topic: str, frame: Any) -> None:
        params = frame.get("params") if isinstance(frame, dict) else None
        self.cache.apply_event(parse_event(topic, params))

    def detach(self) -> None:
        if self.token is not None:
            self.bus.unsubscribe(self.token)
            self.token = None
