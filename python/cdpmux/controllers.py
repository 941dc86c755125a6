"""Domain controllers: typed façades over the shared transport.

Each controller turns method calls into ``<Domain>.<command>`` frames and
returns a :class:`concurrent.futures.Future` that is settled by exactly one
``response:<id>`` publish (or by a timeout / connection loss).  Events are
delivered to handlers registered with :meth:`DomainController.on`.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

from .domains import DEFAULT_CATALOGUE, DomainCatalogue, DomainSpec
from .events import BaseEvent, exact_topic, parse_event
from .transport import SOCKET_CLOSE, InspectorTransport, TransportError, response_topic


logger = logging.getLogger(__name__)

EventHandler = Callable[[BaseEvent], None]

_UNSET: Any = object()


class CommandError(RuntimeError):
    """A peer replied to a command with an ``error`` object."""

    def __init__(self, method: str, code: Optional[int], message: str, data: Any = None) -> None:
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        detail = f"{method} failed: {message}"
        if code is not None:
            detail += f" (code {code})"
        super().__init__(detail)

    @classmethod
    def from_reply(cls, method: str, error: Any) -> "CommandError":
        if not isinstance(error, dict):
            return cls(method, None, str(error) or "Command failed")
        code = error.get("code")
        return cls(
            method,
            code if isinstance(code, int) else None,
            str(error.get("message") or "Command failed"),
            error.get("data"),
        )


class CommandTimeout(TimeoutError):
    """No reply arrived within the command timeout."""


class ConnectionLostError(ConnectionError):
    """The socket closed while the command was still awaiting its reply."""


@dataclass
class _PendingReply:
    command_id: int
    method: str
    future: Future
    token: Optional[int] = None
    timer: Optional[threading.Timer] = None


class DomainController:
    """Base controller for one protocol domain sharing a transport with its siblings."""

    domain: str = ""

    def __init__(
        self,
        transport: InspectorTransport,
        *,
        domain: Optional[str] = None,
        catalogue: Optional[DomainCatalogue] = None,
        timeout: Optional[float] = None,
        fail_pending_on_close: bool = True,
    ) -> None:
        if domain:
            self.domain = domain
        if not self.domain:
            raise ValueError("controller requires a domain name")
        self.transport = transport
        self.bus = transport.bus
        self.catalogue = catalogue or DEFAULT_CATALOGUE
        self.timeout = timeout
        self.fail_pending_on_close = fail_pending_on_close
        self._lock = threading.Lock()
        self._pending: Dict[int, _PendingReply] = {}
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._event_tokens: Dict[str, int] = {}
        self._close_token: Optional[int] = self.bus.subscribe(exact_topic(SOCKET_CLOSE), self._on_socket_close)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} domain={self.domain!r}>"

    @property
    def spec(self) -> Optional[DomainSpec]:
        return self.catalogue.get(self.domain)

    def get_command_list(self) -> List[str]:
        return self.catalogue.commands(self.domain)

    def get_event_list(self) -> List[str]:
        return self.catalogue.events(self.domain)

    def _local_name(self, name: str) -> str:
        prefix = f"{self.domain}."
        return name[len(prefix) :] if name.startswith(prefix) else name

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def send(
        self,
        command: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = _UNSET,
    ) -> Future:
        """Send ``<domain>.<command>`` and return a future for its ``result``."""

        command = self._local_name(command)
        method = f"{self.domain}.{command}"
        if not self.catalogue.is_valid_command(self.domain, command):
            logger.debug("%s is not in the catalogue; sending anyway", method)
        future: Future = Future()
        limit = self.timeout if timeout is _UNSET else timeout
        registered: List[_PendingReply] = []

        def _register(command_id: int) -> None:
            pending = _PendingReply(command_id=command_id, method=method, future=future)
            with self._lock:
                self._pending[command_id] = pending
            pending.token = self.bus.subscribe(exact_topic(response_topic(command_id)), self._on_reply)
            if limit is not None:
                pending.timer = threading.Timer(limit, self._expire, args=(command_id,))
                pending.timer.daemon = True
                pending.timer.start()
            registered.append(pending)

        try:
            command_id = self.transport.send(method, dict(params or {}), prepare=_register)
        except TransportError as exc:
            if registered:
                self._settle(registered[0].command_id, error=exc)
            else:
                future.set_exception(exc)
            return future
        except Exception as exc:
            if registered:
                self._settle(registered[0].command_id, error=exc)
            raise
        future.add_done_callback(lambda f, cid=command_id: self._on_future_done(cid, f))
        return future

    def call(self, command: str, params: Optional[Mapping[str, Any]] = None, *, timeout: Optional[float] = _UNSET) -> Any:
        """Blocking variant of :meth:`send`; ``timeout`` replaces the controller default."""

        return self.send(command, params, timeout=timeout).result()

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _on_reply(self, topic: str, frame: Dict[str, Any]) -> None:
        command_id = frame.get("id")
        if not isinstance(command_id, int):
            return
        if "error" in frame:
            with self._lock:
                pending = self._pending.get(command_id)
            method = pending.method if pending else f"{self.domain}.?"
            self._settle(command_id, error=CommandError.from_reply(method, frame["error"]))
        else:
            result = frame.get("result")
            self._settle(command_id, result=result if result is not None else {})

    def _expire(self, command_id: int) -> None:
        with self._lock:
            pending = self._pending.get(command_id)
        if pending is None:
            return
        logger.warning("%s (id %d) timed out", pending.method, command_id)
        self._settle(command_id, error=CommandTimeout(f"{pending.method} timed out waiting for reply {command_id}"))

    def _on_future_done(self, command_id: int, future: Future) -> None:
        if future.cancelled():
            self._settle(command_id)

    def _settle(
        self,
        command_id: int,
        *,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        with self._lock:
            pending = self._pending.pop(command_id, None)
        if pending is None:
            return False
        if pending.token is not None:
            self.bus.unsubscribe(pending.token)
        self.transport.forget(command_id)
        if pending.timer is not None:
            pending.timer.cancel()
        future = pending.future
        if future.done() or not future.set_running_or_notify_cancel():
            return False
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)
        return True

    def _on_socket_close(self, topic: str, payload: Any) -> None:
        if not self.fail_pending_on_close:
            return
        with self._lock:
            outstanding = list(self._pending.values())
        for pending in outstanding:
            self._settle(
                pending.command_id,
                error=ConnectionLostError(f"connection closed before {pending.method} (id {pending.command_id}) replied"),
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def on(self, event: str, handler: EventHandler) -> None:
        name = self._local_name(event)
        if not self.catalogue.is_valid_event(self.domain, name):
            logger.debug("%s.%s is not in the catalogue", self.domain, name)
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)
            if name not in self._event_tokens:
                self._event_tokens[name] = self.bus.subscribe(
                    exact_topic(f"{self.domain}.{name}"), self._dispatch_event
                )

    def off(self, event: str, handler: Optional[EventHandler] = None) -> None:
        name = self._local_name(event)
        with self._lock:
            handlers = self._handlers.get(name, [])
            if handler is None:
                handlers = []
            else:
                handlers = [h for h in handlers if h is not handler]
            if handlers:
                self._handlers[name] = handlers
                token = None
            else:
                self._handlers.pop(name, None)
                token = self._event_tokens.pop(name, None)
        if token is not None:
            self.bus.unsubscribe(token)

    def listeners(self, event: str) -> List[EventHandler]:
        with self._lock:
            return list(self._handlers.get(self._local_name(event), []))

    def _dispatch_event(self, topic: str, frame: Any) -> None:
        params = frame.get("params") if isinstance(frame, dict) else None
        event = parse_event(topic, params)
        with self._lock:
            handlers = list(self._handlers.get(self._local_name(topic), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("%s handler failed for %s", self.domain, topic)

    def detach(self) -> None:
        """Drop every bus subscription this controller owns."""

        with self._lock:
            tokens = list(self._event_tokens.values())
            self._event_tokens.clear()
            self._handlers.clear()
            close_token = self._close_token
            self._close_token = None
        for token in tokens:
            self.bus.unsubscribe(token)
        if close_token is not None:
            self.bus.unsubscribe(close_token)


# ----------------------------------------------------------------------
# Per-domain façades
# ----------------------------------------------------------------------


class RuntimeController(DomainController):
    domain = "Runtime"

    def enable(self) -> Future:
        return self.send("enable")

    def disable(self) -> Future:
        return self.send("disable")

    def evaluate(self, expression: str, **options: Any) -> Future:
        params: Dict[str, Any] = {"expression": expression, "returnByValue": True, "awaitPromise": False}
        params.update(options)
        return self.send("evaluate", params)

    def get_properties(self, object_id: str, own_properties: bool = True) -> Future:
        return self.send("getProperties", {"objectId": object_id, "ownProperties": own_properties})

    def call_function_on(self, object_id: str, function_declaration: str, arguments: Optional[List[Any]] = None) -> Future:
        return self.send(
            "callFunctionOn",
            {"objectId": object_id, "functionDeclaration": function_declaration, "arguments": list(arguments or [])},
        )

    def run_if_waiting_for_debugger(self) -> Future:
        return self.send("runIfWaitingForDebugger")

    def release_object(self, object_id: str) -> Future:
        return self.send("releaseObject", {"objectId": object_id})

    def release_object_group(self, object_group: str) -> Future:
        return self.send("releaseObjectGroup", {"objectGroup": object_group})

    def get_heap_usage(self) -> Future:
        return self.send("getHeapUsage")

    def compile_script(self, expression: str, source_url: str = "", persist_script: bool = False) -> Future:
        return self.send(
            "compileScript",
            {"expression": expression, "sourceURL": source_url, "persistScript": persist_script},
        )

    def run_script(self, script_id: str, execution_context_id: Optional[int] = None, **options: Any) -> Future:
        params: Dict[str, Any] = {"scriptId": script_id}
        if execution_context_id is not None:
            params["executionContextId"] = execution_context_id
        params.update(options)
        return self.send("runScript", params)


class DebuggerController(DomainController):
    domain = "Debugger"

    def enable(self) -> Future:
        return self.send("enable")

    def disable(self) -> Future:
        return self.send("disable")

    def pause(self) -> Future:
        return self.send("pause")

    def resume(self) -> Future:
        return self.send("resume")

    def step_over(self) -> Future:
        return self.send("stepOver")

    def step_into(self) -> Future:
        return self.send("stepInto")

    def step_out(self) -> Future:
        return self.send("stepOut")

    def set_breakpoint_by_url(self, line_number: int, url: str, column_number: int = 0, condition: str = "") -> Future:
        return self.send(
            "setBreakpointByUrl",
            {"lineNumber": line_number, "url": url, "columnNumber": column_number, "condition": condition},
        )

    def set_breakpoint(self, location: Mapping[str, Any], condition: Optional[str] = None) -> Future:
        params: Dict[str, Any] = {"location": dict(location)}
        if condition:
            params["condition"] = condition
        return self.send("setBreakpoint", params)

    def remove_breakpoint(self, breakpoint_id: str) -> Future:
        return self.send("removeBreakpoint", {"breakpointId": breakpoint_id})

    def set_breakpoints_active(self, active: bool = True) -> Future:
        return self.send("setBreakpointsActive", {"active": active})

    def set_pause_on_exceptions(self, state: str = "none") -> Future:
        if state not in ("none", "caught", "uncaught", "all"):
            raise ValueError(f"invalid pause-on-exceptions state: {state}")
        return self.send("setPauseOnExceptions", {"state": state})

    def get_script_source(self, script_id: str) -> Future:
        return self.send("getScriptSource", {"scriptId": script_id})

    def continue_to_location(self, location: Mapping[str, Any]) -> Future:
        return self.send("continueToLocation", {"location": dict(location)})

    def set_variable_value(self, scope_number: int, variable_name: str, new_value: Mapping[str, Any], call_frame_id: str) -> Future:
        return self.send(
            "setVariableValue",
            {
                "scopeNumber": scope_number,
                "variableName": variable_name,
                "newValue": dict(new_value),
                "callFrameId": call_frame_id,
            },
        )

    def set_script_source(self, script_id: str, script_source: str) -> Future:
        return self.send("setScriptSource", {"scriptId": script_id, "scriptSource": script_source})

    def restart_frame(self, call_frame_id: str) -> Future:
        return self.send("restartFrame", {"callFrameId": call_frame_id})

    def set_async_call_stack_depth(self, max_depth: int) -> Future:
        return self.send("setAsyncCallStackDepth", {"maxDepth": max_depth})

    def set_blackbox_patterns(self, patterns: List[str]) -> Future:
        return self.send("setBlackboxPatterns", {"patterns": list(patterns)})

    def set_skip_all_pauses(self, skip: bool) -> Future:
        return self.send("setSkipAllPauses", {"skip": skip})


class ConsoleController(DomainController):
    domain = "Console"

    def enable(self) -> Future:
        return self.send("enable")

    def disable(self) -> Future:
        return self.send("disable")

    def clear_messages(self) -> Future:
        return self.send("clearMessages")


class ProfilerController(DomainController):
    domain = "Profiler"

    def enable(self) -> Future:
        return self.send("enable")

    def disable(self) -> Future:
        return self.send("disable")

    def start(self) -> Future:
        return self.send("start")

    def stop(self) -> Future:
        return self.send("stop")

    def set_sampling_interval(self, interval: int) -> Future:
        return self.send("setSamplingInterval", {"interval": interval})

    def start_precise_coverage(self, call_count: bool = False, detailed: bool = False) -> Future:
        return self.send("startPreciseCoverage", {"callCount": call_count, "detailed": detailed})

    def stop_precise_coverage(self) -> Future:
        return self.send("stopPreciseCoverage")

    def take_precise_coverage(self) -> Future:
        return self.send("takePreciseCoverage")

    def get_best_effort_coverage(self) -> Future:
        return self.send("getBestEffortCoverage")


class HeapProfilerController(DomainController):
    domain = "HeapProfiler"

    def enable(self) -> Future:
        return self.send("enable")

    def disable(self) -> Future:
        return self.send("disable")

    def take_heap_snapshot(self, report_progress: bool = True) -> Future:
        return self.send("takeHeapSnapshot", {"reportProgress": report_progress})

    def start_tracking_heap_objects(self, track_allocations: bool = False) -> Future:
        return self.send("startTrackingHeapObjects", {"trackAllocations": track_allocations})

    def stop_tracking_heap_objects(self, report_progress: bool = True) -> Future:
        return self.send("stopTrackingHeapObjects", {"reportProgress": report_progress})

    def collect_garbage(self) -> Future:
        return self.send("collectGarbage")

    def get_object_by_heap_object_id(self, object_id: str) -> Future:
        return self.send("getObjectByHeapObjectId", {"objectId": object_id})

    def get_heap_object_id(self, object_id: str) -> Future:
        return self.send("getHeapObjectId", {"objectId": object_id})

    def start_sampling(self, sampling_interval: Optional[int] = None) -> Future:
        params: Dict[str, Any] = {}
        if sampling_interval is not None:
            params["samplingInterval"] = sampling_interval
        return self.send("startSampling", params)

    def stop_sampling(self) -> Future:
        return self.send("stopSampling")

    def add_inspected_heap_object(self, heap_object_id: str) -> Future:
        return self.send("addInspectedHeapObject", {"heapObjectId": heap_object_id})


class SchemaController(DomainController):
    domain = "Schema"

    def get_domains(self) -> Future:
        return self.send("getDomains")


# ----------------------------------------------------------------------
# Factory
# ----------------------------------------------------------------------

STANDARD_CONTROLLERS: Dict[str, Type[DomainController]] = {
    "Runtime": RuntimeController,
    "Debugger": DebuggerController,
    "Console": ConsoleController,
    "Profiler": ProfilerController,
    "HeapProfiler": HeapProfilerController,
    "Schema": SchemaController,
}


class ControllerFactory:
    """Build domain controllers that all share one transport."""

    def __init__(
        self,
        transport: InspectorTransport,
        *,
        catalogue: Optional[DomainCatalogue] = None,
        timeout: Optional[float] = None,
        fail_pending_on_close: bool = True,
    ) -> None:
        self.transport = transport
        self.catalogue = catalogue or DEFAULT_CATALOGUE
        self.timeout = timeout
        self.fail_pending_on_close = fail_pending_on_close
        self._classes: Dict[str, Type[DomainController]] = dict(STANDARD_CONTROLLERS)

    def register(self, domain: str, controller_cls: Type[DomainController] = DomainController) -> None:
        self._classes[domain] = controller_cls

    def create(self, domain: str) -> DomainController:
        cls = self._classes.get(domain, DomainController)
        return cls(
            self.transport,
            domain=domain,
            catalogue=self.catalogue,
            timeout=self.timeout,
            fail_pending_on_close=self.fail_pending_on_close,
        )

    def create_all(self) -> Dict[str, DomainController]:
        names = list(self.catalogue.domains())
        for name in self._classes:
            if name not in names:
                names.append(name)
        return {name: self.create(name) for name in names}

    def create_runtime(self) -> RuntimeController:
        return self.create("Runtime")  # type: ignore[return-value]

    def create_debugger(self) -> DebuggerController:
        return self.create("Debugger")  # type: ignore[return-value]

    def create_console(self) -> ConsoleController:
        return self.create("Console")  # type: ignore[return-value]

    def create_profiler(self) -> ProfilerController:
        return self.create("Profiler")  # type: ignore[return-value]

    def create_heap_profiler(self) -> HeapProfilerController:
        return self.create("HeapProfiler")  # type: ignore[return-value]

    def create_schema(self) -> SchemaController:
        return self.create("Schema")  # type: ignore[return-value]
