"""Inspector session built on top of the shared transport."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .cache import CacheController, InspectorCache, ScriptInfo
from .controllers import (
    ConsoleController,
    ControllerFactory,
    DebuggerController,
    DomainController,
    HeapProfilerController,
    ProfilerController,
    RuntimeController,
    SchemaController,
)
from .domains import DEFAULT_CATALOGUE, DomainCatalogue
from .events import BaseEvent, HeapSnapshotChunkEvent, exact_topic
from .transport import SOCKET_CLOSE, InspectorTransport, TransportConfig


logger = logging.getLogger(__name__)


class SessionError(RuntimeError):
    """Raised when the session cannot be opened or used."""


@dataclass
class SessionConfig:
    ready_event: str = "Proxy.ready"
    wait_for_ready: bool = True
    ready_timeout: float = 10.0
    command_timeout: Optional[float] = 30.0
    fail_pending_on_close: bool = True
    enable_domains: Tuple[str, ...] = ("Runtime", "Debugger")


class InspectorSession:
    """Composition root: one transport, one bus, one controller per domain."""

    def __init__(
        self,
        transport: Optional[InspectorTransport] = None,
        *,
        transport_config: Optional[TransportConfig] = None,
        session_config: Optional[SessionConfig] = None,
        catalogue: Optional[DomainCatalogue] = None,
        cache: Optional[InspectorCache] = None,
    ) -> None:
        self.transport = transport or InspectorTransport(transport_config or TransportConfig())
        self.bus = self.transport.bus
        self.session_config = session_config or SessionConfig()
        self.catalogue = catalogue or DEFAULT_CATALOGUE
        self.cache = cache if cache is not None else InspectorCache()
        self.factory = ControllerFactory(
            self.transport,
            catalogue=self.catalogue,
            timeout=self.session_config.command_timeout,
            fail_pending_on_close=self.session_config.fail_pending_on_close,
        )
        self.controllers: Dict[str, DomainController] = self.factory.create_all()
        self.runtime: RuntimeController = self.controllers["Runtime"]  # type: ignore[assignment]
        self.debugger: DebuggerController = self.controllers["Debugger"]  # type: ignore[assignment]
        self.console: ConsoleController = self.controllers["Console"]  # type: ignore[assignment]
        self.profiler: ProfilerController = self.controllers["Profiler"]  # type: ignore[assignment]
        self.heap_profiler: HeapProfilerController = self.controllers["HeapProfiler"]  # type: ignore[assignment]
        self.schema: SchemaController = self.controllers["Schema"]  # type: ignore[assignment]

        self.watches: Dict[str, str] = {}
        self._ready = threading.Event()
        # set by whichever of the handshake or the close arrives first
        self._settled = threading.Event()
        self._ready_token: Optional[int] = None
        self._close_token: Optional[int] = None
        self._cache_controller: Optional[CacheController] = CacheController(self.cache, self.bus)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def controller(self, domain: str) -> DomainController:
        """Return the controller for ``domain``, creating a generic one if needed."""

        existing = self.controllers.get(domain)
        if existing is None:
            existing = self.factory.create(domain)
            self.controllers[domain] = existing
        return existing

    def open(self, url: Optional[str] = None) -> "InspectorSession":
        self._ready.clear()
        self._settled.clear()
        self._subscribe_lifecycle()
        self.transport.connect(url)
        if self.session_config.wait_for_ready:
            try:
                self.wait_ready(self.session_config.ready_timeout)
            except SessionError:
                self.transport.close()
                raise
        return self

    def wait_ready(self, timeout: Optional[float] = None) -> None:
        """Block until the peer's handshake event arrives."""

        if self._ready_token is None and not self._ready.is_set():
            self._subscribe_lifecycle()
        if not self._settled.wait(timeout):
            raise SessionError(f"timed out waiting for {self.session_config.ready_event}")
        if not self._ready.is_set():
            raise SessionError("connection closed before the handshake arrived")

    def close(self) -> None:
        self._unsubscribe_lifecycle()
        self.transport.close()

    def dispose(self) -> None:
        """Close and drop every bus subscription owned by the session."""

        self.close()
        if self._cache_controller is not None:
            self._cache_controller.detach()
            self._cache_controller = None
        for controller in self.controllers.values():
            controller.detach()

    def __enter__(self) -> "InspectorSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _subscribe_lifecycle(self) -> None:
        self._unsubscribe_lifecycle()
        self._ready_token = self.bus.subscribe(exact_topic(self.session_config.ready_event), self._on_ready)
        self._close_token = self.bus.subscribe(exact_topic(SOCKET_CLOSE), self._on_close)

    def _unsubscribe_lifecycle(self) -> None:
        for token in (self._ready_token, self._close_token):
            if token is not None:
                self.bus.unsubscribe(token)
        self._ready_token = None
        self._close_token = None

    def _on_ready(self, topic: str, payload: Any) -> None:
        logger.info("peer ready (%s)", topic)
        self._ready.set()
        self._settled.set()

    def _on_close(self, topic: str, payload: Any) -> None:
        self._ready.clear()
        self._settled.set()

    def _require_ready(self) -> None:
        if not self.transport.connected:
            raise SessionError("session not open")
        if self.session_config.wait_for_ready and not self._ready.is_set():
            raise SessionError(f"peer has not sent {self.session_config.ready_event}")

    # ------------------------------------------------------------------
    # Domain helpers
    # ------------------------------------------------------------------
    def enable(self, domains: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Send ``<Domain>.enable`` for each domain and wait for every reply."""

        self._require_ready()
        names = list(domains) if domains is not None else list(self.session_config.enable_domains)
        futures = {name: self.controller(name).send("enable") for name in names}
        return {name: future.result() for name, future in futures.items()}

    def evaluate(self, expression: str, **options: Any) -> Dict[str, Any]:
        self._require_ready()
        result = self.runtime.evaluate(expression, **options).result()
        remote = result.get("result") or {}
        details = result.get("exceptionDetails")
        return {
            "success": not details,
            "value": remote.get("value"),
            "type": remote.get("type"),
            "description": remote.get("description"),
            "objectId": remote.get("objectId"),
            "exception": details,
        }

    def get_properties(self, object_id: str, own_properties: bool = True) -> List[Dict[str, Any]]:
        self._require_ready()
        result = self.runtime.get_properties(object_id, own_properties).result()
        properties = []
        for prop in result.get("result") or []:
            value = prop.get("value") or {}
            properties.append(
                {
                    "name": prop.get("name"),
                    "value": value.get("value"),
                    "type": value.get("type"),
                    "objectId": value.get("objectId"),
                    "writable": prop.get("writable"),
                    "configurable": prop.get("configurable"),
                    "enumerable": prop.get("enumerable"),
                }
            )
        return properties

    def get_script_source(self, script_id: str) -> str:
        self._require_ready()
        info = self.cache.get_script(script_id)
        if info is not None and info.source is not None:
            return info.source
        result = self.debugger.get_script_source(script_id).result()
        source = str(result.get("scriptSource") or "")
        self.cache.cache_source(script_id, source)
        return source

    @property
    def script_sources(self) -> List[ScriptInfo]:
        return self.cache.iter_scripts()

    def set_breakpoint_by_url(self, line_number: int, url: str, column_number: int = 0, condition: str = "") -> str:
        self._require_ready()
        result = self.debugger.set_breakpoint_by_url(line_number, url, column_number, condition).result()
        breakpoint_id = str(result.get("breakpointId") or "")
        if not breakpoint_id:
            raise SessionError(f"setBreakpointByUrl returned no breakpoint id: {result}")
        self.cache.record_breakpoint(
            breakpoint_id,
            url=url,
            line_number=line_number,
            column_number=column_number,
            condition=condition,
            locations=result.get("locations") or [],
        )
        return breakpoint_id

    def remove_breakpoint(self, breakpoint_id: str) -> None:
        self._require_ready()
        self.debugger.remove_breakpoint(breakpoint_id).result()
        self.cache.remove_breakpoint(breakpoint_id)

    def clear_all_breakpoints(self) -> int:
        """Remove every breakpoint this session created; returns how many were removed."""

        self._require_ready()
        ids = list(self.cache.breakpoints)
        futures = [(bp_id, self.debugger.remove_breakpoint(bp_id)) for bp_id in ids]
        removed = 0
        for bp_id, future in futures:
            try:
                future.result()
            except Exception as exc:
                logger.warning("removeBreakpoint %s failed: %s", bp_id, exc)
                continue
            self.cache.remove_breakpoint(bp_id)
            removed += 1
        return removed

    def clear_console(self) -> None:
        self._require_ready()
        self.console.clear_messages().result()
        self.cache.clear_console()

    def start_profiling(self) -> None:
        self._require_ready()
        self.profiler.enable().result()
        self.profiler.start().result()

    def stop_profiling(self) -> Dict[str, Any]:
        self._require_ready()
        result = self.profiler.stop().result()
        return result.get("profile") or {}

    def take_heap_snapshot(self, report_progress: bool = False) -> str:
        """Collect the ``addHeapSnapshotChunk`` stream into one JSON string."""

        self._require_ready()
        chunks: List[str] = []

        def _collect(event: BaseEvent) -> None:
            if isinstance(event, HeapSnapshotChunkEvent):
                chunks.append(event.chunk)

        self.heap_profiler.on("addHeapSnapshotChunk", _collect)
        try:
            self.heap_profiler.enable().result()
            self.heap_profiler.take_heap_snapshot(report_progress).result()
        finally:
            self.heap_profiler.off("addHeapSnapshotChunk", _collect)
        return "".join(chunks)

    # ------------------------------------------------------------------
    # Watch expressions
    # ------------------------------------------------------------------
    def watch(self, variable: str, expression: Optional[str] = None) -> Optional[Dict[str, Any]]:
        expr = expression or variable
        self.watches[variable] = expr
        logger.info("watching %s (%s)", variable, expr)
        try:
            return self.evaluate(expr)
        except Exception as exc:
            logger.warning("watch evaluation failed for %s: %s", variable, exc)
            return None

    def unwatch(self, variable: str) -> bool:
        return self.watches.pop(variable, None) is not None

    def unwatch_all(self) -> int:
        count = len(self.watches)
        self.watches.clear()
        return count

    def evaluate_watches(self) -> Dict[str, Mapping[str, Any]]:
        results: Dict[str, Mapping[str, Any]] = {}
        for variable, expression in list(self.watches.items()):
            try:
                results[variable] = self.evaluate(expression)
            except Exception as exc:
                results[variable] = {"error": str(exc)}
        return results
