"""
Transport layer for cdpmux.

Responsibilities:
    * Own the single WebSocket to the inspector peer.
    * Allocate command ids and write command frames.
    * Classify every inbound frame and publish it on the topic bus, either
      under ``response:<id>`` (replies) or under its method name (events).
    * Surface connection state changes as ``Socket.*`` topics.

The transport never settles pending commands itself; controllers listen to
``Socket.close`` and decide what to do with their outstanding futures.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from .events import TopicBus


logger = logging.getLogger(__name__)

SOCKET_OPEN = "Socket.open"
SOCKET_CLOSE = "Socket.close"
SOCKET_ERROR = "Socket.error"
RESPONSE_PREFIX = "response:"


def response_topic(command_id: Any) -> str:
    return f"{RESPONSE_PREFIX}{command_id}"


class TransportError(RuntimeError):
    """Raised when the transport cannot complete an operation."""


class FrameKind(enum.Enum):
    REPLY = "reply"
    EVENT = "event"
    AMBIGUOUS = "ambiguous"
    UNKNOWN = "unknown"


def classify_frame(frame: Mapping[str, Any]) -> FrameKind:
    has_id = "id" in frame
    has_method = "method" in frame
    if has_id and not has_method:
        return FrameKind.REPLY
    if has_method and not has_id:
        return FrameKind.EVENT
    if has_id and has_method:
        return FrameKind.AMBIGUOUS
    return FrameKind.UNKNOWN


@dataclass
class TransportConfig:
    url: str = "ws://127.0.0.1:8888"
    open_timeout: float = 5.0
    close_timeout: float = 2.0
    # heap snapshot chunks and script sources can be large
    max_size: Optional[int] = 64 * 1024 * 1024
    join_timeout: float = 2.0


@dataclass
class PendingCommand:
    id: int
    method: str
    sent_at: float = field(default_factory=time.monotonic)


class InspectorTransport:
    """Single-socket JSON transport that multiplexes replies and events onto a TopicBus."""

    def __init__(
        self,
        config: Optional[TransportConfig] = None,
        *,
        bus: Optional[TopicBus] = None,
        connector: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.config = config or TransportConfig()
        self.bus = bus if bus is not None else TopicBus()
        self._connector = connector or ws_connect
        self._ws: Any = None
        self._url: Optional[str] = None
        self._lock = threading.Lock()
        self._state = "disconnected"
        self._next_id = 1
        self._pending: Dict[int, PendingCommand] = {}
        self._reader_thread: Optional[threading.Thread] = None

    #
    # Connection lifecycle
    #
    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def connected(self) -> bool:
        return self.state == "connected"

    @property
    def url(self) -> Optional[str]:
        return self._url

    def connect(self, url: Optional[str] = None) -> None:
        """Open the WebSocket and start the reader thread."""

        target = url or self.config.url
        with self._lock:
            if self._state != "disconnected":
                raise TransportError(f"transport already {self._state}")
            self._state = "connecting"
        logger.info("connecting to %s", target)
        try:
            ws = self._connector(
                target,
                open_timeout=self.config.open_timeout,
                close_timeout=self.config.close_timeout,
                max_size=self.config.max_size,
            )
        except (OSError, WebSocketException) as exc:
            with self._lock:
                self._state = "disconnected"
            self.bus.publish(SOCKET_ERROR, {"error": exc, "url": target})
            raise TransportError(f"connect to {target} failed: {exc}") from exc
        with self._lock:
            self._ws = ws
            self._url = target
            self._state = "connected"
        self.bus.publish(SOCKET_OPEN, {"url": target})
        thread = threading.Thread(
            target=self._reader_loop,
            args=(ws,),
            name="cdpmux-reader",
            daemon=True,
        )
        self._reader_thread = thread
        thread.start()

    def close(self) -> None:
        with self._lock:
            ws = self._ws
            thread = self._reader_thread
        if ws is None:
            return
        try:
            ws.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("error while closing socket: %s", exc)
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self.config.join_timeout)

    def __enter__(self) -> "InspectorTransport":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    #
    # Outbound
    #
    def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        prepare: Optional[Callable[[int], None]] = None,
    ) -> int:
        """Write a command frame and return its id without waiting for the reply.

        ``prepare`` is called with the allocated id before the frame is
        written, so a reply subscription can never miss a fast reply.
        """

        with self._lock:
            ws = self._ws
            command_id = self._next_id
            self._next_id += 1
            if ws is not None:
                self._pending[command_id] = PendingCommand(id=command_id, method=method)
        if ws is None:
            raise TransportError(f"cannot send {method}: not connected")
        frame = {"id": command_id, "method": method, "params": params or {}}
        try:
            if prepare is not None:
                prepare(command_id)
            data = json.dumps(frame, separators=(",", ":"))
            logger.debug("==> %s", data)
            ws.send(data)
        except (OSError, WebSocketException) as exc:
            self.forget(command_id)
            raise TransportError(f"send {method} failed: {exc}") from exc
        except Exception:
            self.forget(command_id)
            raise
        return command_id

    def pending_commands(self) -> List[PendingCommand]:
        with self._lock:
            return list(self._pending.values())

    def forget(self, command_id: int) -> None:
        """Stop tracking a command whose caller gave up on it (timeout, cancel).

        A reply that still arrives for it is dropped like a duplicate.
        """

        with self._lock:
            self._pending.pop(command_id, None)

    #
    # Inbound
    #
    def handle_message(self, raw: Any) -> Optional[str]:
        """Classify one inbound frame and publish it; return the topic or None if dropped."""

        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("dropping undecodable binary frame (%d bytes)", len(raw))
                return None
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("dropping malformed frame: %s (%.200r)", exc, raw)
            return None
        if not isinstance(frame, dict):
            logger.warning("dropping non-object frame: %.200r", raw)
            return None
        logger.debug("<== %.500s", raw)

        kind = classify_frame(frame)
        if kind is FrameKind.REPLY:
            return self._dispatch_reply(frame)
        if kind is FrameKind.EVENT:
            method = frame.get("method")
            if not isinstance(method, str) or not method:
                logger.warning("dropping event with invalid method: %.200r", raw)
                return None
            if not isinstance(frame.get("params"), dict):
                frame["params"] = {}
            self.bus.publish(method, frame)
            return method
        if kind is FrameKind.AMBIGUOUS:
            logger.warning("dropping ambiguous frame (has both id and method): %.200r", raw)
        else:
            logger.warning("dropping unknown frame (has neither id nor method): %.200r", raw)
        return None

    def _dispatch_reply(self, frame: Dict[str, Any]) -> Optional[str]:
        command_id = frame.get("id")
        if not isinstance(command_id, (int, str)):
            logger.warning("dropping reply with invalid id: %r", command_id)
            return None
        with self._lock:
            pending = self._pending.pop(command_id, None)
            issued = isinstance(command_id, int) and 0 < command_id < self._next_id
        if pending is None and issued:
            logger.warning("dropping duplicate or late reply for command %s", command_id)
            return None
        topic = response_topic(command_id)
        self.bus.publish(topic, frame)
        return topic

    def _reader_loop(self, ws: Any) -> None:
        error: Optional[BaseException] = None
        try:
            for message in ws:
                self.handle_message(message)
        except (OSError, WebSocketException) as exc:
            # ConnectionClosedError lands here; a clean close just ends the loop
            error = exc
        finally:
            self._handle_disconnect(ws, error)

    def _handle_disconnect(self, ws: Any, error: Optional[BaseException]) -> None:
        with self._lock:
            if self._ws is not ws:
                return
            self._ws = None
            self._state = "disconnected"
            abandoned = len(self._pending)
            self._pending.clear()
        code = getattr(ws, "close_code", None)
        reason = getattr(ws, "close_reason", None) or ""
        if error is not None:
            logger.warning("connection to %s failed: %s", self._url, error)
            self.bus.publish(SOCKET_ERROR, {"error": error, "url": self._url})
        if abandoned:
            logger.info("dropping %d unanswered command(s)", abandoned)
        logger.info("connection to %s closed (code=%s)", self._url, code)
        self.bus.publish(SOCKET_CLOSE, {"code": code, "reason": reason, "url": self._url})
