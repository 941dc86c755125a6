"""
Pytest configuration and fixtures for cdpmux tests.
"""
import json
import queue
from typing import Any, List

import pytest

from cdpmux.events import TopicBus
from cdpmux.transport import InspectorTransport


_CLOSE = object()


class FakeConnection:
    """In-memory stand-in for a websockets sync ClientConnection."""

    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.close_code = None
        self.close_reason = ""
        self.fail_send: Any = None
        self._inbox: "queue.Queue[Any]" = queue.Queue()

    def send(self, data: str) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(json.loads(data))

    def feed(self, frame: Any) -> None:
        if not isinstance(frame, (str, bytes)):
            frame = json.dumps(frame)
        self._inbox.put(frame)

    def drop(self, exc: BaseException) -> None:
        self._inbox.put(exc)

    def close(self, code: int = 1000) -> None:
        if self.close_code is None:
            self.close_code = code
        self._inbox.put(_CLOSE)

    def __iter__(self):
        while True:
            item = self._inbox.get()
            if item is _CLOSE:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


@pytest.fixture
def fake_conn():
    return FakeConnection()


@pytest.fixture
def bus():
    return TopicBus()


@pytest.fixture
def transport(fake_conn, bus):
    transport = InspectorTransport(bus=bus, connector=lambda url, **kwargs: fake_conn)
    transport.connect("ws://inspector.test/ws")
    yield transport
    transport.close()
