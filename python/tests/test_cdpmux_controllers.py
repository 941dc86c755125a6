import json
import threading
from concurrent.futures import CancelledError

import pytest

from cdpmux.controllers import (
    CommandError,
    CommandTimeout,
    ConnectionLostError,
    ControllerFactory,
    DebuggerController,
    DomainController,
    HeapProfilerController,
    RuntimeController,
)
from cdpmux.events import PausedEvent
from cdpmux.transport import InspectorTransport, TransportError


def reply(transport, command_id, **body):
    return transport.handle_message(json.dumps({"id": command_id, **body}))


def test_future_resolves_with_result(transport, fake_conn, bus):
    runtime = RuntimeController(transport)
    future = runtime.send("evaluate", {"expression": "1+1"})
    command_id = fake_conn.sent[-1]["id"]
    assert fake_conn.sent[-1]["method"] == "Runtime.evaluate"
    assert not future.done()

    reply(transport, command_id, result={"x": 1})

    assert future.result(timeout=1) == {"x": 1}
    assert runtime.pending_count() == 0
    assert bus.get_matching_subscriptions(f"response:{command_id}") == []


def test_missing_result_resolves_to_empty_object(transport, fake_conn):
    debugger = DebuggerController(transport)
    future = debugger.resume()
    reply(transport, fake_conn.sent[-1]["id"])
    assert future.result(timeout=1) == {}


def test_error_reply_rejects_future(transport, fake_conn):
    runtime = RuntimeController(transport)
    future = runtime.evaluate("throw 1")
    reply(transport, fake_conn.sent[-1]["id"], error={"code": -1, "message": "boom"})

    with pytest.raises(CommandError) as excinfo:
        future.result(timeout=1)
    assert excinfo.value.message == "boom"
    assert excinfo.value.code == -1
    assert excinfo.value.method == "Runtime.evaluate"
    assert "boom" in str(excinfo.value)


def test_out_of_order_replies_settle_the_right_futures(transport, fake_conn):
    runtime = RuntimeController(transport)
    debugger = DebuggerController(transport)
    first = runtime.evaluate("a")
    second = debugger.pause()
    first_id, second_id = fake_conn.sent[0]["id"], fake_conn.sent[1]["id"]
    assert first_id < second_id

    reply(transport, second_id, result={"which": "second"})
    assert second.result(timeout=1) == {"which": "second"}
    assert not first.done()

    reply(transport, first_id, result={"which": "first"})
    assert first.result(timeout=1) == {"which": "first"}


def test_duplicate_reply_does_not_resettle(transport, fake_conn):
    runtime = RuntimeController(transport)
    future = runtime.evaluate("x")
    command_id = fake_conn.sent[-1]["id"]
    reply(transport, command_id, result={"v": 1})
    assert reply(transport, command_id, result={"v": 2}) is None
    assert future.result(timeout=1) == {"v": 1}


def test_evaluate_defaults(transport, fake_conn):
    RuntimeController(transport).evaluate("1+1")
    assert fake_conn.sent[-1]["params"] == {"expression": "1+1", "returnByValue": True, "awaitPromise": False}

    RuntimeController(transport).evaluate("p", awaitPromise=True)
    assert fake_conn.sent[-1]["params"]["awaitPromise"] is True


def test_debugger_command_parameters(transport, fake_conn):
    debugger = DebuggerController(transport)
    debugger.set_breakpoint_by_url(10, "file:///app/main.js")
    assert fake_conn.sent[-1] == {
        "id": fake_conn.sent[-1]["id"],
        "method": "Debugger.setBreakpointByUrl",
        "params": {"lineNumber": 10, "url": "file:///app/main.js", "columnNumber": 0, "condition": ""},
    }
    debugger.step_over()
    assert fake_conn.sent[-1]["method"] == "Debugger.stepOver"
    with pytest.raises(ValueError):
        debugger.set_pause_on_exceptions("sometimes")


def test_heap_profiler_snapshot_parameters(transport, fake_conn):
    HeapProfilerController(transport).take_heap_snapshot(report_progress=False)
    assert fake_conn.sent[-1]["method"] == "HeapProfiler.takeHeapSnapshot"
    assert fake_conn.sent[-1]["params"] == {"reportProgress": False}


def test_command_timeout(transport, fake_conn, bus):
    runtime = RuntimeController(transport, timeout=0.05)
    future = runtime.evaluate("while(true){}")
    command_id = fake_conn.sent[-1]["id"]

    with pytest.raises(CommandTimeout):
        future.result(timeout=1)
    assert runtime.pending_count() == 0
    assert bus.get_matching_subscriptions(f"response:{command_id}") == []


def test_per_call_timeout_overrides_default(transport):
    runtime = RuntimeController(transport, timeout=None)
    future = runtime.send("evaluate", {"expression": "0"}, timeout=0.05)
    with pytest.raises(CommandTimeout):
        future.result(timeout=1)


def test_socket_close_fails_pending_commands(transport):
    debugger = DebuggerController(transport)
    future = debugger.pause()
    transport.close()
    with pytest.raises(ConnectionLostError):
        future.result(timeout=1)
    assert debugger.pending_count() == 0


def test_pending_commands_survive_close_when_disabled(transport):
    debugger = DebuggerController(transport, fail_pending_on_close=False)
    future = debugger.pause()
    transport.close()
    assert not future.done()
    assert debugger.pending_count() == 1
    future.cancel()


def test_cancel_drops_reply_subscription(transport, fake_conn, bus):
    runtime = RuntimeController(transport)
    future = runtime.evaluate("slow()")
    command_id = fake_conn.sent[-1]["id"]
    assert bus.get_matching_subscriptions(f"response:{command_id}")

    assert future.cancel()
    assert bus.get_matching_subscriptions(f"response:{command_id}") == []
    assert runtime.pending_count() == 0
    reply(transport, command_id, result={})
    with pytest.raises(CancelledError):
        future.result(timeout=1)


def test_send_while_disconnected_returns_failed_future():
    transport = InspectorTransport()
    runtime = RuntimeController(transport)
    future = runtime.evaluate("1")
    assert future.done()
    assert isinstance(future.exception(), TransportError)
    assert runtime.pending_count() == 0


def test_event_handlers_receive_typed_events(transport):
    debugger = DebuggerController(transport)
    received = []
    debugger.on("paused", received.append)

    transport.handle_message(json.dumps({"method": "Debugger.paused", "params": {"reason": "breakpoint"}}))

    assert len(received) == 1
    assert isinstance(received[0], PausedEvent)
    assert received[0].reason == "breakpoint"


def test_failing_event_handler_does_not_block_others(transport):
    debugger = DebuggerController(transport)
    received = []

    def broken(event):
        raise RuntimeError("handler exploded")

    debugger.on("Debugger.resumed", broken)
    debugger.on("resumed", received.append)
    transport.handle_message('{"method": "Debugger.resumed", "params": {}}')
    assert [event.method for event in received] == ["Debugger.resumed"]


def test_one_bus_subscription_per_event_name(transport, bus):
    debugger = DebuggerController(transport)
    before = bus.get_subscription_count()
    first = lambda event: None  # noqa: E731
    second = lambda event: None  # noqa: E731
    debugger.on("paused", first)
    debugger.on("paused", second)
    assert bus.get_subscription_count() == before + 1
    assert debugger.listeners("paused") == [first, second]

    debugger.off("paused", first)
    assert bus.get_subscription_count() == before + 1
    debugger.off("paused", second)
    assert bus.get_subscription_count() == before
    assert debugger.listeners("paused") == []


def test_off_without_handler_removes_all(transport):
    debugger = DebuggerController(transport)
    received = []
    debugger.on("paused", received.append)
    debugger.on("paused", received.append)
    debugger.off("paused")
    transport.handle_message('{"method": "Debugger.paused", "params": {}}')
    assert received == []


def test_events_for_other_domains_are_ignored(transport):
    debugger = DebuggerController(transport)
    received = []
    debugger.on("paused", received.append)
    transport.handle_message('{"method": "Runtime.paused", "params": {}}')
    assert received == []


def test_controller_lists_come_from_catalogue(transport):
    debugger = DebuggerController(transport)
    assert "setBreakpointByUrl" in debugger.get_command_list()
    assert "paused" in debugger.get_event_list()
    assert debugger.spec is not None and debugger.spec.name == "Debugger"


def test_detach_releases_every_subscription(transport, bus):
    before = bus.get_subscription_count()
    debugger = DebuggerController(transport)
    debugger.on("paused", lambda event: None)
    debugger.on("resumed", lambda event: None)
    debugger.detach()
    assert bus.get_subscription_count() == before


def test_factory_creates_standard_and_generic_controllers(transport, fake_conn):
    factory = ControllerFactory(transport, timeout=5.0)
    controllers = factory.create_all()
    assert set(controllers) >= {"Runtime", "Debugger", "Console", "Profiler", "HeapProfiler", "Schema"}
    assert isinstance(controllers["Runtime"], RuntimeController)
    assert all(ctrl.transport is transport for ctrl in controllers.values())
    assert controllers["Debugger"].timeout == 5.0
    assert isinstance(factory.create_heap_profiler(), HeapProfilerController)

    network = factory.create("Network")
    assert type(network) is DomainController
    network.send("enable")
    assert fake_conn.sent[-1]["method"] == "Network.enable"


def test_factory_register_custom_controller(transport):
    class TracingController(DomainController):
        domain = "Tracing"

    factory = ControllerFactory(transport)
    factory.register("Tracing", TracingController)
    assert isinstance(factory.create("Tracing"), TracingController)
    assert "Tracing" in factory.create_all()


def test_controllers_share_one_id_sequence(transport, fake_conn):
    factory = ControllerFactory(transport)
    factory.create_runtime().enable()
    factory.create_debugger().enable()
    factory.create_profiler().enable()
    assert [frame["id"] for frame in fake_conn.sent] == [1, 2, 3]


def test_reply_delivered_from_reader_thread(transport, fake_conn):
    runtime = RuntimeController(transport)
    future = runtime.evaluate("2*3")
    fake_conn.feed({"id": fake_conn.sent[-1]["id"], "result": {"result": {"value": 6}}})
    assert future.result(timeout=1) == {"result": {"value": 6}}


def test_blocking_call(transport, fake_conn):
    runtime = RuntimeController(transport)
    answered = threading.Event()

    def answer():
        while not fake_conn.sent:
            answered.wait(0.01)
        fake_conn.feed({"id": fake_conn.sent[-1]["id"], "result": {"ok": True}})
        answered.set()

    worker = threading.Thread(target=answer, daemon=True)
    worker.start()
    assert runtime.call("getHeapUsage", timeout=1) == {"ok": True}
    worker.join(timeout=1)


def test_timed_out_commands_release_transport_entries(transport):
    runtime = RuntimeController(transport, timeout=0.05)
    futures = [runtime.enable() for _ in range(3)]
    for future in futures:
        with pytest.raises(CommandTimeout):
            future.result(timeout=1)
    assert runtime.pending_count() == 0
    assert transport.pending_commands() == []


def test_cancelled_command_releases_transport_entry(transport):
    runtime = RuntimeController(transport)
    future = runtime.evaluate("slow()")
    assert len(transport.pending_commands()) == 1
    future.cancel()
    assert transport.pending_commands() == []


def test_call_timeout_cleans_up(transport, bus):
    debugger = DomainController(transport, domain="Debugger")
    before = bus.get_subscription_count()
    with pytest.raises(CommandTimeout):
        debugger.call("enable", timeout=0.05)
    assert debugger.pending_count() == 0
    assert bus.get_subscription_count() == before
    assert transport.pending_commands() == []
