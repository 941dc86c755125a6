from cdpmux.events import (
    BaseEvent,
    ConsoleAPICalledEvent,
    ExceptionThrownEvent,
    ExecutionContextCreatedEvent,
    HeapSnapshotProgressEvent,
    MessageAddedEvent,
    PausedEvent,
    ScriptParsedEvent,
    parse_event,
)


def test_script_parsed_event_fields():
    event = parse_event(
        "Debugger.scriptParsed",
        {"scriptId": 42, "url": "file:///app/main.js", "startLine": 0, "endLine": "12", "isModule": True},
    )
    assert isinstance(event, ScriptParsedEvent)
    assert event.script_id == "42"
    assert event.end_line == 12
    assert event.is_module is True
    assert event.domain == "Debugger"
    assert event.name == "scriptParsed"


def test_paused_event_keeps_dict_frames_only():
    event = parse_event(
        "Debugger.paused",
        {"reason": "breakpoint", "callFrames": [{"callFrameId": "0"}, "junk"], "hitBreakpoints": ["bp-1"]},
    )
    assert isinstance(event, PausedEvent)
    assert event.call_frames == [{"callFrameId": "0"}]
    assert event.hit_breakpoints == ["bp-1"]


def test_console_api_called_text():
    event = parse_event(
        "Runtime.consoleAPICalled",
        {"type": "log", "args": [{"type": "string", "value": "hello"}, {"type": "object", "description": "Object"}]},
    )
    assert isinstance(event, ConsoleAPICalledEvent)
    assert event.text == "hello Object"


def test_exception_thrown_text_prefers_description():
    event = parse_event(
        "Runtime.exceptionThrown",
        {"exceptionDetails": {"text": "Uncaught", "exception": {"description": "Error: boom"}}},
    )
    assert isinstance(event, ExceptionThrownEvent)
    assert event.text == "Error: boom"


def test_message_added_and_context_created():
    message = parse_event("Console.messageAdded", {"message": {"source": "console-api", "level": "warning", "text": "careful"}})
    assert isinstance(message, MessageAddedEvent)
    assert (message.level, message.text) == ("warning", "careful")

    context = parse_event("Runtime.executionContextCreated", {"context": {"id": 1, "name": "main", "origin": "node"}})
    assert isinstance(context, ExecutionContextCreatedEvent)
    assert context.context_id == 1


def test_heap_progress_event():
    event = parse_event("HeapProfiler.reportHeapSnapshotProgress", {"done": 5, "total": 10, "finished": False})
    assert isinstance(event, HeapSnapshotProgressEvent)
    assert (event.done, event.total, event.finished) == (5, 10, False)


def test_unknown_or_malformed_events_fall_back_to_base():
    event = parse_event("Network.requestWillBeSent", {"requestId": "1"})
    assert type(event) is BaseEvent
    assert event.params == {"requestId": "1"}

    broken = parse_event("Debugger.scriptParsed", "not a dict")
    assert isinstance(broken, ScriptParsedEvent)
    assert broken.script_id is None
    assert broken.params == {}
