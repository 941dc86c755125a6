import re

from cdpmux.cache import CacheController, ConsoleEntry, InspectorCache
from cdpmux.events import TopicBus, parse_event


def _event(method, params):
    return parse_event(method, params)


def test_scripts_are_cached_and_found_by_url_suffix():
    cache = InspectorCache()
    cache.apply_event(_event("Debugger.scriptParsed", {"scriptId": "1", "url": "file:///app/src/main.js"}))
    cache.apply_event(_event("Debugger.scriptFailedToParse", {"scriptId": "2", "url": "file:///app/bad.js"}))

    assert cache.get_script("1").url == "file:///app/src/main.js"
    assert [info.script_id for info in cache.find_scripts("src/main.js")] == ["1"]
    assert [info.script_id for info in cache.iter_scripts()] == ["1"]
    assert len(cache.iter_scripts(include_failed=True)) == 2

    cache.cache_source("1", "let x = 1;")
    assert cache.get_script("1").source == "let x = 1;"


def test_pause_and_resume_track_state():
    cache = InspectorCache()
    cache.apply_event(
        _event(
            "Debugger.paused",
            {
                "reason": "breakpoint",
                "hitBreakpoints": ["bp-1"],
                "callFrames": [
                    {"callFrameId": "f0", "functionName": "", "location": {"scriptId": "1", "lineNumber": 4}},
                ],
            },
        )
    )
    assert cache.paused
    frame = cache.pause.top_frame
    assert frame.function_name == "(anonymous)"
    assert frame.location.line_number == 4
    assert cache.pause.hit_breakpoints == ["bp-1"]

    cache.apply_event(_event("Debugger.resumed", {}))
    assert not cache.paused


def test_breakpoints_record_resolve_and_remove():
    cache = InspectorCache()
    cache.record_breakpoint("bp-1", url="file:///app/main.js", line_number=3)
    cache.apply_event(_event("Debugger.breakpointResolved", {"breakpointId": "bp-1", "location": {"scriptId": "1", "lineNumber": 3}}))
    cache.apply_event(_event("Debugger.breakpointResolved", {"breakpointId": "bp-2", "location": {"scriptId": "1", "lineNumber": 9}}))

    assert cache.breakpoints["bp-1"].locations[0].line_number == 3
    assert "bp-2" in cache.breakpoints
    assert [bp.breakpoint_id for bp in cache.breakpoints_for_url("file:///app/main.js")] == ["bp-1"]
    assert cache.remove_breakpoint("bp-1") is not None
    assert cache.remove_breakpoint("bp-1") is None


def test_execution_contexts():
    cache = InspectorCache()
    cache.apply_event(_event("Runtime.executionContextCreated", {"context": {"id": 1, "name": "main"}}))
    cache.apply_event(_event("Runtime.executionContextCreated", {"context": {"id": 2}}))
    cache.apply_event(_event("Runtime.executionContextDestroyed", {"executionContextId": 1}))
    assert list(cache.contexts) == [2]
    cache.apply_event(_event("Runtime.executionContextsCleared", {}))
    assert cache.contexts == {}


def test_console_entries_are_bounded_and_filterable():
    cache = InspectorCache(max_console_entries=2)
    cache.apply_event(_event("Console.messageAdded", {"message": {"level": "log", "text": "one"}}))
    cache.apply_event(_event("Runtime.consoleAPICalled", {"type": "warning", "args": [{"value": "two"}]}))
    cache.apply_event(_event("Runtime.exceptionThrown", {"exceptionDetails": {"text": "three"}}))

    assert [entry.text for entry in cache.console_entries()] == ["two", "three"]
    assert [entry.text for entry in cache.console_entries("error")] == ["three"]
    cache.add_console_entry(ConsoleEntry(source="test", level="log", text="four"))
    cache.clear_console()
    assert cache.console_entries() == []


def test_cache_controller_follows_bus_and_detaches():
    bus = TopicBus()
    cache = InspectorCache()
    controller = CacheController(cache, bus)

    bus.publish("Debugger.scriptParsed", {"method": "Debugger.scriptParsed", "params": {"scriptId": "7", "url": "a.js"}})
    bus.publish("Profiler.consoleProfileStarted", {"method": "Profiler.consoleProfileStarted", "params": {}})
    assert "7" in cache.scripts

    controller.detach()
    assert bus.get_subscription_count() == 0
    bus.publish("Debugger.scriptParsed", {"method": "Debugger.scriptParsed", "params": {"scriptId": "8", "url": "b.js"}})
    assert "8" not in cache.scripts


def test_cache_controller_custom_pattern():
    bus = TopicBus()
    cache = InspectorCache()
    CacheController(cache, bus, pattern=re.compile(r"^Console\."))
    bus.publish("Debugger.scriptParsed", {"params": {"scriptId": "1", "url": "x.js"}})
    bus.publish("Console.messageAdded", {"params": {"message": {"text": "hi"}}})
    assert cache.scripts == {}
    assert [entry.text for entry in cache.console_entries()] == ["hi"]


def test_clear_resets_everything():
    cache = InspectorCache()
    cache.apply_event(_event("Debugger.scriptParsed", {"scriptId": "1", "url": "a.js"}))
    cache.record_breakpoint("bp")
    cache.clear()
    assert cache.scripts == {} and cache.breakpoints == {} and not cache.paused
