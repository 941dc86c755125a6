"""Static catalogue of protocol domains, their commands and events.

The catalogue is advisory metadata: controllers consult it for validation and
diagnostics, but nothing stops a caller from sending a command that is not
listed here.  New domains are added with :meth:`DomainCatalogue.register`
without touching the transport or the topic bus.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class DomainSpec:
    name: str
    commands: Tuple[str, ...] = ()
    events: Tuple[str, ...] = ()
    groups: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for group, members in self.groups.items():
            unknown = [cmd for cmd in members if cmd not in self.commands]
            if unknown:
                raise ValueError(f"{self.name} group {group!r} lists unknown commands: {unknown}")

    def has_command(self, command: str) -> bool:
        return _strip_domain(self.name, command) in self.commands

    def has_event(self, event: str) -> bool:
        return _strip_domain(self.name, event) in self.events

    def qualified(self, name: str) -> str:
        return f"{self.name}.{_strip_domain(self.name, name)}"


def _strip_domain(domain: str, name: str) -> str:
    prefix = f"{domain}."
    if name.startswith(prefix):
        return name[len(prefix) :]
    return name


class DomainCatalogue:
    """Registry of :class:`DomainSpec` entries keyed by domain name."""

    def __init__(self, specs: Iterable[DomainSpec] = ()) -> None:
        self._specs: Dict[str, DomainSpec] = {}
        self._lock = threading.Lock()
        for spec in specs:
            self.register(spec)

    def register(self, spec: DomainSpec, *, replace: bool = False) -> DomainSpec:
        with self._lock:
            if spec.name in self._specs and not replace:
                raise ValueError(f"domain already registered: {spec.name}")
            self._specs[spec.name] = spec
        return spec

    def get(self, domain: str) -> Optional[DomainSpec]:
        with self._lock:
            return self._specs.get(domain)

    def domains(self) -> List[str]:
        with self._lock:
            return list(self._specs)

    def __contains__(self, domain: object) -> bool:
        with self._lock:
            return domain in self._specs

    def commands(self, domain: str) -> List[str]:
        spec = self.get(domain)
        return list(spec.commands) if spec else []

    def events(self, domain: str) -> List[str]:
        spec = self.get(domain)
        return list(spec.events) if spec else []

    def group(self, domain: str, group: str) -> List[str]:
        spec = self.get(domain)
        if spec is None:
            return []
        return list(spec.groups.get(group, ()))

    def is_valid_command(self, domain: str, command: str) -> bool:
        spec = self.get(domain)
        return spec.has_command(command) if spec else False

    def is_valid_event(self, domain: str, event: str) -> bool:
        spec = self.get(domain)
        return spec.has_event(event) if spec else False

    def is_valid_method(self, method: str) -> bool:
        """Check a fully qualified ``Domain.name`` against commands and events."""

        domain, _, name = method.partition(".")
        if not name:
            return False
        return self.is_valid_command(domain, name) or self.is_valid_event(domain, name)


RUNTIME = DomainSpec(
    name="Runtime",
    commands=(
        "enable",
        "disable",
        "evaluate",
        "getProperties",
        "callFunctionOn",
        "runIfWaitingForDebugger",
        "releaseObject",
        "releaseObjectGroup",
        "getHeapUsage",
        "compileScript",
        "runScript",
    ),
    events=(
        "consoleAPICalled",
        "exceptionThrown",
        "exceptionRevoked",
        "executionContextCreated",
        "executionContextDestroyed",
        "executionContextsCleared",
        "inspectRequested",
    ),
    groups={
        "evaluation": ("evaluate", "callFunctionOn", "compileScript", "runScript"),
        "objects": ("getProperties", "releaseObject", "releaseObjectGroup"),
    },
)

DEBUGGER = DomainSpec(
    name="Debugger",
    commands=(
        "enable",
        "disable",
        "pause",
        "resume",
        "stepOver",
        "stepInto",
        "stepOut",
        "setBreakpointByUrl",
        "setBreakpoint",
        "removeBreakpoint",
        "setBreakpointsActive",
        "setPauseOnExceptions",
        "getScriptSource",
        "continueToLocation",
        "setVariableValue",
        "setScriptSource",
        "restartFrame",
        "setAsyncCallStackDepth",
        "setBlackboxPatterns",
        "setSkipAllPauses",
    ),
    events=(
        "scriptParsed",
        "scriptFailedToParse",
        "paused",
        "resumed",
        "breakpointResolved",
    ),
    groups={
        "execution": ("pause", "resume", "stepOver", "stepInto", "stepOut", "continueToLocation", "restartFrame"),
        "stepping": ("stepOver", "stepInto", "stepOut"),
        "breakpoints": ("setBreakpointByUrl", "setBreakpoint", "removeBreakpoint", "setBreakpointsActive"),
        "scripts": ("getScriptSource", "setScriptSource"),
    },
)

CONSOLE = DomainSpec(
    name="Console",
    commands=("enable", "disable", "clearMessages"),
    events=("messageAdded",),
)

PROFILER = DomainSpec(
    name="Profiler",
    commands=(
        "enable",
        "disable",
        "start",
        "stop",
        "setSamplingInterval",
        "startPreciseCoverage",
        "stopPreciseCoverage",
        "takePreciseCoverage",
        "getBestEffortCoverage",
    ),
    events=("consoleProfileStarted", "consoleProfileFinished"),
    groups={
        "coverage": ("startPreciseCoverage", "stopPreciseCoverage", "takePreciseCoverage", "getBestEffortCoverage"),
        "sampling": ("start", "stop", "setSamplingInterval"),
    },
)

HEAP_PROFILER = DomainSpec(
    name="HeapProfiler",
    commands=(
        "enable",
        "disable",
        "takeHeapSnapshot",
        "startTrackingHeapObjects",
        "stopTrackingHeapObjects",
        "collectGarbage",
        "getObjectByHeapObjectId",
        "getHeapObjectId",
        "startSampling",
        "stopSampling",
        "addInspectedHeapObject",
    ),
    events=(
        "addHeapSnapshotChunk",
        "heapStatsUpdate",
        "lastSeenObjectId",
        "reportHeapSnapshotProgress",
        "resetProfiles",
    ),
    groups={
        "tracking": ("startTrackingHeapObjects", "stopTrackingHeapObjects"),
        "sampling": ("startSampling", "stopSampling"),
        "snapshots": ("takeHeapSnapshot", "addInspectedHeapObject"),
        "objects": ("getObjectByHeapObjectId", "getHeapObjectId"),
    },
)

SCHEMA = DomainSpec(name="Schema", commands=("getDomains",))

STANDARD_DOMAINS: Tuple[DomainSpec, ...] = (RUNTIME, DEBUGGER, CONSOLE, PROFILER, HEAP_PROFILER, SCHEMA)


def default_catalogue() -> DomainCatalogue:
    """Return a fresh catalogue seeded with the standard domains."""

    return DomainCatalogue(STANDARD_DOMAINS)


DEFAULT_CATALOGUE = default_catalogue()


def is_valid_command(domain: str, command: str) -> bool:
    return DEFAULT_CATALOGUE.is_valid_command(domain, command)


def is_valid_event(domain: str, event: str) -> bool:
    return DEFAULT_CATALOGUE.is_valid_event(domain, event)
