"""
cdpmux - one WebSocket, many inspector domain clients.

This package multiplexes a single Chrome-DevTools-shaped JSON channel between
independent domain controllers (Runtime, Debugger, Console, Profiler,
HeapProfiler, Schema).  Each module is implemented in its own file to keep
responsibilities clear:

    events.py      → topic bus and typed event records
    transport.py   → socket ownership, command ids, frame classification
    domains.py     → catalogue of domains, commands and events
    controllers.py → per-domain command façades and event listeners
    cache.py       → inspector state (scripts, breakpoints, pause, console)
    session.py     → composition root, handshake and convenience helpers
    runner.py      → command-line parsing and result printing
    repl.py        → interactive prompt
    cli.py         → protocol script runner entry point
"""

from .transport import (  # noqa: F401
    FrameKind,
    InspectorTransport,
    PendingCommand,
    TransportConfig,
    TransportError,
    classify_frame,
    response_topic,
)
from .events import (  # noqa: F401
    BaseEvent,
    BreakpointResolvedEvent,
    ConsoleAPICalledEvent,
    MessageAddedEvent,
    PausedEvent,
    ResumedEvent,
    ScriptParsedEvent,
    Subscription,
    TopicBus,
    exact_topic,
    parse_event,
)
from .domains import DomainCatalogue, DomainSpec, default_catalogue, is_valid_command, is_valid_event  # noqa: F401
from .controllers import (  # noqa: F401
    CommandError,
    CommandTimeout,
    ConnectionLostError,
    ConsoleController,
    ControllerFactory,
    DebuggerController,
    DomainController,
    HeapProfilerController,
    ProfilerController,
    RuntimeController,
    SchemaController,
)
from .cache import CacheController, InspectorCache  # noqa: F401
from .session import InspectorSession, SessionConfig, SessionError  # noqa: F401

__all__ = [
    "InspectorTransport",
    "TransportConfig",
    "TransportError",
    "PendingCommand",
    "FrameKind",
    "classify_frame",
    "response_topic",
    "TopicBus",
    "Subscription",
    "exact_topic",
    "BaseEvent",
    "ScriptParsedEvent",
    "PausedEvent",
    "ResumedEvent",
    "BreakpointResolvedEvent",
    "ConsoleAPICalledEvent",
    "MessageAddedEvent",
    "parse_event",
    "DomainCatalogue",
    "DomainSpec",
    "default_catalogue",
    "is_valid_command",
    "is_valid_event",
    "DomainController",
    "RuntimeController",
    "DebuggerController",
    "ConsoleController",
    "ProfilerController",
    "HeapProfilerController",
    "SchemaController",
    "ControllerFactory",
    "CommandError",
    "CommandTimeout",
    "ConnectionLostError",
    "InspectorCache",
    "CacheController",
    "InspectorSession",
    "SessionConfig",
    "SessionError",
]

__version__ = "0.1.0"
