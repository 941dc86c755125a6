"""Interactive prompt for sending protocol commands."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout

from .runner import run_line
from .session import InspectorSession

LOGGER = logging.getLogger("cdpmux.repl")


def method_names(session: InspectorSession) -> List[str]:
    """Every ``Domain.command`` the catalogue knows about, for completion."""

    names: List[str] = []
    for domain in session.catalogue.domains():
        names.extend(f"{domain}.{command}" for command in session.catalogue.commands(domain))
    return sorted(names)


class ProtocolREPL:
    """prompt_toolkit loop: one ``Domain.command {json}`` per line until EOF."""

    def __init__(
        self,
        session: InspectorSession,
        *,
        json_output: bool = False,
        history: Optional[Iterable[str]] = None,
    ) -> None:
        self.session = session
        self.json_output = json_output
        self.history = InMemoryHistory()
        for entry in history or []:
            self.history.append_string(entry)

    def run(self) -> int:
        completer = WordCompleter(method_names(self.session), sentence=True)
        prompt = PromptSession("cdp> ", history=self.history, completer=completer, complete_while_typing=True)
        buffer: List[str] = []
        while True:
            try:
                with patch_stdout():
                    line = prompt.prompt()
            except (EOFError, KeyboardInterrupt):
                print()
                return 0
            if self._handle_multiline(buffer, line):
                continue
            payload = " ".join(buffer) if buffer else line
            buffer.clear()
            if payload.strip() in ("quit", "exit"):
                return 0
            self.dispatch(payload)

    def dispatch(self, line: str) -> int:
        stripped = line.strip()
        if not stripped:
            return 0
        if not self.session.transport.connected:
            print("error: connection closed")
            return 1
        try:
            return run_line(self.session, stripped, json_output=self.json_output)
        except Exception as exc:  # pragma: no cover - surfaced to the user
            LOGGER.exception("command failed")
            print(f"Command '{stripped}' failed: {exc}")
            return 1

    @staticmethod
    def _handle_multiline(buffer: List[str], line: str) -> bool:
        stripped = line.rstrip()
        if stripped.endswith("\\"):
            buffer.append(stripped[:-1])
            return True
        if buffer:
            buffer.append(stripped)
        return False
