"""Wire protocol: decouples process orchestration from its consumers.

Events flow from the orchestrator to subscribers (a UI, the CLI, a remote
mirror).  Each subscriber gets its own queue, so per-session ordering is
whatever order the orchestrator sent them in.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    DATA = "data"
    STDERR = "stderr"
    EXIT = "exit"
    ERROR = "error"
    SESSION_ID = "session_id"
    COMMAND_EXIT = "command_exit"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def session_id(self) -> str | None:
        return self.data.get("session_id")


class Wire:
    """Async message bus: orchestrator -> subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_data(self, session_id: str, text: str) -> None:
        self.send(
            WireEvent(type=EventType.DATA, data={"session_id": session_id, "text": text})
        )

    def send_stderr(self, session_id: str, text: str) -> None:
        self.send(
            WireEvent(
                type=EventType.STDERR, data={"session_id": session_id, "text": text}
            )
        )

    def send_exit(self, session_id: str, code: int) -> None:
        self.send(
            WireEvent(type=EventType.EXIT, data={"session_id": session_id, "code": code})
        )

    def send_error(self, session_id: str, message: str) -> None:
        self.send(
            WireEvent(
                type=EventType.ERROR,
                data={"session_id": session_id, "message": message},
            )
        )

    def send_session_id(self, session_id: str, captured_id: str) -> None:
        """Announce a resumable identifier captured from a batch response."""
        self.send(
            WireEvent(
                type=EventType.SESSION_ID,
                data={"session_id": session_id, "captured_id": captured_id},
            )
        )

    def send_command_exit(self, session_id: str, code: int) -> None:
        self.send(
            WireEvent(
                type=EventType.COMMAND_EXIT,
                data={"session_id": session_id, "code": code},
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed
