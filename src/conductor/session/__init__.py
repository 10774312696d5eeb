"""Event stream emitted by the orchestrator."""

from conductor.session.wire import EventType, Wire, WireEvent

__all__ = ["EventType", "Wire", "WireEvent"]
