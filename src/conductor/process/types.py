"""Process types: spawn input, transport modes, and registry entries."""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

from conductor.pty.session import PTYSession

# tool_type of a plain shell session
TERMINAL_TOOL_TYPE = "terminal"


class ProcessConfig(BaseModel):
    """Everything needed to start one session's backing process.

    Built by the UI / agent catalog; agent-specific flags (model, resume,
    working directory) are already folded into ``args``.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1, description="Unique per logical session.")
    tool_type: str = Field(description="Agent/tool tag; 'terminal' for a plain shell.")
    cwd: str = Field(description="Working directory.")
    command: str = Field(default="", description="Executable path or name.")
    args: list[str] = Field(default_factory=list)
    requires_pty: bool = Field(
        default=False, description="The tool needs a real terminal to run."
    )
    prompt: str | None = Field(
        default=None,
        description="Single-shot prompt. Forces batch mode and disables the PTY.",
    )
    shell: str | None = Field(
        default=None, description="Shell override for plain terminal sessions."
    )
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables."
    )
    cols: int | None = Field(default=None, gt=0, description="Initial PTY columns.")
    rows: int | None = Field(default=None, gt=0, description="Initial PTY rows.")

    @property
    def is_terminal(self) -> bool:
        return self.tool_type == TERMINAL_TOOL_TYPE


class TransportMode(enum.StrEnum):
    INTERACTIVE_TERMINAL = "interactive-terminal"
    INTERACTIVE_AGENT = "interactive-agent"
    BATCH_AGENT = "batch-agent"
    STREAMING_AGENT = "streaming-agent"  # plain child, no prompt: stdout is live


def select_mode(config: ProcessConfig) -> TransportMode:
    """Pick the transport for a config.

    A prompt always wins: batch runs never get a terminal.
    """
    if config.prompt is None and (config.is_terminal or config.requires_pty):
        if config.is_terminal:
            return TransportMode.INTERACTIVE_TERMINAL
        return TransportMode.INTERACTIVE_AGENT
    if config.prompt is not None:
        return TransportMode.BATCH_AGENT
    return TransportMode.STREAMING_AGENT


@dataclass
class PtyBacking:
    """Backing for interactive sessions."""

    session: PTYSession


@dataclass
class ChildBacking:
    """Backing for plain child processes.

    ``buffer`` collects stdout for batch runs and is None otherwise.
    """

    process: asyncio.subprocess.Process
    buffer: list[str] | None = None


Backing = Union[PtyBacking, ChildBacking]


@dataclass
class ManagedProcess:
    """A live session as tracked by the registry."""

    session_id: str
    tool_type: str
    mode: TransportMode
    backing: Backing
    cwd: str
    pid: int
    last_command: str | None = None
    started_at: float = field(default_factory=time.time)
    # Set when another process took over the session id, or the spawn was
    # rolled back; such an entry exits silently
    superseded: bool = False

    @property
    def is_pty(self) -> bool:
        return isinstance(self.backing, PtyBacking)

    @property
    def is_batch(self) -> bool:
        return self.mode is TransportMode.BATCH_AGENT

    @property
    def buffer(self) -> list[str] | None:
        if isinstance(self.backing, ChildBacking):
            return self.backing.buffer
        return None

    def describe(self) -> dict[str, Any]:
        """Plain-dict snapshot for diagnostics."""
        return {
            "session_id": self.session_id,
            "tool_type": self.tool_type,
            "mode": self.mode.value,
            "pid": self.pid,
            "cwd": self.cwd,
            "pty": self.is_pty,
            "buffered_chars": sum(len(c) for c in self.buffer or ()),
            "started_at": self.started_at,
        }


@dataclass(frozen=True)
class SpawnResult:
    """Outcome of a spawn request."""

    success: bool
    pid: int | None = None
    error: str | None = None
