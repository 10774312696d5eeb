"""Process orchestration: spawning, supervising and controlling session processes."""

from conductor.process.command import run_command
from conductor.process.orchestrator import ProcessOrchestrator
from conductor.process.registry import ProcessRegistry
from conductor.process.shells import build_shell_command, shell_escape, shell_escape_args
from conductor.process.types import (
    ManagedProcess,
    ProcessConfig,
    SpawnResult,
    TransportMode,
    select_mode,
)

__all__ = [
    "ManagedProcess",
    "ProcessConfig",
    "ProcessOrchestrator",
    "ProcessRegistry",
    "SpawnResult",
    "TransportMode",
    "build_shell_command",
    "run_command",
    "select_mode",
    "shell_escape",
    "shell_escape_args",
]
