"""One-shot command execution: run a shell command to completion.

Used for the command line of a terminal session when the UI wants a
structured result (exit code, separate stderr) instead of a live PTY.
Nothing here touches the process registry.
"""

from __future__ import annotations

import asyncio
import logging
import os

from conductor.output.filter import strip_shell_integration
from conductor.process.shells import build_shell_invocation
from conductor.process.streams import pump_stream
from conductor.session.wire import Wire

logger = logging.getLogger(__name__)


async def run_command(
    wire: Wire,
    session_id: str,
    command: str,
    cwd: str,
    shell: str = "bash",
    env: dict[str, str] | None = None,
) -> int:
    """Run ``command`` under ``shell`` in ``cwd`` and stream its output.

    stdout is emitted as DATA (shell-integration sequences stripped,
    empty chunks dropped), stderr as STDERR, unfiltered.  Completion is
    signalled with COMMAND_EXIT.

    The shell is launched through ``/bin/sh`` with the wrapped command as
    one quoted argument, so the shell binary is resolved by the system
    shell rather than by us.

    Returns:
        The command's exit code; 1 if it could not be started.
    """
    invocation = build_shell_invocation(command, shell)
    logger.info("Running command for %s in %s: %s", session_id, cwd, invocation)

    try:
        proc = await asyncio.create_subprocess_shell(
            invocation,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env={**os.environ, **(env or {})},
        )
    except (OSError, ValueError) as e:
        logger.error("Failed to run command for %s: %s", session_id, e)
        wire.send_error(session_id, f"Failed to run command: {e}")
        wire.send_command_exit(session_id, 1)
        return 1

    def _on_stdout(text: str) -> None:
        cleaned = strip_shell_integration(text)
        if cleaned:
            wire.send_data(session_id, cleaned)

    def _on_stderr(text: str) -> None:
        wire.send_stderr(session_id, text)

    def _on_read_error(message: str) -> None:
        wire.send_error(session_id, f"Read failed: {message}")

    try:
        await asyncio.gather(
            pump_stream(proc.stdout, _on_stdout, f"{session_id} stdout", _on_read_error),
            pump_stream(proc.stderr, _on_stderr, f"{session_id} stderr", _on_read_error),
        )
        exit_code = await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        raise

    logger.info("Command for %s exited (code=%d)", session_id, exit_code)
    wire.send_command_exit(session_id, exit_code)
    return exit_code
