"""Process orchestrator: spawns and supervises session processes.

Every session runs on one of two transports:

* a pseudo-terminal (plain shell sessions and agents that need a real
  terminal); output is filtered for escape sequences and command echo
  and streamed live;
* a plain child process with pipes; stdout is streamed live, or, for
  batch runs with a prompt, accumulated and decoded as a JSON envelope
  once the process exits.

Callers drive sessions with write / resize / interrupt / kill and read
results off the Wire.  No control operation waits for process output.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from conductor.config import ConductorConfig
from conductor.output.decoder import decode_batch_response
from conductor.output.filter import filter_terminal_output
from conductor.process.command import run_command
from conductor.process.registry import ProcessRegistry
from conductor.process.streams import pump_stream
from conductor.process.types import (
    ChildBacking,
    ManagedProcess,
    ProcessConfig,
    PtyBacking,
    SpawnResult,
    TransportMode,
    select_mode,
)
from conductor.pty.session import PTYSession
from conductor.session.wire import Wire

logger = logging.getLogger(__name__)

_PTY_MODES = (TransportMode.INTERACTIVE_TERMINAL, TransportMode.INTERACTIVE_AGENT)

# Seconds to wait for SIGKILLed children at shutdown
_KILL_GRACE = 2.0


class ProcessOrchestrator:
    """Owns the registry of live sessions and every process behind it.

    One instance is shared by all sessions and must be used from a single
    event loop.  The registry itself is thread-safe, so ``get`` and
    ``get_all`` may be called from other threads for diagnostics.
    """

    def __init__(
        self,
        wire: Wire | None = None,
        config: ConductorConfig | None = None,
    ) -> None:
        self.wire = wire or Wire()
        self.config = config or ConductorConfig()
        self._registry = ProcessRegistry()
        self._watchers: set[asyncio.Task] = set()
        self._ptys: dict[str, PTYSession] = {}

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    async def spawn(self, config: ProcessConfig) -> SpawnResult:
        """Start the backing process for ``config.session_id``.

        The registry entry exists by the time this returns successfully,
        before any output is delivered.  On failure an ERROR event is sent
        and the registry is left untouched, so retrying is safe.
        """
        session_id = config.session_id
        existing = self._registry.get(session_id)
        if existing is not None:
            if not self.config.replace_live_sessions:
                return self._spawn_failed(
                    session_id,
                    f"Session {session_id} already has a live process (pid {existing.pid})",
                )
            logger.info(
                "Replacing live session %s (pid %d)", session_id, existing.pid
            )
            # The successor owns the session id from here on
            existing.superseded = True
            self.kill(session_id)

        mode = select_mode(config)
        try:
            if mode in _PTY_MODES:
                entry = await self._spawn_pty(config, mode)
            else:
                entry = await self._spawn_child(config, mode)
        except (OSError, ValueError) as e:
            return self._spawn_failed(session_id, f"Failed to start process: {e}")
        except Exception as e:
            logger.exception("Unexpected error spawning session %s", session_id)
            return self._spawn_failed(session_id, f"Failed to start process: {e}")

        logger.info(
            "Spawned session %s: mode=%s pid=%d cwd=%s",
            session_id,
            mode.value,
            entry.pid,
            entry.cwd,
        )
        return SpawnResult(success=True, pid=entry.pid)

    def _spawn_failed(self, session_id: str, message: str) -> SpawnResult:
        logger.warning("Spawn failed for %s: %s", session_id, message)
        self.wire.send_error(session_id, message)
        return SpawnResult(success=False, error=message)

    async def _spawn_pty(
        self, config: ProcessConfig, mode: TransportMode
    ) -> ManagedProcess:
        if mode is TransportMode.INTERACTIVE_TERMINAL:
            command = [config.shell or self.config.shell.default_shell]
        else:
            if not config.command:
                raise ValueError("no command given")
            command = [config.command, *config.args]

        session = PTYSession(
            command=command,
            cwd=config.cwd,
            env=dict(config.env),
            title=config.session_id,
            cols=config.cols or self.config.pty.cols,
            rows=config.rows or self.config.pty.rows,
            term=self.config.pty.term,
        )
        await session.start()

        # No await from here on: callbacks cannot fire before registration
        entry = ManagedProcess(
            session_id=config.session_id,
            tool_type=config.tool_type,
            mode=mode,
            backing=PtyBacking(session=session),
            cwd=config.cwd,
            pid=session.pid,
        )
        try:
            session.set_on_data(lambda _s, text: self._on_pty_data(entry, text))
            session.set_on_exit(lambda _s, code: self._on_pty_exit(entry, code))
            self._ptys[session.id] = session
            self._register(entry)
        except BaseException:
            self._rollback(entry)
            raise
        return entry

    async def _spawn_child(
        self, config: ProcessConfig, mode: TransportMode
    ) -> ManagedProcess:
        if not config.command:
            raise ValueError("no command given")

        args = list(config.args)
        if mode is TransportMode.BATCH_AGENT:
            separator = self.config.batch.prompt_separator
            if separator:
                args.append(separator)
            args.append(config.prompt or "")

        process = await asyncio.create_subprocess_exec(
            config.command,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=config.cwd,
            env={**os.environ, **config.env},
            start_new_session=True,
        )

        batch = mode is TransportMode.BATCH_AGENT
        if batch and self.config.batch.close_stdin and process.stdin is not None:
            process.stdin.close()

        entry = ManagedProcess(
            session_id=config.session_id,
            tool_type=config.tool_type,
            mode=mode,
            backing=ChildBacking(process=process, buffer=[] if batch else None),
            cwd=config.cwd,
            pid=process.pid,
        )
        try:
            self._register(entry)
            task = asyncio.create_task(self._watch_child(entry, process))
        except BaseException:
            self._rollback(entry)
            raise
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return entry

    def _register(self, entry: ManagedProcess) -> None:
        if not self._registry.add(entry):
            # Another spawn for this id won the race while we were starting
            raise ValueError(f"session {entry.session_id} was registered concurrently")

    def _rollback(self, entry: ManagedProcess) -> None:
        """Undo a half-finished spawn: unregister and stop the new process."""
        entry.superseded = True
        self._registry.remove(entry.session_id, expected=entry)
        if isinstance(entry.backing, PtyBacking):
            self._ptys.pop(entry.backing.session.id, None)
        self._terminate(entry)

    # ------------------------------------------------------------------
    # Output handling
    # ------------------------------------------------------------------

    def _on_pty_data(self, entry: ManagedProcess, raw: str) -> None:
        logger.debug(
            "PTY data for %s (pid %d): %r", entry.session_id, entry.pid, raw[:100]
        )
        cleaned = filter_terminal_output(
            raw,
            last_command=entry.last_command,
            is_terminal=entry.mode is TransportMode.INTERACTIVE_TERMINAL,
        )
        if not cleaned:
            return
        if entry.last_command and cleaned.strip():
            # The echo has been dealt with; later output is never suppressed
            entry.last_command = None
        self.wire.send_data(entry.session_id, cleaned)

    def _on_pty_exit(self, entry: ManagedProcess, exit_code: int | None) -> None:
        if isinstance(entry.backing, PtyBacking):
            self._ptys.pop(entry.backing.session.id, None)
        self._finish(entry, -1 if exit_code is None else exit_code)

    async def _watch_child(
        self, entry: ManagedProcess, process: asyncio.subprocess.Process
    ) -> None:
        session_id = entry.session_id
        prefix = self.config.batch.stderr_prefix
        buffer = entry.buffer

        def _on_stdout(text: str) -> None:
            if buffer is not None:
                buffer.append(text)
            else:
                self.wire.send_data(session_id, text)

        def _on_stderr(text: str) -> None:
            self.wire.send_data(session_id, f"{prefix}{text}")

        def _on_read_error(message: str) -> None:
            self.wire.send_error(session_id, f"Read failed: {message}")

        exit_code = -1
        try:
            await asyncio.gather(
                pump_stream(
                    process.stdout, _on_stdout, f"{session_id} stdout", _on_read_error
                ),
                pump_stream(
                    process.stderr, _on_stderr, f"{session_id} stderr", _on_read_error
                ),
            )
            exit_code = await process.wait()
        except Exception as e:
            logger.exception("Supervising session %s failed", session_id)
            self.wire.send_error(session_id, str(e))
        finally:
            self._finish(entry, exit_code)

    def _finish(self, entry: ManagedProcess, exit_code: int) -> None:
        """Exit handling: decoded batch result, EXIT, then registry removal."""
        session_id = entry.session_id
        if entry.superseded:
            logger.info(
                "Superseded process for %s exited (pid %d, code=%d)",
                session_id,
                entry.pid,
                exit_code,
            )
            self._registry.remove(session_id, expected=entry)
            return
        try:
            if entry.is_batch:
                self._emit_batch_result(entry)
            logger.info("Session %s exited (code=%d)", session_id, exit_code)
            self.wire.send_exit(session_id, exit_code)
        finally:
            self._registry.remove(session_id, expected=entry)

    def _emit_batch_result(self, entry: ManagedProcess) -> None:
        raw = "".join(entry.buffer or ())
        response = decode_batch_response(raw)
        if response.ok and response.result is not None:
            self.wire.send_data(entry.session_id, response.result)
        elif raw:
            # Unparseable (or result-less) output is still shown verbatim
            self.wire.send_data(entry.session_id, raw)
        if response.ok and response.session_id:
            self.wire.send_session_id(entry.session_id, response.session_id)

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    def write(self, session_id: str, data: str) -> bool:
        """Send input to a session. False if there is nowhere to write it."""
        entry = self._registry.get(session_id)
        if entry is None:
            logger.warning("write(): no process for session %s", session_id)
            return False

        backing = entry.backing
        if isinstance(backing, PtyBacking):
            try:
                backing.session.write(data)
            except (OSError, RuntimeError) as e:
                self._transport_error(session_id, f"Write failed: {e}")
                return False
            if entry.mode is TransportMode.INTERACTIVE_TERMINAL:
                entry.last_command = data.strip() or None
            return True

        # A reader that went away shows up as a closing transport; the pipe
        # transport itself never raises from write()
        stdin = backing.process.stdin
        if stdin is None or stdin.is_closing():
            logger.warning("write(): stdin of session %s is closed", session_id)
            return False
        stdin.write(data.encode("utf-8"))
        return True

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        """Resize a PTY-backed session."""
        entry = self._registry.get(session_id)
        if entry is None or not isinstance(entry.backing, PtyBacking):
            return False
        if cols <= 0 or rows <= 0:
            return False
        try:
            entry.backing.session.resize(cols, rows)
        except (OSError, RuntimeError) as e:
            logger.warning("Failed to resize session %s: %s", session_id, e)
            return False
        return True

    def interrupt(self, session_id: str) -> bool:
        """Ask a session to stop what it is doing (Ctrl+C / SIGINT).

        Best effort: the process may ignore it.  Use kill() to stop it.
        """
        entry = self._registry.get(session_id)
        if entry is None:
            return False

        backing = entry.backing
        try:
            if isinstance(backing, PtyBacking):
                backing.session.interrupt()
            else:
                backing.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            logger.debug("interrupt(): session %s already gone", session_id)
            return False
        except (OSError, RuntimeError) as e:
            logger.warning("Failed to interrupt session %s: %s", session_id, e)
            return False
        return True

    def kill(self, session_id: str) -> bool:
        """Terminate a session and drop it from the registry immediately.

        Returns False if there was no live session.  The EXIT event still
        follows once the process is actually gone.
        """
        entry = self._registry.remove(session_id)
        if entry is None:
            return False
        self._terminate(entry)
        logger.info("Killed session %s (pid %d)", session_id, entry.pid)
        return True

    def kill_all(self) -> None:
        """Kill every live session."""
        for session_id in self._registry.session_ids():
            # Entries may exit on their own mid-loop; kill() tolerates that
            self.kill(session_id)

    def _terminate(self, entry: ManagedProcess) -> None:
        backing = entry.backing
        try:
            if isinstance(backing, PtyBacking):
                backing.session.kill()
            elif backing.process.returncode is None:
                backing.process.terminate()
        except ProcessLookupError:
            logger.debug("Session %s already gone", entry.session_id)
        except OSError as e:
            logger.warning("Failed to terminate session %s: %s", entry.session_id, e)

    def _transport_error(self, session_id: str, message: str) -> None:
        logger.warning("Session %s: %s", session_id, message)
        self.wire.send_error(session_id, message)

    # ------------------------------------------------------------------
    # One-shot commands
    # ------------------------------------------------------------------

    async def run_command(
        self,
        session_id: str,
        command: str,
        cwd: str,
        shell: str | None = None,
        env: dict[str, str] | None = None,
    ) -> int:
        """Run a shell command to completion; see conductor.process.command."""
        return await run_command(
            self.wire,
            session_id,
            command,
            cwd,
            shell=shell or self.config.shell.command_shell,
            env=env,
        )

    # ------------------------------------------------------------------
    # Queries and teardown
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> ManagedProcess | None:
        return self._registry.get(session_id)

    def get_all(self) -> list[ManagedProcess]:
        return self._registry.all()

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Kill everything and wait (bounded) for the exit handlers to run.

        Children still alive after ``timeout`` are sent SIGKILL and given a
        short grace period; whatever is still pending after that is cancelled.
        """
        entries = self._registry.all()
        self.kill_all()
        waits = [*self._watchers]
        waits.extend(
            asyncio.ensure_future(s.wait_for_exit(timeout))
            for s in list(self._ptys.values())
        )
        if not waits:
            logger.info("All sessions cleaned up")
            return

        _done, pending = await asyncio.wait(waits, timeout=timeout)
        if pending:
            logger.warning(
                "%d session(s) did not exit in time, sending SIGKILL", len(pending)
            )
            for entry in entries:
                backing = entry.backing
                if isinstance(backing, ChildBacking) and backing.process.returncode is None:
                    try:
                        backing.process.kill()
                    except ProcessLookupError:
                        pass
            _done, pending = await asyncio.wait(pending, timeout=_KILL_GRACE)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Gave up waiting on %d session(s)", len(pending))
        else:
            logger.info("All sessions cleaned up")

    def __len__(self) -> int:
        return len(self._registry)
