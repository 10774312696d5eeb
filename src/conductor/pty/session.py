"""PTY session: a pseudo-terminal running one interactive process."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios
import uuid
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

# What the terminal line discipline turns into SIGINT (Ctrl+C)
INTERRUPT_BYTE = "\x03"

_READ_SIZE = 4096


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY session."""

    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for process to die
    KILLED = "killed"  # Killed by us
    EXITED = "exited"  # Process exited on its own


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); without a controlling terminal the
    # line discipline never turns Ctrl+C into SIGINT
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


@dataclass
class PTYSession:
    """A managed pseudo-terminal session.

    Wraps an interactive process (a shell or an agent CLI that insists on
    a terminal) with:
    - Process group isolation (start_new_session) for safe tree-killing
    - Event-driven reads off the master fd (no polling, no worker threads)
    - Incremental UTF-8 decoding so multi-byte characters survive chunking
    - Data and exit callbacks

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when
    spawned from within an asyncio event loop on macOS.
    """

    command: list[str] = field(default_factory=list)
    cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    title: str = ""
    cols: int = 100
    rows: int = 30
    term: str = "xterm-256color"

    # Internal state
    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pid: int = field(default=0, init=False)
    _pgid: int = field(default=0, init=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)
    _decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace"),
        init=False,
    )
    _pending_write: bytearray = field(default_factory=bytearray, init=False)
    _finish_task: asyncio.Task | None = field(default=None, init=False)
    _exited: asyncio.Event | None = field(default=None, init=False)
    _exit_code: int | None = field(default=None, init=False)
    _status: PTYStatus = field(default=PTYStatus.RUNNING, init=False)
    _on_data: Callable[[PTYSession, str], None] | None = field(default=None, init=False)
    _on_exit: Callable[[PTYSession, int | None], None] | None = field(
        default=None, init=False
    )

    def set_on_data(self, callback: Callable[[PTYSession, str], None]) -> None:
        """Set the callback receiving each decoded output chunk."""
        self._on_data = callback

    def set_on_exit(self, callback: Callable[[PTYSession, int | None], None]) -> None:
        """Set a callback invoked once the process is gone.

        The callback receives (session, exit_code).  It fires after the last
        data callback, both when the process exits on its own and after
        kill().
        """
        self._on_exit = callback

    async def start(self) -> None:
        """Spawn the process in a new PTY with its own process group.

        Raises:
            OSError: The PTY could not be allocated or the command could not
                be executed (missing binary, permission denied).
        """
        master_fd, slave_fd = pty.openpty()
        try:
            _set_winsize(master_fd, self.cols, self.rows)
        except OSError as e:
            logger.debug("Could not set initial PTY size: %s", e)

        env = {**os.environ, **self.env}
        env["TERM"] = self.term

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,  # Creates new process group
                preexec_fn=_acquire_controlling_tty,
                env=env,
                cwd=self.cwd,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        self._master_fd = master_fd
        self._pid = self._proc.pid
        try:
            self._pgid = os.getpgid(self._pid)
        except ProcessLookupError:
            self._pgid = self._pid
        self._status = PTYStatus.RUNNING

        os.set_blocking(master_fd, False)
        self._loop = asyncio.get_running_loop()
        self._exited = asyncio.Event()
        self._loop.add_reader(master_fd, self._on_readable)

        logger.info(
            "PTY session %s started: pid=%d pgid=%d cmd=%s",
            self.id,
            self._pid,
            self._pgid,
            " ".join(self.command),
        )

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, _READ_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO: the slave side closed, i.e. the process is gone
            data = b""

        if not data:
            self._stop_reading()
            return

        self._deliver(self._decoder.decode(data))

    def _deliver(self, text: str) -> None:
        if not text or self._on_data is None:
            return
        try:
            self._on_data(self, text)
        except Exception:
            logger.exception("Error in on_data callback for session %s", self.id)

    def _stop_reading(self) -> None:
        if self._finish_task is not None or self._loop is None:
            return
        self._loop.remove_reader(self._master_fd)
        if self._pending_write:
            self._loop.remove_writer(self._master_fd)
            self._pending_write.clear()
        self._deliver(self._decoder.decode(b"", final=True))
        self._finish_task = self._loop.create_task(self._finish())

    async def _finish(self) -> None:
        """Reap the process, close the master fd, fire on_exit."""
        exit_code: int | None = None
        if self._proc is not None:
            try:
                exit_code = await asyncio.get_running_loop().run_in_executor(
                    None, self._proc.wait
                )
            except Exception as e:
                logger.debug("Failed to reap PTY session %s: %s", self.id, e)

        try:
            os.close(self._master_fd)
        except OSError:
            pass

        self._exit_code = exit_code
        if self._status == PTYStatus.KILLING:
            self._status = PTYStatus.KILLED
        else:
            self._status = PTYStatus.EXITED
        logger.info("PTY session %s exited (code=%s)", self.id, exit_code)

        if self._on_exit:
            try:
                self._on_exit(self, exit_code)
            except Exception:
                logger.exception("Error in on_exit callback for session %s", self.id)

        if self._exited is not None:
            self._exited.set()

    def write(self, data: str) -> None:
        """Write raw input to the terminal.

        Returns once the bytes are handed to the kernel or queued behind
        earlier input; it never waits for the process to consume them.

        Raises:
            RuntimeError: The session is no longer running.
        """
        if self._status != PTYStatus.RUNNING:
            raise RuntimeError(f"PTY session {self.id} is not running")
        payload = data.encode("utf-8")
        if self._pending_write:
            self._pending_write.extend(payload)
            return
        try:
            written = os.write(self._master_fd, payload)
        except BlockingIOError:
            written = 0
        if written < len(payload):
            self._pending_write.extend(payload[written:])
            assert self._loop is not None
            self._loop.add_writer(self._master_fd, self._on_writable)

    def _on_writable(self) -> None:
        try:
            written = os.write(self._master_fd, self._pending_write)
        except BlockingIOError:
            return
        except OSError as e:
            logger.warning("Write to PTY session %s failed: %s", self.id, e)
            written = len(self._pending_write)
        del self._pending_write[:written]
        if not self._pending_write and self._loop is not None:
            self._loop.remove_writer(self._master_fd)

    def resize(self, cols: int, rows: int) -> None:
        """Resize the terminal; the kernel delivers SIGWINCH to the process."""
        if self._status != PTYStatus.RUNNING:
            raise RuntimeError(f"PTY session {self.id} is not running")
        _set_winsize(self._master_fd, cols, rows)
        self.cols, self.rows = cols, rows

    def interrupt(self) -> None:
        """Send Ctrl+C, as if typed, rather than signalling the process."""
        self.write(INTERRUPT_BYTE)

    def kill(self) -> None:
        """Kill the entire process tree.

        Does not wait: the exit callback fires once the process is reaped.
        """
        if self._status != PTYStatus.RUNNING:
            return

        self._status = PTYStatus.KILLING
        try:
            os.killpg(self._pgid, signal.SIGKILL)
            logger.info("Killed PTY session %s (pgid=%d)", self.id, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing PTY session %s: %s", self.id, e)

    @property
    def alive(self) -> bool:
        return self._status == PTYStatus.RUNNING

    @property
    def status(self) -> PTYStatus:
        return self._status

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    async def wait_for_exit(self, timeout: float = 10.0) -> int | None:
        """Wait for the process to be reaped. Returns exit code or None on timeout."""
        if self._exited is None:
            return None
        try:
            await asyncio.wait_for(self._exited.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self._exit_code

    def __del__(self) -> None:
        """Ensure cleanup on garbage collection."""
        if self._status == PTYStatus.RUNNING and self._pgid:
            try:
                os.killpg(self._pgid, signal.SIGKILL)
            except OSError:
                pass
