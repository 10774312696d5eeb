"""CLI entry point for conductor."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import uuid

import typer

from conductor.config import ConductorConfig
from conductor.process.orchestrator import ProcessOrchestrator
from conductor.process.types import TERMINAL_TOOL_TYPE, ProcessConfig
from conductor.session.wire import EventType, Wire

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="conductor",
    help="Run shells and agent CLIs as supervised sessions.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _print_event_stream(wire: Wire, exit_event: EventType) -> asyncio.Task:
    """Print wire events until the wire closes.

    Returns the consumer task; its result is the last exit code seen.
    """
    queue = wire.subscribe()

    async def _consume_wire() -> int:
        exit_code = -1
        while True:
            event = await queue.get()
            if event is None:
                break

            d = event.data
            if event.type == EventType.DATA:
                print(d.get("text", ""), end="", flush=True)

            elif event.type == EventType.STDERR:
                print(d.get("text", ""), end="", file=sys.stderr, flush=True)

            elif event.type == EventType.ERROR:
                print(f"\n[error] {d.get('message', '')}", file=sys.stderr, flush=True)

            elif event.type == EventType.SESSION_ID:
                print(
                    f"\n[session] {d.get('captured_id', '')}",
                    file=sys.stderr,
                    flush=True,
                )

            elif event.type == exit_event:
                exit_code = d.get("code", -1)
                break

        wire.unsubscribe(queue)
        return exit_code

    return asyncio.create_task(_consume_wire())


async def _forward_stdin(orchestrator: ProcessOrchestrator, session_id: str) -> None:
    """Copy our stdin into the session, line by line, until EOF."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    try:
        await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
        )
    except (OSError, ValueError) as e:
        logger.debug("stdin not forwarded: %s", e)
        return

    while True:
        line = await reader.readline()
        if not line:
            break
        if not orchestrator.write(session_id, line.decode("utf-8", errors="replace")):
            break


async def _run_session(config: ProcessConfig, settings: ConductorConfig) -> int:
    wire = Wire()
    orchestrator = ProcessOrchestrator(wire=wire, config=settings)
    consumer_task = _print_event_stream(wire, EventType.EXIT)

    result = await orchestrator.spawn(config)
    if not result.success:
        wire.close()
        await consumer_task
        return 1

    logger.debug("Session %s running as pid %s", config.session_id, result.pid)
    stdin_task: asyncio.Task | None = None
    if config.prompt is None:
        stdin_task = asyncio.create_task(_forward_stdin(orchestrator, config.session_id))

    try:
        exit_code = await consumer_task
    except asyncio.CancelledError:
        exit_code = 130
    finally:
        if stdin_task is not None:
            stdin_task.cancel()
        await orchestrator.shutdown()
        wire.close()
    return exit_code


async def _run_exec(
    command: str, cwd: str, shell: str | None, settings: ConductorConfig
) -> int:
    wire = Wire()
    orchestrator = ProcessOrchestrator(wire=wire, config=settings)
    consumer_task = _print_event_stream(wire, EventType.COMMAND_EXIT)
    session_id = f"exec-{uuid.uuid4().hex[:8]}"

    exit_code = await orchestrator.run_command(session_id, command, cwd, shell=shell)
    await consumer_task
    wire.close()
    return exit_code


@app.command()
def run(
    command: str = typer.Argument("", help="Executable to run (omit with --terminal)."),
    args: list[str] | None = typer.Argument(
        None, help="Arguments for the executable. Put them after '--'."
    ),
    session_id: str | None = typer.Option(
        None, "--session-id", help="Session id (default: generated)."
    ),
    cwd: str = typer.Option(".", "--cwd", "-C", help="Working directory."),
    terminal: bool = typer.Option(
        False, "--terminal", "-t", help="Start a plain interactive shell."
    ),
    pty: bool = typer.Option(
        False, "--pty", help="Run the command behind a pseudo-terminal."
    ),
    prompt: str | None = typer.Option(
        None, "--prompt", "-p", help="Single-shot prompt (batch mode)."
    ),
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell for --terminal sessions."
    ),
    tool_type: str = typer.Option("agent", "--tool-type", help="Tool tag for the session."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run one supervised session and stream its output."""
    setup_logging(verbose)

    work_dir = os.path.abspath(cwd)
    if not os.path.isdir(work_dir):
        typer.echo(f"Error: Directory not found: {work_dir}", err=True)
        raise typer.Exit(1)
    if not terminal and not command:
        typer.echo("Error: Give a command or use --terminal", err=True)
        raise typer.Exit(1)

    settings = ConductorConfig.load(config_file)
    config = ProcessConfig(
        session_id=session_id or f"cli-{uuid.uuid4().hex[:8]}",
        tool_type=TERMINAL_TOOL_TYPE if terminal else tool_type,
        cwd=work_dir,
        command=command,
        args=args or [],
        requires_pty=pty,
        prompt=prompt,
        shell=shell,
    )

    exit_code = asyncio.run(_run_session(config, settings))
    raise typer.Exit(exit_code if exit_code >= 0 else 1)


@app.command("exec")
def exec_command(
    command: str = typer.Argument(help="Shell command line to run."),
    cwd: str = typer.Option(".", "--cwd", "-C", help="Working directory."),
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell to run it in (default: from env/config)."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run a one-shot shell command with the user's login environment."""
    setup_logging(verbose)

    work_dir = os.path.abspath(cwd)
    if not os.path.isdir(work_dir):
        typer.echo(f"Error: Directory not found: {work_dir}", err=True)
        raise typer.Exit(1)

    settings = ConductorConfig.load(config_file)
    exit_code = asyncio.run(_run_exec(command, work_dir, shell, settings))
    raise typer.Exit(exit_code if exit_code >= 0 else 1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
