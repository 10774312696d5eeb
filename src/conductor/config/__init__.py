"""Configuration: Pydantic models for conductor settings."""

from __future__ import annotations

import json
import os
import sys
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def _platform_shell() -> str:
    return "powershell.exe" if sys.platform == "win32" else "bash"


class PtyConfig(BaseModel):
    """Pseudo-terminal defaults for interactive sessions."""

    cols: int = Field(default=100, gt=0)
    rows: int = Field(default=30, gt=0)
    term: str = Field(default="xterm-256color", description="TERM for PTY children")


class ShellConfig(BaseModel):
    """Shells used when a session or command does not name one."""

    default_shell: str = Field(
        default_factory=_platform_shell,
        description="Interactive shell for terminal sessions without an override",
    )
    command_shell: str = Field(
        default="bash", description="Shell for one-shot commands"
    )


class BatchConfig(BaseModel):
    """Plain child process settings."""

    stderr_prefix: str = Field(
        default="[stderr] ",
        description="Prefix marking stderr chunks in the data stream",
    )
    prompt_separator: str = Field(
        default="--",
        description="Placed before the prompt so it is never parsed as a flag",
    )
    close_stdin: bool = Field(
        default=True,
        description=(
            "Close stdin right after a batch spawn. Agents that read piped "
            "stdin would otherwise wait for EOF forever."
        ),
    )


class ConductorConfig(BaseModel):
    """Top-level conductor configuration."""

    pty: PtyConfig = Field(default_factory=PtyConfig)
    shell: ShellConfig = Field(default_factory=ShellConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    replace_live_sessions: bool = Field(
        default=False,
        description=(
            "Spawning a session id that is still live kills the old process "
            "and replaces it. When False the spawn is rejected."
        ),
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> ConductorConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            CONDUCTOR_DEFAULT_SHELL          - Interactive shell for terminal sessions
            CONDUCTOR_COMMAND_SHELL          - Shell for one-shot commands
            CONDUCTOR_PTY_COLS               - Initial PTY width
            CONDUCTOR_PTY_ROWS               - Initial PTY height
            CONDUCTOR_TERM                   - TERM value for PTY children
            CONDUCTOR_REPLACE_LIVE_SESSIONS  - "1"/"true" to replace live sessions on spawn
        """
        # Load .env file if present, letting it override stale shell exports
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        pty = config_data.get("pty", {})
        shell = config_data.get("shell", {})

        env_default_shell = os.environ.get("CONDUCTOR_DEFAULT_SHELL")
        if env_default_shell:
            shell["default_shell"] = env_default_shell

        env_command_shell = os.environ.get("CONDUCTOR_COMMAND_SHELL")
        if env_command_shell:
            shell["command_shell"] = env_command_shell

        env_cols = os.environ.get("CONDUCTOR_PTY_COLS")
        if env_cols:
            pty["cols"] = int(env_cols)

        env_rows = os.environ.get("CONDUCTOR_PTY_ROWS")
        if env_rows:
            pty["rows"] = int(env_rows)

        env_term = os.environ.get("CONDUCTOR_TERM")
        if env_term:
            pty["term"] = env_term

        env_replace = os.environ.get("CONDUCTOR_REPLACE_LIVE_SESSIONS")
        if env_replace:
            config_data["replace_live_sessions"] = env_replace.strip().lower() in (
                "1",
                "true",
                "yes",
                "on",
            )

        if pty:
            config_data["pty"] = pty
        if shell:
            config_data["shell"] = shell

        return cls.model_validate(config_data)
