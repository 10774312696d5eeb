"""Shell quoting and one-shot command wrapping."""

from __future__ import annotations

import os

# Shells whose rc file is where aliases and PATH tweaks usually live, but
# which do not read it when started non-interactively.
_RC_FILES: dict[str, str] = {
    "bash": "~/.bashrc",
    "zsh": "~/.zshrc",
}

# Shells with no non-login config to source; a login shell is enough.
_LOGIN_SHELLS = frozenset({"fish", "sh", "dash", "ksh", "mksh", "tcsh", "csh"})


def shell_escape(value: str) -> str:
    """Single-quote ``value`` for a POSIX shell.

    Always quotes, so ``$``, backticks, ``;`` and friends are inert.
    """
    return "'" + value.replace("'", "'\\''") + "'"


def shell_escape_args(args: list[str]) -> list[str]:
    return [shell_escape(a) for a in args]


def build_shell_command(command: str, args: list[str]) -> str:
    """Join a command and its escaped arguments into one command line."""
    if not args:
        return command
    return " ".join([command, *shell_escape_args(args)])


def shell_name(shell: str) -> str:
    """Bare shell name from a path or name (``/usr/bin/zsh`` -> ``zsh``)."""
    return os.path.basename(shell.strip()) or shell


def wrap_command(command: str, shell: str) -> tuple[str, list[str]]:
    """Wrap ``command`` for non-interactive execution under ``shell``.

    Returns:
        (wrapped_command, shell_flags).  The flags go between the shell
        and the wrapped command, e.g. ``["-l", "-c"]``.
    """
    name = shell_name(shell)
    rc_file = _RC_FILES.get(name)
    if rc_file is not None:
        # Sourcing is best-effort; a broken rc file must not block the command
        return f"source {rc_file} 2>/dev/null; {command}", ["-l", "-c"]
    if name in _LOGIN_SHELLS:
        return command, ["-l", "-c"]
    return command, ["-c"]


def build_shell_invocation(command: str, shell: str) -> str:
    """Full command line handed to the generic shell-execution facility.

    The wrapped command is passed to ``shell`` as a single quoted argument.
    """
    wrapped, flags = wrap_command(command, shell)
    return " ".join([shell, *flags, shell_escape(wrapped)])
