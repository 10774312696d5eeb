"""PTY sessions: interactive processes behind a pseudo-terminal.

Shells and terminal-bound agent CLIs run in their own process group so a
kill takes the whole tree down with them.
"""

from conductor.pty.session import PTYSession, PTYStatus

__all__ = [
    "PTYSession",
    "PTYStatus",
]
