"""Terminal control-sequence filter for interactive session output.

Everything here is data-in/data-out.  Chunks are filtered independently,
so an escape sequence split across two reads may leak through in one of
them; callers accept that rather than carrying state between chunks.
"""

from __future__ import annotations

import re

# CSI: ESC [ params intermediates final (colours, cursor moves, ?2004h ...)
_CSI_PATTERN = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")

# Charset selection (ESC ( B) and keypad / save-restore one-shot escapes
_SHORT_ESCAPE_PATTERN = re.compile(r"\x1b[()#][0-9A-Za-z]|\x1b[=>78cM]")

# OSC: ESC ] ... terminated by BEL or ST (ESC \).  The terminator is
# optional so a truncated sequence at the end of a chunk is still dropped.
_OSC_PATTERN = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?")

# Shell-integration OSC that lost its ESC byte, terminated by BEL
_BARE_OSC_WITH_BEL = re.compile(r"\]1337;[^\x07]*\x07")

# Same, for the other integration codes, terminated by BEL or ST
_BARE_INTEGRATION_OSC = re.compile(r"\](?:0|1|2|7|133|633);[^\x07\x1b\]]*(?:\x07|\x1b\\)")

_ITERM2_KEYS_WITH_NEXT = (
    "RemoteHost|CurrentDir|ShellIntegrationVersion|User|HostName|LocalPwd|"
    "FileInfo|Mark|Dir|ClearCapturedOutput|AddAnnotation|File|Copy|SetMark|"
    "StealFocus|SetBadge|ReportCellSize|ReportDirectory|ReportVariables|"
    "RequestAttention|SetBackgroundImageFile|SetHotstringEnd|SetKeyLabel|"
    "SetProfile|SetUserVar|SetPrecolorScheme|SetColors"
)

# Bare iTerm2 sequences glued together: ]1337;Key=Value]1337;Key=Value...
# A value followed by another "]" may contain "/" (CurrentDir=/home/me).
_ITERM2_OSC_WITH_NEXT = re.compile(
    r"\]1337;(?:" + _ITERM2_KEYS_WITH_NEXT + r")=[^\]\x07]*(?=\])"
)

# The last sequence of such a run, immediately followed by real output
# that starts with "/".  Its value stops at the first "/", and CurrentDir
# is excluded because its value is itself a path.
_ITERM2_OSC_LAST = re.compile(
    r"\]1337;(?:ShellIntegrationVersion|RemoteHost|User|HostName|FileInfo|Mark|"
    r"ClearCapturedOutput|AddAnnotation|File|Copy|SetMark|StealFocus|SetBadge|"
    r"ReportCellSize|ReportDirectory|ReportVariables|RequestAttention|"
    r"SetBackgroundImageFile|SetHotstringEnd|SetKeyLabel|SetProfile|SetUserVar|"
    r"SetPrecolorScheme|SetColors)=[^\]\x07/]*(?=/)"
)

# Window title (0-2), cwd report (7), FinalTerm/VS Code marks (133/633), iTerm2 (1337)
_INTEGRATION_OSC = re.compile(
    r"\x1b?\](?:0|1|2|7|133|633|1337);[^\x07\x1b]*(?:\x07|\x1b\\)"
)

_PROMPT_LINE = re.compile(
    r"""^(?:\([^)]*\)\s*)?            # (venv) prefix
        (?:[\w.-]+@[\w.-]+|[\w.-]+)?   # user@host or shell-version
        (?:[:\s]*[~/][^\s$#%>]*)?      # working directory
        \s*[$#%>❯➜]\s*$      # prompt character
    """,
    re.VERBOSE,
)


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences and OSC sequences from text.

    Handles colour/cursor CSI sequences, OSC sequences with an ESC prefix,
    and the bare iTerm2 shell-integration sequences that interactive remote
    shells print without their ESC byte (possibly several glued together).
    """
    if not text:
        return text
    text = _OSC_PATTERN.sub("", text)
    text = _BARE_OSC_WITH_BEL.sub("", text)
    text = _BARE_INTEGRATION_OSC.sub("", text)
    text = _ITERM2_OSC_WITH_NEXT.sub("", text)
    text = _ITERM2_OSC_LAST.sub("", text)
    text = _CSI_PATTERN.sub("", text)
    return _SHORT_ESCAPE_PATTERN.sub("", text)


def strip_shell_integration(text: str) -> str:
    """Remove window-title and shell-integration OSC sequences only.

    Colour codes are left alone, so one-shot command output can still be
    rendered with its styling.
    """
    if not text:
        return text
    return _INTEGRATION_OSC.sub("", text)


def is_prompt_line(line: str) -> bool:
    """Whether a (trimmed) line looks like a bare shell prompt."""
    return bool(line) and _PROMPT_LINE.match(line) is not None


def _is_echo(line: str, command: str) -> bool:
    if line == command:
        return True
    if line.endswith(command):
        return is_prompt_line(line[: -len(command)].rstrip())
    return False


def suppress_command_echo(text: str, command: str) -> str:
    """Drop the shell's echo of ``command`` from the start of ``text``.

    The echo may be preceded by blank lines and followed by further
    echo or prompt-looking lines; all of those are dropped up to the first
    line of real output.  Text that does not start with the echo is
    returned unchanged.
    """
    command = command.strip()
    if not command or not text:
        return text

    lines = text.split("\n")
    idx = 0
    saw_echo = False
    while idx < len(lines):
        stripped = lines[idx].strip()
        if not stripped:
            idx += 1
            continue
        if _is_echo(stripped, command) or (saw_echo and is_prompt_line(stripped)):
            saw_echo = True
            idx += 1
            continue
        break

    if not saw_echo:
        return text
    return "\n".join(lines[idx:])


def filter_terminal_output(
    raw: str,
    last_command: str | None = None,
    is_terminal: bool = False,
) -> str:
    """Clean one raw PTY chunk before it is surfaced.

    Args:
        raw: Chunk as read from the pseudo-terminal.
        last_command: Most recent text written to the session, if known.
        is_terminal: True for plain shell sessions, which echo input back
            and need echo suppression; interactive agents do not.

    Returns:
        The filtered chunk, possibly empty.
    """
    cleaned = strip_ansi(raw)
    if is_terminal and last_command:
        cleaned = suppress_command_echo(cleaned, last_command)
    return cleaned
