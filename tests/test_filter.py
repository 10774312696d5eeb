"""Tests for conductor.output.filter."""

from __future__ import annotations

from conductor.output.filter import (
    filter_terminal_output,
    is_prompt_line,
    strip_ansi,
    strip_shell_integration,
    suppress_command_echo,
)


# ---------------------------------------------------------------------------
# strip_ansi
# ---------------------------------------------------------------------------


class TestStripAnsi:
    def test_plain_text_unchanged(self) -> None:
        assert strip_ansi("hello world") == "hello world"
        assert strip_ansi("/opt/homebrew/bin/codex") == "/opt/homebrew/bin/codex"

    def test_empty_string(self) -> None:
        assert strip_ansi("") == ""

    def test_color_codes(self) -> None:
        assert strip_ansi("\x1b[31mred\x1b[0m") == "red"
        assert strip_ansi("\x1b[1;32mbold green\x1b[0m") == "bold green"

    def test_private_mode_and_cursor_sequences(self) -> None:
        assert strip_ansi("\x1b[?2004h$ \x1b[?2004l") == "$ "
        assert strip_ansi("\x1b[2J\x1b[Hdone\x1b[K") == "done"

    def test_charset_and_keypad_escapes(self) -> None:
        assert strip_ansi("\x1b(Bplain\x1b=\x1b>") == "plain"

    def test_glued_iterm2_sequences_before_path(self) -> None:
        raw = (
            "]1337;RemoteHost=pedram@PedTome.local]1337;CurrentDir=/Users/pedram"
            "]1337;ShellIntegrationVersion=13;shell=zsh/opt/homebrew/bin/codex"
        )
        assert strip_ansi(raw) == "/opt/homebrew/bin/codex"

    def test_osc_with_esc_and_bel(self) -> None:
        assert strip_ansi("\x1b]1337;RemoteHost=user@host\x07/usr/bin/claude") == (
            "/usr/bin/claude"
        )

    def test_bare_osc_with_bel(self) -> None:
        raw = "]1337;CurrentDir=/home/user\x07/usr/local/bin/codex"
        assert strip_ansi(raw) == "/usr/local/bin/codex"

    def test_multiple_consecutive_bare_sequences(self) -> None:
        raw = (
            "]1337;RemoteHost=user@host]1337;CurrentDir=/home/user"
            "]1337;ShellIntegrationVersion=13;shell=bash/path/to/binary"
        )
        assert strip_ansi(raw) == "/path/to/binary"

    def test_mixed_csi_and_osc(self) -> None:
        raw = "\x1b[32m\x1b]1337;CurrentDir=/home\x07\x1b[0m/usr/bin/test"
        assert strip_ansi(raw) == "/usr/bin/test"

    def test_only_escape_sequences(self) -> None:
        raw = "\x1b]1337;RemoteHost=user@host\x07\x1b]1337;CurrentDir=/home\x07"
        assert strip_ansi(raw) == ""

    def test_newlines_preserved(self) -> None:
        assert strip_ansi("/usr/bin/codex\n/usr/bin/claude") == (
            "/usr/bin/codex\n/usr/bin/claude"
        )

    def test_sequence_before_each_line(self) -> None:
        raw = (
            "\x1b]1337;CurrentDir=/home\x07/usr/bin/codex\n"
            "\x1b]1337;CurrentDir=/home\x07/usr/bin/claude"
        )
        assert strip_ansi(raw) == "/usr/bin/codex\n/usr/bin/claude"

    def test_window_title_and_prompt_marks(self) -> None:
        raw = "\x1b]0;user@host: ~\x07\x1b]133;A\x1b\\$ "
        assert strip_ansi(raw) == "$ "

    def test_bare_prompt_mark(self) -> None:
        assert strip_ansi("]133;D;0\x07output") == "output"

    def test_truncated_osc_at_chunk_end(self) -> None:
        assert strip_ansi("text\x1b]0;partial title") == "text"


# ---------------------------------------------------------------------------
# strip_shell_integration
# ---------------------------------------------------------------------------


class TestStripShellIntegration:
    def test_keeps_colors(self) -> None:
        raw = "\x1b]133;A\x07\x1b[32mok\x1b[0m"
        assert strip_shell_integration(raw) == "\x1b[32mok\x1b[0m"

    def test_window_title(self) -> None:
        assert strip_shell_integration("\x1b]0;title\x07hi\n") == "hi\n"

    def test_vscode_marks(self) -> None:
        assert strip_shell_integration("\x1b]633;C\x07out\x1b]633;D;0\x07") == "out"

    def test_plain_text_unchanged(self) -> None:
        assert strip_shell_integration("a ] b") == "a ] b"
        assert strip_shell_integration("") == ""


# ---------------------------------------------------------------------------
# Prompt detection and echo suppression
# ---------------------------------------------------------------------------


class TestPromptLine:
    def test_common_prompts(self) -> None:
        assert is_prompt_line("$")
        assert is_prompt_line("#")
        assert is_prompt_line("user@host:~/src$")
        assert is_prompt_line("bash-5.2$")
        assert is_prompt_line("(venv) user@host ~/proj %")
        assert is_prompt_line("❯")

    def test_not_prompts(self) -> None:
        assert not is_prompt_line("")
        assert not is_prompt_line("file.txt")
        assert not is_prompt_line("total 42")


class TestSuppressCommandEcho:
    def test_repeated_echo_dropped(self) -> None:
        assert suppress_command_echo("ls\r\nls\r\nfile.txt\r\n", "ls") == "file.txt\r\n"

    def test_echo_after_prompt(self) -> None:
        raw = "user@host:~/src$ ls\r\nfile.txt\r\n"
        assert suppress_command_echo(raw, "ls") == "file.txt\r\n"

    def test_leading_blank_lines_skipped(self) -> None:
        assert suppress_command_echo("\r\nls\r\nout\r\n", "ls") == "out\r\n"

    def test_trailing_prompt_after_echo_dropped(self) -> None:
        assert suppress_command_echo("ls\r\n$ \r\n", "ls") == ""

    def test_output_without_echo_unchanged(self) -> None:
        assert suppress_command_echo("hello\r\n", "ls") == "hello\r\n"

    def test_command_later_in_output_kept(self) -> None:
        text = "file.txt\nls\n"
        assert suppress_command_echo(text, "ls") == text

    def test_empty_command(self) -> None:
        assert suppress_command_echo("ls\n", "  ") == "ls\n"

    def test_command_is_trimmed(self) -> None:
        assert suppress_command_echo("ls\nout", "ls\n") == "out"


class TestFilterTerminalOutput:
    def test_terminal_suppresses_echo(self) -> None:
        raw = "\x1b[?2004lls\r\nfile.txt\r\n"
        assert filter_terminal_output(raw, "ls", is_terminal=True) == "file.txt\r\n"

    def test_agent_keeps_echo(self) -> None:
        assert filter_terminal_output("ls\r\nout", "ls", is_terminal=False) == (
            "ls\r\nout"
        )

    def test_without_last_command(self) -> None:
        assert filter_terminal_output("\x1b[1mhi\x1b[0m", None, is_terminal=True) == "hi"

    def test_chunk_of_only_noise_is_empty(self) -> None:
        assert filter_terminal_output("\x1b]0;title\x07\x1b[K", None, True) == ""
