"""Output processing: terminal noise filtering and batch response decoding."""

from conductor.output.decoder import BatchResponse, decode_batch_response
from conductor.output.filter import (
    filter_terminal_output,
    strip_ansi,
    strip_shell_integration,
    suppress_command_echo,
)

__all__ = [
    "BatchResponse",
    "decode_batch_response",
    "filter_terminal_output",
    "strip_ansi",
    "strip_shell_integration",
    "suppress_command_echo",
]
