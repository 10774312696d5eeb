"""Reading child process pipes as decoded text chunks."""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Callable

logger = logging.getLogger(__name__)

_READ_SIZE = 4096


async def pump_stream(
    stream: asyncio.StreamReader | None,
    on_text: Callable[[str], None],
    label: str = "",
    on_error: Callable[[str], None] | None = None,
) -> None:
    """Read ``stream`` until EOF, handing each decoded chunk to ``on_text``.

    Decoding is incremental, so a UTF-8 character split across two reads
    is delivered whole.  Read errors end the pump; they are logged and
    passed to ``on_error`` rather than raised, so the caller can still
    collect the exit code.
    """
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        while True:
            data = await stream.read(_READ_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                on_text(text)
    except (OSError, ValueError) as e:
        logger.warning("Reading %s stopped: %s", label or "stream", e)
        if on_error is not None:
            on_error(str(e))
    tail = decoder.decode(b"", final=True)
    if tail:
        on_text(tail)
