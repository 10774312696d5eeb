"""Batch response decoder: turn a finished batch run's stdout into a result."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_SESSION_ID_KEYS = ("session_id", "sessionId")


@dataclass(frozen=True)
class BatchResponse:
    """Outcome of decoding one batch envelope.

    ``ok`` is False when the buffer was not a single JSON value; the caller
    then falls back to the raw buffer.
    """

    ok: bool
    result: str | None = None
    session_id: str | None = None


def decode_batch_response(buffer: str) -> BatchResponse:
    """Parse ``buffer`` as one JSON envelope.

    Extracts ``result`` and the resumable session identifier when present.
    Never raises: malformed, partial, or empty input is reported as
    ``BatchResponse(ok=False)``.
    """
    try:
        envelope: Any = json.loads(buffer)
    except (ValueError, TypeError) as e:
        logger.debug("Batch response is not JSON (%d chars): %s", len(buffer or ""), e)
        return BatchResponse(ok=False)

    if not isinstance(envelope, dict):
        return BatchResponse(ok=True)

    result = envelope.get("result")
    if result is not None and not isinstance(result, str):
        result = json.dumps(result, ensure_ascii=False)

    session_id = None
    for key in _SESSION_ID_KEYS:
        value = envelope.get(key)
        if isinstance(value, str) and value:
            session_id = value
            break

    return BatchResponse(ok=True, result=result, session_id=session_id)
