"""Hook message decoding.

Each connection carries one JSON object written by the reporter script.
Malformed JSON and envelopes missing required top-level fields are rejected
with MessageDecodeError; unknown or oddly-typed tool_input entries are not
errors (see HookData).
"""

import logging

from pydantic import ValidationError

from .models import HookMessage

logger = logging.getLogger(__name__)


class MessageDecodeError(ValueError):
    """Raised when raw bytes are not a valid hook message."""


def decode_message(raw: bytes) -> HookMessage:
    """Parse one hook message.

    Args:
        raw: Bytes read from a socket connection or HTTP body

    Returns:
        Validated HookMessage

    Raises:
        MessageDecodeError: If the payload is empty, not JSON, not an object,
            or lacks a required field
    """
    if not raw or not raw.strip():
        raise MessageDecodeError("empty message")

    try:
        return HookMessage.model_validate_json(raw)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "<root>" for err in e.errors()})
        raise MessageDecodeError(
            f"invalid hook message ({e.error_count()} error(s): {', '.join(fields)})"
        ) from e


def try_decode_message(raw: bytes, source: str = "unknown") -> HookMessage | None:
    """Decode a message, logging and returning None on failure."""
    try:
        return decode_message(raw)
    except MessageDecodeError as e:
        logger.warning(f"Dropping message from {source}: {e}")
        logger.debug(f"Dropped payload ({len(raw)} bytes): {raw[:200]!r}")
        return None
