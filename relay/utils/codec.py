"""
Transport encoding for payloads crossing the host boundary.

Raw frame bytes travel to and from the host as standard base64 text.
"""
from __future__ import annotations

import base64
import binascii

from relay.exceptions import ErrorCodes, PayloadError


def encode_payload(data: bytes) -> str:
    """Encode raw bytes into the transport-safe text representation."""
    return base64.b64encode(data).decode("ascii")


def decode_payload(text: str) -> bytes:
    """
    Decode a transport-encoded payload back into raw bytes.

    Raises:
        PayloadError: If the text is not valid standard base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PayloadError(
            message=f"invalid base64: {e}",
            error_code=ErrorCodes.PAYLOAD_INVALID,
        ) from e


__all__ = ["encode_payload", "decode_payload"]
