"""
Response Decoder.
Detects compressed payloads in channel messages and inflates them to JSON.
"""

import base64
import binascii
import gzip
import json
import zlib
from typing import Any

from ..core import errors


# The first response of a session carries the blob under compressedResult,
# every later one under compressedData.
COMPRESSED_FIELDS = ("compressedResult", "compressedData")


def find_compressed(message: Any) -> tuple[str, str] | None:
    """
    Locate a compressed blob inside a channel message.

    Looks at the message itself, a JSON-RPC result object, and the first
    parameter of an async Message notification.

    Args:
        message: Parsed JSON message from the channel

    Returns:
        (field name, base64 blob) or None if the message is uncompressed
    """
    if not isinstance(message, dict):
        return None

    candidates: list[Any] = [message, message.get("result")]
    params = message.get("params")
    if isinstance(params, list) and params:
        candidates.append(params[0])

    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        for field in COMPRESSED_FIELDS:
            blob = candidate.get(field)
            if isinstance(blob, str) and blob:
                return field, blob
    return None


def decompress_payload(blob: str) -> Any:
    """
    Decode base64, gunzip, and parse JSON.

    Raises:
        DecompressionError: If any stage fails
    """
    try:
        raw = base64.b64decode(blob, validate=True)
        inflated = gzip.decompress(raw)
        return json.loads(inflated.decode("utf-8"))
    except (binascii.Error, OSError, EOFError, zlib.error, ValueError) as e:
        raise errors.DecompressionError(
            f"Failed to decompress payload: {e}",
            context={"blob_length": len(blob), "cause": type(e).__name__},
        ) from e


def compress_payload(value: Any) -> str:
    """Inverse of decompress_payload, used for fixtures and fakes."""
    data = json.dumps(value).encode("utf-8")
    return base64.b64encode(gzip.compress(data)).decode("ascii")


def decode_message(message: Any) -> Any:
    """
    Return the real payload of a channel message.

    Compressed messages are inflated; a plain JSON-RPC result is unwrapped;
    anything else passes through unchanged.
    """
    found = find_compressed(message)
    if found is not None:
        _, blob = found
        return decompress_payload(blob)

    if isinstance(message, dict) and "result" in message:
        return message["result"]
    return message
