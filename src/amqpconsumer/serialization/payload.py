"""
JSON payload encoding and decoding.

Decoding is the first processing stage of every delivery:

    bytes -> UTF-8 text -> (decrypt) -> JSON value

Each step can fail. All failures surface as DecodeError so consumers can
treat them uniformly as terminal for the delivery.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from amqpconsumer.exceptions import DecodeError

if TYPE_CHECKING:
    from amqpconsumer.crypto import CryptoLib


class PayloadJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that also handles UUID and datetime values.

    UUIDs become their string form, datetimes their ISO 8601 form.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize to a compact JSON string with UUID and datetime support."""
    return json.dumps(obj, cls=PayloadJSONEncoder, separators=(",", ":"))


async def decode_payload(body: bytes, crypto: CryptoLib | None = None) -> Any:
    """
    Decode a delivery body into a JSON value.

    Args:
        body: Raw delivery body
        crypto: Optional collaborator used to decrypt the text before parsing

    Returns:
        The parsed JSON value

    Raises:
        DecodeError: If the body is not UTF-8, cannot be decrypted, or is not JSON
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not valid UTF-8: {e}", e) from e

    if crypto is not None:
        try:
            text = await crypto.decrypt(text)
        except Exception as e:
            raise DecodeError(f"Payload could not be decrypted: {e}", e) from e

    try:
        return json.loads(text)
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"Payload is not valid JSON: {e}", e) from e


async def encode_payload(data: Any, crypto: CryptoLib | None = None) -> bytes:
    """
    Encode a JSON value into a delivery body, encrypting it when ``crypto`` is given.
    """
    text = json_dumps(data)
    if crypto is not None:
        text = await crypto.encrypt(text)
    return text.encode("utf-8")
