"""
Payload serialization for amqpconsumer.

Deliveries carry UTF-8 JSON, optionally encrypted. decode_payload turns a
body into a JSON value (raising DecodeError on any failure) and
encode_payload produces a body a consumer can decode.

Example:
    >>> from amqpconsumer.serialization import decode_payload, encode_payload
    >>>
    >>> body = await encode_payload({"order_id": 1})
    >>> await decode_payload(body)
    {'order_id': 1}
"""

from amqpconsumer.serialization.payload import (
    decode_payload,
    encode_payload,
    json_dumps,
)

__all__ = [
    "decode_payload",
    "encode_payload",
    "json_dumps",
]
