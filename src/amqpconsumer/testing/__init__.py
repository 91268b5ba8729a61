"""
Test utilities for amqpconsumer.

Components:
    FakeBroker: Replacement for ``aio_pika.connect`` handing out in-memory
        connections, channels and queues
    make_message: Builds a fake delivery from a JSON value

Note:
    This module is intended for test code only. It should not be imported
    in production code paths.
"""

from amqpconsumer.testing.fakes import (
    FakeBroker,
    FakeChannel,
    FakeConnection,
    FakeIncomingMessage,
    FakeQueue,
    make_message,
)

__all__ = [
    "FakeBroker",
    "FakeChannel",
    "FakeConnection",
    "FakeIncomingMessage",
    "FakeQueue",
    "make_message",
]
