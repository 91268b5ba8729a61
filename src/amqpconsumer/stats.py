"""Consumer statistics."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


@dataclass
class ConsumerStats:
    """Counters describing what a consumer did with its deliveries.

    Attributes:
        received: Deliveries handed to the consumer by the broker.
        acked: Deliveries acknowledged (removed from the queue).
        nacked_requeue: Deliveries rejected with requeue, after a retry
            delay or by the auto-nack guard.
        discarded: Deliveries removed without a retry: nacked without
            requeue, or acked away by the dead-letter retry variant.
        dead_lettered: Retryable failures rejected into the retry queue
            (dead-letter retry variant only).
        retries_scheduled: Retryable failures that scheduled a redelivery.
        auto_nacked: Deliveries nacked because the handler did not settle
            within auto_nack_timeout.
        decode_failures: Deliveries whose payload failed to decode.
        batches_flushed: Groups handed to a batch handler (batch consumer only).
        last_message_at: When the last delivery was received.
        last_error_at: When the last handler or decode failure happened.

    Note:
        Updated from a single event loop; this is a plain data container.
    """

    received: int = 0
    acked: int = 0
    nacked_requeue: int = 0
    discarded: int = 0
    dead_lettered: int = 0
    retries_scheduled: int = 0
    auto_nacked: int = 0
    decode_failures: int = 0
    batches_flushed: int = 0
    last_message_at: datetime | None = None
    last_error_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("last_message_at", "last_error_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data


__all__ = ["ConsumerStats"]
