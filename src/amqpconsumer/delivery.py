"""Delivery wrapper enforcing exactly-once acknowledgment.

A broker delivery must reach exactly one terminal acknowledgment. Consumers
race several paths toward that state (handler completion, the auto-nack
timer, delayed retries), so every ack/nack goes through a check-and-set on
the Delivery. The first call wins and reaches the broker; later calls are
no-ops that return False.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from aio_pika.abc import AbstractIncomingMessage

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    """Terminal acknowledgment applied to a delivery."""

    ACKED = "acked"
    NACK_REQUEUED = "nack-requeued"
    NACK_DISCARDED = "nack-discarded"


class Delivery:
    """One message received from the broker.

    Attributes:
        message: The underlying aio-pika incoming message.
        status: Processing stage, reported when the auto-nack guard fires.
        error: Handler or decode failure recorded for this delivery, if any.
    """

    def __init__(self, message: AbstractIncomingMessage) -> None:
        self.message = message
        self.status = "received"
        self.error: BaseException | None = None
        self._outcome: DeliveryOutcome | None = None

    @property
    def body(self) -> bytes:
        return self.message.body

    @property
    def headers(self) -> Mapping[str, Any]:
        return self.message.headers or {}

    @property
    def delivery_tag(self) -> int | None:
        return self.message.delivery_tag

    @property
    def message_id(self) -> str | None:
        return self.message.message_id

    @property
    def settled(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> DeliveryOutcome | None:
        return self._outcome

    def group_key(self, header: str = "groupBy") -> str | None:
        value = self.headers.get(header)
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return str(value)

    def _claim(self, outcome: DeliveryOutcome) -> bool:
        if self._outcome is not None:
            logger.debug(
                "Delivery already settled, skipping acknowledgment",
                extra={
                    "delivery_tag": self.delivery_tag,
                    "outcome": self._outcome.value,
                    "attempted": outcome.value,
                },
            )
            return False
        self._outcome = outcome
        return True

    async def ack(self) -> bool:
        """Acknowledge the delivery. Returns False if it was already settled."""
        if not self._claim(DeliveryOutcome.ACKED):
            return False
        await self.message.ack()
        return True

    async def nack(self, requeue: bool = True) -> bool:
        """Reject the delivery. Returns False if it was already settled."""
        outcome = DeliveryOutcome.NACK_REQUEUED if requeue else DeliveryOutcome.NACK_DISCARDED
        if not self._claim(outcome):
            return False
        await self.message.nack(requeue=requeue)
        return True

    def __repr__(self) -> str:
        return (
            f"Delivery(delivery_tag={self.delivery_tag!r}, status={self.status!r}, "
            f"outcome={self._outcome.value if self._outcome else None!r})"
        )


__all__ = ["Delivery", "DeliveryOutcome"]
