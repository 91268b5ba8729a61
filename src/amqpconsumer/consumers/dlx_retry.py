"""Consumer variant that retries through a dead-letter TTL queue.

Two queues are declared:

- ``<queue>-retry-<ms>``: holds rejected deliveries for ``retry_delay`` and
  dead-letters them back to ``<queue>`` through the default exchange.
- ``<queue>``: dead-letters rejected deliveries to the retry queue.

Dispositions differ from Consumer:

- retryable failure: nack without requeue immediately; the broker routes
  the delivery through the retry queue.
- terminal failure (including decode failures): ack. The main queue has no
  dead-letter path for permanent failures, so acking is what removes them.
"""

from __future__ import annotations

import asyncio
import dataclasses
import signal
from typing import Any

from amqpconsumer.config import ConsumerConfig, QueueOptions
from amqpconsumer.consumers.consumer import Consumer
from amqpconsumer.delivery import Delivery, DeliveryOutcome
from amqpconsumer.observability import Tracer
from amqpconsumer.pool import ChannelPool

DEAD_LETTER_ARGUMENTS = frozenset({"x-dead-letter-exchange", "x-dead-letter-routing-key"})


class DLXRetryConsumer(Consumer):
    """Consumer whose retries are scheduled by the broker, not by a timer.

    Args:
        config: Consumer configuration; ``retry_delay`` becomes the retry
            queue's message TTL.
        pool: Shared channel pool.
        tracer: Optional Tracer.
        handle_sigterm: Cancel the consumer tag when the process receives SIGTERM.
    """

    def __init__(
        self,
        config: ConsumerConfig,
        pool: ChannelPool,
        *,
        tracer: Tracer | None = None,
        handle_sigterm: bool = True,
    ) -> None:
        super().__init__(config, pool, tracer=tracer)
        self._handle_sigterm = handle_sigterm
        self._signal_handler_registered = False

    @property
    def retry_queue_name(self) -> str:
        return self._config.retry_queue_name

    def retry_queue_options(self) -> QueueOptions:
        """The retry queue only holds messages for the TTL, then routes them back."""
        return QueueOptions(
            durable=super()._queue_options().durable,
            message_ttl=self._config.retry_delay_ms,
            dead_letter_exchange="",
            dead_letter_routing_key=self.queue_name,
        )

    def _queue_options(self) -> QueueOptions:
        base = super()._queue_options()
        # Raw arguments must not redirect dead-lettering away from the retry queue.
        arguments = {
            key: value
            for key, value in base.arguments.items()
            if key not in DEAD_LETTER_ARGUMENTS
        }
        return dataclasses.replace(
            base,
            dead_letter_exchange="",
            dead_letter_routing_key=self.retry_queue_name,
            arguments=arguments,
        )

    async def _declare_topology(self) -> None:
        connection_type = self._config.connection_type
        await self._pool.connect(connection_type)
        await self._pool.assert_queue(
            connection_type,
            self.retry_queue_name,
            self.retry_queue_options(),
        )
        self._logger.debug(
            "Declared retry queue",
            extra={
                "queue": self.queue_name,
                "retry_queue": self.retry_queue_name,
                "message_ttl": self._config.retry_delay_ms,
            },
        )

    async def process(self) -> str:
        tag = await super().process()
        if self._handle_sigterm:
            self._register_sigterm()
        return tag

    def _register_sigterm(self) -> None:
        if self._signal_handler_registered:
            return
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(
                signal.SIGTERM,
                lambda: self._spawn(self.stop_consumption(), name="sigterm-stop"),
            )
        except NotImplementedError:
            self._logger.warning(
                "Signal handling not fully supported on this platform",
                extra={"signal": "SIGTERM", "queue": self.queue_name},
            )
            return
        self._signal_handler_registered = True
        self._logger.debug("Registered SIGTERM handler", extra={"queue": self.queue_name})

    def unregister_signals(self) -> None:
        if not self._signal_handler_registered:
            return
        asyncio.get_running_loop().remove_signal_handler(signal.SIGTERM)
        self._signal_handler_registered = False

    async def shutdown(self, timeout: float | None = 30.0) -> None:
        self.unregister_signals()
        await super().shutdown(timeout)

    # =========================================================================
    # Dispositions
    # =========================================================================

    async def _discard(self, delivery: Delivery) -> bool:
        return await self._settle(delivery, DeliveryOutcome.ACKED, "discarded")

    async def _on_retryable_error(self, delivery: Delivery, content: Any, error: Exception) -> None:
        self._stats.retries_scheduled += 1
        self._log_retry(delivery, content, error)
        await self._settle(delivery, DeliveryOutcome.NACK_DISCARDED, "dead_lettered")


__all__ = ["DLXRetryConsumer"]
