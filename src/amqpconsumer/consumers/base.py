"""Shared consumer lifecycle.

BaseConsumer wires a consumer to the ChannelPool and owns everything that
does not depend on how a delivery is dispositioned:

- queue acquisition, prefetch and the on_channel_established hook
- channel observers (error logging, process termination on close)
- consumer tag management: process() / stop_consumption()
- the in-flight counter and the drain signal used for graceful shutdown
- statistics, tracing and background task bookkeeping

Lifecycle:
    idle -> process() -> consuming -> stop_consumption() -> idle
    (process() may be called again; every subscription gets a new tag)
    consuming -> shutdown() -> stopped (intake cancelled, in-flight drained)
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from abc import ABC, abstractmethod
from collections.abc import Coroutine
from datetime import UTC, datetime
from typing import Any

from aio_pika.abc import AbstractChannel, AbstractIncomingMessage

from amqpconsumer.config import BaseConsumerConfig, QueueOptions
from amqpconsumer.delivery import Delivery, DeliveryOutcome
from amqpconsumer.exceptions import ChannelClosedError
from amqpconsumer.log import get_logger
from amqpconsumer.observability import Tracer, create_tracer
from amqpconsumer.pool import ChannelPool, QueueBinding
from amqpconsumer.stats import ConsumerStats


class BaseConsumer(ABC):
    """Base class for RabbitMQ consumers sharing a ChannelPool.

    Args:
        config: Validated consumer configuration.
        pool: Pool providing the shared connection/channel for
            ``config.connection_type``.
        tracer: Optional Tracer. Created from ``config.enable_tracing`` when omitted.
    """

    def __init__(
        self,
        config: BaseConsumerConfig,
        pool: ChannelPool,
        *,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config
        self._pool = pool
        self._logger = get_logger(config.logger, type(self).__module__)
        self._tracer = tracer or create_tracer(__name__, config.enable_tracing)
        self._stats = ConsumerStats()

        self._binding: QueueBinding | None = None
        self._observed_channel: AbstractChannel | None = None
        self._established_channel: AbstractChannel | None = None
        self._consumer_tag: str | None = None
        self._channel_error: ChannelClosedError | None = None

        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._shutdown_initiated = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> BaseConsumerConfig:
        return self._config

    @property
    def queue_name(self) -> str:
        return self._config.queue_name

    @property
    def stats(self) -> ConsumerStats:
        return self._stats

    @property
    def consumer_tag(self) -> str | None:
        """Tag of the active broker subscription, None when not consuming."""
        return self._consumer_tag

    @property
    def is_consuming(self) -> bool:
        return self._consumer_tag is not None

    @property
    def in_flight(self) -> int:
        """Deliveries received from the broker and not yet acknowledged."""
        return self._in_flight

    @property
    def channel_error(self) -> ChannelClosedError | None:
        """The failure recorded when the broker closed this consumer's channel."""
        return self._channel_error

    def is_finished(self) -> bool:
        """True when no delivery is waiting for acknowledgment."""
        return self._in_flight == 0

    def is_active_tag(self, consumer_tag: str | None) -> bool:
        return consumer_tag is not None and consumer_tag == self._consumer_tag

    # =========================================================================
    # Topology hooks
    # =========================================================================

    def _queue_options(self) -> QueueOptions:
        assert self._config.queue_options is not None
        return self._config.queue_options

    async def _declare_topology(self) -> None:
        """Declare queues the consumer depends on besides its own queue."""
        return None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def process(self) -> str:
        """Subscribe to the queue and start dispatching deliveries.

        Returns:
            The consumer tag of the new subscription.

        Raises:
            Exception: Initialization failures are logged and re-raised.
        """
        if self._consumer_tag is not None:
            self._logger.warning(
                "Consumer already active",
                extra={"queue": self.queue_name, "consumer_tag": self._consumer_tag},
            )
            return self._consumer_tag

        self._logger.info("[AMQP] Process", extra={"queue": self.queue_name})
        try:
            await self._declare_topology()
            binding = await self._pool.acquire(
                self._config.connection_type,
                self.queue_name,
                self._queue_options(),
            )
            assert self._config.prefetch_count is not None
            await binding.set_prefetch(self._config.prefetch_count)
            self._binding = binding

            if binding.channel is not self._observed_channel:
                self._observe_channel(binding.channel)
            if binding.channel is not self._established_channel:
                if self._config.on_channel_established is not None:
                    await self._config.on_channel_established(binding.channel)
                self._established_channel = binding.channel

            self._shutdown_initiated = False
            tag = await binding.consume(self._on_message, consumer_tag=self._new_consumer_tag())
            self._consumer_tag = tag
        except Exception as e:
            self._logger.error(
                f"Consumer initialization error: {e}",
                exc_info=True,
                extra={
                    "queue": self.queue_name,
                    "connection_type": self._config.connection_type,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise

        self._logger.info(
            f"Started consuming from {self.queue_name}",
            extra={
                "queue": self.queue_name,
                "consumer_tag": tag,
                "prefetch_count": self._config.prefetch_count,
            },
        )
        return tag

    def _new_consumer_tag(self) -> str:
        return f"{self._config.consumer_name}-{uuid.uuid4().hex[:8]}"

    async def stop_consumption(self) -> bool:
        """Cancel the broker subscription.

        In-flight deliveries keep being processed and acknowledged; poll
        is_finished() or await wait_until_finished() for quiescence.

        Returns:
            True if a live subscription was cancelled, False if there was none.
        """
        tag = self._consumer_tag
        if tag is None or self._binding is None:
            return False
        self._consumer_tag = None
        await self._binding.cancel(tag)
        self._logger.info(
            "Consumer cancelled",
            extra={"queue": self.queue_name, "consumer_tag": tag, "in_flight": self._in_flight},
        )
        return True

    async def wait_until_finished(self, timeout: float | None = None) -> None:
        """Wait until every received delivery has been acknowledged.

        Raises:
            TimeoutError: If deliveries are still in flight after ``timeout``.
        """
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    async def shutdown(self, timeout: float | None = 30.0) -> None:
        """Stop intake and wait for in-flight deliveries to settle.

        Idempotent. Closing the pooled connection is left to the pool owner.

        Raises:
            TimeoutError: If in-flight deliveries did not settle within ``timeout``.
        """
        if self._shutdown_initiated:
            self._logger.debug("Shutdown already initiated, skipping")
            return
        self._shutdown_initiated = True
        shutdown_start = datetime.now(UTC)
        self._logger.info(
            f"Initiating graceful shutdown (timeout={timeout}s)",
            extra={"queue": self.queue_name, "in_flight": self._in_flight},
        )

        await self.stop_consumption()
        await self._before_drain()

        try:
            await self.wait_until_finished(timeout)
        except TimeoutError:
            duration = (datetime.now(UTC) - shutdown_start).total_seconds()
            self._logger.error(
                f"Graceful shutdown timed out after {duration:.2f}s",
                extra={"queue": self.queue_name, "in_flight": self._in_flight},
            )
            raise TimeoutError(
                f"Graceful shutdown timed out after {duration:.2f}s with "
                f"{self._in_flight} deliveries in flight"
            ) from None

        duration = (datetime.now(UTC) - shutdown_start).total_seconds()
        self._logger.info(
            f"Graceful shutdown completed in {duration:.2f}s",
            extra={"queue": self.queue_name, "duration_seconds": duration},
        )

    async def _before_drain(self) -> None:
        """Hook run by shutdown() between cancelling intake and draining."""
        return None

    async def __aenter__(self) -> BaseConsumer:
        await self.process()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.shutdown()

    # =========================================================================
    # Channel observers
    # =========================================================================

    def _observe_channel(self, channel: AbstractChannel) -> None:
        channel.close_callbacks.add(self._on_channel_close)
        self._observed_channel = channel

    def _on_channel_close(
        self,
        channel: AbstractChannel | None,
        exception: BaseException | None = None,
    ) -> None:
        """Escalate a broker-side channel close.

        Errors are logged; a close under a live subscription terminates the
        process so an external supervisor restarts it. A close after
        stop_consumption() or shutdown() is only logged.
        """
        if channel is not None and channel is not self._observed_channel:
            return
        self._observed_channel = None

        if exception is not None:
            self._logger.error(
                f"[AMQP] Channel error: {exception}",
                extra={
                    "queue": self.queue_name,
                    "error": str(exception),
                    "error_type": type(exception).__name__,
                },
            )
        self._channel_error = ChannelClosedError(self.queue_name, exception)

        was_consuming = self._consumer_tag is not None
        self._consumer_tag = None
        self._logger.info(
            "[AMQP] Channel close",
            extra={"queue": self.queue_name, "was_consuming": was_consuming},
        )
        if was_consuming and self._config.exit_on_channel_close:
            self._terminate()

    def _terminate(self) -> None:
        self._logger.critical(
            "Terminating process after channel close",
            extra={"queue": self.queue_name, "in_flight": self._in_flight},
        )
        logging.shutdown()
        os._exit(1)

    # =========================================================================
    # Delivery bookkeeping
    # =========================================================================

    @abstractmethod
    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        """Broker callback, invoked once per delivery."""

    def _track(self, count: int = 1) -> None:
        self._in_flight += count
        self._stats.received += count
        self._stats.last_message_at = datetime.now(UTC)
        self._idle.clear()

    def _release(self, count: int = 1) -> None:
        self._in_flight = max(0, self._in_flight - count)
        if self._in_flight == 0:
            self._idle.set()

    async def _settle(self, delivery: Delivery, outcome: DeliveryOutcome, counter: str) -> bool:
        """Apply a terminal acknowledgment once and release the in-flight permit."""
        if delivery.settled:
            return False
        try:
            if outcome is DeliveryOutcome.ACKED:
                await delivery.ack()
            else:
                await delivery.nack(requeue=outcome is DeliveryOutcome.NACK_REQUEUED)
        finally:
            self._release()
        setattr(self._stats, counter, getattr(self._stats, counter) + 1)
        return True

    async def _ack(self, delivery: Delivery) -> bool:
        return await self._settle(delivery, DeliveryOutcome.ACKED, "acked")

    async def _nack(self, delivery: Delivery, requeue: bool = True) -> bool:
        if requeue:
            return await self._settle(delivery, DeliveryOutcome.NACK_REQUEUED, "nacked_requeue")
        return await self._settle(delivery, DeliveryOutcome.NACK_DISCARDED, "discarded")

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        """Scheduled retries and auto-nack guards that have not run yet."""
        return len(self._background_tasks)

    def _record_error(self) -> None:
        self._stats.last_error_at = datetime.now(UTC)


__all__ = ["BaseConsumer"]
