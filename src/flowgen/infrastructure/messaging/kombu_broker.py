"""RabbitMQ transport for the dispatcher and the completion listeners.

kombu connections and channels are not thread-safe and block on I/O, so the
adapter splits the work in two:

* a publisher connection, guarded by a lock and driven through
  ``asyncio.to_thread``, used for queue declarations and publishing;
* a consumer thread that owns its own connection. All consumers, acks and
  rejects happen on that thread. Each delivery is handed to the event loop
  with ``asyncio.run_coroutine_threadsafe`` and the thread waits for the
  handler before applying the recorded disposition.

Exclusive queues belong to the connection that declared them, which is why
reply queues are declared by the consumer thread and not by the publisher.
"""

import asyncio
import concurrent.futures
import queue
import socket
import threading
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from kombu import Connection, Consumer, Producer, Queue
from kombu.exceptions import OperationalError

from flowgen.domain.exceptions import BrokerUnavailableError
from flowgen.infrastructure.config import BrokerConfig
from flowgen.infrastructure.messaging.broker import (
    Delivery,
    DeliveryHandler,
    Disposition,
)

logger = structlog.get_logger(__name__)


def _transport_errors(url: str) -> Tuple[type, ...]:
    """Connection and channel errors for the transport behind ``url``."""
    probe = Connection(url)
    try:
        return (
            OperationalError,
            OSError,
            *probe.connection_errors,
            *probe.channel_errors,
        )
    finally:
        probe.release()


def _declaration(
    name: str, *, durable: bool, exclusive: bool, auto_delete: bool
) -> Queue:
    return Queue(
        name,
        routing_key=name,
        durable=durable,
        exclusive=exclusive,
        auto_delete=auto_delete,
    )


class _Publisher:
    """Lazily connected publishing channel shared by all dispatchers."""

    def __init__(self, config: BrokerConfig, errors: Tuple[type, ...], options: dict):
        self._config = config
        self._errors = errors
        self._options = options
        self._lock = threading.Lock()
        self._connection: Optional[Connection] = None
        self._producer: Optional[Producer] = None

    def _ensure(self) -> Producer:
        if self._producer is None:
            # No heartbeats here: nothing services them between publishes.
            connection = Connection(
                self._config.url,
                heartbeat=0,
                connect_timeout=self._config.connect_timeout,
                **self._options,
            )
            connection.ensure_connection(max_retries=1)
            self._connection = connection
            self._producer = Producer(connection.channel())
            logger.info("Broker publisher connected")
        return self._producer

    def _invalidate(self) -> None:
        connection, self._connection, self._producer = self._connection, None, None
        if connection is not None:
            try:
                connection.release()
            except self._errors:
                pass

    def run(self, operation: Callable[[Producer], Any]) -> Any:
        """Run ``operation`` with a live producer.

        A connection or channel error drops the cached handle and the
        operation is tried once more on a fresh connection.
        """
        with self._lock:
            for attempt in (1, 2):
                try:
                    return operation(self._ensure())
                except self._errors as exc:
                    self._invalidate()
                    logger.warning(
                        "Broker publisher error", attempt=attempt, error=str(exc)
                    )
                    if attempt == 2:
                        raise BrokerUnavailableError(
                            "Message broker is unavailable",
                            details={"reason": str(exc)},
                        ) from exc

    def close(self) -> None:
        with self._lock:
            self._invalidate()


@dataclass
class _Subscription:
    tag: str
    queue: Queue
    handler: DeliveryHandler
    exclusive: bool
    consumer: Optional[Consumer] = None


class _ConsumerThread(threading.Thread):
    """Owns the consuming connection and runs commands sent from the loop."""

    def __init__(
        self,
        config: BrokerConfig,
        errors: Tuple[type, ...],
        options: dict,
        loop: asyncio.AbstractEventLoop,
    ):
        super().__init__(name="flowgen-broker-consumer", daemon=True)
        self._config = config
        self._errors = errors
        self._options = options
        self._loop = loop
        self._commands: "queue.Queue[Tuple[Callable[[], Any], concurrent.futures.Future]]" = (
            queue.Queue()
        )
        self._stopping = threading.Event()
        self._connection: Optional[Connection] = None
        self._subscriptions: Dict[str, _Subscription] = {}

    # -- called from the event loop ---------------------------------------

    def call(self, command: Callable[[], Any]) -> concurrent.futures.Future:
        future: concurrent.futures.Future = concurrent.futures.Future()
        self._commands.put((command, future))
        return future

    def stop(self, timeout: float = 10.0) -> None:
        self._stopping.set()
        self.call(lambda: None)
        self.join(timeout)

    # -- consumer thread ---------------------------------------------------

    def run(self) -> None:
        logger.info("Broker consumer thread started")
        while not self._stopping.is_set():
            if self._connection is None and not self._subscriptions:
                self._run_commands(block=True)
                continue

            self._run_commands(block=False)
            if self._stopping.is_set():
                break

            if self._connection is None:
                try:
                    self._connect()
                except self._errors as exc:
                    logger.warning("Broker consumer cannot connect", error=str(exc))
                    self._stopping.wait(self._config.reconnect_delay)
                continue

            try:
                self._connection.heartbeat_check()
                self._connection.drain_events(timeout=self._config.poll_interval)
            except socket.timeout:
                continue
            except self._errors as exc:
                logger.warning("Broker consumer connection lost", error=str(exc))
                self._reset()
                self._stopping.wait(self._config.reconnect_delay)

        self._shutdown()
        logger.info("Broker consumer thread stopped")

    def _run_commands(self, block: bool) -> None:
        timeout = self._config.poll_interval
        while True:
            try:
                if block:
                    command, future = self._commands.get(timeout=timeout)
                    block = False
                else:
                    command, future = self._commands.get_nowait()
            except queue.Empty:
                return
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(command())
            except BaseException as exc:  # noqa: BLE001 - handed back to the caller
                future.set_exception(exc)

    def _connect(self) -> None:
        connection = Connection(
            self._config.url,
            heartbeat=self._config.heartbeat,
            connect_timeout=self._config.connect_timeout,
            **self._options,
        )
        connection.ensure_connection(max_retries=1)
        self._connection = connection
        logger.info("Broker consumer connected")

        try:
            for subscription in list(self._subscriptions.values()):
                if subscription.consumer is None:
                    self._start(subscription)
        except self._errors:
            self._reset()
            raise

    def _reset(self) -> None:
        """Forget the dead connection; exclusive queues died with it."""
        for tag, subscription in list(self._subscriptions.items()):
            subscription.consumer = None
            if subscription.exclusive:
                self._subscriptions.pop(tag, None)
                logger.warning(
                    "Exclusive consumer lost with connection",
                    queue=subscription.queue.name,
                )
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                connection.release()
            except self._errors:
                pass

    def _start(self, subscription: _Subscription) -> None:
        channel = self._connection.channel()
        consumer = Consumer(
            channel,
            queues=[subscription.queue],
            on_message=partial(self._on_message, subscription),
            prefetch_count=self._config.prefetch_count,
            auto_declare=True,
        )
        consumer.consume()
        subscription.consumer = consumer
        logger.debug("Consumer started", queue=subscription.queue.name)

    def subscribe(self, subscription: _Subscription) -> str:
        """Command: register and start a consumer."""
        if subscription.exclusive:
            # Exclusive queues need a live connection right now.
            if self._connection is None:
                try:
                    self._connect()
                except self._errors as exc:
                    raise BrokerUnavailableError(
                        "Message broker is unavailable", details={"reason": str(exc)}
                    ) from exc
            try:
                self._start(subscription)
            except self._errors as exc:
                self._reset()
                raise BrokerUnavailableError(
                    "Could not consume reply queue", details={"reason": str(exc)}
                ) from exc
            self._subscriptions[subscription.tag] = subscription
            return subscription.tag

        # Durable consumers survive reconnects and start once a connection exists.
        self._subscriptions[subscription.tag] = subscription
        if self._connection is not None:
            try:
                self._start(subscription)
            except self._errors as exc:
                logger.warning(
                    "Consumer start deferred until reconnect",
                    queue=subscription.queue.name,
                    error=str(exc),
                )
                self._reset()
        return subscription.tag

    def unsubscribe(self, tag: str) -> None:
        """Command: cancel a consumer and close its channel."""
        subscription = self._subscriptions.pop(tag, None)
        if subscription is None or subscription.consumer is None:
            return
        consumer = subscription.consumer
        subscription.consumer = None
        try:
            consumer.cancel()
            consumer.channel.close()
        except self._errors as exc:
            logger.warning(
                "Consumer cancel failed", queue=subscription.queue.name, error=str(exc)
            )

    def _on_message(self, subscription: _Subscription, message: Any) -> None:
        properties = message.properties or {}
        delivery = Delivery(
            message.body,
            queue=subscription.queue.name,
            correlation_id=properties.get("correlation_id"),
            reply_to=properties.get("reply_to"),
            redelivered=bool((message.delivery_info or {}).get("redelivered")),
        )

        future = asyncio.run_coroutine_threadsafe(
            subscription.handler(delivery), self._loop
        )
        try:
            future.result(timeout=self._config.handler_timeout_seconds)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(
                "Message handler timed out; requeueing",
                queue=subscription.queue.name,
                correlation_id=delivery.correlation_id,
            )
            delivery.reject(requeue=True)
        except (concurrent.futures.CancelledError, asyncio.CancelledError):
            delivery.reject(requeue=True)
        except Exception as exc:
            logger.error(
                "Message handler failed; dropping message",
                queue=subscription.queue.name,
                correlation_id=delivery.correlation_id,
                error=str(exc),
                exc_info=exc,
            )
            delivery.reject(requeue=False)

        self._settle(message, delivery)

    @staticmethod
    def _settle(message: Any, delivery: Delivery) -> None:
        if message.acknowledged:
            return
        if delivery.disposition is Disposition.REJECT:
            message.reject(requeue=False)
        elif delivery.disposition is Disposition.REQUEUE:
            message.requeue()
        else:
            message.ack()

    def _shutdown(self) -> None:
        for tag in list(self._subscriptions):
            self.unsubscribe(tag)
        if self._connection is not None:
            try:
                self._connection.release()
            except self._errors:
                pass
            self._connection = None
        # Fail anything still waiting so callers do not hang.
        while True:
            try:
                _, future = self._commands.get_nowait()
            except queue.Empty:
                break
            if future.set_running_or_notify_cancel():
                future.set_exception(BrokerUnavailableError("Broker is shutting down"))


class KombuBroker:
    """:class:`MessageBroker` implementation over a kombu transport.

    Both connections are established on first use. ``transport_options`` is
    passed through to kombu (handy for the ``memory://`` transport in tests).
    """

    def __init__(
        self,
        config: BrokerConfig,
        *,
        transport_options: Optional[Dict[str, Any]] = None,
    ):
        self._config = config
        self._options = (
            {"transport_options": transport_options} if transport_options else {}
        )
        self._errors = _transport_errors(config.url)
        self._publisher = _Publisher(config, self._errors, self._options)
        self._consumer: Optional[_ConsumerThread] = None
        self._consumer_lock = threading.Lock()

    def _consumer_thread(self) -> _ConsumerThread:
        with self._consumer_lock:
            if self._consumer is None or not self._consumer.is_alive():
                self._consumer = _ConsumerThread(
                    self._config,
                    self._errors,
                    self._options,
                    asyncio.get_running_loop(),
                )
                self._consumer.start()
            return self._consumer

    async def declare_queue(
        self,
        name: str,
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> None:
        declaration = _declaration(
            name, durable=durable, exclusive=exclusive, auto_delete=auto_delete
        )
        await asyncio.to_thread(
            self._publisher.run,
            lambda producer: declaration.bind(producer.channel).declare(),
        )

    async def publish(
        self,
        queue: str,
        body: bytes,
        *,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        properties = {}
        if correlation_id:
            properties["correlation_id"] = correlation_id
        if reply_to:
            properties["reply_to"] = reply_to

        def _publish(producer: Producer) -> None:
            producer.publish(
                body,
                exchange="",
                routing_key=queue,
                content_type="application/json",
                content_encoding="utf-8",
                delivery_mode=2,
                retry=False,
                **properties,
            )

        await asyncio.to_thread(self._publisher.run, _publish)

    async def consume(
        self,
        queue: str,
        handler: DeliveryHandler,
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        subscription = _Subscription(
            tag=f"flowgen-{uuid.uuid4().hex}",
            queue=_declaration(
                queue, durable=durable, exclusive=exclusive, auto_delete=auto_delete
            ),
            handler=handler,
            exclusive=exclusive,
        )
        thread = self._consumer_thread()
        return await asyncio.wrap_future(thread.call(partial(thread.subscribe, subscription)))

    async def cancel(self, consumer_tag: str) -> None:
        thread = self._consumer
        if thread is None or not thread.is_alive():
            return
        await asyncio.wrap_future(thread.call(partial(thread.unsubscribe, consumer_tag)))

    async def close(self) -> None:
        thread, self._consumer = self._consumer, None
        if thread is not None and thread.is_alive():
            await asyncio.to_thread(thread.stop)
        await asyncio.to_thread(self._publisher.close)
        logger.info("Broker connections closed")
