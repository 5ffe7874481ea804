"""Asynchronous lifecycle event bus over a private pypubsub publisher."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Set, Tuple

from pubsub.core import Publisher

logger = logging.getLogger(__name__)


EventHandler = Callable[[Any], None]


def _payload_listener(payload):
    """Prototype listener: every topic carries exactly one `payload` argument."""
    pass


class _LoggingExcHandler:
    """Logs a raising subscriber so delivery to the remaining subscribers goes on."""

    def __call__(self, listenerID: str, topicObj):
        logger.exception(f"Event handler {listenerID} failed on topic '{topicObj.getName()}'")


class EventBus:
    """Publishes lifecycle events without blocking the caller.

    Delivery is at-most-once and unordered across topics. Handlers take a single
    `payload` argument. The bus keeps strong references to them because
    pypubsub only holds listeners weakly.
    """

    def __init__(self, max_workers: int = 4):
        """Initialize event bus.

        Args:
            max_workers: Threads used to deliver events
        """
        self._publisher = Publisher()
        self._publisher.setListenerExcHandler(_LoggingExcHandler())
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="meetscribe-events")
        self.lock = threading.RLock()
        self._handlers: Dict[Tuple[str, EventHandler], EventHandler] = {}
        self._delivery_locks: Dict[str, threading.Lock] = {}
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self._closed = False
        logger.info(f"EventBus initialized with {max_workers} workers")

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        with self.lock:
            self._ensure_topic(topic)
            self._publisher.subscribe(handler, topic)
            self._handlers[(topic, handler)] = handler
        logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)} to '{topic}'")

    def unsubscribe(self, topic: str, handler: EventHandler) -> None:
        with self.lock:
            if self._handlers.pop((topic, handler), None) is None:
                return
            self._publisher.unsubscribe(handler, topic)

    def subscribers(self, topic: str) -> List[EventHandler]:
        with self.lock:
            return [handler for (name, _), handler in self._handlers.items() if name == topic]

    def publish(self, topic: str, payload: Any) -> None:
        """Schedule delivery of `payload` to every subscriber of `topic` and return immediately."""
        with self._pending_lock:
            if self._closed:
                logger.warning(f"EventBus is shut down; dropping event on '{topic}'")
                return
            future = self._executor.submit(self._deliver, topic, payload)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        logger.debug(f"Queued event on '{topic}'")

    def _ensure_topic(self, topic: str) -> threading.Lock:
        """Create the topic if needed and return its delivery lock."""
        with self.lock:
            delivery_lock = self._delivery_locks.get(topic)
            if delivery_lock is None:
                self._publisher.getTopicMgr().getOrCreateTopic(topic, _payload_listener)
                delivery_lock = self._delivery_locks[topic] = threading.Lock()
            return delivery_lock

    def _deliver(self, topic: str, payload: Any) -> None:
        # Serialized per topic only; subscribers and other topics never wait on a handler
        with self._ensure_topic(topic):
            self._publisher.sendMessage(topic, payload=payload)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Event delivery failed: {future.exception()}")

    def wait_idle(self, timeout: float = None) -> bool:
        """Block until every queued event has been delivered.

        Returns:
            True if the bus drained within the timeout
        """
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_delivery: bool = True) -> None:
        with self._pending_lock:
            self._closed = True
        self._executor.shutdown(wait=wait_for_delivery)
        with self.lock:
            self._handlers.clear()
            self._publisher.unsubAll()
        logger.info("EventBus shut down")
