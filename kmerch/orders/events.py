import asyncio
from collections import defaultdict
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Set
import orjson
from kmerch.orders.constants import ORDER_EVENT_KEEPALIVE_SECONDS, ORDER_EVENT_QUEUE_SIZE, logger


class OrderEventBus:
    """In-process pub/sub scoped to an order id.

    Order tracking views subscribe to one order and re-read it whenever an event arrives.
    Publishing never blocks: a full subscriber queue drops its oldest event.
    """

    def __init__(self, queue_size: int = ORDER_EVENT_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, order_id: str) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[order_id].add(q)
        return q

    def unsubscribe(self, order_id: str, q: asyncio.Queue) -> None:
        subs = self._subscribers.get(order_id)
        if not subs:
            return
        subs.discard(q)
        if not subs:
            self._subscribers.pop(order_id, None)

    def subscriber_count(self, order_id: str) -> int:
        return len(self._subscribers.get(order_id, ()))

    def publish(self, order_id: str, event: Dict[str, Any]) -> int:
        delivered = 0
        for q in list(self._subscribers.get(order_id, ())):
            if q.full():
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.debug("order_events.dropped_oldest", extra={"order_id": order_id})
            q.put_nowait(event)
            delivered += 1
        return delivered


def format_sse(event: Dict[str, Any]) -> str:
    return f"event: {event.get('event', 'message')}\ndata: {orjson.dumps(event).decode()}\n\n"


async def stream_order_events(bus: OrderEventBus, order_id: str,
                              is_disconnected: Callable[[], Awaitable[bool]],
                              keepalive: float = ORDER_EVENT_KEEPALIVE_SECONDS) -> AsyncIterator[str]:
    """Server-Sent Events body for one order. Comment lines keep idle proxies from closing it."""
    q = bus.subscribe(order_id)
    try:
        yield ": connected\n\n"
        while not await is_disconnected():
            try:
                event = await asyncio.wait_for(q.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(event)
    finally:
        bus.unsubscribe(order_id, q)
