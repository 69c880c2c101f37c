"""
Real-time order status feed.

Order writes publish the fresh order snapshot to an in-process hub.
`listen_to_order_status` hands a caller the current snapshot straight away and
then every change, and drops the subscription by itself once the order reaches
a terminal state so a checkout never reacts to the same outcome twice.
`order_status_stream` is the same feed as an async iterator for WebSocket
handlers.
"""
import asyncio
import functools
import logging
import threading
from collections import defaultdict
from typing import AsyncIterator, Callable, Dict, List, Optional

from starlette.concurrency import run_in_threadpool

from database import db, oid, to_str_id
from schemas import TERMINAL_PAYMENT_STATUSES, OrderStatus

logger = logging.getLogger(__name__)

Snapshot = Optional[dict]
Listener = Callable[[Snapshot], None]

TERMINAL_ORDER_STATUSES = (OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value)


def is_terminal(snapshot: Snapshot) -> bool:
    if not snapshot:
        return False
    return (snapshot.get("payment_status") in TERMINAL_PAYMENT_STATUSES
            or snapshot.get("status") in TERMINAL_ORDER_STATUSES)


class OrderStatusHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, order_id: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners[order_id].append(listener)
        return functools.partial(self.unsubscribe, order_id, listener)

    def unsubscribe(self, order_id: str, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(order_id)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[order_id]

    def publish(self, order_id: str, snapshot: Snapshot) -> None:
        with self._lock:
            listeners = list(self._listeners.get(order_id, ()))
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                # a broken listener must not undo the write that triggered it
                logger.exception("Order status listener failed for %s", order_id)

    def listener_count(self, order_id: str) -> int:
        with self._lock:
            return len(self._listeners.get(order_id, ()))


hub = OrderStatusHub()


def order_snapshot(order_id: str) -> Snapshot:
    return to_str_id(db["order"].find_one({"_id": oid(order_id)}))


def publish_order(order_id: str) -> Snapshot:
    snapshot = order_snapshot(order_id)
    hub.publish(order_id, snapshot)
    return snapshot


def listen_to_order_status(order_id: str, callback: Listener, stop_on_terminal: bool = True) -> Callable[[], None]:
    """Subscribe to one order. Returns an idempotent unsubscribe function."""
    lock = threading.Lock()
    state = {"done": False}

    def deliver(snapshot: Snapshot):
        with lock:
            if state["done"]:
                return
            if stop_on_terminal and is_terminal(snapshot):
                state["done"] = True
        callback(snapshot)
        if state["done"]:
            hub.unsubscribe(order_id, deliver)

    def unsubscribe():
        with lock:
            state["done"] = True
        hub.unsubscribe(order_id, deliver)

    # subscribe before reading so a write landing in between is not lost
    hub.subscribe(order_id, deliver)
    deliver(order_snapshot(order_id))
    return unsubscribe


async def order_status_stream(order_id: str, until: Optional[asyncio.Future] = None) -> AsyncIterator[Snapshot]:
    """Yield snapshots until the order is terminal or missing, or `until` resolves."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = await run_in_threadpool(
        listen_to_order_status, order_id, lambda snap: loop.call_soon_threadsafe(queue.put_nowait, snap)
    )
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            try:
                if until is None:
                    snapshot = await getter
                else:
                    await asyncio.wait({getter, until}, return_when=asyncio.FIRST_COMPLETED)
                    if not getter.done():
                        return
                    snapshot = getter.result()
            finally:
                getter.cancel()
            yield snapshot
            if snapshot is None or is_terminal(snapshot):
                break
    finally:
        unsubscribe()
