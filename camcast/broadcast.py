"""
Fan-out of encoded images to waiting viewers.

The Broadcaster is a rendezvous point with no buffer: a send only succeeds
when a viewer is already parked in receive(). Nothing is kept for viewers
that are not waiting, so a slow viewer simply gets the next image produced
after it comes back.
"""

import threading
import time
from collections import deque
from typing import Optional

HTTP_SERVED_CLIENTS = 50


class BroadcastClosed(Exception):
    """Raised to senders and receivers once the broadcaster is closed."""
    pass


class _Demand:
    """One parked receive. Lives only until it is served or withdrawn."""

    __slots__ = ("cond", "item", "served")

    def __init__(self, lock):
        self.cond = threading.Condition(lock)
        self.item = None
        self.served = False


class Broadcaster:
    """
    Usage:
        broadcaster = Broadcaster(max_fanout=50)

        # encoder thread, once per image
        broadcaster.broadcast(image)

        # viewer thread
        image = broadcaster.receive()
    """

    def __init__(self, max_fanout: int = HTTP_SERVED_CLIENTS):
        if max_fanout < 1:
            raise ValueError("max_fanout must be at least 1")
        self.max_fanout = max_fanout
        self._lock = threading.Lock()
        self._receiver_arrived = threading.Condition(self._lock)
        self._parked = deque()
        self._closed = False

    def receive(self, timeout: Optional[float] = None):
        """
        Park until the next item is sent and return it.

        Returns None if `timeout` expires first; the demand is withdrawn so
        no later item is delivered to it.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            if self._closed:
                raise BroadcastClosed()
            demand = _Demand(self._lock)
            self._parked.append(demand)
            self._receiver_arrived.notify()

            while not demand.served:
                if self._closed:
                    self._withdraw(demand)
                    raise BroadcastClosed()
                if deadline is None:
                    demand.cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._withdraw(demand)
                    return None
                demand.cond.wait(remaining)
            return demand.item

    def _withdraw(self, demand: _Demand):
        try:
            self._parked.remove(demand)
        except ValueError:
            pass

    def _deliver(self, item):
        demand = self._parked.popleft()
        demand.item = item
        demand.served = True
        demand.cond.notify()

    def try_send(self, item) -> bool:
        """Hand `item` to one parked receiver, or return False if none is waiting."""
        with self._lock:
            if self._closed:
                raise BroadcastClosed()
            if not self._parked:
                return False
            self._deliver(item)
            return True

    def send(self, item):
        """Block until a receiver parks, then hand it `item`."""
        with self._lock:
            while not self._parked:
                if self._closed:
                    raise BroadcastClosed()
                self._receiver_arrived.wait()
            if self._closed:
                raise BroadcastClosed()
            self._deliver(item)

    def broadcast(self, item) -> int:
        """
        Deliver `item` to every receiver currently parked, up to max_fanout.

        Stops at the first attempt that finds nobody waiting. If nobody was
        waiting at all, blocks until exactly one receiver takes the item.
        Returns the number of receivers served.
        """
        served = 0
        while served < self.max_fanout and self.try_send(item):
            served += 1
        if served == 0:
            self.send(item)
            served = 1
        return served

    @property
    def waiting(self) -> int:
        """Number of receivers currently parked."""
        with self._lock:
            return len(self._parked)

    def close(self):
        """Wake every blocked sender and receiver with BroadcastClosed."""
        with self._lock:
            self._closed = True
            self._receiver_arrived.notify_all()
            for demand in self._parked:
                demand.cond.notify()
