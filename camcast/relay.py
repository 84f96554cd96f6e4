"""
Single-slot handoff between the capture loop and the encoder.

The capture side never queues: offer() only succeeds when the encoder is
already parked in receive(). Once it succeeds, offer() blocks until the
encoder calls acknowledge(), which tells the capture loop the encoder has
its own copy and the capture buffer may be overwritten.
"""

import threading


class RelayClosed(Exception):
    """Raised to unblock both sides once the relay is closed."""
    pass


class FrameRelay:
    """
    Usage:
        # capture thread
        if relay.offer(memoryview(buf)[:n]):
            ...  # encoder has copied the frame

        # encoder thread
        frame = relay.receive()
        own[:len(frame)] = frame
        relay.acknowledge()
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._receivers = 0
        self._frame = None
        self._taken = False
        self._acked = False
        self._closed = False

    def offer(self, frame) -> bool:
        """
        Try to hand `frame` to a waiting encoder without blocking.

        Returns False if no encoder is parked or the slot is still occupied.
        Returns True after the encoder has acknowledged the frame.
        """
        with self._cond:
            if self._closed:
                raise RelayClosed()
            if self._receivers == 0 or self._frame is not None:
                return False
            self._frame = frame
            self._taken = False
            self._acked = False
            self._cond.notify_all()
            while not self._acked:
                if self._closed:
                    raise RelayClosed()
                self._cond.wait()
            return True

    def receive(self):
        """Block until the capture loop offers a frame and return it."""
        with self._cond:
            self._receivers += 1
            try:
                while self._frame is None or self._taken:
                    if self._closed:
                        raise RelayClosed()
                    self._cond.wait()
            finally:
                self._receivers -= 1
            self._taken = True
            return self._frame

    def acknowledge(self):
        """Release the slot; the received frame must not be touched afterwards."""
        with self._cond:
            if self._frame is None:
                return
            self._frame = None
            self._taken = False
            self._acked = True
            self._cond.notify_all()

    @property
    def waiting(self) -> bool:
        """True while an encoder is parked in receive()."""
        with self._cond:
            return self._receivers > 0

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()
