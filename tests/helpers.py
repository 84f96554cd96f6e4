import threading
import time

from camcast.broadcast import BroadcastClosed, Broadcaster
from camcast.camera import CaptureFatal, CaptureTimeout
from camcast.encoder import EncodedImage

WIDTH = 64
HEIGHT = 48


class ScriptedCamera:
    """Delivers a fixed list of frames at a fixed interval, then reports a disconnect."""

    def __init__(self, frames, interval: float = 0.0, timeouts: int = 0):
        self.frames = list(frames)
        self.interval = interval
        self.timeouts_left = timeouts
        self.reads = 0
        self.closed = False
        self.exhausted = threading.Event()

    def wait_for_frame(self, timeout):
        if self.timeouts_left:
            self.timeouts_left -= 1
            raise CaptureTimeout("scripted timeout")
        if self.reads >= len(self.frames):
            self.exhausted.set()
            raise CaptureFatal("scripted end of stream")
        if self.interval:
            time.sleep(self.interval)

    def read_frame(self):
        frame = self.frames[self.reads]
        self.reads += 1
        return frame

    def close(self):
        self.closed = True


class Collector:
    """Viewer thread that keeps parking on a broadcaster and records what it gets."""

    def __init__(self, broadcaster: Broadcaster, limit: int = None):
        self.broadcaster = broadcaster
        self.limit = limit
        self.images = []
        self.done = threading.Event()
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self):
        try:
            while self.limit is None or len(self.images) < self.limit:
                self.images.append(self.broadcaster.receive())
        except BroadcastClosed:
            pass
        finally:
            self.done.set()

    def start(self):
        self.thread.start()
        return self


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def make_image(sequence: int, data: bytes = None) -> EncodedImage:
    return EncodedImage(
        data=data if data is not None else b"jpeg-%d" % sequence,
        sequence=sequence,
        width=WIDTH,
        height=HEIGHT,
        timestamp=float(sequence)
    )
