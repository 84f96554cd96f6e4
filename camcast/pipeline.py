"""
Capture and encode loops.

The capture thread pulls raw frames from the camera and offers them to the
encoder through a FrameRelay, dropping frames whenever the encoder is busy.
The encode thread converts each frame and broadcasts it to parked viewers.
Both threads are the only writers of pipeline data.
"""

import os
import threading
import traceback
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from .broadcast import BroadcastClosed, Broadcaster
from .camera import CaptureTimeout
from .encoder import FrameEncoder
from .relay import FrameRelay, RelayClosed

WEBCAM_FRAME_TIMEOUT = 5.0


@dataclass
class PipelineStats:
    """Counters, each written by a single pipeline thread."""

    captured: int = 0
    dropped: int = 0
    timeouts: int = 0
    encoded: int = 0
    deliveries: int = 0
    last_sequence: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def capture_loop(
    camera,
    relay: FrameRelay,
    stats: PipelineStats,
    timeout: float = WEBCAM_FRAME_TIMEOUT,
    stop: Optional[threading.Event] = None
):
    """
    Read frames from the camera and offer them to the encoder.

    Timeouts are retried. Any other camera error propagates to the caller.
    """
    buf = bytearray()
    while stop is None or not stop.is_set():
        try:
            camera.wait_for_frame(timeout)
        except CaptureTimeout as e:
            stats.timeouts += 1
            print(f"[capture] {e}, retrying")
            continue

        frame = camera.read_frame()
        size = len(frame)
        if size == 0:
            continue
        stats.captured += 1

        # Grow only; the buffer is reused for every later frame
        if len(buf) < size:
            buf = bytearray(size)
        buf[:size] = frame

        view = memoryview(buf)[:size]
        try:
            if not relay.offer(view):
                stats.dropped += 1
        finally:
            view.release()


def encode_loop(
    relay: FrameRelay,
    encoder: FrameEncoder,
    broadcaster: Broadcaster,
    stats: PipelineStats,
    stop: Optional[threading.Event] = None
):
    """Take frames from the relay, encode them and broadcast the result."""
    own = bytearray()
    while stop is None or not stop.is_set():
        frame = relay.receive()
        size = len(frame)
        if len(own) < size:
            own = bytearray(size)
        own[:size] = frame
        del frame
        relay.acknowledge()

        image = encoder.encode(memoryview(own)[:size])
        stats.encoded += 1
        stats.last_sequence = image.sequence

        stats.deliveries += broadcaster.broadcast(image)


def _terminate(error: BaseException):
    print(f"[pipeline] Unrecoverable error, exiting: {error}")
    os._exit(1)


class Pipeline:
    """
    Runs the capture and encode loops on their own threads.

    Usage:
        pipeline = Pipeline(camera, FrameEncoder(w, h), Broadcaster())
        pipeline.start()
        ...
        pipeline.stop()

    A fatal error in either loop is passed to `on_fatal`, which exits the
    process by default.
    """

    def __init__(
        self,
        camera,
        encoder: FrameEncoder,
        broadcaster: Broadcaster,
        frame_timeout: float = WEBCAM_FRAME_TIMEOUT,
        on_fatal: Optional[Callable[[BaseException], None]] = None
    ):
        self.camera = camera
        self.encoder = encoder
        self.broadcaster = broadcaster
        self.frame_timeout = frame_timeout
        self.relay = FrameRelay()
        self.stats = PipelineStats()
        self.error: Optional[BaseException] = None
        self._on_fatal = on_fatal or _terminate
        self._stop = threading.Event()
        self._threads = []

    def start(self):
        if self._threads:
            print("[pipeline] Already running")
            return

        self._threads = [
            threading.Thread(
                target=self._run,
                args=("encode", encode_loop, self.relay, self.encoder, self.broadcaster, self.stats, self._stop),
                name="camcast-encode",
                daemon=True
            ),
            threading.Thread(
                target=self._run,
                args=("capture", capture_loop, self.camera, self.relay, self.stats, self.frame_timeout, self._stop),
                name="camcast-capture",
                daemon=True
            ),
        ]
        for thread in self._threads:
            thread.start()
        print("[pipeline] Started capture and encode threads")

    def _run(self, name: str, loop, *args):
        try:
            loop(*args)
        except (RelayClosed, BroadcastClosed):
            if not self._stop.is_set():
                self._fail(name, RuntimeError(f"{name} loop lost its peer"))
        except Exception as e:
            if not self._stop.is_set():
                traceback.print_exc()
                self._fail(name, e)

    def _fail(self, name: str, error: BaseException):
        print(f"[pipeline] Fatal error in {name} loop: {error}")
        self.error = error
        self._on_fatal(error)

    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def stop(self, timeout: float = 2.0):
        """Stop both loops. Blocked viewers are woken with BroadcastClosed."""
        if not self._threads:
            return
        print("[pipeline] Stopping...")
        self._stop.set()
        self.relay.close()
        self.broadcaster.close()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        print("[pipeline] Stopped")

    def get_stats(self) -> dict:
        stats = self.stats.as_dict()
        stats["running"] = self.is_running()
        stats["viewers_waiting"] = self.broadcaster.waiting
        stats["resolution"] = f"{self.encoder.width}x{self.encoder.height}"
        return stats
