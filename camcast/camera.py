"""
Capture device wrappers producing raw YUYV frames.

This module provides:
  - V4L2Camera: a Video4Linux device opened through OpenCV with RGB
    conversion disabled, so frames arrive in the device-native layout
  - DummyCamera: a synthetic YUYV test pattern for running without hardware
  - The capture error taxonomy shared by both

Both cameras follow the same lifecycle:

    camera.open()
    width, height = camera.negotiate_format(PIXEL_FORMAT_YUYV, 1024, 768)
    camera.start_streaming()

    # In the capture loop:
    camera.wait_for_frame(timeout=5.0)
    raw = camera.read_frame()

    camera.close()
"""

import threading
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from .config import PIXEL_FORMAT_YUYV, Settings


class CameraError(Exception):
    """Raised when camera operations fail."""
    pass


class DeviceError(CameraError):
    """The device could not be opened."""
    pass


class FormatError(CameraError):
    """The device refused the requested pixel format or size."""
    pass


class StreamError(CameraError):
    """Streaming could not be started."""
    pass


class CaptureTimeout(CameraError):
    """No frame arrived within the wait timeout. Retrying is safe."""
    pass


class CaptureFatal(CameraError):
    """The device disconnected or a frame could not be read."""
    pass


def fourcc_to_str(code: int) -> str:
    """Decode a little-endian V4L2 fourcc, e.g. 0x56595559 -> 'YUYV'."""
    return "".join(chr((code >> (8 * i)) & 0xFF) for i in range(4))


class _Grab:
    """One cap.grab() call running on a daemon thread."""

    def __init__(self, cap):
        self.done = threading.Event()
        self.grabbed = False
        self.error: Optional[Exception] = None
        threading.Thread(target=self._run, args=(cap,), name="v4l2-grab", daemon=True).start()

    def _run(self, cap):
        try:
            self.grabbed = bool(cap.grab())
        except cv2.error as e:
            self.error = e
        finally:
            self.done.set()


class V4L2Camera:
    """
    Video4Linux capture device read through OpenCV.

    OpenCV's grab() blocks without a timeout, so each grab runs on its own
    daemon thread and wait_for_frame() waits on it with a deadline. A grab
    that outlives one wait is picked up by the next wait instead of being
    issued twice.
    """

    def __init__(self, device: str, close_timeout: float = 1.0):
        self.device = device
        self.close_timeout = close_timeout
        self.width = 0
        self.height = 0
        self._cap: Optional[cv2.VideoCapture] = None
        self._streaming = False
        self._pending: Optional[_Grab] = None

    def open(self):
        print(f"[camera] Opening {self.device}")
        cap = cv2.VideoCapture(self.device, cv2.CAP_V4L2)
        if not cap.isOpened():
            cap.release()
            raise DeviceError(f"Cannot open video device {self.device}")
        self._cap = cap
        print("[camera] Camera successfully opened")

    def negotiate_format(self, pixel_format: int, width: int, height: int) -> Tuple[int, int]:
        """Request a pixel format and size, returning the size the device chose."""
        if self._cap is None:
            raise FormatError("Device is not open")

        tag = fourcc_to_str(pixel_format)
        self._cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*tag))
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        # Hand out raw buffers instead of BGR
        self._cap.set(cv2.CAP_PROP_CONVERT_RGB, 0)

        actual = fourcc_to_str(int(self._cap.get(cv2.CAP_PROP_FOURCC)))
        if actual != tag:
            raise FormatError(f"Device does not support {tag} (got {actual!r})")

        self.width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        if self.width <= 0 or self.height <= 0:
            raise FormatError(f"Device reported invalid size {self.width}x{self.height}")
        print(f"[camera] Format {tag} {self.width}x{self.height}")
        return self.width, self.height

    def start_streaming(self):
        if self._cap is None:
            raise StreamError("Device is not open")
        self._streaming = True

    def wait_for_frame(self, timeout: float):
        if not self._streaming:
            raise CaptureFatal("Streaming has not been started")
        if self._pending is None:
            self._pending = _Grab(self._cap)
        if not self._pending.done.wait(timeout):
            raise CaptureTimeout(f"No frame from {self.device} within {timeout}s")

        grab, self._pending = self._pending, None
        if grab.error is not None:
            raise CaptureFatal(f"Grab failed on {self.device}: {grab.error}") from grab.error
        if not grab.grabbed:
            raise CaptureFatal(f"Device {self.device} stopped delivering frames")

    def read_frame(self) -> bytes:
        ok, data = self._cap.retrieve()
        if not ok or data is None:
            raise CaptureFatal(f"Failed to read frame from {self.device}")
        return data.tobytes()

    def close(self):
        self._streaming = False
        pending, self._pending = self._pending, None
        if self._cap is None:
            return
        if pending is not None and not pending.done.wait(self.close_timeout):
            # Releasing under a running grab() is unsafe; the process is exiting anyway
            print(f"[camera] Grab on {self.device} still blocked, leaving device open")
            self._cap = None
            return
        self._cap.release()
        self._cap = None
        print("[camera] Closed")


class DummyCamera:
    """
    A dummy camera for testing without hardware.
    Generates YUYV frames of a scrolling colour-bar pattern.
    """

    def __init__(self, fps: float = 15.0):
        self.fps = fps
        self.width = 0
        self.height = 0
        self._frame_count = 0
        self._next_frame_time = 0.0
        self._streaming = False

    def open(self):
        print("[dummy-camera] Starting dummy camera (no real hardware)")

    def negotiate_format(self, pixel_format: int, width: int, height: int) -> Tuple[int, int]:
        if pixel_format != PIXEL_FORMAT_YUYV:
            raise FormatError(f"Dummy camera only produces YUYV, not {fourcc_to_str(pixel_format)}")
        self.width, self.height = width - width % 2, height
        return self.width, self.height

    def start_streaming(self):
        self._streaming = True
        self._next_frame_time = time.monotonic()

    def wait_for_frame(self, timeout: float):
        if not self._streaming:
            raise CaptureFatal("Streaming has not been started")
        delay = self._next_frame_time - time.monotonic()
        if delay > timeout:
            time.sleep(timeout)
            raise CaptureTimeout(f"No frame within {timeout}s")
        if delay > 0:
            time.sleep(delay)
        self._next_frame_time = max(self._next_frame_time, time.monotonic()) + 1.0 / self.fps

    def read_frame(self) -> bytes:
        frame = color_bars(self.width, self.height, shift=self._frame_count * 4)
        self._frame_count += 1
        return frame

    def close(self):
        print("[dummy-camera] Stopping")
        self._streaming = False


# (Y, U, V) for white, yellow, cyan, green, magenta, red, blue, black
_BARS = np.array([
    (235, 128, 128), (210, 16, 146), (170, 166, 16), (145, 54, 34),
    (106, 202, 222), (81, 90, 240), (41, 240, 110), (16, 128, 128),
], dtype=np.uint8)


def color_bars(width: int, height: int, shift: int = 0) -> bytes:
    """Build one YUYV frame of vertical colour bars scrolled by `shift` pixels."""
    pairs = width // 2
    columns = (np.arange(pairs) * 2 + shift) % width
    bar = _BARS[columns * len(_BARS) // width]
    row = np.empty((pairs, 4), dtype=np.uint8)
    row[:, 0] = bar[:, 0]
    row[:, 1] = bar[:, 1]
    row[:, 2] = bar[:, 0]
    row[:, 3] = bar[:, 2]
    return np.tile(row.reshape(-1), height).tobytes()


def create_camera(settings: Settings):
    """
    Factory function to create the appropriate camera instance.

    Returns:
        V4L2Camera, or DummyCamera when settings.dummy is set
    """
    if settings.dummy:
        return DummyCamera()
    return V4L2Camera(settings.device)


def start_camera(camera, settings: Settings) -> Tuple[int, int]:
    """Open the device, negotiate YUYV at the configured size and start streaming."""
    camera.open()
    try:
        width, height = camera.negotiate_format(PIXEL_FORMAT_YUYV, settings.width, settings.height)
        camera.start_streaming()
    except CameraError:
        camera.close()
        raise
    return width, height
