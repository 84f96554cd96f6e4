import threading

import numpy as np
import pytest

from camcast.camera import (
    CaptureFatal,
    CaptureTimeout,
    DummyCamera,
    FormatError,
    V4L2Camera,
    color_bars,
    create_camera,
    fourcc_to_str,
    start_camera,
)
from camcast.config import PIXEL_FORMAT_YUYV, Settings


def test_fourcc_decodes_yuyv():
    assert fourcc_to_str(PIXEL_FORMAT_YUYV) == "YUYV"


def test_color_bars_size_and_layout():
    frame = color_bars(16, 4)
    assert len(frame) == 16 * 4 * 2
    # First pixel pair of the white bar: Y U Y V
    assert frame[:4] == bytes([235, 128, 235, 128])


def test_color_bars_scroll():
    assert color_bars(16, 2, shift=0) != color_bars(16, 2, shift=4)


def test_dummy_camera_lifecycle():
    camera = DummyCamera(fps=100)
    camera.open()
    assert camera.negotiate_format(PIXEL_FORMAT_YUYV, 33, 10) == (32, 10)
    camera.start_streaming()
    camera.wait_for_frame(1.0)
    assert len(camera.read_frame()) == 32 * 10 * 2
    camera.close()


def test_dummy_camera_rejects_other_formats():
    with pytest.raises(FormatError):
        DummyCamera().negotiate_format(0x47504A4D, 640, 480)


def test_dummy_camera_wait_before_streaming_is_fatal():
    with pytest.raises(CaptureFatal):
        DummyCamera().wait_for_frame(0.1)


def test_dummy_camera_times_out_between_slow_frames():
    camera = DummyCamera(fps=0.5)
    camera.negotiate_format(PIXEL_FORMAT_YUYV, 8, 2)
    camera.start_streaming()
    camera.wait_for_frame(0.01)
    with pytest.raises(CaptureTimeout):
        camera.wait_for_frame(0.01)


def test_create_camera_picks_backend():
    assert isinstance(create_camera(Settings(dummy=True)), DummyCamera)
    camera = create_camera(Settings(device="/dev/video7"))
    assert isinstance(camera, V4L2Camera)
    assert camera.device == "/dev/video7"


def test_start_camera_negotiates_configured_size():
    camera = DummyCamera()
    assert start_camera(camera, Settings(width=320, height=240)) == (320, 240)
    camera.wait_for_frame(1.0)
    camera.close()


def test_v4l2_wait_before_streaming_is_fatal():
    with pytest.raises(CaptureFatal):
        V4L2Camera("/dev/null").wait_for_frame(0.1)


class FakeCapture:
    """Stands in for cv2.VideoCapture; grab() blocks until `release_grab` is set."""

    def __init__(self, grabbed=True, data=b"\x10\x80\x10\x80"):
        self.grabbed = grabbed
        self.data = data
        self.grabs = 0
        self.released = False
        self.release_grab = threading.Event()

    def grab(self):
        self.grabs += 1
        self.release_grab.wait(5)
        return self.grabbed

    def retrieve(self):
        return True, np.frombuffer(self.data, dtype=np.uint8)

    def release(self):
        self.released = True


def _streaming_camera(fake, close_timeout=1.0):
    camera = V4L2Camera("/dev/video9", close_timeout=close_timeout)
    camera._cap = fake
    camera.start_streaming()
    return camera


def test_v4l2_slow_grab_times_out_then_is_reused():
    fake = FakeCapture()
    camera = _streaming_camera(fake)
    with pytest.raises(CaptureTimeout):
        camera.wait_for_frame(0.05)

    fake.release_grab.set()
    camera.wait_for_frame(1.0)
    assert fake.grabs == 1
    assert camera.read_frame() == fake.data
    camera.close()


def test_v4l2_failed_grab_is_fatal():
    fake = FakeCapture(grabbed=False)
    fake.release_grab.set()
    camera = _streaming_camera(fake)
    with pytest.raises(CaptureFatal):
        camera.wait_for_frame(1.0)
    camera.close()


def test_v4l2_close_leaves_blocked_grab_unreleased():
    fake = FakeCapture()
    camera = _streaming_camera(fake, close_timeout=0.05)
    with pytest.raises(CaptureTimeout):
        camera.wait_for_frame(0.01)
    camera.close()
    assert fake.released is False
    fake.release_grab.set()


def test_v4l2_close_waits_for_finishing_grab():
    fake = FakeCapture()
    camera = _streaming_camera(fake)
    with pytest.raises(CaptureTimeout):
        camera.wait_for_frame(0.01)
    fake.release_grab.set()
    camera.close()
    assert fake.released is True
