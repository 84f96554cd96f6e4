import pytest

from camcast.broadcast import Broadcaster
from camcast.camera import color_bars

from .helpers import HEIGHT, WIDTH


@pytest.fixture
def frames():
    return [color_bars(WIDTH, HEIGHT, shift=i * 8) for i in range(5)]


@pytest.fixture
def broadcaster():
    b = Broadcaster(max_fanout=50)
    yield b
    b.close()
