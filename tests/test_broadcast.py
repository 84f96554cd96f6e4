import gc
import threading
import weakref

import pytest

from camcast.broadcast import BroadcastClosed, Broadcaster

from .helpers import Collector, make_image, wait_until


def test_try_send_needs_a_parked_receiver(broadcaster):
    assert broadcaster.try_send(make_image(1)) is False
    assert broadcaster.waiting == 0


def test_receive_timeout_withdraws_demand(broadcaster):
    assert broadcaster.receive(timeout=0.01) is None
    assert broadcaster.waiting == 0
    assert broadcaster.try_send(make_image(1)) is False


def test_viewerless_cycles_keep_nothing(broadcaster):
    refs = []
    for seq in range(10000):
        image = make_image(seq)
        if seq % 500 == 0:
            refs.append(weakref.ref(image))
        assert broadcaster.try_send(image) is False
    del image
    gc.collect()
    assert all(ref() is None for ref in refs)
    assert broadcaster.waiting == 0


def test_concurrent_viewers_share_the_same_bytes(broadcaster):
    a = Collector(broadcaster, limit=1).start()
    b = Collector(broadcaster, limit=1).start()
    assert wait_until(lambda: broadcaster.waiting == 2)

    image = make_image(1, data=b"\xff\xd8shared\xff\xd9")
    assert broadcaster.broadcast(image) == 2

    assert a.done.wait(2) and b.done.wait(2)
    assert a.images[0] is b.images[0] is image
    assert a.images[0].data == b.images[0].data


def test_fanout_is_capped_per_cycle():
    broadcaster = Broadcaster(max_fanout=2)
    viewers = [Collector(broadcaster, limit=1).start() for _ in range(3)]
    assert wait_until(lambda: broadcaster.waiting == 3)

    assert broadcaster.broadcast(make_image(1)) == 2
    assert broadcaster.waiting == 1

    # The viewer left over is served by the next cycle
    assert broadcaster.broadcast(make_image(2)) == 1
    for v in viewers:
        assert v.done.wait(2)
    assert sorted(v.images[0].sequence for v in viewers) == [1, 1, 2]
    broadcaster.close()


def test_fallback_send_waits_for_next_viewer(broadcaster):
    served = []
    sender = threading.Thread(
        target=lambda: served.append(broadcaster.broadcast(make_image(7))),
        daemon=True
    )
    sender.start()
    sender.join(0.1)
    assert sender.is_alive()

    assert broadcaster.receive(timeout=2).sequence == 7
    sender.join(2)
    assert served == [1]


def test_late_viewer_never_sees_older_images(broadcaster):
    early = Collector(broadcaster).start()
    for seq in range(1, 6):
        assert wait_until(lambda: broadcaster.waiting == 1)
        broadcaster.broadcast(make_image(seq))
    assert wait_until(lambda: len(early.images) == 5)

    late = Collector(broadcaster, limit=1).start()
    assert wait_until(lambda: broadcaster.waiting == 2)
    broadcaster.broadcast(make_image(6))

    assert late.done.wait(2)
    assert late.images[0].sequence == 6
    assert [img.sequence for img in early.images][:5] == [1, 2, 3, 4, 5]


def test_close_wakes_receivers_and_senders():
    broadcaster = Broadcaster()
    viewer = Collector(broadcaster).start()
    assert wait_until(lambda: broadcaster.waiting == 1)
    broadcaster.close()
    assert viewer.done.wait(2)

    with pytest.raises(BroadcastClosed):
        broadcaster.send(make_image(1))
    with pytest.raises(BroadcastClosed):
        broadcaster.receive()


def test_max_fanout_must_be_positive():
    with pytest.raises(ValueError):
        Broadcaster(max_fanout=0)
