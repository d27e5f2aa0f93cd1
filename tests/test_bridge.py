from io import BytesIO
import threading
import time

import pytest
from PIL import Image

from bic.bridge import CancelToken
from bic.errors import Cancelled, DecodeError, ResizeError
from bic.results import SourceFile
from conftest import broken, source


def test_decode(bridge):
    im = bridge.decode(CancelToken(), source(width=30, height=20))
    assert im.size == (30, 20)


def test_decode_garbage_is_decode_error(bridge):
    with pytest.raises(DecodeError, match="broken.png"):
        bridge.decode(CancelToken(), broken())


def test_decode_truncated_file_is_decode_error(bridge):
    good = source()
    truncated = type(good)(name="cut.png", data=good.data[: len(good.data) // 2])
    with pytest.raises(DecodeError):
        bridge.decode(CancelToken(), truncated)


def test_decode_truncated_jxl_is_decode_error(bridge):
    buf = BytesIO()
    Image.radial_gradient("L").convert("RGB").save(buf, format="JXL")
    data = buf.getvalue()
    truncated = SourceFile(name="cut.jxl", data=data[: len(data) * 3 // 10])

    with pytest.raises(DecodeError, match="cut.jxl"):
        bridge.decode(CancelToken(), truncated)


def test_resize(bridge):
    im = Image.new("RGB", (100, 50))
    out = bridge.resize(CancelToken(), im, (10, 5))
    assert out.size == (10, 5)


def test_resize_failure_is_resize_error(bridge):
    with pytest.raises(ResizeError):
        bridge.resize(CancelToken(), Image.new("RGB", (10, 10)), (0, -5))


class ExplodingImage:
    size = (10, 10)

    def resize(self, size, resample=None):
        raise RuntimeError("resampler crashed")


def test_unexpected_resize_exception_is_resize_error(bridge):
    with pytest.raises(ResizeError, match="resampler crashed"):
        bridge.resize(CancelToken(), ExplodingImage(), (5, 5))


def test_already_cancelled_token_never_dispatches(bridge):
    calls = []
    token = CancelToken()
    token.cancel()

    with pytest.raises(Cancelled):
        bridge.run(token, calls.append, 1)
    assert calls == []


def test_cancel_while_waiting(bridge):
    release = threading.Event()
    token = CancelToken()

    def slow():
        release.wait(5)
        return "late"

    threading.Timer(0.1, token.cancel).start()
    started = time.monotonic()
    with pytest.raises(Cancelled):
        bridge.run(token, slow)
    assert time.monotonic() - started < 2
    release.set()


def test_worker_exception_is_propagated_once(bridge):
    def fail():
        raise DecodeError("nope")

    with pytest.raises(DecodeError, match="nope"):
        bridge.run(CancelToken(), fail)
