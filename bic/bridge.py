from __future__ import annotations

from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from io import BytesIO
import threading
from typing import Any, Callable, TypeVar

from PIL import Image, ImageOps
import pillow_jxl  # noqa: F401 - registers the JXL opener with Pillow

from .errors import Cancelled, DecodeError, ResizeError
from .results import SourceFile

T = TypeVar("T")

# How often a waiting caller re-checks its cancel token (seconds).
POLL_INTERVAL = 0.05


class CancelToken:
    """Batch-scoped cancellation flag shared by every bridge request."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("operation cancelled")


class ComputeBridge:
    """
    Runs decode / resize / encode work on a background executor.

    Callers block on the result, but wake up every POLL_INTERVAL to check
    their token; a cancelled request raises Cancelled and whatever the
    worker eventually produces is dropped.
    """

    def __init__(self, max_workers: int = 1) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="bic-worker")

    def __enter__(self) -> "ComputeBridge":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)

    def run(self, token: CancelToken, fn: Callable[..., T], *args: Any) -> T:
        """Dispatch one request and wait for its single outcome."""
        token.raise_if_cancelled()
        future: Future = self._executor.submit(fn, *args)
        return self._wait(token, future)

    def decode(self, token: CancelToken, source: SourceFile) -> Image.Image:
        return self.run(token, _decode, source)

    def resize(self, token: CancelToken, image: Image.Image, size: tuple[int, int]) -> Image.Image:
        return self.run(token, _resize, image, size)

    def _wait(self, token: CancelToken, future: Future) -> Any:
        while True:
            if token.cancelled:
                future.cancel()
                raise Cancelled("operation cancelled")
            try:
                result = future.result(timeout=POLL_INTERVAL)
            except FutureTimeout:
                continue
            except CancelledError as ex:
                raise Cancelled("operation cancelled") from ex

            # Cleared while the worker was finishing: late result is dropped.
            if token.cancelled:
                raise Cancelled("operation cancelled")
            return result


def _decode(source: SourceFile) -> Image.Image:
    try:
        with Image.open(BytesIO(source.data)) as im:
            im.load()
            # Bake EXIF orientation into the pixels; metadata is not carried over.
            return ImageOps.exif_transpose(im)
    except Exception as ex:
        raise DecodeError(f"{source.name}: {ex}") from ex


def _resize(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    if image.size == tuple(size):
        return image
    try:
        return image.resize(size, Image.Resampling.LANCZOS)
    except Exception as ex:
        raise ResizeError(f"{image.size} -> {size}: {ex}") from ex

