from __future__ import annotations

from enum import Enum
import logging
from pathlib import Path
import threading
from typing import Callable, Iterable, List, Optional, Sequence

from .artifacts import ArtifactManager, output_name
from .bridge import CancelToken, ComputeBridge
from .codecs import lookup, options_for
from .errors import Cancelled, DecodeError, EncodeError, ResizeError
from .geometry import compute_target_size
from .results import FileRecord, FileStatus, ResultBlob, SourceFile
from .settings import PipelineConfig
from .store import BatchStats, FileRecordStore


logger = logging.getLogger(__name__)

SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".avif", ".jxl", ".gif", ".bmp", ".tif", ".tiff"}


class DriverState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class PipelineDriver:
    """
    Walks the store's pending records and compresses them one at a time.

    At most one run is active; a run only covers records that were pending
    when it started. Files appended meanwhile wait for the next run, which
    `trigger()` (and the background drain loop) starts once the current
    one finishes.
    """

    def __init__(
        self,
        store: FileRecordStore,
        bridge: ComputeBridge,
        config_provider: Callable[[], PipelineConfig],
    ) -> None:
        self.store = store
        self.bridge = bridge
        self.config_provider = config_provider

        self._state = DriverState.IDLE
        self._state_lock = threading.Lock()
        self._token = CancelToken()
        self._worker: Optional[threading.Thread] = None
        self._closed = False
        self._failure: Optional[Exception] = None

    # ----- Observable state -----

    @property
    def state(self) -> DriverState:
        with self._state_lock:
            return self._state

    @property
    def processing(self) -> bool:
        return self.state is DriverState.RUNNING

    def stats(self) -> BatchStats:
        return self.store.stats()

    # ----- Intents -----

    def add_files(self, files: Iterable[SourceFile]) -> list[int]:
        indices = self.store.append(files)
        self.trigger()
        return indices

    def run(self) -> int:
        """Run once in the calling thread. Returns how many records reached done/error."""
        return self._run_once() or 0

    def trigger(self) -> Optional[threading.Thread]:
        """Start a background drain unless one is already going."""
        with self._state_lock:
            if self._closed or self._worker is not None:
                return None
            if self._state is DriverState.RUNNING:
                return None
            worker = threading.Thread(target=self._drain, name="bic-driver", daemon=True)
            self._worker = worker
        worker.start()
        return worker

    def wait(self, timeout: Optional[float] = None) -> None:
        """
        Block until the background drain has finished.

        Re-raises whatever exception ended the drain (an InvariantViolation,
        or anything unexpected that escaped a run).
        """
        while True:
            with self._state_lock:
                worker = self._worker
            if worker is None or worker is threading.current_thread():
                break
            worker.join(timeout)
            if worker.is_alive():
                return

        failure, self._failure = self._failure, None
        if failure is not None:
            raise failure

    def clear(self) -> int:
        """Cancel in-flight work, drop every record and release its artifacts."""
        with self._state_lock:
            self._token.cancel()
            self._token = CancelToken()
            return self.store.clear_all()

    def download_all(self, dest_dir: Path, overwrite: bool = False) -> List[Path]:
        """Export every done record. Records cleared mid-export are skipped."""
        artifacts = self.store.artifacts
        written: List[Path] = []
        for r in self.store.snapshot():
            if r.status is not FileStatus.DONE or r.preview is None or not r.output_name:
                continue
            if not artifacts.is_live(r.preview):
                continue
            try:
                written.append(artifacts.export(r.preview, Path(dest_dir) / r.output_name, overwrite))
            except (ValueError, FileNotFoundError):
                # Released between the liveness check and the copy.
                logger.info("%s was cleared before it could be exported", r.output_name)
        return written

    def close(self) -> None:
        with self._state_lock:
            self._closed = True
            self._token.cancel()
        self.wait()

    # ----- Run loop -----

    def _drain(self) -> None:
        try:
            while self._run_once() is not None:
                with self._state_lock:
                    # Exit check and worker reset share one critical section:
                    # a concurrent append is either pending here or its
                    # trigger() finds no worker and starts a new one.
                    if self._closed or not self.store.has_pending():
                        self._worker = None
                        return
        except Exception as ex:
            logger.exception("driver stopped: %s", ex)
            self._failure = ex
        finally:
            with self._state_lock:
                if self._worker is threading.current_thread():
                    self._worker = None

    def _run_once(self) -> Optional[int]:
        with self._state_lock:
            if self._state is DriverState.RUNNING:
                return None
            self._state = DriverState.RUNNING
            token = self._token
            generation, pending = self.store.pending()

        try:
            return self._walk(token, generation, pending)
        finally:
            with self._state_lock:
                self._state = DriverState.IDLE

    def _walk(self, token: CancelToken, generation: int, pending: list[tuple[int, FileRecord]]) -> int:
        if not pending:
            return 0

        logger.info("run started: %d pending file(s)", len(pending))
        finished = 0
        for index, record in pending:
            if token.cancelled:
                break
            if not self._process_one(index, record, token, generation):
                logger.info("run stopped: batch was cleared")
                break
            finished += 1

        logger.info("run finished: %d file(s) processed", finished)
        return finished

    def _process_one(self, index: int, record: FileRecord, token: CancelToken, generation: int) -> bool:
        """Compress one record. Returns False when the batch is gone."""
        config = self.config_provider().validated()
        name = record.original.name

        if not self.store.update(index, record.processing(), generation):
            return False

        try:
            result, out_name = compress_source(record.original, config, self.bridge, token)
        except Cancelled:
            return False
        except DecodeError as ex:
            return self._fail(index, record, generation, f"Could not decode image: {ex}")
        except ResizeError as ex:
            return self._fail(index, record, generation, f"Resize failed: {ex}")
        except EncodeError as ex:
            return self._fail(index, record, generation, f"Encode failed: {ex}")

        preview = self.store.artifacts.issue(result.data, result.mime_type)
        if not self.store.update(index, record.done(result, out_name, preview), generation):
            # Cleared while encoding: never apply a late result.
            self.store.artifacts.release(preview)
            return False

        logger.debug("%s -> %s (%d -> %d bytes)", name, out_name, record.original.size, result.size)
        return True

    def _fail(self, index: int, record: FileRecord, generation: int, message: str) -> bool:
        logger.warning("%s: %s", record.original.name, message)
        return self.store.update(index, record.failed(message), generation)


def compress_source(
    source: SourceFile,
    config: PipelineConfig,
    bridge: ComputeBridge,
    token: CancelToken,
) -> tuple[ResultBlob, str]:
    """decode -> optional resize -> encode, all on the bridge."""
    try:
        descriptor = lookup(config.output_format)
    except KeyError as ex:
        raise EncodeError(ex.args[0]) from ex

    image = bridge.decode(token, source)

    if config.resize.enabled:
        size = compute_target_size(image.width, image.height, config.resize)
        image = bridge.resize(token, image, size)

    options = options_for(descriptor, config.quality)
    data = descriptor.encode(token, bridge, image, options)

    result = ResultBlob(data=data, size=len(data), mime_type=descriptor.mime_type)
    return result, output_name(source.name, descriptor, config.naming)


def iter_images(
    paths: Sequence[Path],
    recursive: bool = True,
    exclude_dir: Optional[Path] = None,
) -> Iterable[Path]:
    """
    Yield supported image paths from a mixture of files and directories.

    exclude_dir:
        If provided, any files inside this directory will be skipped.
        (Prevents re-processing output files when the output folder is inside an input folder.)
    """
    exclude_resolved = exclude_dir.resolve() if exclude_dir else None

    for p in paths:
        p = Path(p)

        if p.is_file():
            if p.suffix.lower() in SUPPORTED_EXTS:
                if exclude_resolved and p.resolve().is_relative_to(exclude_resolved):
                    continue
                yield p
            continue

        if p.is_dir():
            pattern = "**/*" if recursive else "*"
            for f in sorted(p.glob(pattern)):
                if not f.is_file():
                    continue
                if f.suffix.lower() not in SUPPORTED_EXTS:
                    continue

                if exclude_resolved and f.resolve().is_relative_to(exclude_resolved):
                    continue

                yield f


def process_batch(
    inputs: Sequence[Path],
    config: PipelineConfig,
    output_dir: Path,
    recursive: bool = True,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> tuple[List[FileRecord], BatchStats, List[Path]]:
    """
    Compress every image found under `inputs` and export the results to
    `output_dir`. Blocking; meant for scripts and the CLI.
    """
    image_list = list(iter_images(inputs, recursive=recursive, exclude_dir=output_dir))
    total = len(image_list)
    finished = 0

    def on_change(index: int) -> None:
        nonlocal finished
        if progress_callback is None:
            return
        if store.get(index).status in (FileStatus.DONE, FileStatus.ERROR):
            finished += 1
            progress_callback(finished, total)

    with ArtifactManager() as artifacts, ComputeBridge() as bridge:
        store = FileRecordStore(artifacts, on_change=on_change)
        driver = PipelineDriver(store, bridge, lambda: config)

        store.append(SourceFile.from_path(p) for p in image_list)
        driver.run()

        written = driver.download_all(output_dir)
        records = list(store.snapshot())
        stats = store.stats()

    return records, stats, written
