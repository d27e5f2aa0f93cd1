from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Callable, Iterable, List, Optional

from .artifacts import ArtifactManager
from .errors import InvariantViolation
from .results import FileRecord, FileStatus, SourceFile


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchStats:
    total_count: int
    done_count: int
    error_count: int
    pending_count: int
    total_src_bytes: int
    total_out_bytes: int

    @property
    def bytes_saved(self) -> int:
        return self.total_src_bytes - self.total_out_bytes

    @property
    def saved_percent(self) -> float:
        if self.total_src_bytes <= 0:
            return 0.0
        return (self.bytes_saved / self.total_src_bytes) * 100.0


def compute_stats(records: Iterable[FileRecord]) -> BatchStats:
    total = done = failed = pending = 0
    src = out = 0
    for r in records:
        total += 1
        if r.status is FileStatus.DONE and r.result is not None:
            done += 1
            src += r.original.size
            out += r.result.size
        elif r.status is FileStatus.ERROR:
            failed += 1
        elif r.status is FileStatus.PENDING:
            pending += 1
    return BatchStats(
        total_count=total,
        done_count=done,
        error_count=failed,
        pending_count=pending,
        total_src_bytes=src,
        total_out_bytes=out,
    )


class FileRecordStore:
    """
    Ordered list of FileRecords; the only mutable state shared with the driver.

    Mutations are whole-record swaps done under a lock. `generation` goes up
    on every clear so that work started before the clear can tell its
    record is gone.
    """

    def __init__(self, artifacts: ArtifactManager, on_change: Optional[Callable[[int], None]] = None) -> None:
        self.artifacts = artifacts
        self.on_change = on_change
        self._records: List[FileRecord] = []
        self._lock = threading.Lock()
        self._generation = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def append(self, files: Iterable[SourceFile]) -> list[int]:
        new = [FileRecord(original=f) for f in files]
        with self._lock:
            start = len(self._records)
            self._records.extend(new)
        indices = list(range(start, start + len(new)))
        for i in indices:
            self._notify(i)
        return indices

    def get(self, index: int) -> FileRecord:
        with self._lock:
            return self._get(index)

    def snapshot(self) -> tuple[FileRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def pending(self) -> tuple[int, list[tuple[int, FileRecord]]]:
        """Current generation plus every PENDING record, in insertion order."""
        with self._lock:
            return self._generation, [(i, r) for i, r in enumerate(self._records) if r.status is FileStatus.PENDING]

    def has_pending(self) -> bool:
        with self._lock:
            return any(r.status is FileStatus.PENDING for r in self._records)

    def stats(self) -> BatchStats:
        return compute_stats(self.snapshot())

    def update(self, index: int, record: FileRecord, generation: Optional[int] = None) -> bool:
        """
        Replace the record at `index`.

        Returns False (and changes nothing) when `generation` is given and the
        batch has been cleared since. Bad indices and backwards transitions
        raise InvariantViolation.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False

            current = self._get(index)
            if record.original is not current.original:
                raise InvariantViolation(f"record {index}: update for a different source file")
            if not current.can_become(record):
                raise InvariantViolation(
                    f"record {index}: cannot move from {current.status.value} to {record.status.value}"
                )
            self._records[index] = record

        # Replaced result: its old preview must not outlive the record.
        if current.preview is not None and current.preview != record.preview:
            self.artifacts.release(current.preview)

        self._notify(index)
        return True

    def clear_all(self) -> int:
        """Drop every record and release every preview. Returns the release count."""
        with self._lock:
            records = self._records
            self._records = []
            self._generation += 1

        released = 0
        for r in records:
            if r.preview is not None and self.artifacts.release(r.preview):
                released += 1
        logger.info("cleared %d record(s), released %d artifact(s)", len(records), released)
        return released

    def _get(self, index: int) -> FileRecord:
        if not 0 <= index < len(self._records):
            raise InvariantViolation(f"record index {index} out of range (have {len(self._records)})")
        return self._records[index]

    def _notify(self, index: int) -> None:
        if self.on_change is not None:
            self.on_change(index)
