from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .errors import InvariantViolation

if TYPE_CHECKING:
    from .artifacts import ArtifactHandle


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


# Allowed lifecycle moves; anything else is a programming error.
_TRANSITIONS = {
    FileStatus.PENDING: {FileStatus.PENDING, FileStatus.PROCESSING},
    FileStatus.PROCESSING: {FileStatus.DONE, FileStatus.ERROR},
    FileStatus.DONE: {FileStatus.DONE},
    FileStatus.ERROR: set(),
}


@dataclass(frozen=True)
class SourceFile:
    """Raw input: a name plus the bytes it was read from."""

    name: str
    data: bytes = field(repr=False)
    size: int = -1

    def __post_init__(self) -> None:
        if self.size < 0:
            object.__setattr__(self, "size", len(self.data))

    @classmethod
    def from_path(cls, path: Path) -> "SourceFile":
        path = Path(path)
        return cls(name=path.name, data=path.read_bytes())


@dataclass(frozen=True)
class ResultBlob:
    data: bytes = field(repr=False)
    size: int
    mime_type: str


@dataclass(frozen=True)
class FileRecord:
    """
    One submitted file and where it is in its lifecycle.

    Records are immutable; the store swaps in a new record on every status
    change so readers never see a half-updated entry.
    """

    original: SourceFile
    status: FileStatus = FileStatus.PENDING
    result: Optional[ResultBlob] = None
    output_name: Optional[str] = None
    error: Optional[str] = None
    preview: Optional["ArtifactHandle"] = None

    def __post_init__(self) -> None:
        done = self.status is FileStatus.DONE
        failed = self.status is FileStatus.ERROR

        if done != (self.result is not None and self.output_name is not None):
            raise InvariantViolation(f"{self.original.name}: result must be present iff status is done")
        if self.preview is not None and not done:
            raise InvariantViolation(f"{self.original.name}: preview handle on a record that is not done")
        if failed != (self.error is not None):
            raise InvariantViolation(f"{self.original.name}: error must be present iff status is error")

    def can_become(self, new: "FileRecord") -> bool:
        return new.status in _TRANSITIONS[self.status]

    def processing(self) -> "FileRecord":
        return FileRecord(original=self.original, status=FileStatus.PROCESSING)

    def done(self, result: ResultBlob, output_name: str, preview: Optional["ArtifactHandle"] = None) -> "FileRecord":
        return FileRecord(
            original=self.original,
            status=FileStatus.DONE,
            result=result,
            output_name=output_name,
            preview=preview,
        )

    def failed(self, message: str) -> "FileRecord":
        return FileRecord(original=self.original, status=FileStatus.ERROR, error=message)

    @property
    def saved_bytes(self) -> int:
        if self.result is None:
            return 0
        return self.original.size - self.result.size

    @property
    def saved_percent(self) -> float:
        if self.result is None or self.original.size <= 0:
            return 0.0
        return (self.saved_bytes / self.original.size) * 100.0
