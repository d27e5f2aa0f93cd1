from __future__ import annotations

from dataclasses import dataclass
import itertools
import logging
from pathlib import Path
import re
import shutil
import tempfile
import threading
from typing import Optional

from .codecs import EncoderDescriptor
from .settings import NamingSettings


logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"\.[^/.]+$")


def strip_extension(name: str) -> str:
    return _EXTENSION_RE.sub("", name)


def output_name(original_name: str, descriptor: EncoderDescriptor, naming: NamingSettings) -> str:
    # photo.png -> {prefix}photo{suffix}.webp
    return f"{naming.prefix}{strip_extension(original_name)}{naming.suffix}.{descriptor.extension}"


def next_available_name(path: Path) -> Path:
    # photo.webp -> photo (1).webp
    base = path.with_suffix("")
    ext = path.suffix
    i = 1
    while True:
        candidate = Path(f"{base} ({i}){ext}")
        if not candidate.exists():
            return candidate
        i += 1


@dataclass(frozen=True)
class ArtifactHandle:
    """A revocable reference to one encoded result, backed by a temp file."""

    id: int
    path: Path
    mime_type: str
    size: int


class ArtifactManager:
    """
    Owns the preview files for finished records.

    Every handle it issues must be released exactly once; `issued` and
    `released` are kept so leaks are observable.
    """

    def __init__(self, root: Optional[Path] = None) -> None:
        if root is None:
            self.root = Path(tempfile.mkdtemp(prefix="bic_"))
            self._owns_root = True
        else:
            self.root = Path(root)
            self.root.mkdir(parents=True, exist_ok=True)
            self._owns_root = False

        self._ids = itertools.count(1)
        self._live: dict[int, ArtifactHandle] = {}
        self._lock = threading.Lock()
        self.issued = 0
        self.released = 0

    def __enter__(self) -> "ArtifactManager":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def issue(self, data: bytes, mime_type: str) -> ArtifactHandle:
        with self._lock:
            handle_id = next(self._ids)
        ext = mime_type.split("/", 1)[-1]
        path = self.root / f"artifact_{handle_id}.{ext}"
        path.write_bytes(data)

        handle = ArtifactHandle(id=handle_id, path=path, mime_type=mime_type, size=len(data))
        with self._lock:
            self._live[handle_id] = handle
            self.issued += 1
        return handle

    def is_live(self, handle: ArtifactHandle) -> bool:
        with self._lock:
            return handle.id in self._live

    def release(self, handle: ArtifactHandle) -> bool:
        """Revoke a handle. Releasing an already released handle is a no-op."""
        with self._lock:
            if self._live.pop(handle.id, None) is None:
                return False
            self.released += 1
        handle.path.unlink(missing_ok=True)
        return True

    def export(self, handle: ArtifactHandle, dest: Path, overwrite: bool = False) -> Path:
        """Copy the artifact to `dest` (the "download" action)."""
        if not self.is_live(handle):
            raise ValueError(f"artifact {handle.id} has been released")

        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if dest.exists() and not overwrite:
            dest = next_available_name(dest)
        shutil.copyfile(handle.path, dest)
        return dest

    def close(self) -> None:
        with self._lock:
            leftovers = list(self._live.values())
        for handle in leftovers:
            self.release(handle)
        if leftovers:
            logger.debug("released %d artifact(s) on close", len(leftovers))
        if self._owns_root:
            shutil.rmtree(self.root, ignore_errors=True)
