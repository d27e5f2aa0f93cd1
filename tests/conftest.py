from io import BytesIO

import pytest
from PIL import Image

from bic.artifacts import ArtifactManager
from bic.bridge import ComputeBridge
from bic.results import SourceFile
from bic.store import FileRecordStore


def image_bytes(width=64, height=48, fmt="PNG", mode="RGB", color=(200, 40, 40)):
    if mode == "RGBA" and len(color) == 3:
        color = color + (128,)
    buf = BytesIO()
    Image.new(mode, (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


def source(name="photo.png", width=64, height=48, **kwargs):
    return SourceFile(name=name, data=image_bytes(width, height, **kwargs))


def broken(name="broken.png"):
    return SourceFile(name=name, data=b"definitely not an image")


@pytest.fixture
def artifacts(tmp_path):
    manager = ArtifactManager(tmp_path / "artifacts")
    yield manager
    manager.close()


@pytest.fixture
def store(artifacts):
    return FileRecordStore(artifacts)


@pytest.fixture
def bridge():
    b = ComputeBridge()
    yield b
    b.close()
