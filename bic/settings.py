from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal


# Output formats the encoder registry knows about.
OutputFormat = Literal["mozjpeg", "webp", "avif", "oxipng", "jxl"]

ResizeMode = Literal["scale", "dimensions"]

# Spellings used by the original format picker.
FORMAT_ALIASES = {
    "mozJPEG": "mozjpeg",
    "webP": "webp",
    "oxiPNG": "oxipng",
    "jpeg": "mozjpeg",
    "jpg": "mozjpeg",
    "png": "oxipng",
}


@dataclass(frozen=True)
class ResizeSettings:
    enabled: bool = False
    mode: ResizeMode = "scale"

    # Only used in "scale" mode (1-200).
    scale_percent: int = 100

    # Only used in "dimensions" mode.
    width: int = 1920
    height: int = 1080
    maintain_aspect_ratio: bool = True


@dataclass(frozen=True)
class NamingSettings:
    # photo.png -> {prefix}photo{suffix}.webp
    prefix: str = ""
    suffix: str = ""


@dataclass(frozen=True)
class PipelineConfig:
    """
    Every user-selected knob that affects how one file is compressed.

    The driver reads a fresh snapshot right before each file is dispatched,
    so edits made mid-batch apply to files that have not started yet.
    """

    output_format: OutputFormat = "mozjpeg"
    quality: int = 75
    resize: ResizeSettings = field(default_factory=ResizeSettings)
    naming: NamingSettings = field(default_factory=NamingSettings)

    def validated(self) -> "PipelineConfig":
        return normalize_config(self)


def normalize_format(name: str) -> str:
    return FORMAT_ALIASES.get(name, name.lower())


def normalize_config(c: PipelineConfig) -> PipelineConfig:
    # Guardrails: clamp everything the user can type into a range the
    # codecs and the geometry calculator accept.
    resize = replace(
        c.resize,
        scale_percent=max(1, min(200, int(c.resize.scale_percent))),
        width=max(1, int(c.resize.width)),
        height=max(1, int(c.resize.height)),
    )
    return replace(
        c,
        output_format=normalize_format(c.output_format),
        quality=max(1, min(100, int(c.quality))),
        resize=resize,
    )
