from __future__ import annotations

from .settings import PipelineConfig, ResizeSettings


PRESET_NAMES = ("web", "thumbnail", "archive", "aggressive")


def apply_preset(name: str, base: PipelineConfig) -> PipelineConfig:
    name = name.lower()

    if name == "web":
        return base.__class__(
            **{**base.__dict__,
               "output_format": "webp",
               "quality": 80,
               "resize": ResizeSettings(enabled=True, mode="dimensions", width=1920, height=1080)}
        )

    if name == "thumbnail":
        return base.__class__(
            **{**base.__dict__,
               "output_format": "webp",
               "quality": 70,
               "resize": ResizeSettings(enabled=True, mode="dimensions", width=320, height=320)}
        )

    if name == "archive":
        return base.__class__(
            **{**base.__dict__,
               "output_format": "jxl",
               "quality": 90}
        )

    if name == "aggressive":
        return base.__class__(
            **{**base.__dict__,
               "output_format": "mozjpeg",
               "quality": 60}
        )

    raise ValueError(f"Unknown preset: {name}")
