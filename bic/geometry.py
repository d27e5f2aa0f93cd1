from __future__ import annotations

import math

from .settings import ResizeSettings


def round_half_up(value: float) -> int:
    """Round .5 towards +infinity: 2.5 -> 3, -2.5 -> -2."""
    return int(math.floor(value + 0.5))


def compute_target_size(src_w: int, src_h: int, resize: ResizeSettings) -> tuple[int, int]:
    """
    Work out the (width, height) an image should be resized to.

    - disabled: source size unchanged
    - "scale": each axis scaled by scale_percent independently
    - "dimensions": requested box, optionally fitted to the source aspect
      ratio (the limiting axis keeps the requested value)

    Both axes are clamped to at least 1px. Never raises.
    """
    if not resize.enabled:
        return src_w, src_h

    if resize.mode == "scale":
        ratio = resize.scale_percent / 100
        w = round_half_up(src_w * ratio)
        h = round_half_up(src_h * ratio)
    elif resize.maintain_aspect_ratio:
        w, h = _fit_aspect(src_w, src_h, resize.width, resize.height)
    else:
        w, h = resize.width, resize.height

    return max(1, w), max(1, h)


def _fit_aspect(src_w: int, src_h: int, req_w: int, req_h: int) -> tuple[int, int]:
    # Decoded images always have positive dimensions; guard anyway so a
    # malformed request ends up at the 1px clamp instead of dividing by zero.
    aspect = max(1, src_w) / max(1, src_h)
    requested = req_w / req_h if req_h > 0 else math.inf

    if requested > aspect:
        # Height is the limiting axis
        h = req_h
        return round_half_up(h * aspect), h

    # Width is the limiting axis (also on an exact tie)
    w = req_w
    return w, round_half_up(w / aspect)
