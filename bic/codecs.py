from __future__ import annotations

from dataclasses import dataclass, fields, replace
from io import BytesIO
import logging
import shutil
import subprocess
from typing import TYPE_CHECKING, Callable, Union

from PIL import Image
import pillow_jxl  # noqa: F401 - registers the JXL save handler with Pillow

from .errors import CompressError, EncodeError
from .settings import normalize_format

if TYPE_CHECKING:
    from .bridge import CancelToken, ComputeBridge


logger = logging.getLogger(__name__)


# ----- Per-format encoder options -----

@dataclass(frozen=True)
class JpegOptions:
    quality: int = 75
    progressive: bool = True
    optimize: bool = True
    # Background used when the source has transparency (JPEG has no alpha).
    background: tuple[int, int, int] = (255, 255, 255)


@dataclass(frozen=True)
class WebpOptions:
    quality: int = 75
    lossless: bool = False
    method: int = 4  # 0-6, higher = smaller but slower


@dataclass(frozen=True)
class AvifOptions:
    quality: int = 50
    speed: int = 6  # 0-10, lower = smaller but slower


@dataclass(frozen=True)
class PngOptions:
    # oxipng optimisation level (0-6). PNG is lossless: no quality knob.
    level: int = 2
    compress_level: int = 9


@dataclass(frozen=True)
class JxlOptions:
    quality: int = 75
    effort: int = 7  # 1-9
    lossless: bool = False


EncoderOptions = Union[JpegOptions, WebpOptions, AvifOptions, PngOptions, JxlOptions]


@dataclass(frozen=True)
class EncoderDescriptor:
    format: str
    label: str
    mime_type: str
    default_options: EncoderOptions
    supports_quality: bool
    encoder: Callable[[Image.Image, EncoderOptions], bytes]

    @property
    def extension(self) -> str:
        # image/webp -> webp, image/jpeg -> jpeg
        return self.mime_type.split("/", 1)[1]

    def encode(self, token: "CancelToken", bridge: "ComputeBridge", image: Image.Image, options: EncoderOptions) -> bytes:
        """Encode on the bridge's worker; cancellation is reported as Cancelled, not EncodeError."""
        return bridge.run(token, _guarded, self.encoder, image, options)


def options_for(descriptor: EncoderDescriptor, quality: int) -> EncoderOptions:
    """Default options with the user's quality applied where the format has one."""
    options = descriptor.default_options
    if not descriptor.supports_quality:
        return options
    return replace(options, quality=max(1, min(100, int(quality))))


def _guarded(encoder: Callable[[Image.Image, EncoderOptions], bytes], image: Image.Image, options: EncoderOptions) -> bytes:
    try:
        return encoder(image, options)
    except CompressError:
        raise
    except Exception as ex:
        raise EncodeError(str(ex) or ex.__class__.__name__) from ex


# ----- Encoders -----

def encode_jpeg(im: Image.Image, o: JpegOptions) -> bytes:
    if _has_alpha(im):
        im = _flatten_alpha(im, o.background)
    elif im.mode not in ("RGB", "L", "CMYK"):
        im = im.convert("RGB")
    return _save(im, "JPEG", quality=o.quality, optimize=o.optimize, progressive=o.progressive)


def encode_webp(im: Image.Image, o: WebpOptions) -> bytes:
    return _save(_rgb_or_rgba(im), "WEBP", quality=o.quality, lossless=o.lossless, method=o.method)


def encode_avif(im: Image.Image, o: AvifOptions) -> bytes:
    return _save(_rgb_or_rgba(im), "AVIF", quality=o.quality, speed=o.speed)


def encode_jxl(im: Image.Image, o: JxlOptions) -> bytes:
    return _save(_rgb_or_rgba(im), "JXL", quality=o.quality, effort=o.effort, lossless=o.lossless)


def encode_png(im: Image.Image, o: PngOptions) -> bytes:
    if im.mode == "CMYK":
        im = im.convert("RGB")
    data = _save(im, "PNG", optimize=True, compress_level=o.compress_level)

    # Pillow's output is already valid; oxipng only squeezes it further.
    tool = shutil.which("oxipng")
    if tool is None:
        return data
    return _run_oxipng(tool, data, o.level)


def _run_oxipng(tool: str, data: bytes, level: int) -> bytes:
    command = [tool, "--opt", str(max(0, min(6, level))), "--strip", "safe", "--stdout", "-"]
    result = subprocess.run(command, input=data, capture_output=True)
    if result.returncode != 0 or not result.stdout:
        logger.warning("oxipng failed (exit %s), keeping Pillow output", result.returncode)
        return data
    return result.stdout if len(result.stdout) < len(data) else data


def _save(im: Image.Image, fmt: str, **kwargs: object) -> bytes:
    buf = BytesIO()
    im.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def _rgb_or_rgba(im: Image.Image) -> Image.Image:
    if im.mode in ("RGB", "RGBA"):
        return im
    return im.convert("RGBA" if _has_alpha(im) else "RGB")


def _flatten_alpha(im: Image.Image, background_rgb: tuple[int, int, int]) -> Image.Image:
    # Ensure we are in RGBA so alpha exists
    rgba = im.convert("RGBA")
    bg = Image.new("RGBA", rgba.size, background_rgb + (255,))
    comp = Image.alpha_composite(bg, rgba)
    return comp.convert("RGB")


def _has_alpha(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA", "PA"):
        return True
    if im.mode == "P" and "transparency" in im.info:
        return True
    return False


# ----- Registry -----

ENCODERS: dict[str, EncoderDescriptor] = {
    d.format: d
    for d in (
        EncoderDescriptor("mozjpeg", "MozJPEG", "image/jpeg", JpegOptions(), True, encode_jpeg),
        EncoderDescriptor("webp", "WebP", "image/webp", WebpOptions(), True, encode_webp),
        EncoderDescriptor("avif", "AVIF", "image/avif", AvifOptions(), True, encode_avif),
        EncoderDescriptor("oxipng", "OxiPNG", "image/png", PngOptions(), False, encode_png),
        EncoderDescriptor("jxl", "JPEG XL", "image/jxl", JxlOptions(), True, encode_jxl),
    )
}


def lookup(fmt: str) -> EncoderDescriptor:
    key = normalize_format(fmt)
    try:
        return ENCODERS[key]
    except KeyError:
        known = ", ".join(sorted(ENCODERS))
        raise KeyError(f"Unknown output format: {fmt!r} (known: {known})") from None


def list_formats() -> list[EncoderDescriptor]:
    return list(ENCODERS.values())


def option_names(descriptor: EncoderDescriptor) -> list[str]:
    return [f.name for f in fields(descriptor.default_options)]
