from dataclasses import replace
from io import BytesIO

import pytest
from PIL import Image

from bic.bridge import CancelToken
from bic.codecs import (
    PngOptions,
    WebpOptions,
    encode_jpeg,
    list_formats,
    lookup,
    options_for,
)
from bic.errors import Cancelled, EncodeError


def test_registry_has_every_format():
    assert {d.format for d in list_formats()} == {"mozjpeg", "webp", "avif", "oxipng", "jxl"}


@pytest.mark.parametrize(
    "name, mime, ext",
    [
        ("mozJPEG", "image/jpeg", "jpeg"),
        ("webP", "image/webp", "webp"),
        ("avif", "image/avif", "avif"),
        ("oxiPNG", "image/png", "png"),
        ("jxl", "image/jxl", "jxl"),
    ],
)
def test_lookup_accepts_picker_spellings(name, mime, ext):
    d = lookup(name)
    assert d.mime_type == mime
    assert d.extension == ext


def test_unknown_format_lists_known_ones():
    with pytest.raises(KeyError, match="webp"):
        lookup("bmp")


def test_quality_overlay_only_where_supported():
    webp = lookup("webp")
    assert options_for(webp, 42) == WebpOptions(quality=42)
    # defaults are left alone
    assert webp.default_options.quality == 75

    png = lookup("oxipng")
    assert png.supports_quality is False
    assert options_for(png, 42) == PngOptions()


def test_quality_overlay_is_clamped():
    assert options_for(lookup("mozjpeg"), 500).quality == 100
    assert options_for(lookup("mozjpeg"), 0).quality == 1


@pytest.mark.parametrize("fmt, pil_format", [("mozjpeg", "JPEG"), ("webp", "WEBP"), ("oxipng", "PNG")])
def test_encode_through_bridge(bridge, fmt, pil_format):
    d = lookup(fmt)
    im = Image.new("RGB", (40, 30), (10, 120, 200))
    data = d.encode(CancelToken(), bridge, im, options_for(d, 80))

    with Image.open(BytesIO(data)) as out:
        assert out.format == pil_format
        assert out.size == (40, 30)


def test_jpeg_flattens_alpha():
    im = Image.new("RGBA", (8, 8), (0, 0, 0, 0))
    data = encode_jpeg(im, lookup("mozjpeg").default_options)

    with Image.open(BytesIO(data)) as out:
        assert out.mode == "RGB"
        # fully transparent pixels end up on the white background
        assert all(c > 240 for c in out.getpixel((4, 4)))


def test_encode_failure_is_encode_error(bridge):
    def boom(im, options):
        raise OSError("encoder rejected input")

    d = replace(lookup("webp"), encoder=boom)

    with pytest.raises(EncodeError, match="rejected"):
        d.encode(CancelToken(), bridge, Image.new("RGB", (4, 4)), d.default_options)


def test_cancelled_encode_is_not_an_encode_error(bridge):
    token = CancelToken()
    token.cancel()
    d = lookup("webp")

    with pytest.raises(Cancelled):
        d.encode(token, bridge, Image.new("RGB", (4, 4)), d.default_options)
