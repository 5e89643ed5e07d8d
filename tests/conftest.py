"""Shared fixtures: Pillow-generated sources and the in-process quantizer."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from framekit.config import Config
from framekit.quantize import PillowQuantizer


def make_image_bytes(width: int, height: int, fmt: str = "JPEG", color=None, orientation: int | None = None,
                     mode: str = "RGB") -> bytes:
    """Vertical gradient image encoded as `fmt`, optionally tagged with an EXIF orientation."""
    img = Image.linear_gradient("L").resize((width, height)).convert(mode) if color is None else Image.new(mode, (width, height), color)
    buf = io.BytesIO()
    kwargs = {}
    if orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = orientation
        kwargs["exif"] = exif.tobytes()
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


@pytest.fixture
def config() -> Config:
    return Config(quantizer="pillow")


@pytest.fixture
def quantizer() -> PillowQuantizer:
    return PillowQuantizer(posterize_levels=2)


@pytest.fixture
def image_bytes():
    return make_image_bytes
