# -*- coding: utf-8 -*-
import io
import shutil
import struct
import logging
import subprocess
from typing import List, Optional

import numpy as np
from PIL import Image

from framekit.config import Config
from framekit.errors import ToolFailureError, ToolUnavailableError

logger = logging.getLogger(__name__)

BI_BITFIELDS = 3
RGB565_MASKS = (0xF800, 0x07E0, 0x001F)
BMP_FILE_HEADER_SIZE = 14
BMP_INFO_HEADER_SIZE = 40
BMP_PIXEL_OFFSET = BMP_FILE_HEADER_SIZE + BMP_INFO_HEADER_SIZE + 4 * len(RGB565_MASKS)
PIXELS_PER_METER = 2835 # 72 DPI


def pack_rgb565(rgb: np.ndarray) -> np.ndarray:
    """Packs an (H, W, 3) uint8 array into (H, W) uint16 RGB565 values."""
    rgb = rgb.astype(np.uint16)
    r = (rgb[:, :, 0] >> 3) << 11
    g = (rgb[:, :, 1] >> 2) << 5
    b = rgb[:, :, 2] >> 3
    return (r | g | b).astype(np.uint16)


def encode_bmp565(rgb: np.ndarray) -> bytes:
    """
    Encodes an (H, W, 3) uint8 RGB array as a 16 bpp BI_BITFIELDS bitmap with
    5/6/5 masks: BITMAPFILEHEADER, BITMAPINFOHEADER, three masks, then
    bottom-up rows padded to 4 bytes.
    """
    if rgb.ndim != 3 or rgb.shape[2] != 3:
        raise ValueError(f"Expected an (H, W, 3) array, got shape {rgb.shape}.")
    height, width = rgb.shape[:2]

    packed = pack_rgb565(rgb)[::-1]
    row_bytes = width * 2
    padding = (4 - row_bytes % 4) % 4
    if padding:
        packed = np.pad(packed, ((0, 0), (0, padding // 2)))
    pixel_data = packed.astype('<u2').tobytes()

    file_size = BMP_PIXEL_OFFSET + len(pixel_data)
    file_header = struct.pack('<2sIHHI', b'BM', file_size, 0, 0, BMP_PIXEL_OFFSET)
    info_header = struct.pack('<IiiHHIIiiII', BMP_INFO_HEADER_SIZE, width, height, 1, 16, BI_BITFIELDS,
                              len(pixel_data), PIXELS_PER_METER, PIXELS_PER_METER, 0, 0)
    masks = struct.pack('<III', *RGB565_MASKS)
    return file_header + info_header + masks + pixel_data


def posterize_palette(levels: int) -> List[int]:
    steps = [round_level(i, levels) for i in range(levels)]
    return [channel for r in steps for g in steps for b in steps for channel in (r, g, b)]


def round_level(index: int, levels: int) -> int:
    return int(index * 255 / (levels - 1) + 0.5)


class PillowQuantizer:
    """
    In-process quantizer: posterizes to levels**3 colors with Floyd-Steinberg
    error diffusion, then encodes RGB565. Deterministic for identical input.
    """

    name = "pillow"

    def __init__(self, posterize_levels: int = 2):
        self.posterize_levels = posterize_levels
        self._palette_image = Image.new('P', (1, 1))
        self._palette_image.putpalette(posterize_palette(posterize_levels))

    def quantize_and_encode(self, image: Image.Image) -> bytes:
        if image.mode != 'RGB':
            image = image.convert('RGB')
        dithered = image.quantize(palette=self._palette_image, dither=Image.Dither.FLOYDSTEINBERG)
        rgb = np.asarray(dithered.convert('RGB'), dtype=np.uint8)
        return encode_bmp565(rgb)


class MagickQuantizer:
    """
    Runs ImageMagick once per image: PNG on stdin, RGB565 BMP on stdout.
    Each call is a short-lived stateless subprocess.
    """

    name = "magick"

    def __init__(self, binary: str = 'magick', posterize_levels: int = 2, timeout: Optional[float] = 60.0):
        self.binary = binary
        self.posterize_levels = posterize_levels
        self.timeout = timeout

    def command(self) -> List[str]:
        return [
            self.binary,
            'png:-',
            '-dither', 'FloydSteinberg',
            '-posterize', str(self.posterize_levels),
            '-define', 'bmp:subtype=RGB565',
            'bmp:-',
        ]

    def quantize_and_encode(self, image: Image.Image) -> bytes:
        executable = shutil.which(self.binary)
        if executable is None:
            raise ToolUnavailableError(f"'{self.binary}' executable not found on PATH.")

        buffer = io.BytesIO()
        image.save(buffer, format='PNG')
        command = self.command()
        command[0] = executable

        try:
            process = subprocess.run(
                command,
                input=buffer.getvalue(),
                capture_output=True,
                check=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ToolUnavailableError(f"'{self.binary}' could not be started: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise ToolFailureError(f"'{self.binary}' timed out after {self.timeout}s.") from e
        except subprocess.CalledProcessError as e:
            stderr_text = e.stderr.decode('utf-8', errors='replace').strip() if e.stderr else ''
            raise ToolFailureError(f"'{self.binary}' exited with code {e.returncode}: {stderr_text}") from e

        if not process.stdout:
            raise ToolFailureError(f"'{self.binary}' produced no output.")
        return process.stdout


def get_quantizer(config: Config):
    if config.quantizer == 'pillow':
        return PillowQuantizer(config.posterize_levels)
    return MagickQuantizer(config.magick_binary, config.posterize_levels, config.tool_timeout)
