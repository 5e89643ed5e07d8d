# -*- coding: utf-8 -*-
import io
import logging
from typing import Optional

from PIL import Image, ImageCms, ImageOps, UnidentifiedImageError

from framekit.config import Config
from framekit.errors import UnreadableImageError
from framekit.geometry import CropWindow, compute_crop_window
from framekit.quantize import get_quantizer

logger = logging.getLogger(__name__)

_PIL_RESAMPLE_FILTERS = {
    "lanczos": Image.Resampling.LANCZOS,
    "bicubic": Image.Resampling.BICUBIC,
    "bilinear": Image.Resampling.BILINEAR,
    "nearest": Image.Resampling.NEAREST
}

_SRGB_PROFILE = ImageCms.createProfile('sRGB')


def _flatten_alpha(img: Image.Image) -> Image.Image:
    if img.mode == 'P':
        img = img.convert('RGBA')
    background = Image.new('RGB', img.size, (255, 255, 255))
    background.paste(img, mask=img.getchannel('A'))
    return background


def to_srgb(img: Image.Image, file_name: str = '') -> Image.Image:
    """Returns an RGB image in sRGB, honoring an embedded ICC profile when present."""
    icc_profile = img.info.get('icc_profile')

    if img.mode in ('RGBA', 'LA', 'PA') or (img.mode == 'P' and 'transparency' in img.info):
        img = _flatten_alpha(img)
    elif img.mode not in ('RGB', 'CMYK', 'L'):
        img = img.convert('RGB')

    if icc_profile:
        try:
            source_profile = ImageCms.ImageCmsProfile(io.BytesIO(icc_profile))
            return ImageCms.profileToProfile(img, source_profile, _SRGB_PROFILE, outputMode='RGB')
        except (ImageCms.PyCMSError, OSError, ValueError) as e:
            logger.warning(f"  -> Warning: {file_name}: Embedded ICC profile could not be applied ({e}). Converting without it.")

    return img if img.mode == 'RGB' else img.convert('RGB')


def load_source_image(source_bytes: bytes, file_name: str = '') -> Image.Image:
    """Decodes the source, applies EXIF orientation and converts it to sRGB."""
    try:
        with Image.open(io.BytesIO(source_bytes)) as img:
            img.seek(0)
            img.load()
            try:
                oriented = ImageOps.exif_transpose(img)
            except (OSError, ValueError, SyntaxError) as exif_err:
                logger.warning(f"  -> Warning: {file_name}: Error processing EXIF data: {exif_err}. Proceeding without orientation.")
                oriented = img.copy()
            return to_srgb(oriented, file_name)
    except UnidentifiedImageError as e:
        raise UnreadableImageError("Cannot open or unsupported image format.", file_name=file_name) from e
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise UnreadableImageError(f"Error loading image: {e}", file_name=file_name) from e


def crop_and_resize(img: Image.Image, requested_y: float, config: Config) -> Image.Image:
    window: CropWindow = compute_crop_window(img.width, img.height, requested_y, config.target_aspect)
    if window.width <= 0 or window.height <= 0:
        raise UnreadableImageError(f"Invalid image dimensions ({img.width}x{img.height}).")
    logger.debug(f"  -> Debug: Crop window {window.box} (maxY={window.max_y}) for {img.width}x{img.height}")
    cropped = img.crop(window.box)
    if cropped.size == config.target_size:
        return cropped
    return cropped.resize(config.target_size, _PIL_RESAMPLE_FILTERS[config.resample_filter])


def process(source_bytes: bytes, requested_y: float, quantizer=None, config: Optional[Config] = None,
            file_name: str = '') -> bytes:
    """One source image and a requested offset in, one encoded RGB565 bitmap out."""
    config = config or Config()
    quantizer = quantizer or get_quantizer(config)

    img = load_source_image(source_bytes, file_name)
    try:
        prepared = crop_and_resize(img, requested_y, config)
    except UnreadableImageError as e:
        e.file_name = e.file_name or file_name
        raise
    return quantizer.quantize_and_encode(prepared)
