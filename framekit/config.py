# -*- coding: utf-8 -*-
import os
import json
import logging
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, field, fields

logger = logging.getLogger(__name__)

YUNET_MODEL_FILENAME: str = "face_detection_yunet_2023mar.onnx"
YUNET_MODEL_URL: str = f"https://github.com/opencv/opencv_zoo/raw/main/models/face_detection_yunet/{YUNET_MODEL_FILENAME}"
MODEL_DIR_NAME: str = "models"

SUPPORTED_EXTENSIONS: Tuple[str, ...] = ('.png', '.jpg', '.jpeg', '.bmp', '.tiff', '.tif', '.webp', '.gif')

QUANTIZER_NAMES = {
    "magick": "ImageMagick subprocess (FloydSteinberg, RGB565 BMP)",
    "pillow": "In-process Pillow quantizer (FloydSteinberg, RGB565 BMP)",
}

FILTER_NAMES = {
    "lanczos": "LANCZOS (High quality)",
    "bicubic": "BICUBIC (Medium quality)",
    "bilinear": "BILINEAR (Low quality)",
    "nearest": "NEAREST (Lowest quality)"
}


@dataclass
class Config:
    """Holds all settings of the conversion engine."""
    target_width: int = 800
    target_height: int = 480
    output_ext: str = '.bmp'

    concurrency: int = 2
    max_sources: int = 200
    max_source_bytes: int = 30 * 1024 * 1024

    quantizer: str = 'magick' # ['magick', 'pillow']
    posterize_levels: int = 2
    magick_binary: str = 'magick'
    tool_timeout: Optional[float] = 60.0
    resample_filter: str = 'lanczos'

    zip_compress_level: int = 9
    pipe_max_chunks: int = 16

    min_confidence: float = 0.6
    nms: float = 0.3
    min_face_width: int = 30
    min_face_height: int = 30
    yunet_model_url: str = YUNET_MODEL_URL
    yunet_model_path: str = field(default_factory=lambda: os.path.join(MODEL_DIR_NAME, YUNET_MODEL_FILENAME))

    verbose: bool = False

    def __post_init__(self):
        if self.target_width <= 0 or self.target_height <= 0:
            logger.warning(f"  -> Warning: Target size must be positive ({self.target_width}x{self.target_height}). Using 800x480.")
            self.target_width, self.target_height = 800, 480
        if not self.output_ext.startswith('.'):
            self.output_ext = f".{self.output_ext}"
        if self.concurrency < 1:
            logger.warning(f"  -> Warning: Concurrency must be >= 1 ({self.concurrency}). Setting to 1.")
            self.concurrency = 1
        if self.max_sources < 1:
            logger.warning(f"  -> Warning: max_sources must be >= 1 ({self.max_sources}). Setting to 200.")
            self.max_sources = 200
        if self.max_source_bytes < 1:
            logger.warning(f"  -> Warning: max_source_bytes must be >= 1 ({self.max_source_bytes}). Setting to 30 MB.")
            self.max_source_bytes = 30 * 1024 * 1024
        if self.quantizer not in QUANTIZER_NAMES:
            logger.warning(f"  -> Warning: Unknown quantizer '{self.quantizer}'. Using 'magick'.")
            self.quantizer = 'magick'
        # The in-process palette holds levels**3 colors and must fit in 256 entries.
        if not (2 <= self.posterize_levels <= 6):
            logger.warning(f"  -> Warning: Posterize levels must be between 2 and 6 ({self.posterize_levels}). Setting to 2.")
            self.posterize_levels = 2
        if self.tool_timeout is not None and self.tool_timeout <= 0:
            self.tool_timeout = None
        if self.resample_filter not in FILTER_NAMES:
            logger.warning(f"  -> Warning: Unknown resample filter '{self.resample_filter}'. Using 'lanczos'.")
            self.resample_filter = 'lanczos'
        if not (0 <= self.zip_compress_level <= 9):
            logger.warning(f"  -> Warning: ZIP compression level must be between 0 and 9 ({self.zip_compress_level}). Setting to 9.")
            self.zip_compress_level = 9
        if self.pipe_max_chunks < 1:
            self.pipe_max_chunks = 1
        if not (0.0 <= self.min_confidence <= 1.0):
            logger.warning(f"  -> Warning: Minimum confidence must be between 0 and 1 ({self.min_confidence}). Setting to 0.6.")
            self.min_confidence = 0.6
        if self.min_face_width < 0:
            logger.warning(f"  -> Warning: Minimum face width must be >= 0 ({self.min_face_width}). Setting to 0.")
            self.min_face_width = 0
        if self.min_face_height < 0:
            logger.warning(f"  -> Warning: Minimum face height must be >= 0 ({self.min_face_height}). Setting to 0.")
            self.min_face_height = 0

    @property
    def target_aspect(self) -> float:
        return self.target_width / self.target_height

    @property
    def target_size(self) -> Tuple[int, int]:
        return self.target_width, self.target_height


def load_config_from_file(config_path: str) -> Dict[str, Any]:
    """
    Loads a JSON configuration file.
    Returns a dictionary with configuration data or an empty dictionary on failure.
    """
    abs_config_path = os.path.abspath(config_path)
    try:
        with open(abs_config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except FileNotFoundError:
        logger.error(f"  -> Error: Configuration file not found: {abs_config_path}")
        return {}
    except json.JSONDecodeError as e:
        logger.error(f"  -> Error: Configuration file parsing error ({abs_config_path}): {e}")
        return {}
    except OSError as e:
        logger.error(f"  -> Error: Error loading configuration file ({abs_config_path}): {e}")
        return {}
    if not isinstance(config_data, dict):
        logger.error(f"  -> Error: Configuration file must contain a JSON object: {abs_config_path}")
        return {}
    logger.info(f"  -> Info: Configuration file loaded successfully: {abs_config_path}")
    return config_data


def load_config(config_path: Optional[str] = None, **overrides: Any) -> Config:
    """Merges dataclass defaults, an optional JSON file and explicit overrides (None values are skipped)."""
    known = {f.name for f in fields(Config)}
    values: Dict[str, Any] = {}

    if config_path:
        for key, value in load_config_from_file(config_path).items():
            if key in known:
                values[key] = value
            else:
                logger.warning(f"  -> Warning: Unknown key '{key}' in configuration file '{config_path}' ignored.")

    for key, value in overrides.items():
        if value is None:
            continue
        if key in known:
            values[key] = value
        else:
            logger.warning(f"  -> Warning: Unknown configuration override '{key}' ignored.")

    return Config(**values)
