# -*- coding: utf-8 -*-
import os
import logging
import urllib.error
import urllib.request
from typing import List, Optional

import cv2
import numpy as np
import tqdm

from framekit.config import Config
from framekit.errors import ToolUnavailableError
from framekit.pipeline import load_source_image
from framekit.suggest import FaceBox, SuggestionResult, suggest_y

logger = logging.getLogger(__name__)


def download_model(model_url: str, file_path: str, show_progress: bool = True) -> bool:
    """
    Downloads the model file from the specified URL if it doesn't exist.
    Shows a progress bar during download unless show_progress is False.
    """
    if os.path.exists(file_path):
        return True

    model_dir = os.path.dirname(file_path)
    if model_dir and not os.path.exists(model_dir):
        try:
            os.makedirs(model_dir)
            logger.info(f"  -> Info: Created model directory: {os.path.abspath(model_dir)}")
        except OSError as e:
            logger.error(f"  -> Error: Failed to create model directory '{os.path.abspath(model_dir)}': {e}")
            return False

    logger.info(f"  -> Info: Downloading model file... ({os.path.basename(file_path)}) from {model_url}")
    try:
        if show_progress:
            with tqdm.tqdm(unit='B', unit_scale=True, miniters=1, desc=f"  Downloading {os.path.basename(file_path)}") as t:
                def reporthook(blocknum, blocksize, totalsize):
                    if totalsize > 0:
                        t.total = totalsize
                    t.update(blocksize)
                urllib.request.urlretrieve(model_url, file_path, reporthook=reporthook)
        else:
            urllib.request.urlretrieve(model_url, file_path)
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.error(f"  -> Error: Model file download failed: {e}")
        logger.error(f"       Please manually download from the following URL and save as '{os.path.abspath(file_path)}': {model_url}")
        if os.path.exists(file_path):
            try:
                os.remove(file_path)
            except OSError as rm_e:
                logger.error(f"  -> Error: Could not remove partially downloaded model '{file_path}': {rm_e}")
        return False

    logger.info(f"  -> Info: Download complete. Model saved to {os.path.abspath(file_path)}")
    return True


def create_detector(config: Config, download: bool = True) -> "cv2.FaceDetectorYN":
    model_path = os.path.abspath(config.yunet_model_path)
    if not os.path.exists(model_path):
        if not download or not download_model(config.yunet_model_url, model_path):
            raise ToolUnavailableError(f"DNN model file '{model_path}' is not available or download failed.")
    try:
        detector = cv2.FaceDetectorYN.create(model_path, "", (0, 0))
        # The detector itself keeps low-confidence boxes; suggest_y applies min_confidence.
        detector.setScoreThreshold(min(config.min_confidence, 0.3))
        detector.setNMSThreshold(config.nms)
    except cv2.error as e:
        raise ToolUnavailableError(f"Failed to load face detection model '{model_path}': {e}") from e
    return detector


def detect_faces(detector, image: np.ndarray, min_w: int = 0, min_h: int = 0) -> List[FaceBox]:
    """
    Detects faces with a YuNet detector on a BGR image.
    Boxes are clamped to the image; boxes smaller than (min_w, min_h) are dropped.
    """
    if image is None or image.size == 0:
        logger.warning("  -> Warning: Input image for face detection is empty.")
        return []
    img_h, img_w = image.shape[:2]

    detector.setInputSize((img_w, img_h))
    _, faces = detector.detect(image)
    if faces is None:
        return []

    detected: List[FaceBox] = []
    for idx, face_info in enumerate(faces):
        x, y, w, h = map(int, face_info[:4])
        if w < min_w or h < min_h:
            logger.debug(f"  -> Debug: Face ID {idx} ({w}x{h}) ignored as smaller than min size ({min_w}x{min_h}).")
            continue

        x2 = min(img_w, x + w); y2 = min(img_h, y + h)
        x = max(0, x); y = max(0, y)
        w = x2 - x; h = y2 - y
        if w > 0 and h > 0:
            detected.append(FaceBox(x=x, y=y, width=w, height=h, confidence=float(face_info[14])))
    return detected


def suggest_crop(source_bytes: bytes, detector=None, config: Optional[Config] = None,
                 include_faces: bool = False, file_name: str = '') -> SuggestionResult:
    """
    Suggests the initial crop offset for one uploaded image.

    Without a detector the centered offset is returned. Face boxes are only
    included in the result when include_faces is set (diagnostic mode).
    """
    config = config or Config()
    img = load_source_image(source_bytes, file_name)
    natural_width, natural_height = img.size

    faces: List[FaceBox] = []
    if detector is not None:
        image_bgr = np.array(img)[:, :, ::-1].copy()
        try:
            faces = detect_faces(detector, image_bgr, config.min_face_width, config.min_face_height)
        except cv2.error as e:
            logger.error(f"  -> Error: {file_name}: OpenCV error during face detection (image size: {natural_width}x{natural_height}): {e}")
            faces = []

    y = suggest_y(natural_width, natural_height, faces, config.min_confidence, config.target_aspect)
    return SuggestionResult(
        y=y,
        natural_width=natural_width,
        natural_height=natural_height,
        faces=faces if include_faces else None,
    )
