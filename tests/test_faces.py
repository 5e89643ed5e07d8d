import cv2
import numpy as np
import pytest

from framekit.config import Config
from framekit.errors import ToolUnavailableError
from framekit.faces import create_detector, detect_faces, suggest_crop


class FakeDetector:
    """Mimics cv2.FaceDetectorYN: detect() returns rows of [x, y, w, h, 10 landmarks, score]."""

    def __init__(self, boxes=None, error=None):
        self.boxes = boxes or []
        self.error = error
        self.input_size = None

    def setInputSize(self, size):
        self.input_size = size

    def detect(self, image):
        if self.error is not None:
            raise self.error
        if not self.boxes:
            return 1, None
        rows = np.zeros((len(self.boxes), 15), dtype=np.float32)
        for row, (x, y, w, h, score) in zip(rows, self.boxes):
            row[:4] = (x, y, w, h)
            row[14] = score
        return 1, rows


def test_detect_faces_converts_rows_to_boxes():
    detector = FakeDetector([(10, 20, 50, 60, 0.9)])
    faces = detect_faces(detector, np.zeros((300, 400, 3), dtype=np.uint8))
    assert detector.input_size == (400, 300)
    assert len(faces) == 1
    face = faces[0]
    assert (face.x, face.y, face.width, face.height) == (10, 20, 50, 60)
    assert face.confidence == pytest.approx(0.9)


def test_detect_faces_clamps_to_image():
    detector = FakeDetector([(-10, 280, 50, 60, 0.9)])
    face = detect_faces(detector, np.zeros((300, 400, 3), dtype=np.uint8))[0]
    assert (face.x, face.y, face.width, face.height) == (0, 280, 40, 20)


def test_detect_faces_drops_small_boxes():
    detector = FakeDetector([(10, 10, 20, 20, 0.9), (100, 100, 40, 40, 0.8)])
    faces = detect_faces(detector, np.zeros((300, 400, 3), dtype=np.uint8), min_w=30, min_h=30)
    assert [(f.x, f.y) for f in faces] == [(100, 100)]


def test_detect_faces_without_detections():
    assert detect_faces(FakeDetector(), np.zeros((10, 10, 3), dtype=np.uint8)) == []


def test_suggest_crop_without_detector_is_centered(image_bytes):
    result = suggest_crop(image_bytes(800, 1000), detector=None)
    assert result.to_dict() == {'y': 260, 'naturalWidth': 800, 'naturalHeight': 1000}


def test_suggest_crop_follows_faces(image_bytes):
    detector = FakeDetector([(300, 850, 100, 100, 0.95)])
    result = suggest_crop(image_bytes(800, 1000), detector=detector)
    assert result.y > 260
    assert result.y <= 520
    assert result.y <= 900 <= result.y + 480
    assert result.faces is None


def test_suggest_crop_reports_faces_in_diagnostic_mode(image_bytes):
    detector = FakeDetector([(300, 850, 100, 100, 0.95), (10, 10, 40, 40, 0.2)])
    result = suggest_crop(image_bytes(800, 1000), detector=detector, include_faces=True)
    assert len(result.faces) == 2
    assert result.to_dict()['faces'][0]['confidence'] == pytest.approx(0.95)


def test_suggest_crop_ignores_low_confidence_faces(image_bytes):
    detector = FakeDetector([(300, 850, 100, 100, 0.2)])
    assert suggest_crop(image_bytes(800, 1000), detector=detector).y == 260


def test_detection_error_falls_back_to_center(image_bytes):
    detector = FakeDetector(error=cv2.error("detector failure"))
    assert suggest_crop(image_bytes(800, 1000), detector=detector).y == 260


def test_suggest_crop_uses_oriented_dimensions(image_bytes):
    result = suggest_crop(image_bytes(1600, 1200, orientation=6), detector=None)
    assert (result.natural_width, result.natural_height) == (1200, 1600)


def test_missing_model_without_download(tmp_path):
    config = Config(yunet_model_path=str(tmp_path / "missing.onnx"))
    with pytest.raises(ToolUnavailableError):
        create_detector(config, download=False)
