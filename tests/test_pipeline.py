import io

import numpy as np
import pytest
from PIL import Image, ImageCms

from framekit.config import Config
from framekit.errors import UnreadableImageError
from framekit.pipeline import crop_and_resize, load_source_image, process, to_srgb
from conftest import make_image_bytes


def two_band_image(width=800, height=1000, split=260) -> Image.Image:
    img = Image.new('RGB', (width, height), (255, 255, 255))
    img.paste((0, 0, 0), (0, 0, width, split))
    return img


def test_exif_orientation_is_applied():
    data = make_image_bytes(1600, 1200, orientation=6)
    img = load_source_image(data, 'rotated.jpg')
    assert img.size == (1200, 1600)
    assert img.mode == 'RGB'


def test_unreadable_source_raises():
    with pytest.raises(UnreadableImageError) as excinfo:
        load_source_image(b'not an image at all', 'broken.jpg')
    assert excinfo.value.file_name == 'broken.jpg'
    assert excinfo.value.kind == 'unreadable_image'


def test_truncated_source_raises():
    data = make_image_bytes(640, 480)
    with pytest.raises(UnreadableImageError):
        load_source_image(data[: len(data) // 3], 'truncated.jpg')


def test_alpha_is_flattened_on_white():
    data = make_image_bytes(50, 30, fmt='PNG', color=(0, 0, 0, 0), mode='RGBA')
    img = load_source_image(data)
    assert img.mode == 'RGB'
    assert img.getpixel((10, 10)) == (255, 255, 255)


def test_embedded_icc_profile_is_converted():
    profile = ImageCms.ImageCmsProfile(ImageCms.createProfile('sRGB'))
    src = Image.new('RGB', (20, 20), (120, 60, 30))
    src.info['icc_profile'] = profile.tobytes()
    out = to_srgb(src, 'icc.png')
    assert out.mode == 'RGB'
    assert out.size == (20, 20)


def test_grayscale_becomes_rgb():
    data = make_image_bytes(40, 40, fmt='PNG', mode='L')
    assert load_source_image(data).mode == 'RGB'


def test_crop_follows_requested_offset():
    config = Config(quantizer='pillow')
    img = two_band_image()
    below = np.asarray(crop_and_resize(img, 260, config))
    assert below.shape == (480, 800, 3)
    assert below.min() == 255
    top = np.asarray(crop_and_resize(img, 0, config))
    assert top[:260].max() == 0


def test_offset_beyond_max_is_clamped():
    config = Config(quantizer='pillow')
    img = two_band_image()
    bottom = np.asarray(crop_and_resize(img, 10_000, config))
    assert bottom.min() == 255


def test_process_outputs_target_size_bitmap(config, quantizer):
    data = make_image_bytes(1600, 1200)
    output = process(data, 0, quantizer=quantizer, config=config, file_name='a.jpg')
    with Image.open(io.BytesIO(output)) as img:
        assert img.size == (800, 480)


def test_process_degenerate_aspect_source(config, quantizer):
    data = make_image_bytes(1000, 300)
    output = process(data, 50, quantizer=quantizer, config=config)
    with Image.open(io.BytesIO(output)) as img:
        assert img.size == (800, 480)


def test_process_is_idempotent(config, quantizer):
    data = make_image_bytes(1024, 768)
    assert process(data, 37, quantizer=quantizer, config=config) == process(data, 37, quantizer=quantizer, config=config)


def test_process_uses_configured_quantizer_when_none_given():
    data = make_image_bytes(400, 400)
    output = process(data, 0, config=Config(quantizer='pillow'))
    assert output[:2] == b'BM'
