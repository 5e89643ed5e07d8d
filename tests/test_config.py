import json

from framekit.config import Config, load_config, load_config_from_file


def test_defaults():
    config = Config()
    assert config.target_size == (800, 480)
    assert config.target_aspect == 800 / 480
    assert config.concurrency == 2
    assert config.quantizer == 'magick'


def test_invalid_values_are_reset():
    config = Config(concurrency=0, posterize_levels=9, quantizer='nope', resample_filter='box', output_ext='bmp')
    assert config.concurrency == 1
    assert config.posterize_levels == 2
    assert config.quantizer == 'magick'
    assert config.resample_filter == 'lanczos'
    assert config.output_ext == '.bmp'


def test_load_config_from_json_file(tmp_path):
    path = tmp_path / "frame.json"
    path.write_text(json.dumps({'concurrency': 4, 'quantizer': 'pillow', 'unknown': 1}), encoding='utf-8')
    config = load_config(str(path))
    assert config.concurrency == 4
    assert config.quantizer == 'pillow'


def test_overrides_win_over_file_and_none_is_skipped(tmp_path):
    path = tmp_path / "frame.json"
    path.write_text(json.dumps({'concurrency': 4, 'posterize_levels': 3}), encoding='utf-8')
    config = load_config(str(path), concurrency=1, posterize_levels=None)
    assert config.concurrency == 1
    assert config.posterize_levels == 3


def test_broken_config_file_yields_empty_dict(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding='utf-8')
    assert load_config_from_file(str(path)) == {}
    assert load_config_from_file(str(tmp_path / "missing.json")) == {}
