"""Tests for configuration loading."""

import json
import os
from pathlib import Path

import pytest

from hashdrop.config import Config, ConfigError, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from HASHDROP_* variables and any .env in the working tree."""
    for key in list(os.environ):
        if key.startswith('HASHDROP_'):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


def test_defaults():
    config = Config()
    assert config.port == 9000
    assert config.buffer_size == 8192
    assert config.max_concurrent_clients == 5
    assert config.upload_dir == Path('./uploads')


def test_from_env(monkeypatch):
    monkeypatch.setenv('HASHDROP_PORT', '9100')
    monkeypatch.setenv('HASHDROP_UPLOAD_DIR', '/srv/drop')
    monkeypatch.setenv('HASHDROP_MAX_CLIENTS', '3')
    monkeypatch.setenv('HASHDROP_READ_TIMEOUT', '12.5')

    config = Config.from_env()

    assert config.port == 9100
    assert config.upload_dir == Path('/srv/drop')
    assert config.max_concurrent_clients == 3
    assert config.read_timeout == 12.5


def test_env_overrides_file(monkeypatch, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'port': 9200, 'max_file_size': 1024, 'buffer_size': 4096}))
    monkeypatch.setenv('HASHDROP_PORT', '9300')

    config = load_config(path)

    assert config.port == 9300
    assert config.max_file_size == 1024
    assert config.buffer_size == 4096


def test_missing_file_gives_defaults(tmp_path):
    assert Config.from_file(tmp_path / "absent.json") == Config()


def test_save_then_load(tmp_path):
    path = tmp_path / "saved.json"
    Config(port=9400, upload_dir=Path('/data/in')).save(path)

    loaded = Config.from_file(path)

    assert loaded.port == 9400
    assert loaded.upload_dir == Path('/data/in')


@pytest.mark.parametrize("field, value", [
    ('buffer_size', 0),
    ('max_concurrent_clients', -1),
    ('max_file_size', 0),
    ('read_timeout', 0),
    ('port', 70000),
])
def test_validate_rejects_bad_values(field, value):
    config = Config()
    setattr(config, field, value)
    with pytest.raises(ConfigError):
        config.validate()


def test_load_config_validates(monkeypatch):
    monkeypatch.setenv('HASHDROP_BUFFER_SIZE', '0')
    with pytest.raises(ConfigError):
        load_config()


def test_env_equal_to_default_still_overrides_file(monkeypatch, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'port': 8000}))
    monkeypatch.setenv('HASHDROP_PORT', '9000')

    assert load_config(path).port == 9000


def test_file_values_are_coerced(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'port': '9500', 'read_timeout': '20'}))

    config = load_config(path)

    assert config.port == 9500
    assert config.read_timeout == 20.0


def test_file_value_of_wrong_type_is_config_error(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'max_concurrent_clients': 'many'}))

    with pytest.raises(ConfigError, match="Bad value"):
        load_config(path)
