"""Tests for configuration loading and saving."""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from terminaut.config import get_config_path, load_config, save_config, validate_config
from terminaut.exceptions import ConfigLoadError, ConfigSaveError, ConfigValidationError
from terminaut.models import AppConfig


class TestLoadConfig:
    """Test loading configuration files."""

    def test_missing_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = load_config(Path(tmpdir) / "config.json")
            assert config == AppConfig()
            assert config.poll_interval == 2.0
            assert config.rewatch_delay == 0.05
            assert config.surface_environment == {"TERM_PROGRAM": "Apple_Terminal"}

    def test_default_path(self):
        assert get_config_path().name == "config.json"
        assert get_config_path().parent.name == ".terminaut"

    def test_default_path_used(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"assistant_command": "claude-dev"}))
            with patch("terminaut.config.CONFIG_PATH", path):
                assert load_config().assistant_command == "claude-dev"

    def test_partial_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({
                "state_dir": "~/states",
                "poll_interval": 1,
                "use_file_events": False,
            }))

            config = load_config(path)

            assert config.poll_interval == 1.0
            assert isinstance(config.poll_interval, float)
            assert config.use_file_events is False
            assert config.resolved_state_dir == Path("~/states").expanduser()
            assert config.assistant_command == "claude"

    def test_invalid_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text("{invalid")

            with pytest.raises(ConfigLoadError) as exc_info:
                load_config(path)
            assert exc_info.value.context["line"] == 1

    def test_wrong_type(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"use_file_events": "yes"}))

            with pytest.raises(ConfigValidationError):
                load_config(path)

    def test_not_an_object(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text("[]")

            with pytest.raises(ConfigValidationError):
                load_config(path)

    def test_non_positive_interval(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"poll_interval": 0}))

            with pytest.raises(ConfigValidationError) as exc_info:
                load_config(path)
            assert exc_info.value.context["field"] == "poll_interval"


class TestValidateConfig:
    """Test value validation."""

    def test_defaults_valid(self):
        validate_config(AppConfig())

    def test_negative_rewatch_delay(self):
        with pytest.raises(ConfigValidationError):
            validate_config(AppConfig(rewatch_delay=-1))

    def test_infinite_poll_interval(self):
        with pytest.raises(ConfigValidationError):
            validate_config(AppConfig(poll_interval=float("inf")))

    def test_empty_command(self):
        with pytest.raises(ConfigValidationError):
            validate_config(AppConfig(assistant_command="  "))


class TestSaveConfig:
    """Test saving configuration."""

    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "config.json"
            config = AppConfig(poll_interval=0.5, archive_path="/tmp/tasks.json")

            save_config(config, path)

            assert load_config(path) == config
            assert json.loads(path.read_text())["poll_interval"] == 0.5

    def test_save_failure(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            with patch("builtins.open", side_effect=OSError("denied")):
                with pytest.raises(ConfigSaveError):
                    save_config(AppConfig(), path)
