"""Test layered configuration loading"""

from pathlib import Path

import pytest

from flac_capture.core.config import (
    DEFAULT_PATTERNS,
    DEFAULT_PREFIX,
    clamp_volume,
    load_config,
    validate_quality,
)
from flac_capture.core.exceptions import ConfigurationError


class TestDefaults:
    """Test built-in defaults"""

    def test_defaults(self, temp_dir):
        """Without file, environment or overrides the defaults apply"""
        config = load_config()

        assert config.watch.input_directory == temp_dir / "input"
        assert config.output.directory == temp_dir / "output"
        assert config.watch.scan_interval_seconds == 30.0
        assert config.watch.settle_seconds == 2.0
        assert config.watch.patterns == DEFAULT_PATTERNS
        assert config.output.filename_prefix == DEFAULT_PREFIX
        assert config.capture.fetch_timeout_seconds == 1800.0
        assert config.capture.monitor_volume == 0.7
        assert config.capture.temp_directory is None
        assert config.encoding.auto_convert is True
        assert config.encoding.delete_uncompressed is True
        assert config.encoding.quality == 100
        assert config.encoding.flac_executable is None
        assert config.logging.level == "INFO"


class TestLayers:
    """Test file, environment and override precedence"""

    def test_yaml_file_in_cwd(self, temp_dir):
        """config.yaml in the working directory is picked up"""
        (temp_dir / "config.yaml").write_text(
            "watch:\n"
            "  input_directory: drop\n"
            "  patterns: ['*.txt']\n"
            "encoding:\n"
            "  quality: 50\n"
            "  auto_convert: false\n",
            encoding="utf-8",
        )

        config = load_config()

        assert config.watch.input_directory == temp_dir / "drop"
        assert config.watch.patterns == ("*.txt",)
        assert config.encoding.quality == 50
        assert config.encoding.auto_convert is False

    def test_explicit_missing_file(self, temp_dir):
        with pytest.raises(ConfigurationError):
            load_config(temp_dir / "nope.yaml")

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("watch: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_unknown_section(self, temp_dir):
        path = temp_dir / "extra.yaml"
        path.write_text("spotify:\n  client_id: x\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="spotify"):
            load_config(path)

    def test_environment_overrides_file(self, temp_dir, monkeypatch):
        """FLAC_CAPTURE_* variables take precedence over the file"""
        path = temp_dir / "c.yaml"
        path.write_text("encoding:\n  quality: 50\n", encoding="utf-8")
        monkeypatch.setenv("FLAC_CAPTURE_QUALITY", "80")
        monkeypatch.setenv("FLAC_CAPTURE_DELETE_WAV", "no")
        monkeypatch.setenv("FLAC_CAPTURE_PREFIX", "rec_")

        config = load_config(path)

        assert config.encoding.quality == 80
        assert config.encoding.delete_uncompressed is False
        assert config.output.filename_prefix == "rec_"

    def test_overrides_win(self, monkeypatch):
        """Command-line overrides beat the environment; None is ignored"""
        monkeypatch.setenv("FLAC_CAPTURE_QUALITY", "80")

        config = load_config(overrides={"encoding.quality": 10, "output.filename_prefix": None})

        assert config.encoding.quality == 10
        assert config.output.filename_prefix == DEFAULT_PREFIX

    def test_invalid_override_key(self):
        with pytest.raises(ConfigurationError):
            load_config(overrides={"quality": 10})


class TestValidation:
    """Test value validation"""

    def test_quality_range(self):
        assert validate_quality(0) == 0
        assert validate_quality("100") == 100
        with pytest.raises(ConfigurationError):
            validate_quality(101)
        with pytest.raises(ConfigurationError):
            validate_quality(-1)
        with pytest.raises(ConfigurationError):
            validate_quality("high")

    def test_quality_in_file(self, temp_dir):
        path = temp_dir / "q.yaml"
        path.write_text("encoding:\n  quality: 150\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_volume_is_clamped(self):
        """Out-of-range volume is clamped rather than rejected"""
        assert clamp_volume(1.5) == 1.0
        assert clamp_volume(-0.2) == 0.0
        assert load_config(overrides={"capture.monitor_volume": 3}).capture.monitor_volume == 1.0

    def test_timeout_range(self):
        with pytest.raises(ConfigurationError):
            load_config(overrides={"capture.fetch_timeout_seconds": 0})
        with pytest.raises(ConfigurationError):
            load_config(overrides={"capture.fetch_timeout_seconds": 86401})

    def test_scan_interval_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            load_config(overrides={"watch.scan_interval_seconds": 0})

    def test_settle_must_not_be_negative(self):
        with pytest.raises(ConfigurationError):
            load_config(overrides={"watch.settle_seconds": -1})

    @pytest.mark.parametrize("key", [
        "watch.scan_interval_seconds",
        "watch.settle_seconds",
        "capture.fetch_timeout_seconds",
        "capture.monitor_volume",
        "encoding.quality",
    ])
    @pytest.mark.parametrize("value", ["nan", "inf", "-inf", float("nan")])
    def test_non_finite_numbers_rejected(self, key, value):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(overrides={key: value})
        assert exc_info.value.details["field"] == key

    def test_non_finite_quality_from_environment(self, monkeypatch):
        monkeypatch.setenv("FLAC_CAPTURE_QUALITY", "nan")
        with pytest.raises(ConfigurationError):
            load_config()

    def test_prefix_without_separators(self):
        with pytest.raises(ConfigurationError):
            load_config(overrides={"output.filename_prefix": "a/b"})

    def test_bool_strings(self):
        config = load_config(overrides={"encoding.auto_convert": "off"})
        assert config.encoding.auto_convert is False
        with pytest.raises(ConfigurationError):
            load_config(overrides={"encoding.auto_convert": "maybe"})

    def test_log_level(self):
        assert load_config(overrides={"logging.level": "debug"}).logging.level == "DEBUG"
        with pytest.raises(ConfigurationError):
            load_config(overrides={"logging.level": "LOUD"})

    def test_paths_are_absolute(self):
        config = load_config(overrides={"encoding.flac_executable": Path("bin/flac")})
        assert config.encoding.flac_executable.is_absolute()
