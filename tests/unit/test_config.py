"""Unit tests for settings models and the TOML config file."""

import pytest

from pydantic import ValidationError

from kasina_breath.config import (
    CalibrationSettings,
    DeviceSettings,
    Settings,
    SignalSettings,
    get_config_path,
    load_config,
    load_settings,
    save_config,
    set_config_value,
    unset_config_value,
)
from kasina_breath.constants import ConnectionConstants as CONN
from kasina_breath.exceptions import ConfigError


class TestSettingsModels:
    def test_defaults(self):
        settings = Settings()

        assert settings.device.name_prefix == "GDX-RB"
        assert settings.device.command_spacing == CONN.COMMAND_SPACING_SECONDS
        assert settings.calibration.duration_seconds == 20.0
        assert settings.signal.inhale_threshold == 0.7
        assert settings.recovery.checkpoint_interval == 30.0
        assert settings.recovery.min_session_seconds == 60

    def test_command_spacing_floor(self):
        with pytest.raises(ValidationError):
            DeviceSettings(command_spacing=0.1)

    def test_threshold_band(self):
        with pytest.raises(ValidationError):
            SignalSettings(inhale_threshold=0.3, exhale_threshold=0.3)

    def test_calibration_sample_bounds(self):
        with pytest.raises(ValidationError):
            CalibrationSettings(min_samples=100, max_samples=10)

    def test_frozen(self):
        with pytest.raises(ValidationError):
            Settings().device.scan_timeout = 1.0


class TestConfigFile:
    def test_env_override(self, config_file):
        assert get_config_path() == config_file

    def test_missing_file_is_empty(self, config_file):
        assert load_config() == {}

    def test_corrupt_file_is_empty(self, config_file):
        config_file.write_text("not [valid toml")

        assert load_config() == {}

    def test_save_and_load(self, config_file):
        save_config({"device": {"scan_timeout": 5.0}})

        assert load_config() == {"device": {"scan_timeout": 5.0}}
        assert not config_file.with_suffix(".toml.tmp").exists()

    def test_save_creates_directory(self, tmp_path, monkeypatch):
        path = tmp_path / "nested" / "dir" / "config.toml"
        monkeypatch.setenv("KASINA_BREATH_CONFIG", str(path))

        save_config({"api": {"base_url": "http://x"}})

        assert path.exists()


class TestLoadSettings:
    def test_merges_over_defaults(self):
        settings = load_settings({"recovery": {"checkpoint_interval": 10}})

        assert settings.recovery.checkpoint_interval == 10.0
        assert settings.recovery.min_session_seconds == 60

    def test_invalid_section_falls_back(self, caplog):
        settings = load_settings({"device": {"command_spacing": 0.01}, "api": {"timeout": 2}})

        assert settings.device.command_spacing == CONN.COMMAND_SPACING_SECONDS
        assert settings.api.timeout == 2.0
        assert "Invalid [device] config" in caplog.text

    def test_non_table_section_ignored(self):
        settings = load_settings({"device": "oops"})

        assert settings.device == DeviceSettings()

    def test_unknown_tables_ignored(self):
        settings = load_settings({"logging": {"level": "INFO"}})

        assert settings == Settings()

    def test_reads_file_when_no_dict(self, config_file):
        save_config({"calibration": {"duration_seconds": 15}})

        assert load_settings().calibration.duration_seconds == 15.0


class TestSetUnset:
    def test_set_coerces_and_writes(self, config_file):
        value = set_config_value("recovery.checkpoint_interval", "15")

        assert value == 15.0
        assert load_config() == {"recovery": {"checkpoint_interval": 15.0}}

    def test_set_bool(self, config_file):
        assert set_config_value("device.configure_sample_rate", "true") is True

    def test_set_unknown_section(self, config_file):
        with pytest.raises(ConfigError, match="Unknown config key"):
            set_config_value("nope.value", "1")

    def test_set_unknown_field(self, config_file):
        with pytest.raises(ConfigError, match="Unknown field"):
            set_config_value("device.nope", "1")

    def test_set_invalid_value(self, config_file):
        with pytest.raises(ConfigError, match="Invalid value"):
            set_config_value("device.scan_timeout", "-3")
        assert not config_file.exists()

    def test_unset_removes_section_and_file(self, config_file):
        set_config_value("device.scan_timeout", "5")

        unset_config_value("device.scan_timeout")

        assert not config_file.exists()

    def test_unset_keeps_other_values(self, config_file):
        set_config_value("device.scan_timeout", "5")
        set_config_value("api.timeout", "4")

        unset_config_value("device.scan_timeout")

        assert load_config() == {"api": {"timeout": 4.0}}

    def test_unset_missing_is_noop(self, config_file):
        unset_config_value("device.scan_timeout")

        assert not config_file.exists()
