"""Configuration management for kasina-breath."""

import logging
import os
import tomllib

from pathlib import Path
from typing import Any

import tomli_w

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from kasina_breath.constants import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_DATABASE_PATH,
    DEFAULT_HOME_DIR,
    DEVICE_NAME_PREFIX,
)
from kasina_breath.constants import ApiConstants as AC
from kasina_breath.constants import BreathSignalConstants as BSC
from kasina_breath.constants import CalibrationConstants as CC
from kasina_breath.constants import ConnectionConstants as CONN
from kasina_breath.constants import DecoderConstants as DC
from kasina_breath.constants import ProtocolConstants as PC
from kasina_breath.constants import RecoveryConstants as RC
from kasina_breath.exceptions import ConfigError

logger = logging.getLogger(__name__)


# ============================================================================
# Settings Models
# ============================================================================


class DeviceSettings(BaseModel):
    """BLE link and decoding settings."""

    model_config = ConfigDict(frozen=True)

    name_prefix: str = Field(
        default=DEVICE_NAME_PREFIX, min_length=1, description="Advertised name prefix"
    )
    scan_timeout: float = Field(
        default=CONN.SCAN_TIMEOUT_SECONDS, gt=0, description="Scan timeout (s)"
    )
    connect_timeout: float = Field(
        default=CONN.CONNECT_TIMEOUT_SECONDS, gt=0, description="Connect timeout (s)"
    )
    command_timeout: float = Field(
        default=CONN.COMMAND_TIMEOUT_SECONDS, gt=0, description="Write timeout (s)"
    )
    command_spacing: float = Field(
        default=CONN.COMMAND_SPACING_SECONDS,
        ge=CONN.MIN_COMMAND_SPACING_SECONDS,
        description="Delay between setup commands (s)",
    )
    heartbeat_interval: float = Field(
        default=CONN.HEARTBEAT_INTERVAL_SECONDS,
        gt=0,
        description="Keep-alive period (s)",
    )
    stall_timeout: float = Field(
        default=CONN.STALL_TIMEOUT_SECONDS,
        gt=0,
        description="Silence before a refresh command is sent (s)",
    )
    sample_rate_hz: int = Field(
        default=PC.DEFAULT_SAMPLE_RATE_HZ, ge=1, le=0xFFFF, description="Sample rate"
    )
    configure_sample_rate: bool = Field(
        default=False,
        description="Send SET_SAMPLE_RATE during setup (not all firmware accepts it)",
    )
    channel_size: int = Field(
        default=CONN.SAMPLE_CHANNEL_SIZE,
        ge=1,
        description="Pending notifications kept before dropping the oldest",
    )
    plausible_min: float = Field(
        default=DC.PLAUSIBLE_MIN, description="Exclusive lower force bound (N)"
    )
    plausible_max: float = Field(
        default=DC.PLAUSIBLE_MAX, description="Exclusive upper force bound (N)"
    )


class CalibrationSettings(BaseModel):
    """Calibration window settings."""

    model_config = ConfigDict(frozen=True)

    duration_seconds: float = Field(default=CC.DURATION_SECONDS, gt=0)
    min_samples: int = Field(default=CC.MIN_SAMPLES, ge=1)
    max_samples: int = Field(default=CC.MAX_SAMPLES, ge=1)
    min_force_range: float = Field(
        default=CC.MIN_FORCE_RANGE, ge=0, description="Minimum max-min spread (N)"
    )

    @model_validator(mode="after")
    def _check_sample_bounds(self) -> "CalibrationSettings":
        if self.min_samples > self.max_samples:
            raise ValueError("min_samples must not exceed max_samples")
        return self


class SignalSettings(BaseModel):
    """
    Breath phase and rate settings.

    Phase thresholds form a hysteresis band: the phase only changes when the
    amplitude leaves the band on the opposite side.
    """

    model_config = ConfigDict(frozen=True)

    inhale_threshold: float = Field(default=BSC.INHALE_THRESHOLD, ge=0, le=1)
    exhale_threshold: float = Field(default=BSC.EXHALE_THRESHOLD, ge=0, le=1)
    rate_window_seconds: float = Field(default=BSC.RATE_WINDOW_SECONDS, gt=0)
    peak_neighborhood: int = Field(default=BSC.PEAK_NEIGHBORHOOD, ge=1)
    peak_margin: float = Field(default=BSC.PEAK_MARGIN, ge=0)
    min_rate_samples: int = Field(default=BSC.MIN_RATE_SAMPLES, ge=1)

    @model_validator(mode="after")
    def _check_band(self) -> "SignalSettings":
        if self.exhale_threshold >= self.inhale_threshold:
            raise ValueError("exhale_threshold must be below inhale_threshold")
        return self


class RecoverySettings(BaseModel):
    """Session checkpoint and recovery settings."""

    model_config = ConfigDict(frozen=True)

    checkpoint_interval: float = Field(
        default=RC.CHECKPOINT_INTERVAL_SECONDS, gt=0
    )
    active_stale_seconds: float = Field(
        default=RC.ACTIVE_SESSION_STALE_SECONDS, gt=0
    )
    emergency_stale_seconds: float = Field(
        default=RC.EMERGENCY_CHECKPOINT_STALE_SECONDS, gt=0
    )
    min_session_seconds: int = Field(default=RC.MIN_SESSION_SECONDS, ge=1)
    failed_queue_limit: int = Field(default=RC.FAILED_QUEUE_LIMIT, ge=1)


class ApiSettings(BaseModel):
    """Session persistence API settings."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(default=AC.DEFAULT_BASE_URL, min_length=1)
    timeout: float = Field(default=AC.REQUEST_TIMEOUT_SECONDS, gt=0)
    token: str | None = Field(default=None, description="Optional bearer token")


class StorageSettings(BaseModel):
    """Local durable storage settings."""

    model_config = ConfigDict(frozen=True)

    database_path: str = Field(default=DEFAULT_DATABASE_PATH, min_length=1)


class Settings(BaseModel):
    """All tunable values, injected into each component at construction."""

    model_config = ConfigDict(frozen=True)

    device: DeviceSettings = Field(default_factory=DeviceSettings)
    calibration: CalibrationSettings = Field(default_factory=CalibrationSettings)
    signal: SignalSettings = Field(default_factory=SignalSettings)
    recovery: RecoverySettings = Field(default_factory=RecoverySettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


SETTINGS_SECTIONS = tuple(Settings.model_fields)


# ============================================================================
# TOML File Handling
# ============================================================================


def get_config_path() -> Path:
    """
    Get the path to the configuration file.

    Honors KASINA_BREATH_CONFIG when set.

    Returns:
        Path to ~/.kasina-breath/config.toml
    """
    override = os.environ.get("KASINA_BREATH_CONFIG")
    if override:
        return Path(override)
    return DEFAULT_HOME_DIR / DEFAULT_CONFIG_FILE


def load_config() -> dict[str, Any]:
    """
    Load configuration from TOML file.

    Returns:
        Configuration dictionary. Returns empty dict if file doesn't exist
        or is corrupted.
    """
    config_path = get_config_path()

    if not config_path.exists():
        return {}

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.warning("Treating config as empty. Fix or delete the file to resolve.")
        return {}


def save_config(config: dict[str, Any]) -> None:
    """
    Save configuration to TOML file using atomic write.

    Creates the parent directory if it doesn't exist.
    Uses temp file + rename for atomic operation.

    Args:
        config: Configuration dictionary to save

    Raises:
        PermissionError: If directory cannot be created or file cannot be written
    """
    config_path = get_config_path()

    config_dir = config_path.parent
    try:
        os.makedirs(config_dir, exist_ok=True)
    except PermissionError as e:
        raise PermissionError(
            f"Cannot create config directory {config_dir}: {e}"
        ) from e

    temp_path = config_path.with_suffix(".toml.tmp")

    try:
        with open(temp_path, "wb") as f:
            tomli_w.dump(config, f)

        os.replace(temp_path, config_path)

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def load_settings(config: dict[str, Any] | None = None) -> Settings:
    """
    Build Settings from the TOML config merged over defaults.

    Unknown top-level tables (such as [logging]) are ignored. An invalid
    section is logged and replaced by its defaults so a typo never stops the
    belt from connecting.

    Args:
        config: Parsed config dict. Loads the user's file when None.

    Returns:
        Validated Settings
    """
    if config is None:
        config = load_config()

    sections: dict[str, Any] = {}
    for name in SETTINGS_SECTIONS:
        table = config.get(name)
        if table is None:
            continue
        if not isinstance(table, dict):
            logger.warning(f"Config section [{name}] is not a table; using defaults")
            continue

        model = Settings.model_fields[name].annotation
        try:
            sections[name] = model.model_validate(table)  # type: ignore[union-attr]
        except ValidationError as e:
            logger.warning(f"Invalid [{name}] config, using defaults: {e}")

    return Settings(**sections)


def _split_key(key: str) -> tuple[str, str]:
    section, _, field = key.partition(".")
    if section not in SETTINGS_SECTIONS or not field:
        raise ConfigError(
            f"Unknown config key '{key}'. Use <section>.<field> with section one of: "
            + ", ".join(SETTINGS_SECTIONS)
        )
    model = Settings.model_fields[section].annotation
    if field not in model.model_fields:  # type: ignore[union-attr]
        raise ConfigError(f"Unknown field '{field}' in section [{section}]")
    return section, field


def set_config_value(key: str, value: str) -> Any:
    """
    Set a single settings value in the config file.

    The value is validated against the settings model before writing.

    Args:
        key: Dotted key such as "recovery.checkpoint_interval"
        value: String value from the command line

    Returns:
        The coerced value that was written

    Raises:
        ConfigError: If the key is unknown or the value invalid
    """
    section, field = _split_key(key)
    config = load_config()
    table = dict(config.get(section, {}))
    table[field] = value

    model = Settings.model_fields[section].annotation
    try:
        validated = model.model_validate(table)  # type: ignore[union-attr]
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {e}") from e

    coerced = getattr(validated, field)
    table[field] = coerced
    config[section] = table
    save_config(config)
    return coerced


def unset_config_value(key: str) -> None:
    """
    Remove a settings value from the config file.

    If this was the only setting in its section, removes the section.
    If config becomes empty, deletes the config file.
    """
    section, field = _split_key(key)
    config = load_config()

    if section in config and field in config[section]:
        del config[section][field]

        if not config[section]:
            del config[section]

        if not config:
            config_path = get_config_path()
            if config_path.exists():
                config_path.unlink()
        else:
            save_config(config)
