"""Configuration loading for the cloudbbq-homie bridge."""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError

CONFIG_FILENAME = "cloudbbq-homie.yaml"
SYSTEM_CONFIG_PATH = Path("/etc/cloudbbq-homie") / CONFIG_FILENAME
CONFIG_ENV_VAR = "CLOUDBBQ_HOMIE_CONFIG"

_MAC_ADDRESS_RE = re.compile(r"^[0-9A-F]{2}(:[0-9A-F]{2}){5}$")


@dataclass
class MQTTConfig:
    """MQTT broker configuration."""
    host: str = "test.mosquitto.org"
    port: int = 1883
    use_tls: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    client_prefix: str = "cloudbbq"
    keepalive: int = 5


@dataclass
class HomieConfig:
    """Homie topic layout."""
    prefix: str = "homie"
    device_id_prefix: str = "cloudbbq"


@dataclass
class BLEConfig:
    """BLE scanning and connection configuration."""
    scan_duration: float = 5.0
    scan_interval: float = 300.0
    reconnect_delay: float = 5.0
    connection_timeout: float = 20.0


@dataclass
class DeviceConfig:
    """Per-thermometer configuration."""
    name: Optional[str] = None
    probe_names: List[str] = field(default_factory=list)


@dataclass
class Config:
    """Main configuration."""
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    homie: HomieConfig = field(default_factory=HomieConfig)
    ble: BLEConfig = field(default_factory=BLEConfig)
    devices: Dict[str, DeviceConfig] = field(default_factory=dict)
    log_level: str = "INFO"

    def device_config(self, mac_address: str) -> DeviceConfig:
        """Get the configuration for a device, or defaults if it has none."""
        return self.devices.get(mac_address.upper(), DeviceConfig())


def normalize_mac_address(value: Any) -> str:
    """Validate a MAC address and return it in upper case.

    Raises:
        ConfigError: If the value isn't a colon separated MAC address.
    """
    mac_address = str(value).strip().upper()
    if not _MAC_ADDRESS_RE.match(mac_address):
        raise ConfigError(f"Invalid MAC address {value!r}")
    return mac_address


def get_client_id(config: MQTTConfig, suffix: str) -> str:
    """Build the MQTT client ID for a device."""
    return f"{config.client_prefix}-{suffix}"


# Accepted YAML value types for each dataclass field type.
_FIELD_TYPES = {
    int: (int,),
    float: (int, float),
    bool: (bool,),
    str: (str,),
    Optional[str]: (str,),
}


def _check_field_types(section_obj, section: str):
    """Reject values of the wrong type, e.g. a quoted port number."""
    for f in fields(section_obj):
        accepted = _FIELD_TYPES.get(f.type)
        if accepted is None:
            continue
        value = getattr(section_obj, f.name)
        if value is None and f.default is None:
            continue
        if (isinstance(value, bool) and bool not in accepted) or not isinstance(value, accepted):
            expected = " or ".join(t.__name__ for t in accepted)
            raise ConfigError(f"'{section}.{f.name}' must be {expected}, not {value!r}")


def _build_section(cls, data: Any, section: str):
    """Construct a section dataclass, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"'{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown field(s) in '{section}': {', '.join(map(str, unknown))}")

    try:
        section_obj = cls(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid '{section}' section: {e}") from e
    _check_field_types(section_obj, section)
    return section_obj


def _parse_devices(data: Any) -> Dict[str, DeviceConfig]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("'device' must be a mapping from MAC address to device settings")

    devices: Dict[str, DeviceConfig] = {}
    for mac_address, device_data in data.items():
        mac_address = normalize_mac_address(mac_address)
        device = _build_section(DeviceConfig, device_data, f"device.{mac_address}")
        if not isinstance(device.probe_names, list):
            raise ConfigError(f"'device.{mac_address}.probe_names' must be a list")
        device.probe_names = [str(name) for name in device.probe_names]
        devices[mac_address] = device
    return devices


def parse_config(data: Optional[dict]) -> Config:
    """Build a Config from a parsed YAML document.

    Args:
        data: Parsed YAML, or None for an empty file.

    Returns:
        Config object with defaults for anything not set.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    known = {"mqtt", "homie", "ble", "device", "log_level"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration field(s): {', '.join(map(str, unknown))}")

    return Config(
        mqtt=_build_section(MQTTConfig, data.get("mqtt"), "mqtt"),
        homie=_build_section(HomieConfig, data.get("homie"), "homie"),
        ble=_build_section(BLEConfig, data.get("ble"), "ble"),
        devices=_parse_devices(data.get("device")),
        log_level=str(data.get("log_level", "INFO")).upper(),
    )


def get_config_path(config_path: Optional[Union[str, Path]] = None) -> Path:
    """Work out which configuration file to read.

    An explicit path wins, then CLOUDBBQ_HOMIE_CONFIG, then
    cloudbbq-homie.yaml in the working directory, then the system-wide file.
    """
    if config_path is not None:
        return Path(config_path)

    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    local_path = Path(CONFIG_FILENAME)
    if local_path.exists() or not SYSTEM_CONFIG_PATH.exists():
        return local_path
    return SYSTEM_CONFIG_PATH


def load_config(config_path: Optional[Union[str, Path]] = None, load_env: bool = True) -> Config:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to config file. If None, see get_config_path().
        load_env: Whether to load a .env file first.

    Returns:
        Config object with loaded settings.

    Raises:
        ConfigError: If the file can't be read or is invalid.
    """
    if load_env:
        load_dotenv()

    path = get_config_path(config_path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Reading {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Parsing {path}: {e}") from e

    return parse_config(data)
