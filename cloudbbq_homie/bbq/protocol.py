"""iBBQ thermometer wire format.

The thermometer exposes a single GATT service with five characteristics.
Commands are six byte messages written to the setting data characteristic,
and their results come back as notifications on the settings result
characteristic. Probe temperatures are notified on the real-time data
characteristic once real-time data has been enabled.
"""

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from ..exceptions import BBQError


def _uuid16(short: int) -> str:
    return f"0000{short:04x}-0000-1000-8000-00805f9b34fb"


SERVICE_UUID = _uuid16(0xFFF0)
SETTINGS_RESULT_UUID = _uuid16(0xFFF1)
ACCOUNT_AND_VERIFY_UUID = _uuid16(0xFFF2)
HISTORY_DATA_UUID = _uuid16(0xFFF3)
REAL_TIME_DATA_UUID = _uuid16(0xFFF4)
SETTING_DATA_UUID = _uuid16(0xFFF5)

DEVICE_NAME = "iBBQ"

CREDENTIALS_MESSAGE = bytes.fromhex("21 07 06 05 04 03 02 01 b8 22 00 00 00 00 00")
REAL_TIME_DATA_ENABLE = bytes.fromhex("0b 01 00 00 00 00")
REAL_TIME_DATA_DISABLE = bytes.fromhex("0b 00 00 00 00 00")
UNITS_CELSIUS = bytes.fromhex("02 00 00 00 00 00")
UNITS_FAHRENHEIT = bytes.fromhex("02 01 00 00 00 00")
REQUEST_BATTERY_LEVEL = bytes.fromhex("08 24 00 00 00 00")
SILENCE_ALARM = bytes.fromhex("04 ff 00 00 00 00")

SET_TARGET_COMMAND = 0x01
RESULT_BATTERY_LEVEL = 0x24
RESULT_SILENCE_PRESSED = 0x04

# Raw probe reading sent for an unplugged probe.
PROBE_DISCONNECTED = 0xFFF6

# Bounds the thermometer uses for "no lower limit" and "no target".
MIN_TEMPERATURE = -300.0
MAX_TEMPERATURE = 300.0

# Some firmware reports a max voltage of 0.
DEFAULT_MAX_VOLTAGE = 6550


class TemperatureUnit(Enum):
    """Unit shown on the thermometer's display."""
    CELSIUS = "celsius"
    FAHRENHEIT = "fahrenheit"


@dataclass
class RealTimeData:
    """Probe temperatures in °C, None for probes that aren't plugged in."""
    probe_temperatures: List[Optional[float]] = field(default_factory=list)


@dataclass
class BatteryLevel:
    """Battery voltage in millivolts."""
    current_voltage: int
    max_voltage: int

    @property
    def percentage(self) -> int:
        return self.current_voltage * 100 // self.max_voltage


@dataclass
class SilencePressed:
    """The alarm was silenced with the button on the thermometer."""


@dataclass
class UnknownSettingResult:
    """A settings result we don't know how to interpret."""
    data: bytes


SettingResult = Union[BatteryLevel, SilencePressed, UnknownSettingResult]


def _encode_temperature(temperature: float) -> bytes:
    try:
        return struct.pack("<h", int(round(temperature * 10)))
    except (struct.error, OverflowError, ValueError) as e:
        raise BBQError(f"Temperature {temperature} out of range") from e


def set_temperature_unit_command(unit: TemperatureUnit) -> bytes:
    if unit is TemperatureUnit.FAHRENHEIT:
        return UNITS_FAHRENHEIT
    return UNITS_CELSIUS


def set_target_range_command(probe: int, minimum: float, maximum: float) -> bytes:
    """Build the command to alarm when a probe leaves [minimum, maximum]."""
    if not 0 <= probe <= 0xFF:
        raise BBQError(f"Invalid probe index {probe}")
    return (
        bytes([SET_TARGET_COMMAND, probe])
        + _encode_temperature(minimum)
        + _encode_temperature(maximum)
    )


def set_target_temp_command(probe: int, target: float) -> bytes:
    """Build the command to alarm when a probe rises above target."""
    return set_target_range_command(probe, MIN_TEMPERATURE, target)


def remove_target_command(probe: int) -> bytes:
    return set_target_range_command(probe, MIN_TEMPERATURE, MAX_TEMPERATURE)


def decode_real_time_data(data: bytes) -> RealTimeData:
    """Decode a real-time data notification.

    Raises:
        BBQError: If the payload isn't a whole number of probe readings.
    """
    if len(data) % 2 != 0:
        raise BBQError(f"Invalid real-time data length {len(data)}: {data.hex()}")

    temperatures: List[Optional[float]] = []
    for (raw,) in struct.iter_unpack("<H", data):
        if raw == PROBE_DISCONNECTED:
            temperatures.append(None)
        else:
            temperatures.append(raw / 10)
    return RealTimeData(probe_temperatures=temperatures)


def decode_setting_result(data: bytes) -> SettingResult:
    """Decode a settings result notification.

    Raises:
        BBQError: If the payload is empty or a battery result is truncated.
    """
    if not data:
        raise BBQError("Empty settings result")

    if data[0] == RESULT_BATTERY_LEVEL:
        if len(data) < 6:
            raise BBQError(f"Truncated battery level result: {data.hex()}")
        _, current_voltage, max_voltage, _ = struct.unpack("<BHHB", data[:6])
        if max_voltage == 0:
            max_voltage = DEFAULT_MAX_VOLTAGE
        return BatteryLevel(current_voltage=current_voltage, max_voltage=max_voltage)
    elif data[0] == RESULT_SILENCE_PRESSED:
        return SilencePressed()
    return UnknownSettingResult(data=bytes(data))
