"""iBBQ thermometer protocol and BLE device."""

from .device import BBQDevice, DiscoveredDevice, find_devices
from .protocol import (
    BatteryLevel,
    RealTimeData,
    SettingResult,
    SilencePressed,
    TemperatureUnit,
    UnknownSettingResult,
)

__all__ = [
    "BBQDevice",
    "DiscoveredDevice",
    "find_devices",
    "BatteryLevel",
    "RealTimeData",
    "SettingResult",
    "SilencePressed",
    "TemperatureUnit",
    "UnknownSettingResult",
]
