"""Bridges one thermometer to one Homie device."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from . import __version__
from .bbq import (
    BatteryLevel,
    BBQDevice,
    DiscoveredDevice,
    RealTimeData,
    SilencePressed,
    TemperatureUnit,
)
from .bbq.protocol import MAX_TEMPERATURE, MIN_TEMPERATURE
from .config import Config, DeviceConfig, get_client_id
from .exceptions import BBQError
from .homie import HomieDevice, Node, Property

logger = logging.getLogger(__name__)

FIRMWARE_NAME = "cloudbbq-homie"

NODE_ID_BATTERY = "battery"
PROPERTY_ID_VOLTAGE = "voltage"
PROPERTY_ID_PERCENTAGE = "percentage"

NODE_ID_SETTINGS = "settings"
PROPERTY_ID_DISPLAY_UNIT = "unit"
PROPERTY_ID_ALARM = "alarm"
DISPLAY_UNIT_CELSIUS = "ºC"
DISPLAY_UNIT_FAHRENHEIT = "ºF"
DISPLAY_UNITS = {
    DISPLAY_UNIT_CELSIUS: TemperatureUnit.CELSIUS,
    DISPLAY_UNIT_FAHRENHEIT: TemperatureUnit.FAHRENHEIT,
}

NODE_ID_PROBE_PREFIX = "probe"
PROPERTY_ID_TEMPERATURE = "temperature"
PROPERTY_ID_TARGET_TEMPERATURE_MIN = "target_min"
PROPERTY_ID_TARGET_TEMPERATURE_MAX = "target_max"
PROPERTY_ID_TARGET_MODE = "mode"


class TargetMode(Enum):
    """How a probe's target temperature alarm works."""
    NONE = "None"
    SINGLE = "Maximum only"
    RANGE = "Range"

    @classmethod
    def parse(cls, value: str) -> "TargetMode":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid target mode {value!r}") from None


TARGET_MODES = [mode.value for mode in TargetMode]


@dataclass
class Target:
    """The target mode and temperatures for a single probe."""
    mode: TargetMode = TargetMode.NONE
    temperature_min: float = 0.0
    temperature_max: float = 0.0


@dataclass
class TargetState:
    """The target temperatures set for each probe."""
    targets: Dict[int, Target] = field(default_factory=dict)

    def target(self, probe_index: int) -> Target:
        return self.targets.setdefault(probe_index, Target())


def probe_id_to_index(node_id: str) -> Optional[int]:
    """Get the probe index from a node ID like "probe2"."""
    if not node_id.startswith(NODE_ID_PROBE_PREFIX):
        return None
    suffix = node_id[len(NODE_ID_PROBE_PREFIX):]
    if not suffix.isdigit():
        return None
    index = int(suffix)
    return index if index <= 0xFF else None


def parse_display_unit(value: str) -> Optional[TemperatureUnit]:
    return DISPLAY_UNITS.get(value)


def parse_bool(value: str) -> Optional[bool]:
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def parse_temperature(value: str) -> float:
    """Parse a target temperature in °C.

    Raises:
        ValueError: If the value isn't a number the thermometer can store.
    """
    temperature = float(value)
    if not math.isfinite(temperature) or not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
        raise ValueError(
            f"Temperature {value!r} outside {MIN_TEMPERATURE}..{MAX_TEMPERATURE}"
        )
    return temperature


async def set_target(device: BBQDevice, probe_index: int, target: Target):
    """Push a probe's target to the thermometer."""
    if target.mode is TargetMode.NONE:
        await device.remove_target(probe_index)
    elif target.mode is TargetMode.SINGLE:
        await device.set_target_temp(probe_index, target.temperature_max)
    else:
        await device.set_target_range(probe_index, target.temperature_min, target.temperature_max)


class Bbq:
    """A connected thermometer and the Homie device describing it."""

    def __init__(
        self,
        mac_address: str,
        config: Config,
        name: str,
        device: BBQDevice,
        target_state: Optional[TargetState] = None,
    ):
        self.mac_address = mac_address.upper()
        self.config = config
        self.device_config: DeviceConfig = config.device_config(self.mac_address)
        self.name = name
        self.device = device
        self.target_state = target_state or TargetState()
        self.homie: Optional[HomieDevice] = None

    @classmethod
    async def connect(
        cls,
        discovered: DiscoveredDevice,
        config: Config,
        target_state: Optional[TargetState] = None,
    ) -> "Bbq":
        """Connect to a thermometer and authenticate with it.

        Raises:
            BBQError: If connecting or authenticating fails.
        """
        device = await BBQDevice.connect(discovered, timeout=config.ble.connection_timeout)
        try:
            await device.authenticate()
        except BBQError:
            await device.disconnect()
            raise

        device_config = config.device_config(discovered.address)
        # Use the configured name if there is one, otherwise the Bluetooth device name.
        name = device_config.name or discovered.name or discovered.address
        return cls(discovered.address, config, name, device, target_state)

    @property
    def device_id_suffix(self) -> str:
        return self.mac_address.replace(":", "")

    @property
    def device_base(self) -> str:
        homie = self.config.homie
        return f"{homie.prefix}/{homie.device_id_prefix}-{self.device_id_suffix}"

    def create_homie_device(self) -> HomieDevice:
        homie = HomieDevice(
            self.device_base,
            self.name,
            self.config.mqtt,
            get_client_id(self.config.mqtt, self.device_id_suffix),
            update_callback=self.handle_update,
        )
        homie.set_firmware(FIRMWARE_NAME, __version__)
        return homie

    async def run(self, homie: Optional[HomieDevice] = None):
        """Publish the thermometer over Homie and keep its values up to date.

        Returns when the thermometer disconnects.

        Raises:
            BBQError: If a command to the thermometer fails.
            HomieError: If the MQTT session fails.
        """
        self.homie = homie or self.create_homie_device()
        try:
            await self.homie.start()
            self.homie.ready()
            await self._setup()

            events = asyncio.ensure_future(self._handle_events())
            failed = asyncio.ensure_future(self.homie.wait_failed())
            try:
                done, _ = await asyncio.wait([events, failed], return_when=asyncio.FIRST_COMPLETED)
            finally:
                events.cancel()
                failed.cancel()
            for task in done:
                task.result()
        finally:
            await self.homie.disconnect()
            await self.device.disconnect()

    async def _setup(self):
        homie = self.homie
        homie.add_node(Node(
            NODE_ID_BATTERY,
            "Battery",
            "Battery level",
            [
                Property.integer(PROPERTY_ID_VOLTAGE, "Voltage", False, True, None),
                Property.integer(PROPERTY_ID_PERCENTAGE, "Percentage", False, True, "%"),
            ],
        ))
        homie.add_node(Node(
            NODE_ID_SETTINGS,
            "Settings",
            "Settings",
            [
                Property.enumeration(
                    PROPERTY_ID_DISPLAY_UNIT, "Unit", True, True, None, list(DISPLAY_UNITS)
                ),
                Property.boolean(PROPERTY_ID_ALARM, "Alarm", True, False),
            ],
        ))

        # Default to Celsius.
        await self.device.set_temperature_unit(TemperatureUnit.CELSIUS)
        homie.publish_value(NODE_ID_SETTINGS, PROPERTY_ID_DISPLAY_UNIT, DISPLAY_UNIT_CELSIUS)

        await self.device.start_notifications()
        await self.device.enable_real_time_data(True)
        # Request an initial battery level reading.
        await self.device.request_battery_level()

    async def _handle_events(self):
        async for event in self.device.events():
            if isinstance(event, RealTimeData):
                await self.handle_realtime_data(event)
            else:
                self.handle_setting_result(event)
        logger.warning(f"Lost connection to {self.name}")

    async def handle_update(self, node_id: str, property_id: str, value: str) -> Optional[str]:
        """Apply a value set over MQTT to the thermometer.

        Returns:
            The value to publish back, or None to reject the update.
        """
        logger.debug(f"{node_id}/{property_id} = {value}")
        if node_id == NODE_ID_SETTINGS and property_id == PROPERTY_ID_DISPLAY_UNIT:
            unit = parse_display_unit(value)
            if unit is None:
                return None
            try:
                await self.device.set_temperature_unit(unit)
            except BBQError as e:
                logger.error(f"Failed to set temperature unit: {e}")
                return None
            return value
        elif node_id == NODE_ID_SETTINGS and property_id == PROPERTY_ID_ALARM:
            # Only silencing is possible.
            if parse_bool(value) is not False:
                return None
            try:
                await self.device.silence_alarm()
            except BBQError as e:
                logger.error(f"Failed to silence alarm: {e}")
                return None
            return value

        probe_index = probe_id_to_index(node_id)
        if probe_index is None:
            return None

        stored = self.target_state.target(probe_index)
        target = Target(stored.mode, stored.temperature_min, stored.temperature_max)
        try:
            if property_id == PROPERTY_ID_TARGET_TEMPERATURE_MIN:
                target.temperature_min = parse_temperature(value)
            elif property_id == PROPERTY_ID_TARGET_TEMPERATURE_MAX:
                target.temperature_max = parse_temperature(value)
            elif property_id == PROPERTY_ID_TARGET_MODE:
                target.mode = TargetMode.parse(value)
            else:
                return None
        except ValueError as e:
            logger.warning(f"Invalid value for {node_id}/{property_id}: {e}")
            return None

        try:
            await set_target(self.device, probe_index, target)
        except BBQError as e:
            logger.error(f"Failed to set target temperature: {e}")
            return None
        # Only targets the thermometer accepted are restored on reconnect.
        self.target_state.targets[probe_index] = target
        return value

    def handle_setting_result(self, result):
        logger.debug(f"Setting result: {result}")
        if isinstance(result, BatteryLevel):
            self.homie.publish_value(NODE_ID_BATTERY, PROPERTY_ID_VOLTAGE, result.current_voltage)
            self.homie.publish_value(NODE_ID_BATTERY, PROPERTY_ID_PERCENTAGE, result.percentage)
        elif isinstance(result, SilencePressed):
            self.homie.publish_nonretained_value(NODE_ID_SETTINGS, PROPERTY_ID_ALARM, False)

    def node_for_probe(self, node_id: str, probe_index: int) -> Node:
        probe_names = self.device_config.probe_names
        if probe_index < len(probe_names):
            probe_name = probe_names[probe_index]
        else:
            probe_name = f"Probe {probe_index + 1}"
        return Node(
            node_id,
            probe_name,
            "Temperature probe",
            [
                Property.float(PROPERTY_ID_TEMPERATURE, "Temperature", False, True, "ºC"),
                Property.float(
                    PROPERTY_ID_TARGET_TEMPERATURE_MIN, "Minimum temperature", True, True, "ºC"
                ),
                Property.float(
                    PROPERTY_ID_TARGET_TEMPERATURE_MAX, "Target/maximum temperature", True, True, "ºC"
                ),
                Property.enumeration(
                    PROPERTY_ID_TARGET_MODE, "Target mode", True, True, None, TARGET_MODES
                ),
            ],
        )

    async def handle_realtime_data(self, data: RealTimeData):
        logger.debug(f"Realtime data: {data}")
        for probe_index, temperature in enumerate(data.probe_temperatures):
            node_id = f"{NODE_ID_PROBE_PREFIX}{probe_index}"
            exists = self.homie.has_node(node_id)
            if temperature is not None:
                if not exists:
                    await self.add_probe(probe_index, node_id)
                self.homie.publish_value(node_id, PROPERTY_ID_TEMPERATURE, temperature)
            elif exists:
                self.homie.remove_node(node_id)

    async def add_probe(self, probe_index: int, node_id: str):
        self.homie.add_node(self.node_for_probe(node_id, probe_index))

        # Restore the target temperature to its previous value, or none.
        stored = self.target_state.target(probe_index)
        target = Target(stored.mode, stored.temperature_min, stored.temperature_max)
        await set_target(self.device, probe_index, target)
        self.homie.publish_value(node_id, PROPERTY_ID_TARGET_MODE, target.mode)
        self.homie.publish_value(node_id, PROPERTY_ID_TARGET_TEMPERATURE_MIN, target.temperature_min)
        self.homie.publish_value(node_id, PROPERTY_ID_TARGET_TEMPERATURE_MAX, target.temperature_max)
