"""BLE connection to an iBBQ thermometer."""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Union

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from ..exceptions import BBQError
from . import protocol
from .protocol import RealTimeData, SettingResult, TemperatureUnit

logger = logging.getLogger(__name__)

BBQEvent = Union[RealTimeData, SettingResult]

# Marks the end of the event stream.
_DISCONNECTED = object()


@dataclass
class DiscoveredDevice:
    """A thermometer seen during a scan."""
    name: Optional[str]
    address: str
    rssi: int
    ble_device: Optional[BLEDevice] = None


async def find_devices(scan_duration: float) -> List[DiscoveredDevice]:
    """Scan for thermometers advertising the iBBQ service.

    Args:
        scan_duration: How long to scan for, in seconds.

    Returns:
        List of discovered devices, strongest signal first.

    Raises:
        BBQError: If the Bluetooth adapter can't scan.
    """
    logger.info(f"Starting discovery for {scan_duration}s...")

    scanner = BleakScanner()
    try:
        await scanner.start()
        await asyncio.sleep(scan_duration)
        await scanner.stop()
    except (BleakError, OSError) as e:
        raise BBQError(f"Scanning failed: {e}") from e

    devices_and_ads = scanner.discovered_devices_and_advertisement_data

    discovered = []
    for address, (device, adv_data) in devices_and_ads.items():
        service_uuids = [uuid.lower() for uuid in (adv_data.service_uuids or [])]
        name = device.name or adv_data.local_name
        if protocol.SERVICE_UUID not in service_uuids and name != protocol.DEVICE_NAME:
            continue
        rssi = adv_data.rssi if adv_data else -100
        discovered.append(DiscoveredDevice(
            name=name,
            address=device.address,
            rssi=rssi,
            ble_device=device,
        ))
        logger.info(f"Found thermometer: {name} ({device.address}) RSSI: {rssi}")

    discovered.sort(key=lambda d: d.rssi, reverse=True)
    logger.info(f"Scan complete. Found {len(discovered)} thermometers.")
    return discovered


class BBQDevice:
    """A connected iBBQ thermometer."""

    def __init__(self, client: BleakClient, name: str = ""):
        self.client = client
        self.name = name or getattr(client, "address", "")
        self._events: "asyncio.Queue[object]" = asyncio.Queue()

    @classmethod
    async def connect(cls, device: DiscoveredDevice, timeout: float = 20.0) -> "BBQDevice":
        """Connect to a discovered thermometer.

        Raises:
            BBQError: If the connection fails.
        """
        bbq_device: Optional[BBQDevice] = None

        def on_disconnect(_client: BleakClient):
            logger.info(f"{device.address} disconnected")
            if bbq_device is not None:
                bbq_device.handle_disconnect()

        client = BleakClient(
            device.ble_device or device.address,
            disconnected_callback=on_disconnect,
            timeout=timeout,
        )
        bbq_device = cls(client, device.name or device.address)
        logger.info(f"Connecting to {bbq_device.name} ({device.address})...")
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise BBQError(f"Connecting to {device.address}: {e}") from e
        return bbq_device

    @property
    def is_connected(self) -> bool:
        return self.client.is_connected

    async def _write(self, uuid: str, data: bytes, what: str):
        logger.debug(f"{self.name}: {what} -> {data.hex()}")
        try:
            await self.client.write_gatt_char(uuid, data, response=True)
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise BBQError(f"Failed to {what}: {e}") from e

    async def _command(self, data: bytes, what: str):
        await self._write(protocol.SETTING_DATA_UUID, data, what)

    async def authenticate(self):
        """Send the pairing credentials. Must happen before any other command."""
        logger.info(f"Authenticating with {self.name}...")
        await self._write(protocol.ACCOUNT_AND_VERIFY_UUID, protocol.CREDENTIALS_MESSAGE, "authenticate")
        logger.info(f"Authenticated with {self.name}.")

    async def enable_real_time_data(self, enabled: bool = True):
        data = protocol.REAL_TIME_DATA_ENABLE if enabled else protocol.REAL_TIME_DATA_DISABLE
        await self._command(data, "enable real-time data")

    async def set_temperature_unit(self, unit: TemperatureUnit):
        await self._command(protocol.set_temperature_unit_command(unit), "set temperature unit")

    async def request_battery_level(self):
        await self._command(protocol.REQUEST_BATTERY_LEVEL, "request battery level")

    async def silence_alarm(self):
        await self._command(protocol.SILENCE_ALARM, "silence alarm")

    async def set_target_temp(self, probe: int, target: float):
        await self._command(protocol.set_target_temp_command(probe, target), "set target temperature")

    async def set_target_range(self, probe: int, minimum: float, maximum: float):
        await self._command(
            protocol.set_target_range_command(probe, minimum, maximum), "set target range"
        )

    async def remove_target(self, probe: int):
        await self._command(protocol.remove_target_command(probe), "remove target")

    def handle_disconnect(self):
        """End the event stream."""
        self._events.put_nowait(_DISCONNECTED)

    def _on_real_time_data(self, sender, data: bytearray):
        try:
            self._events.put_nowait(protocol.decode_real_time_data(bytes(data)))
        except BBQError as e:
            logger.warning(f"{self.name}: ignoring real-time data: {e}")

    def _on_setting_result(self, sender, data: bytearray):
        try:
            self._events.put_nowait(protocol.decode_setting_result(bytes(data)))
        except BBQError as e:
            logger.warning(f"{self.name}: ignoring settings result: {e}")

    async def start_notifications(self):
        """Subscribe to real-time data and settings results."""
        try:
            await self.client.start_notify(protocol.REAL_TIME_DATA_UUID, self._on_real_time_data)
            await self.client.start_notify(protocol.SETTINGS_RESULT_UUID, self._on_setting_result)
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise BBQError(f"Failed to subscribe to notifications: {e}") from e

    async def events(self) -> AsyncIterator[BBQEvent]:
        """Yield readings and settings results until the device disconnects."""
        while True:
            event = await self._events.get()
            if event is _DISCONNECTED:
                return
            yield event

    async def disconnect(self):
        try:
            await self.client.disconnect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"Error disconnecting from {self.name}: {e}")
