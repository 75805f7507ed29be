"""cloudbbq-homie service - main orchestrator."""

import asyncio
import logging
import signal
import sys
from typing import Dict, Optional

from .bbq import DiscoveredDevice, find_devices
from .bbq_node import Bbq, TargetState
from .config import Config, load_config
from .exceptions import BBQError, CloudBBQError, HomieError, NoDevicesFoundError
from .logging import setup_logging

logger = logging.getLogger(__name__)


class CloudBBQBridge:
    """Finds thermometers and keeps each one bridged to MQTT."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False
        self._devices: Dict[str, DiscoveredDevice] = {}
        self._target_states: Dict[str, TargetState] = {}
        self._connection_tasks: Dict[str, asyncio.Task] = {}
        self._stopped: Optional[asyncio.Event] = None

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
            self.stop()

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, signal_handler, signum)

    def stop(self):
        self._running = False
        if self._stopped is not None:
            self._stopped.set()

    async def _run_device(self, device: DiscoveredDevice):
        """Keep a thermometer connected, reconnecting after failures."""
        target_state = self._target_states.setdefault(device.address, TargetState())

        while self._running:
            try:
                bbq = await Bbq.connect(device, self.config, target_state)
                await bbq.run()
                logger.warning(f"Lost connection to {device.address}")
            except (BBQError, HomieError) as e:
                logger.warning(f"Error bridging {device.address}: {e}")
            except Exception:
                # CancelledError is a BaseException and still stops the task.
                logger.exception(f"Unexpected error bridging {device.address}")

            if self._running:
                logger.info(
                    f"Reconnecting to {device.address} in {self.config.ble.reconnect_delay}s..."
                )
                await asyncio.sleep(self.config.ble.reconnect_delay)

    def _start_device(self, device: DiscoveredDevice):
        self._devices[device.address] = device
        task = asyncio.create_task(self._run_device(device))
        self._connection_tasks[device.address] = task

    async def _periodic_scan(self):
        """Periodically scan for new thermometers."""
        while self._running:
            await asyncio.sleep(self.config.ble.scan_interval)
            if not self._running:
                break

            logger.info("Starting periodic device scan...")
            try:
                devices = await find_devices(self.config.ble.scan_duration)
            except BBQError as e:
                logger.warning(f"Periodic scan failed: {e}")
                continue

            for device in devices:
                if device.address not in self._devices:
                    logger.info(f"New device found: {device.name} ({device.address})")
                    self._start_device(device)

    async def run(self):
        """Run the bridge until stopped.

        Raises:
            NoDevicesFoundError: If the initial scan finds no thermometers.
        """
        self._running = True
        self._stopped = asyncio.Event()
        self._setup_signal_handlers()

        devices = await find_devices(self.config.ble.scan_duration)
        if not devices:
            raise NoDevicesFoundError()

        for device in devices:
            self._start_device(device)

        scan_task = None
        if self.config.ble.scan_interval > 0:
            scan_task = asyncio.create_task(self._periodic_scan())

        logger.info("cloudbbq-homie is running. Press Ctrl+C to stop.")
        await self._stopped.wait()

        logger.info("Shutting down cloudbbq-homie...")
        if scan_task is not None:
            scan_task.cancel()
        for task in self._connection_tasks.values():
            task.cancel()
        # Let the Bbq.run cleanup publish $state=disconnected and drop BLE links.
        await asyncio.gather(*self._connection_tasks.values(), return_exceptions=True)
        self._connection_tasks.clear()
        logger.info("cloudbbq-homie stopped.")


def run_bridge(config_path: Optional[str] = None):
    """Run the cloudbbq-homie service.

    Args:
        config_path: Optional path to config file.
    """
    try:
        config = load_config(config_path)
    except CloudBBQError as e:
        logging.basicConfig()
        logger.error(f"Error: {e}")
        sys.exit(1)

    setup_logging(config.log_level)
    logger.info("Starting cloudbbq-homie...")

    bridge = CloudBBQBridge(config)

    try:
        asyncio.run(bridge.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except (CloudBBQError, OSError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
