"""Tests for the bridge service orchestration."""

import pytest

from cloudbbq_homie import bridge_service
from cloudbbq_homie.bbq import DiscoveredDevice
from cloudbbq_homie.bbq_node import Bbq
from cloudbbq_homie.bridge_service import CloudBBQBridge
from cloudbbq_homie.exceptions import BBQError, NoDevicesFoundError


@pytest.mark.asyncio
async def test_no_devices_found(config, monkeypatch):
    async def find_nothing(scan_duration):
        return []

    monkeypatch.setattr(bridge_service, "find_devices", find_nothing)
    bridge = CloudBBQBridge(config)

    with pytest.raises(NoDevicesFoundError):
        await bridge.run()


@pytest.mark.asyncio
async def test_device_reconnects_after_failure(config, monkeypatch):
    config.ble.reconnect_delay = 0
    bridge = CloudBBQBridge(config)
    attempts = []

    async def failing_connect(discovered, config, target_state=None):
        attempts.append(target_state)
        if len(attempts) == 2:
            bridge.stop()
        raise BBQError("Connection timed out")

    monkeypatch.setattr(Bbq, "connect", failing_connect)
    bridge._running = True

    await bridge._run_device(DiscoveredDevice("iBBQ", "AA:BB:CC:DD:EE:FF", -60))

    assert len(attempts) == 2
    # Targets survive reconnection.
    assert attempts[0] is attempts[1]


@pytest.mark.asyncio
async def test_device_survives_unexpected_errors(config, monkeypatch):
    config.ble.reconnect_delay = 0
    bridge = CloudBBQBridge(config)
    attempts = []

    async def broken_connect(discovered, config, target_state=None):
        attempts.append(discovered.address)
        if len(attempts) == 2:
            bridge.stop()
        raise OverflowError("cannot convert float infinity to integer")

    monkeypatch.setattr(Bbq, "connect", broken_connect)
    bridge._running = True

    await bridge._run_device(DiscoveredDevice("iBBQ", "AA:BB:CC:DD:EE:FF", -60))

    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_periodic_scan_starts_only_new_devices(config, monkeypatch):
    config.ble.scan_interval = 0
    bridge = CloudBBQBridge(config)
    known = DiscoveredDevice("iBBQ", "AA:BB:CC:DD:EE:FF", -60)
    new = DiscoveredDevice("iBBQ", "11:22:33:44:55:66", -70)
    bridge._devices[known.address] = known
    started = []

    async def scan(scan_duration):
        bridge.stop()
        return [known, new]

    monkeypatch.setattr(bridge_service, "find_devices", scan)
    monkeypatch.setattr(bridge, "_start_device", started.append)
    bridge._running = True

    await bridge._periodic_scan()

    assert started == [new]
