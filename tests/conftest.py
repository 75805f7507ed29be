"""Pytest configuration and fixtures."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from cloudbbq_homie.config import Config, DeviceConfig


CONNACK_OK = SimpleNamespace(is_failure=False)
CONNACK_REFUSED = SimpleNamespace(is_failure=True)


class FakeBleakClient:
    """Records GATT writes and notification subscriptions."""

    def __init__(self, address="AA:BB:CC:DD:EE:FF"):
        self.address = address
        self.is_connected = True
        self.writes = []
        self.notify_callbacks = {}
        self.fail_writes = None

    async def write_gatt_char(self, uuid, data, response=False):
        if self.fail_writes is not None:
            raise self.fail_writes
        self.writes.append((uuid, bytes(data)))

    async def start_notify(self, uuid, callback):
        self.notify_callbacks[uuid] = callback

    async def disconnect(self):
        self.is_connected = False


def make_mqtt_client():
    client = MagicMock(spec=mqtt.Client)
    client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
    client.socket.return_value = None
    return client


def published(client):
    """Map each published topic to its latest (payload, retain)."""
    result = {}
    for call in client.publish.call_args_list:
        topic, payload = call.args[:2]
        result[topic] = (payload, call.kwargs.get("retain", False))
    return result


@pytest.fixture
def bleak_client():
    return FakeBleakClient()


@pytest.fixture
def mqtt_client():
    return make_mqtt_client()


@pytest.fixture
def config():
    config = Config()
    config.devices["AA:BB:CC:DD:EE:FF"] = DeviceConfig(
        name="Smoker", probe_names=["Brisket", "Ribs"]
    )
    return config
