"""Tests for the Homie device publisher."""

import asyncio
from types import SimpleNamespace

import pytest

from cloudbbq_homie.config import MQTTConfig
from cloudbbq_homie.exceptions import HomieError
from cloudbbq_homie.homie import HomieDevice, Node, Property, format_value

from conftest import CONNACK_OK, CONNACK_REFUSED, published

BASE = "homie/cloudbbq-AABBCCDDEEFF"


def make_device(mqtt_client, update_callback=None):
    device = HomieDevice(
        BASE, "Smoker", MQTTConfig(), "cloudbbq-AABBCCDDEEFF",
        update_callback=update_callback, client=mqtt_client,
    )
    device.set_firmware("cloudbbq-homie", "0.1.5")
    return device


def settings_node():
    return Node("settings", "Settings", "Settings", [
        Property.enumeration("unit", "Unit", True, True, None, ["ºC", "ºF"]),
        Property.boolean("alarm", "Alarm", True, False),
    ])


def connect_on_loop_start(device, mqtt_client, reason=CONNACK_OK):
    mqtt_client.loop_start.side_effect = lambda: device._on_connect(
        mqtt_client, None, None, reason, None
    )


class TestFormatValue:

    def test_booleans(self):
        assert format_value(True) == "true"
        assert format_value(False) == "false"

    def test_numbers(self):
        assert format_value(42) == "42"
        assert format_value(21.5) == "21.5"


class TestConnect:

    def test_publishes_description(self, mqtt_client):
        device = make_device(mqtt_client)
        device.add_node(settings_node())

        device._on_connect(mqtt_client, None, None, CONNACK_OK, None)

        topics = published(mqtt_client)
        assert topics[f"{BASE}/$homie"] == ("4.0", True)
        assert topics[f"{BASE}/$name"] == ("Smoker", True)
        assert topics[f"{BASE}/$state"] == ("init", True)
        assert topics[f"{BASE}/$fw/name"] == ("cloudbbq-homie", True)
        assert topics[f"{BASE}/$fw/version"] == ("0.1.5", True)
        assert topics[f"{BASE}/$nodes"] == ("settings", True)
        assert topics[f"{BASE}/settings/$properties"] == ("unit,alarm", True)
        assert topics[f"{BASE}/settings/unit/$datatype"] == ("enum", True)
        assert topics[f"{BASE}/settings/unit/$format"] == ("ºC,ºF", True)
        assert topics[f"{BASE}/settings/alarm/$settable"] == ("true", True)
        assert topics[f"{BASE}/settings/alarm/$retained"] == ("false", True)
        mqtt_client.subscribe.assert_called_once_with(f"{BASE}/+/+/set", qos=1)

    def test_reconnect_when_ready_ends_ready(self, mqtt_client):
        device = make_device(mqtt_client)
        device.ready()

        device._on_connect(mqtt_client, None, None, CONNACK_OK, None)

        assert published(mqtt_client)[f"{BASE}/$state"] == ("ready", True)

    @pytest.mark.asyncio
    async def test_start(self, mqtt_client):
        device = make_device(mqtt_client)
        connect_on_loop_start(device, mqtt_client)

        await device.start(timeout=1.0)

        mqtt_client.connect_async.assert_called_once_with("test.mosquitto.org", 1883, keepalive=5)

    @pytest.mark.asyncio
    async def test_start_refused(self, mqtt_client):
        device = make_device(mqtt_client)
        connect_on_loop_start(device, mqtt_client, CONNACK_REFUSED)

        with pytest.raises(HomieError, match="refused"):
            await device.start(timeout=1.0)

    @pytest.mark.asyncio
    async def test_start_timeout(self, mqtt_client):
        device = make_device(mqtt_client)

        with pytest.raises(HomieError, match="Timeout"):
            await device.start(timeout=0.01)
        mqtt_client.loop_stop.assert_called()

    @pytest.mark.asyncio
    async def test_disconnect(self, mqtt_client):
        device = make_device(mqtt_client)
        connect_on_loop_start(device, mqtt_client)
        await device.start(timeout=1.0)

        await device.disconnect()

        assert published(mqtt_client)[f"{BASE}/$state"] == ("disconnected", True)
        mqtt_client.disconnect.assert_called_once()


class TestNodes:

    @pytest.mark.asyncio
    async def test_add_and_remove_node_after_start(self, mqtt_client):
        device = make_device(mqtt_client)
        connect_on_loop_start(device, mqtt_client)
        await device.start(timeout=1.0)
        device.ready()
        mqtt_client.publish.reset_mock()

        device.add_node(Node("probe0", "Probe 1", "Temperature probe", [
            Property.float("temperature", "Temperature", False, True, "ºC"),
        ]))

        assert device.has_node("probe0")
        topics = published(mqtt_client)
        assert topics[f"{BASE}/$nodes"] == ("probe0", True)
        assert topics[f"{BASE}/probe0/temperature/$unit"] == ("ºC", True)
        assert topics[f"{BASE}/$state"] == ("ready", True)

        mqtt_client.publish.reset_mock()
        device.remove_node("probe0")

        assert not device.has_node("probe0")
        topics = published(mqtt_client)
        assert topics[f"{BASE}/$nodes"] == ("", True)
        assert topics[f"{BASE}/probe0/$name"] == ("", True)
        assert topics[f"{BASE}/probe0/temperature"] == ("", True)
        assert topics[f"{BASE}/$state"] == ("ready", True)

    def test_duplicate_node(self, mqtt_client):
        device = make_device(mqtt_client)
        device.add_node(settings_node())

        with pytest.raises(ValueError):
            device.add_node(settings_node())

    def test_publish_values(self, mqtt_client):
        device = make_device(mqtt_client)

        device.publish_value("battery", "percentage", 87)
        device.publish_nonretained_value("settings", "alarm", False)

        topics = published(mqtt_client)
        assert topics[f"{BASE}/battery/percentage"] == ("87", True)
        assert topics[f"{BASE}/settings/alarm"] == ("false", False)


class TestSet:

    @pytest.mark.asyncio
    async def test_accepted_value_is_published(self, mqtt_client):
        calls = []

        async def callback(node_id, property_id, value):
            calls.append((node_id, property_id, value))
            return value

        device = make_device(mqtt_client, callback)
        device.add_node(settings_node())

        await device.handle_set("settings", "unit", "ºF")

        assert calls == [("settings", "unit", "ºF")]
        assert published(mqtt_client)[f"{BASE}/settings/unit"] == ("ºF", True)

    @pytest.mark.asyncio
    async def test_rejected_value_is_not_published(self, mqtt_client):
        async def callback(node_id, property_id, value):
            return None

        device = make_device(mqtt_client, callback)
        device.add_node(settings_node())

        await device.handle_set("settings", "unit", "K")

        assert f"{BASE}/settings/unit" not in published(mqtt_client)

    @pytest.mark.asyncio
    async def test_unknown_property_ignored(self, mqtt_client):
        calls = []

        async def callback(node_id, property_id, value):
            calls.append(value)
            return value

        device = make_device(mqtt_client, callback)
        device.add_node(settings_node())

        await device.handle_set("settings", "colour", "red")
        await device.handle_set("battery", "voltage", "1")

        assert calls == []


class TestMessages:

    @pytest.mark.asyncio
    async def test_set_topic_routed_to_callback(self, mqtt_client):
        calls = []

        async def callback(node_id, property_id, value):
            calls.append((node_id, property_id, value))
            return value

        device = make_device(mqtt_client, callback)
        device.add_node(settings_node())
        device._loop = asyncio.get_running_loop()

        device._on_message(mqtt_client, None, SimpleNamespace(
            topic=f"{BASE}/settings/unit/set", payload="ºF".encode("utf-8")))
        await asyncio.sleep(0.05)

        assert calls == [("settings", "unit", "ºF")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("topic, payload", [
        (f"{BASE}/settings/unit/set", b"\xff\xfe"),
        ("homie/cloudbbq-112233445566/settings/unit/set", "ºF".encode()),
        (f"{BASE}/settings/unit", "ºF".encode()),
        (f"{BASE}/settings/set", "ºF".encode()),
    ])
    async def test_other_messages_ignored(self, mqtt_client, topic, payload):
        calls = []

        async def callback(node_id, property_id, value):
            calls.append(value)
            return value

        device = make_device(mqtt_client, callback)
        device.add_node(settings_node())
        device._loop = asyncio.get_running_loop()

        device._on_message(mqtt_client, None, SimpleNamespace(topic=topic, payload=payload))
        await asyncio.sleep(0.05)

        assert calls == []


class TestSession:

    def test_reconnect_republishes_nodes(self, mqtt_client):
        device = make_device(mqtt_client)
        device.add_node(settings_node())
        device._on_connect(mqtt_client, None, None, CONNACK_OK, None)
        device.ready()
        mqtt_client.publish.reset_mock()
        mqtt_client.subscribe.reset_mock()

        device._on_connect(mqtt_client, None, None, CONNACK_OK, None)

        topics = published(mqtt_client)
        assert topics[f"{BASE}/$nodes"] == ("settings", True)
        assert topics[f"{BASE}/settings/unit/$datatype"] == ("enum", True)
        assert topics[f"{BASE}/$state"] == ("ready", True)
        mqtt_client.subscribe.assert_called_once_with(f"{BASE}/+/+/set", qos=1)

    @pytest.mark.asyncio
    async def test_refused_reconnect_fails_session(self, mqtt_client):
        device = make_device(mqtt_client)
        connect_on_loop_start(device, mqtt_client)
        await device.start(timeout=1.0)

        device._on_connect(mqtt_client, None, None, CONNACK_REFUSED, None)

        with pytest.raises(HomieError, match="refused"):
            await asyncio.wait_for(device.wait_failed(), timeout=1.0)
