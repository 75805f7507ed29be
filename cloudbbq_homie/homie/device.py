"""Homie 4.0 device published over MQTT."""

import asyncio
import logging
import threading
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from ..config import MQTTConfig
from ..exceptions import HomieError
from .node import Node, format_value

logger = logging.getLogger(__name__)

HOMIE_VERSION = "4.0"
IMPLEMENTATION = "cloudbbq-homie"
LEGACY_FIRMWARE_EXTENSION = "org.homie.legacy-firmware:0.1:[4.x]"
QOS = 1

UpdateCallback = Callable[[str, str, str], Awaitable[Optional[str]]]


class State(Enum):
    """Homie device lifecycle states."""
    INIT = "init"
    READY = "ready"
    DISCONNECTED = "disconnected"
    SLEEPING = "sleeping"
    LOST = "lost"
    ALERT = "alert"


class HomieDevice:
    """Publishes a device, its nodes and their property values.

    Nodes may be added and removed at any time; after the device has
    started the change is announced by briefly going back to the init state.
    Incoming `/set` messages for settable properties are passed to the update
    callback on the event loop, and whatever it returns is published as the
    new value. Everything is republished whenever the MQTT client reconnects.
    """

    def __init__(
        self,
        device_base: str,
        name: str,
        mqtt_config: MQTTConfig,
        client_id: str,
        update_callback: Optional[UpdateCallback] = None,
        client: Optional[mqtt.Client] = None,
    ):
        """Initialize Homie device.

        Args:
            device_base: Base topic, e.g. "homie/cloudbbq-AABBCCDDEEFF".
            name: Human readable device name.
            mqtt_config: MQTT broker configuration.
            client_id: MQTT client ID.
            update_callback: Async callable taking (node_id, property_id, value).
            client: MQTT client to use instead of creating one.
        """
        self.device_base = device_base
        self.name = name
        self.mqtt_config = mqtt_config
        self.client_id = client_id
        self.update_callback = update_callback
        self.firmware_name: Optional[str] = None
        self.firmware_version: Optional[str] = None

        self._nodes: Dict[str, Node] = {}
        self._lock = threading.Lock()
        self._ready = False
        self._started = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected: Optional[asyncio.Event] = None
        self._failed: Optional[asyncio.Future] = None

        self.client = client if client is not None else self._create_client()
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

    def _create_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
        )
        client.enable_logger(logging.getLogger("paho.mqtt.client"))
        client.will_set(self._topic("$state"), State.LOST.value, qos=QOS, retain=True)
        if self.mqtt_config.username is not None and self.mqtt_config.password is not None:
            client.username_pw_set(self.mqtt_config.username, self.mqtt_config.password)
        if self.mqtt_config.use_tls:
            # Verifies the broker against the system CA store.
            client.tls_set()
        return client

    def set_firmware(self, name: str, version: str):
        self.firmware_name = name
        self.firmware_version = version

    def _topic(self, *parts: str) -> str:
        return "/".join((self.device_base,) + parts)

    def _publish(self, topic: str, payload: str, retain: bool = True):
        result = self.client.publish(topic, payload, qos=QOS, retain=retain)
        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            logger.debug(f"Published to {topic}: {payload}")
        elif result.rc == mqtt.MQTT_ERR_NO_CONN:
            logger.debug(f"Queued {topic} until reconnected")
        else:
            logger.warning(f"Failed to publish to {topic}: rc={result.rc}")

    def _publish_state(self, state: State):
        self._publish(self._topic("$state"), state.value)

    def _publish_nodes_list(self):
        self._publish(self._topic("$nodes"), ",".join(self._nodes))

    def _publish_node(self, node: Node):
        for attr, value in node.attributes():
            self._publish(self._topic(node.id, attr), value)
        for prop in node.properties:
            for attr, value in prop.attributes():
                self._publish(self._topic(node.id, prop.id, attr), value)

    def _unpublish_node(self, node: Node):
        for attr, _ in node.attributes():
            self._publish(self._topic(node.id, attr), "")
        for prop in node.properties:
            for attr, _ in prop.attributes():
                self._publish(self._topic(node.id, prop.id, attr), "")
            if prop.retained:
                self._publish(self._topic(node.id, prop.id), "")

    def _local_ip(self) -> str:
        try:
            sock = self.client.socket()
            if sock is not None:
                return str(sock.getsockname()[0])
        except (OSError, AttributeError, IndexError, TypeError):
            pass
        return ""

    def _publish_description(self):
        """Publish the device description, ending in the current state."""
        with self._lock:
            self._publish_state(State.INIT)
            self._publish(self._topic("$homie"), HOMIE_VERSION)
            self._publish(self._topic("$name"), self.name)
            self._publish(self._topic("$implementation"), IMPLEMENTATION)
            if self.firmware_name is not None:
                self._publish(self._topic("$extensions"), LEGACY_FIRMWARE_EXTENSION)
                self._publish(self._topic("$fw/name"), self.firmware_name)
                self._publish(self._topic("$fw/version"), self.firmware_version or "")
                self._publish(self._topic("$localip"), self._local_ip())
                self._publish(self._topic("$mac"), _host_mac_address())
            else:
                self._publish(self._topic("$extensions"), "")
            for node in self._nodes.values():
                self._publish_node(node)
            self._publish_nodes_list()
            if self._ready:
                self._publish_state(State.READY)

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties):
        """Callback when connected to MQTT broker."""
        if reason_code.is_failure:
            logger.error(f"MQTT broker refused connection for {self.device_base}: {reason_code}")
            self._signal_failure(HomieError(f"Connection refused: {reason_code}"))
            return

        logger.info(
            f"Connected to MQTT broker at {self.mqtt_config.host}:{self.mqtt_config.port} "
            f"as {self.client_id}"
        )
        self._publish_description()
        client.subscribe(self._topic("+", "+", "set"), qos=QOS)
        if self._loop is not None and self._connected is not None:
            self._loop.call_soon_threadsafe(self._connected.set)

    def _on_disconnect(self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties):
        """Callback when disconnected from MQTT broker."""
        if reason_code != 0:
            logger.warning(f"Unexpected MQTT disconnection for {self.device_base} (reason={reason_code})")
        else:
            logger.info(f"Disconnected {self.device_base} from MQTT broker")

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage):
        """Callback when a message is received."""
        try:
            value = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Ignoring non UTF-8 payload on {msg.topic}")
            return

        prefix = self.device_base + "/"
        if not msg.topic.startswith(prefix):
            return
        parts = msg.topic[len(prefix):].split("/")
        if len(parts) != 3 or parts[2] != "set":
            logger.debug(f"Ignoring message on {msg.topic}")
            return

        node_id, property_id, _ = parts
        if self._loop is None:
            return
        asyncio.run_coroutine_threadsafe(self.handle_set(node_id, property_id, value), self._loop)

    async def handle_set(self, node_id: str, property_id: str, value: str):
        """Handle a request to set a property's value."""
        node = self._nodes.get(node_id)
        prop = node.get_property(property_id) if node else None
        if prop is None or not prop.settable:
            logger.warning(f"Ignoring set for unknown or read-only property {node_id}/{property_id}")
            return
        if self.update_callback is None:
            return

        try:
            new_value = await self.update_callback(node_id, property_id, value)
        except Exception as e:
            logger.error(f"Error updating {node_id}/{property_id} to {value!r}: {e}")
            return

        if new_value is not None:
            self._publish(self._topic(node_id, property_id), new_value, retain=prop.retained)

    def _signal_failure(self, error: Exception):
        def fail():
            if self._failed is not None and not self._failed.done():
                self._failed.set_exception(error)

        if self._loop is not None:
            self._loop.call_soon_threadsafe(fail)

    async def start(self, timeout: float = 10.0):
        """Connect to the broker and publish the device.

        Args:
            timeout: Seconds to wait for the initial connection.

        Raises:
            HomieError: If the connection fails or times out.
        """
        self._loop = asyncio.get_running_loop()
        self._connected = asyncio.Event()
        self._failed = self._loop.create_future()
        self._started = True

        logger.info(
            f"Connecting {self.device_base} to MQTT broker at "
            f"{self.mqtt_config.host}:{self.mqtt_config.port}"
        )
        try:
            self.client.connect_async(
                self.mqtt_config.host, self.mqtt_config.port, keepalive=self.mqtt_config.keepalive
            )
            self.client.loop_start()
        except (OSError, ValueError) as e:
            raise HomieError(f"Failed to connect to MQTT broker: {e}") from e

        connected = asyncio.ensure_future(self._connected.wait())
        try:
            done, _ = await asyncio.wait(
                [connected, self._failed], timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            connected.cancel()

        if self._failed in done:
            await self._loop.run_in_executor(None, self.client.loop_stop)
            self._failed.result()
        if not done:
            await self._loop.run_in_executor(None, self.client.loop_stop)
            raise HomieError("Timeout waiting for MQTT connection")

    async def wait_failed(self):
        """Wait until the MQTT session fails, then raise HomieError."""
        if self._failed is None:
            raise HomieError("Homie device not started")
        await self._failed

    def ready(self):
        """Mark the device ready, after initial nodes have been added."""
        with self._lock:
            self._ready = True
            self._publish_state(State.READY)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    def add_node(self, node: Node):
        """Add a node, publishing it if the device has started.

        Raises:
            ValueError: If a node with the same ID already exists.
        """
        with self._lock:
            if node.id in self._nodes:
                raise ValueError(f"Node {node.id} already exists")
            self._nodes[node.id] = node
            if self._started:
                self._publish_state(State.INIT)
                self._publish_node(node)
                self._publish_nodes_list()
                if self._ready:
                    self._publish_state(State.READY)

    def remove_node(self, node_id: str):
        """Remove a node and clear its retained attributes."""
        with self._lock:
            node = self._nodes.pop(node_id, None)
            if node is None:
                logger.warning(f"Tried to remove unknown node {node_id}")
                return
            if self._started:
                self._publish_state(State.INIT)
                self._publish_nodes_list()
                self._unpublish_node(node)
                if self._ready:
                    self._publish_state(State.READY)

    def publish_value(self, node_id: str, property_id: str, value: Any):
        """Publish a retained property value."""
        self._publish(self._topic(node_id, property_id), format_value(value))

    def publish_nonretained_value(self, node_id: str, property_id: str, value: Any):
        self._publish(self._topic(node_id, property_id), format_value(value), retain=False)

    async def disconnect(self):
        """Announce the device as disconnected and close the connection."""
        if not self._started:
            return
        self._started = False
        self._publish_state(State.DISCONNECTED)
        self.client.disconnect()
        await asyncio.get_running_loop().run_in_executor(None, self.client.loop_stop)


def _host_mac_address() -> str:
    node = uuid.getnode()
    return ":".join(f"{(node >> shift) & 0xFF:02X}" for shift in range(40, -8, -8))
