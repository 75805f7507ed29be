"""Homie convention device publishing over MQTT."""

from .device import HomieDevice, State
from .node import Datatype, Node, Property, format_value

__all__ = ["HomieDevice", "State", "Datatype", "Node", "Property", "format_value"]
