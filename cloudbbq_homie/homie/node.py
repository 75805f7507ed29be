"""Homie nodes and properties."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence


class Datatype(Enum):
    """Homie 4.0 property datatypes."""
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    STRING = "string"
    ENUM = "enum"


@dataclass
class Property:
    """A property of a Homie node."""
    id: str
    name: str
    datatype: Datatype
    settable: bool = False
    retained: bool = True
    unit: Optional[str] = None
    format: Optional[str] = None

    @classmethod
    def integer(cls, id: str, name: str, settable: bool, retained: bool,
                unit: Optional[str] = None, format: Optional[str] = None) -> "Property":
        return cls(id, name, Datatype.INTEGER, settable, retained, unit, format)

    @classmethod
    def float(cls, id: str, name: str, settable: bool, retained: bool,
              unit: Optional[str] = None, format: Optional[str] = None) -> "Property":
        return cls(id, name, Datatype.FLOAT, settable, retained, unit, format)

    @classmethod
    def boolean(cls, id: str, name: str, settable: bool, retained: bool,
                unit: Optional[str] = None) -> "Property":
        return cls(id, name, Datatype.BOOLEAN, settable, retained, unit)

    @classmethod
    def string(cls, id: str, name: str, settable: bool, retained: bool,
               unit: Optional[str] = None) -> "Property":
        return cls(id, name, Datatype.STRING, settable, retained, unit)

    @classmethod
    def enumeration(cls, id: str, name: str, settable: bool, retained: bool,
                    unit: Optional[str], values: Sequence[str]) -> "Property":
        return cls(id, name, Datatype.ENUM, settable, retained, unit, ",".join(values))

    def attributes(self) -> List[tuple]:
        """The $-attributes to publish for this property, as (name, value) pairs."""
        attrs = [
            ("$name", self.name),
            ("$datatype", self.datatype.value),
            ("$settable", format_value(self.settable)),
            ("$retained", format_value(self.retained)),
        ]
        if self.unit is not None:
            attrs.append(("$unit", self.unit))
        if self.format is not None:
            attrs.append(("$format", self.format))
        return attrs


@dataclass
class Node:
    """A Homie node, grouping related properties."""
    id: str
    name: str
    type: str
    properties: List[Property] = field(default_factory=list)

    def get_property(self, property_id: str) -> Optional[Property]:
        for prop in self.properties:
            if prop.id == property_id:
                return prop
        return None

    def attributes(self) -> List[tuple]:
        return [
            ("$name", self.name),
            ("$type", self.type),
            ("$properties", ",".join(p.id for p in self.properties)),
        ]


def format_value(value: Any) -> str:
    """Format a value as a Homie payload."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)
