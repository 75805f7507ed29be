"""Exceptions raised by cloudbbq-homie."""


class CloudBBQError(Exception):
    """Base cloudbbq-homie error."""


class ConfigError(CloudBBQError):
    """Raised when the configuration file is missing or invalid."""


class BBQError(CloudBBQError):
    """Raised when talking to a thermometer fails."""


class NoDevicesFoundError(CloudBBQError):
    """Raised when a scan finds no thermometers."""

    def __init__(self) -> None:
        super().__init__("No devices found")


class HomieError(CloudBBQError):
    """Raised when the MQTT session behind a Homie device fails."""
