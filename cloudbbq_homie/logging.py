"""Logging setup for the bridge service."""

import logging
from typing import Iterable, Optional

# paho callbacks run on the MQTT network thread, so the thread name shows
# which side of the bridge a message came from.
LOG_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"

# bleak logs every D-Bus property change and GATT notification at DEBUG,
# which drowns out the bridge's own output at one reading per second.
# paho logs a PINGREQ/PINGRESP pair every keepalive (5s by default) per
# thermometer.
NOISY_LOGGERS = ("bleak", "asyncio", "paho")


def setup_logging(level: str = "INFO", extra_quiet: Optional[Iterable[str]] = None) -> None:
    """Configure root logging for cloudbbq-homie.

    Args:
        level: Log level name from the config file's `log_level`.
        extra_quiet: More logger names to limit to WARNING.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(level=log_level, format=LOG_FORMAT)

    for name in (*NOISY_LOGGERS, *(extra_quiet or ())):
        logging.getLogger(name).setLevel(logging.WARNING)
