"""Bridge from Bluetooth barbecue thermometers to MQTT, following the Homie convention."""

__version__ = "0.1.5"


def main(argv=None):
    """Entry point for the cloudbbq-homie service."""
    import sys

    from .bridge_service import run_bridge

    args = sys.argv[1:] if argv is None else argv
    config_path = args[0] if args else None
    run_bridge(config_path)


__all__ = ["main", "__version__"]
