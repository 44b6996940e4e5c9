"""Bridge a local control socket to an MQTT-connected light."""

__version__ = "0.3.0"
