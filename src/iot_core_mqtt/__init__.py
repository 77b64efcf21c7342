"""
iot_core_mqtt

This package keeps a resilient, token-authenticated MQTT session between
a device and a cloud IoT broker: it refreshes tokens before they expire,
reconnects with jittered exponential back-off, and explains why the
broker turned a connection down.
"""
__version__ = "0.1.0"
