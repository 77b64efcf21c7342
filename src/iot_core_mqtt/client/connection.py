"""
MQTT Transport backed by paho-mqtt.

This module provides:
- `PahoTransport`, the TransportSession the ConnectionController drives.
- A blocking connect that waits for the CONNACK by driving paho's loop.
- Translation of socket exceptions and paho error codes into
  `TransportError`, and of CONNACK reason codes into `BrokerReturnCode`.
- Delivery of inbound messages onto a queue drained by the driver.

paho's background network thread is never started: all network work happens
inside `connect()` and `pump()`, on the caller's thread.
"""
import logging
import queue
import socket
import time
from typing import Optional

import paho.mqtt.client as mqtt

from iot_core_mqtt.session.models import BrokerReturnCode, InboundMessage, Payload, TransportError

logger = logging.getLogger(__name__)

PAHO_ERRORS = {
    mqtt.MQTT_ERR_NOMEM: TransportError.BUFFER_TOO_SHORT,
    mqtt.MQTT_ERR_PAYLOAD_SIZE: TransportError.BUFFER_TOO_SHORT,
    mqtt.MQTT_ERR_PROTOCOL: TransportError.MISSING_OR_WRONG_PACKET,
    mqtt.MQTT_ERR_NO_CONN: TransportError.NETWORK_FAILED_CONNECT,
    mqtt.MQTT_ERR_CONN_REFUSED: TransportError.CONNECTION_DENIED,
    mqtt.MQTT_ERR_CONN_LOST: TransportError.NETWORK_FAILED_READ,
    mqtt.MQTT_ERR_KEEPALIVE: TransportError.PONG_TIMEOUT,
}


def transport_error_from_rc(rc) -> TransportError:
    if rc == mqtt.MQTT_ERR_SUCCESS:
        return TransportError.SUCCESS
    return PAHO_ERRORS.get(rc, TransportError.NETWORK_FAILED_READ)


class PahoTransport:
    """
    A TransportSession speaking MQTT 3.1.1 over TLS through paho-mqtt.
    """
    inbound: queue.Queue
    host: Optional[str]
    port: Optional[int]
    _client: Optional[mqtt.Client]
    _connack: Optional[BrokerReturnCode]

    def __init__(self, inbound: queue.Queue, ca_certs: Optional[str] = None, use_tls: bool = True,
                 keepalive: int = 60, connect_timeout: float = 10.0, pump_timeout: float = 0.1):
        self.inbound = inbound
        self.ca_certs = ca_certs
        self.use_tls = use_tls
        self.keepalive = keepalive
        self.connect_timeout = connect_timeout
        self.pump_timeout = pump_timeout

        self.host = None
        self.port = None
        self._client = None
        self._connack = None
        self._last_error = TransportError.SUCCESS
        self._return_code = BrokerReturnCode.CONNECTION_ACCEPTED

    def begin(self, host: str, port: int) -> None:
        self.host = host
        self.port = port

    def connect(self, client_id: str, username: str, password: str, clean_session: bool) -> bool:
        """
        Opens the network connection and waits up to `connect_timeout`
        seconds for the broker's CONNACK.
        """
        if self.host is None:
            raise RuntimeError("begin() must be called before connect()")

        self._discard_client()
        self._connack = None
        self._last_error = TransportError.SUCCESS
        self._return_code = BrokerReturnCode.CONNECTION_ACCEPTED

        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2,
                             client_id=client_id,
                             clean_session=clean_session,
                             protocol=mqtt.MQTTv311)
        client.username_pw_set(username, password)
        if self.use_tls:
            client.tls_set(ca_certs=self.ca_certs)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        self._client = client

        try:
            client.connect(self.host, self.port, keepalive=self.keepalive)
        except (socket.timeout, TimeoutError) as e:
            logger.error(f"Timed out connecting to {self.host}:{self.port}: {e}")
            self._last_error = TransportError.NETWORK_TIMEOUT
            return False
        except OSError as e:
            logger.error(f"Network connection to {self.host}:{self.port} failed: {e}")
            self._last_error = TransportError.NETWORK_FAILED_CONNECT
            return False

        deadline = time.monotonic() + self.connect_timeout
        while self._connack is None and time.monotonic() < deadline:
            rc = client.loop(timeout=self.pump_timeout)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                self._last_error = transport_error_from_rc(rc)
                logger.error(f"Connection dropped while waiting for CONNACK: {self._last_error.value}")
                return False

        if self._connack is None:
            self._last_error = TransportError.NETWORK_TIMEOUT
            logger.error(f"No CONNACK from {self.host}:{self.port} within {self.connect_timeout}s")
            return False

        if self._connack is not BrokerReturnCode.CONNECTION_ACCEPTED:
            self._last_error = TransportError.CONNECTION_DENIED
            return False

        return True

    def connected(self) -> bool:
        return self._client is not None and self._client.is_connected()

    def disconnect(self) -> None:
        if self._client is not None:
            self._client.disconnect()
            logger.info("MQTT client disconnected.")

    def subscribe(self, topic: str, qos: int) -> bool:
        if self._client is None:
            return False
        rc, _mid = self._client.subscribe(topic, qos=int(qos))
        if rc != mqtt.MQTT_ERR_SUCCESS:
            self._last_error = TransportError.FAILED_SUBSCRIPTION
            return False
        logger.debug(f"Subscribed to '{topic}' with QoS {int(qos)}")
        return True

    def publish(self, topic: str, payload: Payload, retain: bool = False, qos: int = 0) -> bool:
        if not self.connected():
            return False
        info = self._client.publish(topic, payload=payload, qos=int(qos), retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._last_error = transport_error_from_rc(info.rc)
            logger.warning(f"Publish to '{topic}' failed: {self._last_error.value}")
            return False
        logger.debug(f"Published {len(payload)} bytes to '{topic}'")
        return True

    def pump(self) -> None:
        """Processes one iteration of inbound traffic and keepalive."""
        if self._client is None:
            return
        rc = self._client.loop(timeout=self.pump_timeout)
        if rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            self._last_error = transport_error_from_rc(rc)
            logger.warning(f"MQTT loop reported {self._last_error.value}")

    def last_transport_error(self) -> TransportError:
        return self._last_error

    def last_broker_return_code(self) -> BrokerReturnCode:
        return self._return_code

    def _discard_client(self):
        if self._client is not None:
            try:
                self._client.disconnect()
            except OSError as e:
                logger.debug(f"Ignoring error while discarding old client: {e}")
            self._client = None

    # --- paho callbacks (run inside connect()/pump(), on the caller's thread) ---

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        code = int(getattr(reason_code, "value", reason_code))
        self._connack = BrokerReturnCode.from_connack(code)
        self._return_code = self._connack
        logger.info(f"CONNACK received: {self._connack.value}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        logger.warning(f"MQTT client disconnected: {reason_code}")

    def _on_message(self, client, userdata, message):
        self.inbound.put_nowait(InboundMessage(topic=message.topic, payload=message.payload, qos=message.qos))
        logger.debug(f"Queued message from topic '{message.topic}'")
