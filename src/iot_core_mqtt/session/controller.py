"""
Connection Lifecycle Controller.

This module contains the `ConnectionController`, the state machine that keeps
a device session alive against a token-authenticated cloud broker:
- Deciding on every `tick()` whether to refresh the token, reconnect, or just
  pump the transport.
- Minting tokens through the CredentialProvider and connecting through the
  TransportSession.
- Applying back-off after failures and resetting it after a success.
- Subscribing to the config and commands topics once connected.
- Pass-through publishing for telemetry producers.

All mutable state lives in a single frozen `SessionState` record which each
method replaces as a whole. Public methods are serialised by a lock, so the
driver may tick from a worker thread while other tasks publish.
"""
import logging
import random
import threading
import time
from dataclasses import replace
from typing import Callable, Optional

from iot_core_mqtt.session.backoff import increase_backoff, record_attempt, reset_backoff, retry_due
from iot_core_mqtt.session.diagnostics import DiagnosticsReporter, classify
from iot_core_mqtt.session.interfaces import (CredentialError, CredentialProvider, SessionIdentity,
                                              TransportSession)
from iot_core_mqtt.session.models import (BackoffState, BrokerEndpoint, Payload, QoS, SessionSettings,
                                          SessionState, SessionStatus, TransportError)

logger = logging.getLogger(__name__)


class ConnectionController:
    """
    Owns connection state, token freshness and retry timing for one device session.
    """
    transport: TransportSession
    credentials: CredentialProvider
    identity: SessionIdentity
    reporter: DiagnosticsReporter
    _state: SessionState
    _settings: SessionSettings

    def __init__(self,
                 transport: TransportSession,
                 credentials: CredentialProvider,
                 identity: SessionIdentity,
                 settings: Optional[SessionSettings] = None,
                 backoff: Optional[BackoffState] = None,
                 reporter: Optional[DiagnosticsReporter] = None,
                 clock: Callable[[], float] = time.time,
                 rng: Optional[random.Random] = None):
        self.transport = transport
        self.credentials = credentials
        self.identity = identity
        self.reporter = reporter or DiagnosticsReporter()
        self._clock = clock
        self._rng = rng
        self._settings = settings or SessionSettings()
        self._state = SessionState(backoff=backoff or BackoffState())
        self._lock = threading.RLock()

    # --- Inspection & configuration ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    @property
    def endpoint(self) -> BrokerEndpoint:
        return BrokerEndpoint.from_settings(self._settings)

    @property
    def log_connect(self) -> bool:
        return self._settings.log_connect

    @log_connect.setter
    def log_connect(self, enabled: bool):
        self._settings = replace(self._settings, log_connect=enabled)

    @property
    def use_lts(self) -> bool:
        return self._settings.use_lts

    @use_lts.setter
    def use_lts(self, enabled: bool):
        self._settings = replace(self._settings, use_lts=enabled)

    @property
    def use_443_port(self) -> bool:
        return self._settings.use_443_port

    @use_443_port.setter
    def use_443_port(self, enabled: bool):
        self._settings = replace(self._settings, use_443_port=enabled)

    # --- Lifecycle ---

    def tick(self) -> None:
        """
        One step of the lifecycle, called at a regular cadence by the driver.

        Reconnects before the token expires (ignoring back-off), reconnects a
        dropped connection once the back-off delay has passed, and otherwise
        lets the transport process inbound traffic and keepalives.
        At most one connection attempt is made per call.
        """
        with self._lock:
            now = self._clock()
            state = self._state
            transport_connected = self.transport.connected()

            if state.status is SessionStatus.CONNECTED and not transport_connected:
                logger.warning("MQTT connection lost.")
                state = self._state = replace(state, status=SessionStatus.DISCONNECTED)

            if state.token is not None and state.token.expired(now):
                logger.info("Reconnecting before token expiration.")
                if transport_connected:
                    self.transport.disconnect()
                # Clearing the token forces regeneration in connect()
                self._state = replace(state, status=SessionStatus.DISCONNECTED, token=None)
                self.connect()
                return

            if not transport_connected and retry_due(state.backoff, now):
                logger.info("Reconnecting with back-off.")
                self.connect()
                return

            self.transport.pump()

    def connect(self) -> bool:
        """
        Makes exactly one connection attempt.

        Mints a token first if none is held or the held one has expired. On
        success the back-off is reset, the config (QoS 1) and commands (QoS 0)
        topics are subscribed and the connect notification is published. On failure the error is classified
        and reported, the token is dropped if the broker rejected it, and the
        back-off delay grows. Returns True if the session is connected.
        """
        with self._lock:
            now = self._clock()
            state = self._state
            endpoint = self.endpoint
            logger.info(f"Connecting MQTT to {endpoint}...")

            token = state.token
            if token is None or token.expired(now):
                try:
                    token = self.credentials.mint_token()
                except CredentialError as e:
                    logger.error(f"Could not mint a token, retrying later: {e}")
                    self._state = replace(
                        state,
                        status=SessionStatus.DISCONNECTED,
                        backoff=increase_backoff(record_attempt(state.backoff, now), self._rng),
                    )
                    return False
                logger.debug(f"Minted a new token valid until {token.expires_at}")

            state = self._state = replace(
                state,
                status=SessionStatus.CONNECTING,
                token=token,
                backoff=record_attempt(state.backoff, now),
            )

            self.transport.begin(endpoint.host, endpoint.port)
            result = self.transport.connect(
                self.identity.client_id,
                self._settings.username,
                token.value,
                self._settings.clean_session,
            )
            error = self.transport.last_transport_error()
            connected = result and self.transport.connected() and error is TransportError.SUCCESS

            if not connected:
                diagnosis = classify(error, self.transport.last_broker_return_code())
                self.reporter.report(diagnosis, endpoint, self.identity.client_id)
                self._state = replace(
                    state,
                    status=SessionStatus.DISCONNECTED,
                    token=None if diagnosis.invalidate_token else token,
                    backoff=increase_backoff(state.backoff, self._rng),
                )
                logger.info("Not connected, will retry after back-off.")
                return False

            self._state = replace(state, status=SessionStatus.CONNECTED, backoff=reset_backoff(state.backoff))
            logger.info(f"Connected to {endpoint} as {self.identity.client_id}")

            if not self.transport.subscribe(self.identity.config_topic, QoS.AT_LEAST_ONCE):
                logger.warning(f"Subscribing to {self.identity.config_topic} failed")
            if not self.transport.subscribe(self.identity.commands_topic, QoS.AT_MOST_ONCE):
                logger.warning(f"Subscribing to {self.identity.commands_topic} failed")

            self._on_connect()
            return True

    def stop(self) -> None:
        """Disconnects the transport. Token and back-off are kept."""
        with self._lock:
            if self.transport.connected():
                logger.info("Disconnecting MQTT session...")
                self.transport.disconnect()
            self._state = replace(self._state, status=SessionStatus.DISCONNECTED)

    def _on_connect(self) -> None:
        if not self._settings.log_connect:
            return
        try:
            if not self.publish_state("connected"):
                logger.warning("Could not publish connected state")
            if not self.publish_telemetry(f"{self.identity.device_id}-connected"):
                logger.warning("Could not publish connected event")
        except Exception as e:
            logger.error(f"Error publishing connect notification: {e}")

    # --- Publishing ---

    def publish_telemetry(self,
                          payload: Payload,
                          subtopic: Optional[str] = None,
                          qos: Optional[int] = None,
                          length: Optional[int] = None) -> bool:
        """
        Publishes to the events topic, optionally under a subtopic
        (e.g. "/alerts"). `length` sends only the first bytes of a bytes payload.
        Returns the transport's result; never retries.
        """
        topic = self.identity.events_topic + (subtopic or "")
        return self._publish(topic, payload, qos=qos, length=length)

    def publish_state(self, payload: Payload, length: Optional[int] = None) -> bool:
        """Publishes to the state topic. Returns the transport's result."""
        return self._publish(self.identity.state_topic, payload, length=length)

    def _publish(self, topic: str, payload: Payload, qos: Optional[int] = None, length: Optional[int] = None) -> bool:
        with self._lock:
            if not self.transport.connected():
                logger.debug(f"Not connected, dropping publish to '{topic}'")
                return False
            if length is not None:
                payload = payload[:length]
            if qos is None:
                return self.transport.publish(topic, payload)
            return self.transport.publish(topic, payload, False, int(qos))
