"""
Contracts for the collaborators the ConnectionController drives.

The controller never touches sockets, MQTT packets or signing keys itself.
It talks to three collaborators:
- a CredentialProvider that mints time-bounded tokens,
- a TransportSession that speaks MQTT to the broker,
- a SessionIdentity that names the device and its topics.

Concrete implementations live in `iot_core_mqtt.client`.
"""
from typing import Protocol, runtime_checkable

from iot_core_mqtt.session.models import BrokerReturnCode, Payload, Token, TransportError


class CredentialError(Exception):
    """Raised when a token cannot be minted (clock unset, signer unavailable, ...)."""


@runtime_checkable
class CredentialProvider(Protocol):
    def mint_token(self) -> Token: ...


@runtime_checkable
class TransportSession(Protocol):
    """An MQTT-speaking connection to the broker."""

    def begin(self, host: str, port: int) -> None: ...
    def connect(self, client_id: str, username: str, password: str, clean_session: bool) -> bool: ...
    def connected(self) -> bool: ...
    def disconnect(self) -> None: ...
    def subscribe(self, topic: str, qos: int) -> bool: ...
    def publish(self, topic: str, payload: Payload, retain: bool = False, qos: int = 0) -> bool: ...
    def last_transport_error(self) -> TransportError: ...
    def last_broker_return_code(self) -> BrokerReturnCode: ...
    def pump(self) -> None: ...


@runtime_checkable
class SessionIdentity(Protocol):
    @property
    def client_id(self) -> str: ...
    @property
    def device_id(self) -> str: ...
    @property
    def config_topic(self) -> str: ...
    @property
    def commands_topic(self) -> str: ...
    @property
    def events_topic(self) -> str: ...
    @property
    def state_topic(self) -> str: ...
