"""
Data Models for Session State and MQTT Payloads.

Defines the immutable records the ConnectionController threads through
its methods, the error vocabularies reported by the transport, and the
JSON payloads the driver publishes.
"""
from dataclasses import dataclass, field, asdict
import json
from typing import Optional, Union
import time

from enum import Enum, IntEnum

MQTT_HOST = "mqtt.googleapis.com"
MQTT_HOST_LTS = "mqtt.2030.ltsapis.goog"
MQTT_PORT = 8883
HTTPS_PORT = 443

Payload = Union[str, bytes]


class SessionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class QoS(IntEnum):
    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1


class TransportError(str, Enum):
    """Connection-layer error last reported by the transport."""
    SUCCESS = "success"
    BUFFER_TOO_SHORT = "buffer_too_short"
    VARNUM_OVERFLOW = "varnum_overflow"
    NETWORK_FAILED_CONNECT = "network_failed_connect"
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_FAILED_READ = "network_failed_read"
    NETWORK_FAILED_WRITE = "network_failed_write"
    REMAINING_LENGTH_OVERFLOW = "remaining_length_overflow"
    REMAINING_LENGTH_MISMATCH = "remaining_length_mismatch"
    MISSING_OR_WRONG_PACKET = "missing_or_wrong_packet"
    CONNECTION_DENIED = "connection_denied"
    FAILED_SUBSCRIPTION = "failed_subscription"
    SUBACK_ARRAY_OVERFLOW = "suback_array_overflow"
    PONG_TIMEOUT = "pong_timeout"


class BrokerReturnCode(str, Enum):
    """CONNACK return code last received from the broker."""
    CONNECTION_ACCEPTED = "connection_accepted"
    UNACCEPTABLE_PROTOCOL = "unacceptable_protocol"
    IDENTIFIER_REJECTED = "identifier_rejected"
    SERVER_UNAVAILABLE = "server_unavailable"
    BAD_USERNAME_OR_PASSWORD = "bad_username_or_password"
    NOT_AUTHORIZED = "not_authorized"
    UNKNOWN_RETURN_CODE = "unknown_return_code"

    @classmethod
    def from_connack(cls, code: int) -> "BrokerReturnCode":
        """
        Maps a numeric CONNACK code to a return code.

        Accepts MQTT 3.1.1 codes (0-5) as well as the MQTT 5 reason codes
        paho reports for them when talking 3.1.1 (132-136).
        """
        return _CONNACK_CODES.get(code, cls.UNKNOWN_RETURN_CODE)


_CONNACK_CODES = {
    0: BrokerReturnCode.CONNECTION_ACCEPTED,
    1: BrokerReturnCode.UNACCEPTABLE_PROTOCOL,
    2: BrokerReturnCode.IDENTIFIER_REJECTED,
    3: BrokerReturnCode.SERVER_UNAVAILABLE,
    4: BrokerReturnCode.BAD_USERNAME_OR_PASSWORD,
    5: BrokerReturnCode.NOT_AUTHORIZED,
    132: BrokerReturnCode.UNACCEPTABLE_PROTOCOL,
    133: BrokerReturnCode.IDENTIFIER_REJECTED,
    134: BrokerReturnCode.BAD_USERNAME_OR_PASSWORD,
    135: BrokerReturnCode.NOT_AUTHORIZED,
    136: BrokerReturnCode.SERVER_UNAVAILABLE,
}

# --- Session State (threaded through the controller) ---

@dataclass(frozen=True)
class Token:
    """A signed, time-bounded credential used as the MQTT password."""
    value: str
    issued_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        # Keep the credential itself out of logs and tracebacks
        return f"Token(issued_at={self.issued_at}, expires_at={self.expires_at})"


@dataclass(frozen=True)
class BackoffState:
    """Retry timing. Delays are in seconds."""
    delay: float = 1.0
    minimum: float = 1.0
    factor: float = 2.5
    jitter: float = 0.5
    maximum: float = 60.0
    last_attempt_at: Optional[float] = None

    def __post_init__(self):
        if self.minimum <= 0:
            raise ValueError(f"minimum backoff must be positive, got {self.minimum}")
        if self.factor < 1:
            raise ValueError(f"backoff factor must be >= 1, got {self.factor}")
        if self.jitter < 0:
            raise ValueError(f"jitter bound must be >= 0, got {self.jitter}")
        if self.maximum < self.minimum:
            raise ValueError(f"maximum backoff {self.maximum} is below minimum {self.minimum}")

    @classmethod
    def from_config(cls, config: dict) -> "BackoffState":
        minimum = float(config.get('minimum', 1.0))
        return cls(
            delay=minimum,
            minimum=minimum,
            factor=float(config.get('factor', 2.5)),
            jitter=float(config.get('jitter', 0.5)),
            maximum=float(config.get('maximum', 60.0)),
        )


@dataclass(frozen=True)
class SessionState:
    """
    Everything the controller mutates, as one record.
    A token of None means it was cleared and must be minted again.
    """
    status: SessionStatus = SessionStatus.DISCONNECTED
    token: Optional[Token] = None
    backoff: BackoffState = field(default_factory=BackoffState)


@dataclass(frozen=True)
class SessionSettings:
    """Flags read during connect()."""
    log_connect: bool = True
    use_lts: bool = False
    use_443_port: bool = False
    clean_session: bool = True
    username: str = "unused" # ignored by the broker, the token is the password


@dataclass(frozen=True)
class BrokerEndpoint:
    host: str
    port: int

    @classmethod
    def from_settings(cls, settings: SessionSettings) -> "BrokerEndpoint":
        host = MQTT_HOST_LTS if settings.use_lts else MQTT_HOST
        port = HTTPS_PORT if settings.use_443_port else MQTT_PORT
        return cls(host=host, port=port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class InboundMessage:
    """A message received on a subscribed topic, queued for the driver."""
    topic: str
    payload: bytes
    qos: int = 0
    received_at: float = field(default_factory=time.time)

# --- Outbound JSON payloads ---

@dataclass(frozen=True, kw_only=True)
class BasePayload:
    """Base class for all JSON payloads sent over MQTT."""
    timestamp: float = field(default_factory=time.time)

    def to_json(self) -> str:
        """Converts the object to a JSON string."""
        return json.dumps(asdict(self))

    def to_bytes(self) -> bytes:
        """Converts the object to UTF-8 encoded bytes for MQTT."""
        return self.to_json().encode('utf-8')


@dataclass(frozen=True, kw_only=True)
class TelemetryPayload(BasePayload):
    """Heartbeat published to the events topic."""
    device: str
    status: SessionStatus = field(default=SessionStatus.CONNECTED)
    uptime: float = 0.0
