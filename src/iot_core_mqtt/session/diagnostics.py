"""
Connection Failure Diagnostics.

This module is responsible for:
- Classifying a transport error and a broker return code into an
  actionable category (`classify`, a pure function).
- Deciding whether a failure means the held token must be regenerated.
- Emitting the classification and the connection configuration to the
  log (`DiagnosticsReporter`), kept apart so classification can be
  tested without capturing log output.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from iot_core_mqtt.session.models import BrokerEndpoint, BrokerReturnCode, TransportError

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    OK = "ok"
    NETWORK = "network"
    PROTOCOL = "protocol"
    SUBSCRIPTION = "subscription"
    KEEPALIVE = "keepalive"
    DENIED = "denied"
    CREDENTIALS = "credentials"
    BROKER_UNAVAILABLE = "broker_unavailable"
    UNKNOWN = "unknown"


TRANSPORT_ERRORS = {
    TransportError.SUCCESS: (ErrorCategory.OK, "No transport error"),
    TransportError.BUFFER_TOO_SHORT: (ErrorCategory.PROTOCOL, "Packet buffer too short"),
    TransportError.VARNUM_OVERFLOW: (ErrorCategory.PROTOCOL, "Variable length number overflow"),
    TransportError.NETWORK_FAILED_CONNECT: (ErrorCategory.NETWORK, "Could not open a network connection to the broker"),
    TransportError.NETWORK_TIMEOUT: (ErrorCategory.NETWORK, "Network operation timed out"),
    TransportError.NETWORK_FAILED_READ: (ErrorCategory.NETWORK, "Reading from the network failed"),
    TransportError.NETWORK_FAILED_WRITE: (ErrorCategory.NETWORK, "Writing to the network failed"),
    TransportError.REMAINING_LENGTH_OVERFLOW: (ErrorCategory.PROTOCOL, "Remaining length overflow"),
    TransportError.REMAINING_LENGTH_MISMATCH: (ErrorCategory.PROTOCOL, "Remaining length mismatch"),
    TransportError.MISSING_OR_WRONG_PACKET: (ErrorCategory.PROTOCOL, "Missing or unexpected packet"),
    TransportError.CONNECTION_DENIED: (ErrorCategory.DENIED, "Connection denied by the broker"),
    TransportError.FAILED_SUBSCRIPTION: (ErrorCategory.SUBSCRIPTION, "Subscription was refused"),
    TransportError.SUBACK_ARRAY_OVERFLOW: (ErrorCategory.SUBSCRIPTION, "Too many entries in SUBACK"),
    TransportError.PONG_TIMEOUT: (ErrorCategory.KEEPALIVE, "Keepalive ping was not answered"),
}

RETURN_CODES = {
    BrokerReturnCode.CONNECTION_ACCEPTED: (ErrorCategory.OK, "Connection accepted"),
    BrokerReturnCode.UNACCEPTABLE_PROTOCOL: (ErrorCategory.DENIED, "Unacceptable protocol version"),
    BrokerReturnCode.IDENTIFIER_REJECTED: (ErrorCategory.DENIED, "Client identifier rejected, check the device registry path"),
    BrokerReturnCode.SERVER_UNAVAILABLE: (ErrorCategory.BROKER_UNAVAILABLE, "Broker unavailable"),
    BrokerReturnCode.BAD_USERNAME_OR_PASSWORD: (ErrorCategory.CREDENTIALS, "Token rejected as invalid or expired"),
    BrokerReturnCode.NOT_AUTHORIZED: (ErrorCategory.CREDENTIALS, "Device not authorized"),
    BrokerReturnCode.UNKNOWN_RETURN_CODE: (ErrorCategory.UNKNOWN, "Unknown return code"),
}

# Return codes after which the broker will keep refusing the current token
TOKEN_REJECTING_CODES = frozenset({
    BrokerReturnCode.BAD_USERNAME_OR_PASSWORD,
    BrokerReturnCode.NOT_AUTHORIZED,
})


@dataclass(frozen=True)
class Diagnosis:
    transport_error: TransportError
    return_code: BrokerReturnCode
    category: ErrorCategory
    description: str
    invalidate_token: bool = False

    @property
    def ok(self) -> bool:
        return self.category is ErrorCategory.OK


def classify(transport_error: TransportError, return_code: BrokerReturnCode) -> Diagnosis:
    """
    Classifies a failed (or successful) connection attempt.

    A non-accepted broker return code wins over the transport error, since
    the broker's answer is the more specific of the two. Unrecognised values
    fall back to the UNKNOWN category instead of raising.
    """
    transport_category, transport_text = TRANSPORT_ERRORS.get(
        transport_error, (ErrorCategory.UNKNOWN, f"Unrecognised transport error {transport_error!r}"))
    broker_category, broker_text = RETURN_CODES.get(
        return_code, (ErrorCategory.UNKNOWN, f"Unrecognised return code {return_code!r}"))

    if return_code is not BrokerReturnCode.CONNECTION_ACCEPTED:
        category, description = broker_category, broker_text
        if transport_category is not ErrorCategory.OK:
            description = f"{broker_text} ({transport_text})"
    else:
        category, description = transport_category, transport_text

    return Diagnosis(
        transport_error=transport_error,
        return_code=return_code,
        category=category,
        description=description,
        invalidate_token=return_code in TOKEN_REJECTING_CODES,
    )


class DiagnosticsReporter:
    """
    Writes connection failures to the log so an operator can tell a dead
    network from a rejected token or a misconfigured registry path.
    """
    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def report(self, diagnosis: Diagnosis, endpoint: BrokerEndpoint, client_id: str) -> None:
        if diagnosis.ok:
            self.log.debug(f"Connection attempt to {endpoint} reported no error")
            return

        self.log.warning(
            f"Connection attempt failed [{diagnosis.category.value}]: {diagnosis.description} "
            f"(transport={getattr(diagnosis.transport_error, 'value', diagnosis.transport_error)}, "
            f"return_code={getattr(diagnosis.return_code, 'value', diagnosis.return_code)})"
        )
        if diagnosis.invalidate_token:
            self.log.warning("Broker rejected the token, a new one will be minted on the next attempt")
        self.log_configuration(endpoint, client_id)

    def log_configuration(self, endpoint: BrokerEndpoint, client_id: str) -> None:
        self.log.info(f"Connect with {endpoint}")
        self.log.info(f"ClientId: {client_id}")
