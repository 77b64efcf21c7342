"""
Pytest Configuration and Fixtures for the iot_core_mqtt project.

Provides scripted stand-ins for the controller's collaborators (transport,
credential provider, clock) so the lifecycle can be tested without a broker.
"""

import random
import sys
from unittest.mock import MagicMock
import pytest
import logging

from iot_core_mqtt.client.identity import DeviceIdentity
from iot_core_mqtt.session.controller import ConnectionController
from iot_core_mqtt.session.interfaces import CredentialError
from iot_core_mqtt.session.models import BackoffState, BrokerReturnCode, SessionSettings, Token, TransportError


class FakeClock:
    """A clock the test moves by hand."""
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeCredentials:
    """Mints numbered tokens valid for `lifetime` seconds on the fake clock."""
    def __init__(self, clock: FakeClock, lifetime: float = 3600.0):
        self.clock = clock
        self.lifetime = lifetime
        self.minted = []
        self.fail_next = False

    def mint_token(self) -> Token:
        if self.fail_next:
            self.fail_next = False
            raise CredentialError("signer unavailable")
        token = Token(value=f"jwt-{len(self.minted) + 1}",
                      issued_at=self.clock(),
                      expires_at=self.clock() + self.lifetime)
        self.minted.append(token)
        return token


class FakeTransport:
    """
    A scripted TransportSession. `next_outcome` decides how the next
    connect() ends; every call is recorded on the `calls` MagicMock.
    """
    def __init__(self):
        self.calls = MagicMock()
        self.is_connected = False
        self.next_outcome = (True, TransportError.SUCCESS, BrokerReturnCode.CONNECTION_ACCEPTED)
        self.publish_result = True
        self._error = TransportError.SUCCESS
        self._return_code = BrokerReturnCode.CONNECTION_ACCEPTED

    def reject_with(self, return_code: BrokerReturnCode):
        self.next_outcome = (False, TransportError.CONNECTION_DENIED, return_code)

    def fail_with(self, error: TransportError):
        self.next_outcome = (False, error, BrokerReturnCode.CONNECTION_ACCEPTED)

    def begin(self, host, port):
        self.calls.begin(host, port)

    def connect(self, client_id, username, password, clean_session):
        self.calls.connect(client_id, username, password, clean_session)
        ok, self._error, self._return_code = self.next_outcome
        self.is_connected = ok
        return ok

    def connected(self):
        return self.is_connected

    def disconnect(self):
        self.calls.disconnect()
        self.is_connected = False

    def subscribe(self, topic, qos):
        self.calls.subscribe(topic, qos)
        return True

    def publish(self, topic, payload, retain=False, qos=0):
        self.calls.publish(topic, payload, retain, qos)
        return self.publish_result

    def last_transport_error(self):
        return self._error

    def last_broker_return_code(self):
        return self._return_code

    def pump(self):
        self.calls.pump()


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests.
    Because tests bypass main.py, this ensures our logs are formatted
    and visible exactly how we want them during test runs.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def credentials(clock):
    return FakeCredentials(clock)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def identity():
    return DeviceIdentity(project_id="proj", region="us-central1", registry_id="reg", device_id="dev-1")


@pytest.fixture
def backoff():
    return BackoffState(delay=1.0, minimum=1.0, factor=2.0, jitter=0.5, maximum=30.0)


@pytest.fixture
def controller(transport, credentials, identity, backoff, clock):
    return ConnectionController(transport, credentials, identity,
                                settings=SessionSettings(),
                                backoff=backoff,
                                clock=clock,
                                rng=random.Random(42))
