"""
Reconnection back-off.

Exponential growth with a ceiling keeps a fleet of devices from hammering
the broker, and the jitter term decorrelates devices that failed together.
Every function here is pure: it takes a BackoffState and returns a new one.
"""
import logging
import random
from dataclasses import replace
from typing import Optional

from iot_core_mqtt.session.models import BackoffState

logger = logging.getLogger(__name__)


def increase_backoff(state: BackoffState, rng: Optional[random.Random] = None) -> BackoffState:
    """
    Computes the delay to wait after another failed attempt.

    The current delay is clamped up to the minimum, multiplied by the factor,
    a uniform jitter in [0, jitter] is added, and the result is clamped down
    to the maximum.
    """
    rng = rng or random
    delay = max(state.delay, state.minimum)
    delay = delay * state.factor + rng.uniform(0, state.jitter)
    delay = min(delay, state.maximum)
    logger.info(f"Back-off: {delay:.3f}s")
    return replace(state, delay=delay)


def reset_backoff(state: BackoffState) -> BackoffState:
    return replace(state, delay=state.minimum)


def record_attempt(state: BackoffState, now: float) -> BackoffState:
    return replace(state, last_attempt_at=now)


def elapsed_since_attempt(state: BackoffState, now: float) -> float:
    if state.last_attempt_at is None:
        return float('inf')
    # the wall clock may step backwards after an NTP sync
    return abs(now - state.last_attempt_at)


def retry_due(state: BackoffState, now: float) -> bool:
    """True once the current delay has passed since the last attempt."""
    return elapsed_since_attempt(state, now) >= state.delay
