"""
Credential Providers.

Adapters that hand the ConnectionController a fresh, time-bounded token.
Signing is not done here: either a callable supplied by the application
signs the token, or an external signer keeps a token file up to date.
"""
import logging
import time
from pathlib import Path
from typing import Callable, Union

from iot_core_mqtt.session.interfaces import CredentialError
from iot_core_mqtt.session.models import Token

logger = logging.getLogger(__name__)

DEFAULT_LIFETIME = 3600.0 # seconds


class CallableCredentialProvider:
    """
    Mints tokens by calling `mint(issued_at, expires_at) -> str`.

    The provider decides the validity window; the callable only has to
    produce a token carrying those claims.
    """
    def __init__(self, mint: Callable[[float, float], str], lifetime: float = DEFAULT_LIFETIME,
                 clock: Callable[[], float] = time.time):
        if lifetime <= 0:
            raise ValueError(f"Token lifetime must be positive, got {lifetime}")
        self._mint = mint
        self.lifetime = lifetime
        self._clock = clock

    def mint_token(self) -> Token:
        issued_at = self._clock()
        expires_at = issued_at + self.lifetime
        try:
            value = self._mint(issued_at, expires_at)
        except Exception as e:
            raise CredentialError(f"Token minting failed: {e}") from e

        if not value:
            raise CredentialError("Token minting returned an empty token")

        logger.info(f"Minted token, expires in {self.lifetime:.0f}s")
        return Token(value=value, issued_at=issued_at, expires_at=expires_at)


class FileCredentialProvider(CallableCredentialProvider):
    """
    Reads the token from a file that an external signer refreshes.
    `lifetime` should not exceed the lifetime the signer puts in the token.
    """
    def __init__(self, path: Union[str, Path], lifetime: float = DEFAULT_LIFETIME,
                 clock: Callable[[], float] = time.time):
        self.path = Path(path)
        super().__init__(self._read_token, lifetime=lifetime, clock=clock)

    def _read_token(self, issued_at: float, expires_at: float) -> str:
        return self.path.read_text(encoding='utf-8').strip()
