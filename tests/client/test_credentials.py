import pytest
from unittest.mock import MagicMock

from iot_core_mqtt.client.credentials import CallableCredentialProvider, FileCredentialProvider
from iot_core_mqtt.session.interfaces import CredentialError, CredentialProvider


def test_callable_provider_sets_validity_window(clock):
    mint = MagicMock(return_value="signed-token")
    provider = CallableCredentialProvider(mint, lifetime=600, clock=clock)

    token = provider.mint_token()

    mint.assert_called_once_with(clock.now, clock.now + 600)
    assert token.value == "signed-token"
    assert token.issued_at == clock.now
    assert token.expires_at == clock.now + 600
    assert isinstance(provider, CredentialProvider)


def test_token_repr_hides_value(clock):
    token = CallableCredentialProvider(lambda iat, exp: "secret", clock=clock).mint_token()

    assert "secret" not in repr(token)


def test_signer_exception_becomes_credential_error(clock):
    def broken(issued_at, expires_at):
        raise OSError("key file missing")

    provider = CallableCredentialProvider(broken, clock=clock)

    with pytest.raises(CredentialError, match="key file missing"):
        provider.mint_token()


def test_empty_token_is_an_error(clock):
    provider = CallableCredentialProvider(lambda iat, exp: "", clock=clock)

    with pytest.raises(CredentialError):
        provider.mint_token()


def test_lifetime_must_be_positive():
    with pytest.raises(ValueError):
        CallableCredentialProvider(lambda iat, exp: "t", lifetime=0)


def test_file_provider_reads_current_token(tmp_path, clock):
    token_file = tmp_path / "token.jwt"
    token_file.write_text("first\n")
    provider = FileCredentialProvider(token_file, lifetime=60, clock=clock)

    assert provider.mint_token().value == "first"

    token_file.write_text("second")
    clock.advance(30)
    token = provider.mint_token()
    assert token.value == "second"
    assert token.expires_at == clock.now + 60


def test_file_provider_missing_file(tmp_path, clock):
    provider = FileCredentialProvider(tmp_path / "absent.jwt", clock=clock)

    with pytest.raises(CredentialError):
        provider.mint_token()
