import pytest

from tests.fakes import make_token
from tracker_proxy.core.auth import authenticate, bearer_token
from tracker_proxy.core.errors import AuthenticationError, ConfigurationError


def test_bearer_token_parsing():
    assert bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"
    assert bearer_token("bearer  abc ") == "abc"
    with pytest.raises(AuthenticationError):
        bearer_token(None)
    with pytest.raises(AuthenticationError):
        bearer_token("Basic dXNlcg==")
    with pytest.raises(AuthenticationError):
        bearer_token("Bearer ")


def test_authenticate_returns_subject(settings):
    assert authenticate(f"Bearer {make_token('user-42')}", settings) == "user-42"


def test_authenticate_rejects_wrong_secret_and_audience(settings):
    with pytest.raises(AuthenticationError):
        authenticate(f"Bearer {make_token(secret='other-secret')}", settings)
    with pytest.raises(AuthenticationError):
        authenticate(f"Bearer {make_token(audience='anon')}", settings)


def test_authenticate_requires_secret(settings):
    settings.supabase_jwt_secret = None
    with pytest.raises(ConfigurationError):
        authenticate(f"Bearer {make_token()}", settings)
