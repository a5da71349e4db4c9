import pytest

import adc_auth
from adc_auth import AuthenticationError, MsalTokenProvider, StaticTokenProvider


class FakeMsalApp:
    def __init__(self, results, accounts=None):
        self.results = list(results)
        self.accounts = accounts or []
        self.silent_calls = 0
        self.interactive_calls = 0

    def get_accounts(self):
        return self.accounts

    def acquire_token_silent(self, scopes, account):
        self.silent_calls += 1
        return self.results.pop(0)

    def acquire_token_interactive(self, scopes, prompt=None):
        self.interactive_calls += 1
        result = self.results.pop(0)
        self.accounts = [{"username": "user1@contoso.com"}]
        return result


def test_static_token_provider_builds_bearer_header():
    assert StaticTokenProvider("abc").authorization_header() == "Bearer abc"


def test_static_token_provider_requires_token():
    with pytest.raises(ValueError):
        StaticTokenProvider("")


def test_msal_provider_requires_client_id():
    with pytest.raises(ValueError):
        MsalTokenProvider(client_id=None)


def test_token_is_cached_until_close_to_expiry():
    app = FakeMsalApp([{"access_token": "first", "expires_in": 3600}])
    provider = MsalTokenProvider(client_id="client", app=app)

    assert provider.authorization_header() == "Bearer first"
    assert provider.authorization_header() == "Bearer first"
    assert app.interactive_calls == 1
    assert app.silent_calls == 0


def test_expiring_token_is_refreshed_silently():
    app = FakeMsalApp([
        {"access_token": "first", "expires_in": 60},
        {"access_token": "second", "expires_in": 3600},
    ])
    provider = MsalTokenProvider(client_id="client", app=app, refresh_margin_seconds=300)

    assert provider.get_token() == "first"
    assert provider.get_token() == "second"
    assert app.interactive_calls == 1
    assert app.silent_calls == 1


def test_silent_miss_falls_back_to_interactive():
    app = FakeMsalApp([None, {"access_token": "fresh", "expires_in": 3600}],
                      accounts=[{"username": "user1@contoso.com"}])
    provider = MsalTokenProvider(client_id="client", app=app)

    assert provider.get_token() == "fresh"
    assert app.silent_calls == 1
    assert app.interactive_calls == 1


def test_failed_sign_in_raises_authentication_error():
    app = FakeMsalApp([{"error": "access_denied", "error_description": "User cancelled"}])
    provider = MsalTokenProvider(client_id="client", app=app)

    with pytest.raises(AuthenticationError) as exc:
        provider.get_token()

    assert "access_denied" in str(exc.value)
    assert isinstance(exc.value, ConnectionError)


def test_public_client_application_is_built_from_client_id(monkeypatch):
    created = {}

    def fake_public_client(client_id, authority=None):
        created["client_id"] = client_id
        created["authority"] = authority
        return FakeMsalApp([])

    monkeypatch.setattr(adc_auth.msal, "PublicClientApplication", fake_public_client)

    MsalTokenProvider(client_id="client-123")

    assert created == {"client_id": "client-123", "authority": adc_auth.DEFAULT_AUTHORITY}
