import os

import pytest
import requests
from requests.structures import CaseInsensitiveDict


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep a developer's .env and ADC_* variables out of the tests"""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("ADC_") or name == "LOG_LEVEL":
            monkeypatch.delenv(name)


class TrackedResponse(requests.Response):
    """requests.Response that remembers whether it was closed"""

    released = False

    def close(self):
        self.released = True
        super().close()


def build_response(status_code, headers=None, body=b"", reason=""):
    response = TrackedResponse()
    response.status_code = status_code
    response.reason = reason
    response.headers = CaseInsensitiveDict(headers or {})
    response._content = body
    response._content_consumed = True
    return response


class FakeSession:
    """Stands in for requests.Session; replays outcomes and records every call"""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


class CountingTokenProvider:
    def __init__(self, token="token-1"):
        self.token = token
        self.calls = 0

    def authorization_header(self):
        self.calls += 1
        return f"Bearer {self.token}"


@pytest.fixture
def make_response():
    return build_response


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def token_provider():
    return CountingTokenProvider()
