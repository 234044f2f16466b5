import os
import sys
from urllib.parse import parse_qs, urlparse

import pytest
import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import todoist_tui.auth as auth
from todoist_tui.auth import AuthError, AuthTimeout, authorization_url, exchange_code, run_oauth_flow


class FakeResponse:
    def __init__(self, status_code=200, payload=None, error=None):
        self.status_code = status_code
        self._payload = payload
        self._error = error

    def json(self):
        if self._error is not None:
            raise self._error
        return self._payload


def _browser(**overrides):
    """Follow the authorization URL straight to the local callback."""
    responses = []

    def open_browser(url):
        query = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        params = {'code': 'the-code', 'state': query['state']}
        params.update(overrides)
        params = {k: v for k, v in params.items() if v is not None}
        session = requests.Session()
        session.trust_env = False
        responses.append(session.get(query['redirect_uri'], params=params, timeout=5))
    return open_browser, responses


def test_authorization_url_carries_scope_and_state():
    url = authorization_url("cid", "xyz", 9000)
    query = parse_qs(urlparse(url).query)
    assert query['client_id'] == ['cid']
    assert query['state'] == ['xyz']
    assert query['scope'] == ['data:read_write,data:delete']
    assert query['redirect_uri'] == ['http://localhost:9000/callback']
    assert query['response_type'] == ['code']


def test_flow_exchanges_code(monkeypatch):
    seen = {}

    def fake_exchange(client_id, client_secret, code, port):
        seen.update(client_id=client_id, client_secret=client_secret, code=code, port=port)
        return "access-123"

    monkeypatch.setattr(auth, "exchange_code", fake_exchange)
    open_browser, responses = _browser()
    token = run_oauth_flow("cid", "secret", timeout=5, port=0, open_browser=open_browser)
    assert token == "access-123"
    assert seen['code'] == "the-code"
    assert seen['client_secret'] == "secret"
    assert seen['port'] > 0
    assert responses[0].status_code == 200
    assert "Authorization Successful" in responses[0].text


def test_flow_rejects_forged_state():
    open_browser, responses = _browser(state="forged")
    with pytest.raises(AuthError, match="state mismatch"):
        run_oauth_flow("cid", "secret", timeout=5, port=0, open_browser=open_browser)
    assert responses[0].status_code == 400


def test_flow_reports_denied_authorization():
    open_browser, _ = _browser(code=None, error="access_denied")
    with pytest.raises(AuthError, match="authorization denied: access_denied"):
        run_oauth_flow("cid", "secret", timeout=5, port=0, open_browser=open_browser)


def test_flow_times_out_without_callback():
    with pytest.raises(AuthTimeout):
        run_oauth_flow("cid", "secret", timeout=0.1, port=0, open_browser=lambda url: None)


def test_browser_failure_is_not_fatal():
    def broken(url):
        raise RuntimeError("no display")

    with pytest.raises(AuthTimeout):
        run_oauth_flow("cid", "secret", timeout=0.1, port=0, open_browser=broken)


def test_exchange_code_success(monkeypatch):
    posted = {}

    def fake_post(url, data=None, timeout=None):
        posted.update(url=url, data=data)
        return FakeResponse(payload={'access_token': 'tok'})

    monkeypatch.setattr(auth.requests, "post", fake_post)
    assert exchange_code("cid", "sec", "code", 8585) == "tok"
    assert posted['url'] == auth.TOKEN_URL
    assert posted['data']['redirect_uri'] == "http://localhost:8585/callback"


@pytest.mark.parametrize("response,message", [
    (FakeResponse(status_code=400), "status 400"),
    (FakeResponse(payload={'access_token': ''}), "empty access token"),
    (FakeResponse(error=ValueError("not json")), "decode"),
])
def test_exchange_code_failures(monkeypatch, response, message):
    monkeypatch.setattr(auth.requests, "post", lambda *a, **k: response)
    with pytest.raises(AuthError, match=message):
        exchange_code("cid", "sec", "code")


def test_exchange_code_transport_error(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(auth.requests, "post", boom)
    with pytest.raises(AuthError, match="failed to exchange"):
        exchange_code("cid", "sec", "code")
