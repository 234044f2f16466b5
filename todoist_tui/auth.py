"""Interactive OAuth authorization against Todoist with a local callback listener."""
from __future__ import annotations

import logging
import queue
import secrets
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urlparse

import requests

logger = logging.getLogger('todoist_tui')

AUTHORIZE_URL = "https://todoist.com/oauth/authorize"
TOKEN_URL = "https://todoist.com/oauth/access_token"
SCOPE = "data:read_write,data:delete"
CALLBACK_PORT = 8585
CALLBACK_TIMEOUT = 300

SUCCESS_PAGE = (
    "<html><body><h1>Authorization Successful!</h1>"
    "<p>You can close this window and return to the terminal.</p></body></html>"
)
FAILURE_PAGE = (
    "<html><body><h1>Authorization Failed</h1>"
    "<p>{reason}</p><p>You can close this window.</p></body></html>"
)


class AuthError(Exception):
    pass


class AuthTimeout(AuthError):
    pass


def redirect_uri(port: int = CALLBACK_PORT) -> str:
    return f"http://localhost:{port}/callback"


def authorization_url(client_id: str, state: str, port: int = CALLBACK_PORT) -> str:
    params = {
        'client_id': client_id,
        'scope': SCOPE,
        'state': state,
        'redirect_uri': redirect_uri(port),
        'response_type': 'code',
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def exchange_code(client_id: str, client_secret: str, code: str, port: int = CALLBACK_PORT) -> str:
    """Trade an authorization code for an access token."""
    data = {
        'client_id': client_id,
        'client_secret': client_secret,
        'code': code,
        'redirect_uri': redirect_uri(port),
    }
    try:
        resp = requests.post(TOKEN_URL, data=data, timeout=30)
    except requests.RequestException as e:
        raise AuthError(f"failed to exchange code for token: {e}") from e
    if resp.status_code != 200:
        raise AuthError(f"token exchange failed with status {resp.status_code}")
    try:
        token = (resp.json() or {}).get('access_token', '')
    except ValueError as e:
        raise AuthError("failed to decode token response") from e
    if not token:
        raise AuthError("received empty access token")
    return token


def _callback_handler(results: "queue.Queue[Tuple[str, str]]", expected_state: str):
    class CallbackHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            parsed = urlparse(self.path)
            if parsed.path != '/callback':
                self.send_response(404)
                self.end_headers()
                return
            params = {k: v[0] for k, v in parse_qs(parsed.query).items() if v}
            if params.get('error'):
                outcome = ('error', f"authorization denied: {params['error']}")
            elif params.get('state') != expected_state:
                outcome = ('error', "state mismatch in authorization callback")
            elif not params.get('code'):
                outcome = ('error', "no authorization code received")
            else:
                outcome = ('code', params['code'])
            if outcome[0] == 'code':
                status, page = 200, SUCCESS_PAGE
            else:
                status, page = 400, FAILURE_PAGE.format(reason=outcome[1])
            self.send_response(status)
            self.send_header("Content-Type", "text/html")
            self.end_headers()
            self.wfile.write(page.encode('utf-8'))
            try:
                results.put_nowait(outcome)
            except queue.Full:
                logger.debug("Ignoring repeated authorization callback")

        def log_message(self, format: str, *args) -> None:
            logger.debug("oauth callback: " + format, *args)

    return CallbackHandler


def run_oauth_flow(
    client_id: str,
    client_secret: str,
    timeout: float = CALLBACK_TIMEOUT,
    port: int = CALLBACK_PORT,
    open_browser: Optional[Callable[[str], object]] = None,
) -> str:
    """Run the browser authorization and return an access token.

    Raises ``AuthTimeout`` when no callback arrives within ``timeout`` seconds
    and ``AuthError`` for a denied, malformed or forged callback.
    """
    results: "queue.Queue[Tuple[str, str]]" = queue.Queue(maxsize=1)
    state = secrets.token_urlsafe(16)
    server = HTTPServer(('localhost', port), _callback_handler(results, state))
    port = server.server_address[1]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        url = authorization_url(client_id, state, port)
        print("Opening browser for Todoist authorization...")
        print(f"If the browser doesn't open, please visit:\n{url}\n")
        try:
            (open_browser or webbrowser.open)(url)
        except Exception as e:
            logger.warning("Failed to open browser: %s", e)
        print("Waiting for authorization...")
        try:
            kind, value = results.get(timeout=timeout)
        except queue.Empty:
            raise AuthTimeout(f"authorization timed out after {timeout:g}s") from None
    finally:
        server.shutdown()
        server.server_close()
    if kind == 'error':
        raise AuthError(value)
    logger.info("Authorization code received, exchanging for token")
    return exchange_code(client_id, client_secret, value, port)
