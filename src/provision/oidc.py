"""Interactive OIDC login for native clients.

Authorization code flow with PKCE and a loopback redirect:
1. Discover the provider's endpoints from its openid-configuration
2. Listen on 127.0.0.1 for the redirect
3. Send the user's browser to the authorization endpoint
4. Wait for the redirect, check state, exchange the code for a token

The calling thread blocks in step 4 until the user finishes, the login
timeout passes, or the run deadline expires.
"""

import base64
import hashlib
import logging
import secrets
import webbrowser
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Optional, Sequence
from urllib.parse import parse_qs, urlencode, urlparse

import requests

from provision.common import Deadline
from provision.errors import AuthenticationError, NetworkError

logger = logging.getLogger(__name__)

DISCOVERY_SUFFIX = "/.well-known/openid-configuration"
CALLBACK_PATH = "/callback"
DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_LOGIN_TIMEOUT = 300.0
DEFAULT_SCOPES = ("openid", "profile", "email")

BrowserOpener = Callable[[str], bool]


def discovery_url(config_url: str) -> str:
    """Discovery document URL for an issuer (or the URL itself if already one)."""
    if config_url.rstrip("/").endswith(DISCOVERY_SUFFIX):
        return config_url
    return config_url.rstrip("/") + DISCOVERY_SUFFIX


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def pkce_pair() -> tuple[str, str]:
    """Generate a PKCE (verifier, S256 challenge) pair."""
    verifier = _b64url(secrets.token_bytes(32))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return verifier, challenge


@dataclass(frozen=True)
class ProviderEndpoints:
    """Endpoints taken from the provider's discovery document."""

    authorization_endpoint: str
    token_endpoint: str


class CallbackHandler(BaseHTTPRequestHandler):
    """Receives the authorization redirect on the loopback listener."""

    server: "CallbackServer"

    def setup(self):
        # An idle connection may only hold the listener for the remaining login time
        self.timeout = self.server.timeout
        super().setup()

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.debug(f"{self.address_string()} - {format % args}")

    def _send_text(self, status: int, text: str):
        body = text.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        """Handle GET requests."""
        parsed = urlparse(self.path)
        if parsed.path != CALLBACK_PATH:
            self._send_text(404, "Not found")
            return

        params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        self.server.callback_params = params

        if "error" in params:
            self._send_text(200, "Login failed. You can close this window.")
        else:
            self._send_text(200, "Login complete. You can close this window.")


class CallbackServer(HTTPServer):
    """Loopback HTTP server holding the parameters of the first redirect."""

    callback_params: Optional[dict] = None

    @property
    def redirect_uri(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}{CALLBACK_PATH}"


class OIDCLogin:
    """Interactive login against an OpenID Connect provider."""

    def __init__(
        self,
        config_url: str,
        client_id: str,
        session: Optional[requests.Session] = None,
        request_timeout: Optional[float] = 30.0,
        login_timeout: float = DEFAULT_LOGIN_TIMEOUT,
        callback_host: str = DEFAULT_CALLBACK_HOST,
        callback_port: int = 0,
        open_browser: Optional[BrowserOpener] = webbrowser.open,
        scopes: Sequence[str] = DEFAULT_SCOPES,
        verify=True,
    ):
        """Initialize login.

        Args:
            config_url: Issuer URL or discovery document URL
            client_id: OAuth client identifier registered for this helper
            session: HTTP session (a new one is created if omitted)
            request_timeout: Per-request timeout for discovery and token calls
            login_timeout: How long to wait for the user to finish in the browser
            callback_host: Loopback address for the redirect listener
            callback_port: Redirect listener port (0 picks a free port)
            open_browser: Callable that opens a URL, or None to only log it
            scopes: Requested scopes
            verify: requests ``verify`` value (bool or CA bundle path)
        """
        self.config_url = config_url
        self.client_id = client_id
        self.session = session or requests.Session()
        self.request_timeout = request_timeout
        self.login_timeout = login_timeout
        self.callback_host = callback_host
        self.callback_port = callback_port
        self.open_browser = open_browser
        self.scopes = tuple(scopes)
        self.verify = verify

    def discover(self, deadline: Optional[Deadline] = None) -> ProviderEndpoints:
        """Fetch the provider's authorization and token endpoints.

        Raises:
            NetworkError: If the provider is unreachable
            AuthenticationError: If the discovery document is unusable
        """
        deadline = deadline or Deadline()
        url = discovery_url(self.config_url)
        timeout = deadline.timeout(self.request_timeout, "OIDC discovery")

        logger.debug(f"Fetching OIDC discovery document from {url}")
        try:
            resp = self.session.get(url, timeout=timeout, verify=self.verify)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Timeout connecting to identity provider {url}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Cannot connect to identity provider {url}: {e}") from e

        if resp.status_code != 200:
            raise AuthenticationError(f"OIDC discovery failed: {resp.status_code} - {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise AuthenticationError(f"Invalid OIDC discovery document: {e}") from e

        if not isinstance(data, dict):
            raise AuthenticationError("Invalid OIDC discovery document")
        missing = [k for k in ("authorization_endpoint", "token_endpoint") if not data.get(k)]
        if missing:
            raise AuthenticationError(f"OIDC discovery document missing {', '.join(missing)}")

        return ProviderEndpoints(
            authorization_endpoint=data["authorization_endpoint"],
            token_endpoint=data["token_endpoint"],
        )

    def authorization_url(self, endpoints: ProviderEndpoints, redirect_uri: str, state: str, challenge: str) -> str:
        query = urlencode({
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        })
        separator = "&" if urlparse(endpoints.authorization_endpoint).query else "?"
        return f"{endpoints.authorization_endpoint}{separator}{query}"

    def login(self, deadline: Optional[Deadline] = None) -> str:
        """Run the interactive login and return the access token.

        Raises:
            NetworkError: If the provider is unreachable
            DeadlineExceeded: If the run deadline expires while waiting
            AuthenticationError: If the login is denied, times out, or fails
        """
        deadline = deadline or Deadline()
        endpoints = self.discover(deadline)

        verifier, challenge = pkce_pair()
        state = secrets.token_urlsafe(16)

        try:
            server = CallbackServer((self.callback_host, self.callback_port), CallbackHandler)
        except OSError as e:
            raise AuthenticationError(
                f"Cannot listen for login redirect on {self.callback_host}:{self.callback_port}: {e}"
            ) from e

        try:
            url = self.authorization_url(endpoints, server.redirect_uri, state, challenge)
            logger.info(f"Complete login in your browser: {url}")
            if self.open_browser is not None and not self.open_browser(url):
                logger.warning("Could not open a browser; open the URL above manually")

            params = self._wait_for_callback(server, deadline)
            redirect_uri = server.redirect_uri
        finally:
            server.server_close()

        if "error" in params:
            detail = params.get("error_description", "")
            raise AuthenticationError(f"Login denied: {params['error']} {detail}".strip())
        if params.get("state") != state:
            raise AuthenticationError("Login redirect state mismatch")
        code = params.get("code")
        if not code:
            raise AuthenticationError("Login redirect carried no authorization code")

        return self._exchange_code(endpoints, code, verifier, redirect_uri, deadline)

    def _wait_for_callback(self, server: CallbackServer, deadline: Deadline) -> dict:
        login_deadline = Deadline(self.login_timeout, clock=deadline.clock)
        while server.callback_params is None:
            if login_deadline.expired():
                raise AuthenticationError(f"Login not completed within {self.login_timeout:g}s")
            server.timeout = deadline.timeout(login_deadline.remaining(), "waiting for login")
            server.handle_request()
        return server.callback_params

    def _exchange_code(
        self,
        endpoints: ProviderEndpoints,
        code: str,
        verifier: str,
        redirect_uri: str,
        deadline: Deadline,
    ) -> str:
        timeout = deadline.timeout(self.request_timeout, "OIDC token exchange")
        try:
            resp = self.session.post(
                endpoints.token_endpoint,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                    "client_id": self.client_id,
                    "code_verifier": verifier,
                },
                headers={"Accept": "application/json"},
                timeout=timeout,
                verify=self.verify,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Timeout connecting to {endpoints.token_endpoint}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Cannot connect to {endpoints.token_endpoint}: {e}") from e

        if resp.status_code != 200:
            raise AuthenticationError(f"Token exchange failed: {resp.status_code} - {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise AuthenticationError(f"Invalid token response: {e}") from e

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise AuthenticationError("Token response carried no access_token")
        return access_token
