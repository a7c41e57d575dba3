"""Controller directory: capability metadata and local bootstrap hints.

Resolves the controller's endpoints and CA certificate from its bootstrap
URL, and reads the optional metadata.json left behind by a previous
bootstrap.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import requests

from provision.common import Deadline
from provision.errors import NetworkError, ProtocolError

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
DEFAULT_REQUEST_TIMEOUT = 30.0


def endpoint_url(base_url: str, suffix: str) -> str:
    """Append a path suffix to a base URL.

    Works with or without a path and trailing slash on the base:
    ``https://c/api``, ``https://c/api/`` and ``https://c`` all yield a
    single-slash join. Query strings on the base are kept.
    """
    parts = urlsplit(base_url)
    segments = [s for s in (parts.path.strip("/"), suffix.strip("/")) if s]
    path = "/" + "/".join(segments)
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def _string_field(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"Controller metadata field '{key}' must be a string")
    return value


@dataclass(frozen=True)
class ControllerMetadata:
    """Capability metadata published by the controller at /config."""

    cert_endpoint: str = ""
    oidc_client_id: str = ""
    oidc_config_url: str = ""
    sign_endpoint: str = ""
    node_config_endpoint: str = ""
    ca_cert: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ControllerMetadata":
        """Decode the controller's JSON document.

        Raises:
            ProtocolError: If data is not an object or a field has the wrong type
        """
        if not isinstance(data, dict):
            raise ProtocolError("Controller metadata must be a JSON object")
        return cls(
            cert_endpoint=_string_field(data, "certEndpoint"),
            oidc_client_id=_string_field(data, "oidcClientID"),
            oidc_config_url=_string_field(data, "oidcConfigURL"),
            sign_endpoint=_string_field(data, "signEndpoint"),
            node_config_endpoint=_string_field(data, "nodeConfigEndpoint"),
            ca_cert=_string_field(data, "ca"),
        )


@dataclass(frozen=True)
class TunnelMetadata:
    """Bootstrap hint persisted next to the node config."""

    controller_url: str = ""
    tunnel_name: str = ""
    fingerprint: str = ""


def load_tunnel_metadata(config_dir: Path) -> Optional[TunnelMetadata]:
    """Load metadata.json from the config directory.

    Any read or parse failure means "not yet bootstrapped" and returns None.
    """
    path = Path(config_dir) / METADATA_FILE
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug(f"No usable {path}: {e}")
        return None

    if not isinstance(data, dict):
        logger.debug(f"Ignoring {path}: not a JSON object")
        return None

    fields = {}
    for key in ("controller_url", "tunnel_name", "fingerprint"):
        value = data.get(key, "")
        if not isinstance(value, str):
            logger.debug(f"Ignoring {path}: '{key}' is not a string")
            return None
        fields[key] = value
    return TunnelMetadata(**fields)


class ControllerDirectory:
    """Fetches controller metadata from a bootstrap URL."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        request_timeout: Optional[float] = DEFAULT_REQUEST_TIMEOUT,
        verify=True,
    ):
        """Initialize the directory client.

        Args:
            session: HTTP session (a new one is created if omitted)
            request_timeout: Per-request timeout in seconds
            verify: requests ``verify`` value (bool or CA bundle path)
        """
        self.session = session or requests.Session()
        self.request_timeout = request_timeout
        self.verify = verify

    def resolve(self, bootstrap_url: str, deadline: Optional[Deadline] = None) -> ControllerMetadata:
        """Fetch ``{bootstrap_url}/config``.

        Raises:
            NetworkError: On transport failure
            ProtocolError: On non-200 status or malformed body
        """
        deadline = deadline or Deadline()
        url = endpoint_url(bootstrap_url, "config")
        timeout = deadline.timeout(self.request_timeout, "fetching controller metadata")

        logger.debug(f"Fetching controller metadata from {url}")
        try:
            resp = self.session.get(
                url,
                headers={"Accept": "application/json"},
                timeout=timeout,
                verify=self.verify,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Timeout connecting to {url}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Cannot connect to {url}: {e}") from e

        if resp.status_code != 200:
            raise ProtocolError(
                f"Controller metadata request failed: {resp.status_code} - {resp.text[:200]}",
                status=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON in controller metadata: {e}", status=resp.status_code) from e

        metadata = ControllerMetadata.from_dict(data)
        logger.debug(f"Controller sign endpoint: {metadata.sign_endpoint or '(none)'}")
        return metadata
