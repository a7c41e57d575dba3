"""Signing client: exchange a public key for a signed node certificate.

Two paths reach the controller:
- sign_with_credential: bearer token from interactive login, POST to the
  controller-advertised sign endpoint
- sign_with_one_time_token: enrollment token, POST {bootstrap}/enroll

Both return a SigningResponse or raise a typed error; neither decides
whether the run should stop.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import requests

from provision.common import Deadline
from provision.directory import DEFAULT_REQUEST_TIMEOUT, ControllerMetadata, endpoint_url
from provision.errors import ControllerError, NetworkError, ProtocolError

logger = logging.getLogger(__name__)


@dataclass
class SigningRequest:
    """Body of a bearer-authenticated sign request."""

    public_key: str
    duration: int = 0
    ip: str = ""

    def to_dict(self) -> dict:
        """Wire form; empty optional fields are omitted."""
        body: dict = {"public_key": self.public_key}
        if self.duration:
            body["duration"] = self.duration
        if self.ip:
            body["ip"] = self.ip
        return body


@dataclass
class EnrollmentRequest:
    """Body of a one-time-token enrollment request."""

    ott: str
    public_key: str

    def to_dict(self) -> dict:
        return {"ott": self.ott, "public_key": self.public_key}

    def __repr__(self) -> str:
        return "EnrollmentRequest(ott=<redacted>)"


@dataclass(frozen=True)
class SigningResponse:
    """Signed certificate plus mesh topology from the controller."""

    certificate: str
    static_host_map: dict = field(default_factory=dict)
    lighthouses: list = field(default_factory=list)
    blocklist: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data) -> "SigningResponse":
        """Decode and validate a signing response body.

        Raises:
            ProtocolError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise ProtocolError("Signing response must be a JSON object")

        certificate = data.get("certificate")
        if not isinstance(certificate, str) or not certificate.strip():
            raise ProtocolError("Signing response has no certificate")

        static_host_map = data.get("static_host_map") or {}
        if not isinstance(static_host_map, dict) or not all(
            isinstance(name, str)
            and isinstance(addrs, list)
            and all(isinstance(a, str) for a in addrs)
            for name, addrs in static_host_map.items()
        ):
            raise ProtocolError("Signing response static_host_map must map names to address lists")

        lighthouses = data.get("lighthouses") or []
        if not isinstance(lighthouses, list) or not all(isinstance(h, str) for h in lighthouses):
            raise ProtocolError("Signing response lighthouses must be a list of strings")

        blocklist = data.get("blocklist") or []
        if not isinstance(blocklist, list) or not all(isinstance(b, str) for b in blocklist):
            raise ProtocolError("Signing response blocklist must be a list of strings")

        return cls(
            certificate=certificate,
            static_host_map=static_host_map,
            lighthouses=lighthouses,
            blocklist=blocklist,
        )


class SigningClient:
    """HTTP client for the controller's sign and enroll endpoints."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        request_timeout: Optional[float] = DEFAULT_REQUEST_TIMEOUT,
        verify=True,
    ):
        self.session = session or requests.Session()
        self.request_timeout = request_timeout
        self.verify = verify

    def _post(self, url: str, body: dict, headers: dict, deadline: Deadline, operation: str):
        timeout = deadline.timeout(self.request_timeout, operation)
        logger.debug(f"POST {url}")
        try:
            return self.session.post(url, json=body, headers=headers, timeout=timeout, verify=self.verify)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Timeout connecting to {url}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Cannot connect to {url}: {e}") from e

    @staticmethod
    def _decode_success(resp) -> SigningResponse:
        try:
            data = resp.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON in signing response: {e}", status=resp.status_code) from e
        return SigningResponse.from_dict(data)

    def sign_with_credential(
        self,
        metadata: ControllerMetadata,
        bearer_token: str,
        public_key: str,
        deadline: Optional[Deadline] = None,
    ) -> SigningResponse:
        """Submit a public key with a bearer credential.

        Raises:
            NetworkError: On transport failure
            ProtocolError: On a missing sign endpoint, non-200 status (raw
                body as message) or bad body
        """
        if not metadata.sign_endpoint:
            raise ProtocolError("Controller metadata has no signEndpoint")

        resp = self._post(
            metadata.sign_endpoint,
            SigningRequest(public_key=public_key).to_dict(),
            {
                "Authorization": f"Bearer {bearer_token}",
                "Accept": "application/json",
            },
            deadline or Deadline(),
            "signing public key",
        )

        if resp.status_code != 200:
            raise ProtocolError(
                f"Sign request rejected ({resp.status_code}): {resp.text.strip()}",
                status=resp.status_code,
            )
        return self._decode_success(resp)

    def sign_with_one_time_token(
        self,
        bootstrap_url: str,
        token: str,
        public_key: str,
        deadline: Optional[Deadline] = None,
    ) -> SigningResponse:
        """Enroll a public key with a one-time token.

        Raises:
            NetworkError: On transport failure
            ControllerError: If the controller rejects the enrollment
            ProtocolError: On an undecodable error body or bad success body
        """
        url = endpoint_url(bootstrap_url, "enroll")
        resp = self._post(
            url,
            EnrollmentRequest(ott=token, public_key=public_key).to_dict(),
            {"Accept": "application/json"},
            deadline or Deadline(),
            "enrolling public key",
        )

        if resp.status_code != 200:
            try:
                error = resp.json()
            except ValueError as e:
                raise ProtocolError(
                    f"Enrollment failed ({resp.status_code}) with undecodable body",
                    status=resp.status_code,
                ) from e
            if not isinstance(error, dict):
                raise ProtocolError(f"Enrollment failed ({resp.status_code})", status=resp.status_code)
            raise ControllerError(
                status=str(error.get("status", "")),
                message=str(error.get("message") or f"Enrollment failed ({resp.status_code})"),
                http_status=resp.status_code,
            )

        return self._decode_success(resp)
