"""Authentication strategies for obtaining a signing credential.

- InteractiveLogin: OIDC login in the user's browser, yields a bearer token
- OneTimeToken: pre-issued enrollment token, no interaction

Each strategy yields a Credential that knows which controller endpoint it
is valid for, so the workflow can sign without branching on the strategy.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from provision.common import Deadline
from provision.directory import ControllerMetadata
from provision.errors import AuthenticationError, ConfigurationError
from provision.oidc import OIDCLogin
from provision.signing import SigningClient, SigningResponse

logger = logging.getLogger(__name__)


class Credential(ABC):
    """Proof of identity presented to the controller."""

    def __init__(self, token: str):
        self.token = token

    def __repr__(self) -> str:
        return f"{type(self).__name__}(token=<redacted>)"

    @abstractmethod
    def request_signature(
        self,
        client: SigningClient,
        metadata: ControllerMetadata,
        bootstrap_url: str,
        public_key: str,
        deadline: Optional[Deadline] = None,
    ) -> SigningResponse:
        """Submit public_key to the endpoint this credential is valid for."""


class BearerCredential(Credential):
    """Access token from an interactive login."""

    def request_signature(self, client, metadata, bootstrap_url, public_key, deadline=None):
        return client.sign_with_credential(metadata, self.token, public_key, deadline)


class OneTimeTokenCredential(Credential):
    """Single-use enrollment token."""

    def request_signature(self, client, metadata, bootstrap_url, public_key, deadline=None):
        return client.sign_with_one_time_token(bootstrap_url, self.token, public_key, deadline)


class AuthenticationStrategy(ABC):
    """Interface for obtaining a credential."""

    name = ""

    @abstractmethod
    def authenticate(self, metadata: ControllerMetadata, deadline: Optional[Deadline] = None) -> Credential:
        """Return a credential for the controller described by metadata."""


class InteractiveLogin(AuthenticationStrategy):
    """Federated login through the controller's identity provider.

    Blocks the calling thread until the user completes (or abandons) the
    login in a browser.
    """

    name = "oidc_login"

    def __init__(self, login_factory=OIDCLogin, **login_options):
        """Initialize the strategy.

        Args:
            login_factory: Callable building an OIDCLogin from
                (config_url, client_id, **login_options)
            **login_options: Passed through to the login (timeouts, session,
                callback port, browser opener)
        """
        self.login_factory = login_factory
        self.login_options = login_options

    def authenticate(self, metadata: ControllerMetadata, deadline: Optional[Deadline] = None) -> Credential:
        if not metadata.oidc_config_url or not metadata.oidc_client_id:
            raise AuthenticationError("Controller does not advertise an OIDC provider")

        logger.info(f"Starting OIDC login with {metadata.oidc_config_url}")
        login = self.login_factory(metadata.oidc_config_url, metadata.oidc_client_id, **self.login_options)
        token = login.login(deadline)
        logger.info("OIDC login complete")
        return BearerCredential(token)


class OneTimeToken(AuthenticationStrategy):
    """Enrollment with a token issued out of band."""

    name = "enroll"

    def __init__(self, token: str):
        if not token:
            raise ConfigurationError("Cannot enroll without token")
        self.token = token

    def __repr__(self) -> str:
        return "OneTimeToken(token=<redacted>)"

    def authenticate(self, metadata: ControllerMetadata, deadline: Optional[Deadline] = None) -> Credential:
        return OneTimeTokenCredential(self.token)
