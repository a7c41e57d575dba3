"""Provisioning package: enroll this node in a Nebula mesh controller."""

from provision.errors import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    AuthenticationError,
    ConfigurationError,
    ControllerError,
    DeadlineExceeded,
    DirectoryError,
    FilesystemError,
    KeyGenerationError,
    NetworkError,
    ProtocolError,
    ProvisionError,
)
from provision.common import Deadline
from provision.directory import (
    ControllerDirectory,
    ControllerMetadata,
    TunnelMetadata,
    load_tunnel_metadata,
)
from provision.keys import KeyPair, KeyPairProvisioner
from provision.auth import InteractiveLogin, OneTimeToken
from provision.signing import SigningClient, SigningResponse
from provision.synth import ConfigSynthesizer
from provision.workflow import ProvisioningWorkflow, ProvisionResult, resolve_bootstrap_url

__all__ = [
    # Errors
    "EXIT_SUCCESS",
    "EXIT_FAILURE",
    "ProvisionError",
    "ConfigurationError",
    "DirectoryError",
    "NetworkError",
    "DeadlineExceeded",
    "ProtocolError",
    "ControllerError",
    "AuthenticationError",
    "FilesystemError",
    "KeyGenerationError",
    # Stages
    "Deadline",
    "ControllerDirectory",
    "ControllerMetadata",
    "TunnelMetadata",
    "load_tunnel_metadata",
    "KeyPair",
    "KeyPairProvisioner",
    "InteractiveLogin",
    "OneTimeToken",
    "SigningClient",
    "SigningResponse",
    "ConfigSynthesizer",
    "ProvisioningWorkflow",
    "ProvisionResult",
    "resolve_bootstrap_url",
]
