"""End-to-end provisioning workflow.

Stages, strictly in order:
    resolve metadata -> authenticate -> generate keypair -> sign -> synthesize

The controller metadata and deadline are passed from stage to stage. A
failing stage raises its typed error unchanged; nothing is retried or rolled
back, so a keypair generated before a failed sign stays on disk.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from provision.auth import AuthenticationStrategy
from provision.common import Deadline
from provision.directory import ControllerDirectory, ControllerMetadata, load_tunnel_metadata
from provision.errors import ConfigurationError
from provision.keys import KeyPair, KeyPairProvisioner
from provision.signing import SigningClient, SigningResponse
from provision.synth import ConfigSynthesizer, SynthesisResult

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Outcome of a successful provisioning run."""

    action: str
    bootstrap_url: str
    config_dir: Path
    metadata: ControllerMetadata
    keypair: KeyPair
    signing_response: SigningResponse
    synthesis: SynthesisResult

    @property
    def artifacts(self) -> list:
        """Every file written by the run, keys first."""
        return [self.keypair.public_key_path, self.keypair.private_key_path] + self.synthesis.artifacts

    @property
    def lighthouse_count(self) -> int:
        return len(self.signing_response.lighthouses)


def resolve_bootstrap_url(server_url: Optional[str], config_dir: Path) -> str:
    """Pick the controller URL: explicit argument, else metadata.json.

    Raises:
        ConfigurationError: If neither source provides a URL
    """
    if server_url:
        return server_url

    metadata = load_tunnel_metadata(config_dir)
    if metadata is None:
        raise ConfigurationError(f"No server URL given and could not load metadata.json from {config_dir}")
    if not metadata.controller_url:
        raise ConfigurationError("No server url in arguments or metadata.json")

    logger.info(
        f"Using controller from metadata.json: {metadata.controller_url} "
        f"(tunnel {metadata.tunnel_name or '-'}, fingerprint {metadata.fingerprint or '-'})"
    )
    return metadata.controller_url


class ProvisioningWorkflow:
    """Runs the provisioning stages with injectable collaborators."""

    def __init__(
        self,
        directory: Optional[ControllerDirectory] = None,
        signing_client: Optional[SigningClient] = None,
        keygen: Optional[KeyPairProvisioner] = None,
        synthesizer: Optional[ConfigSynthesizer] = None,
    ):
        self.directory = directory or ControllerDirectory()
        self.signing_client = signing_client or SigningClient()
        self.keygen = keygen or KeyPairProvisioner()
        self.synthesizer = synthesizer or ConfigSynthesizer()

    def run(
        self,
        bootstrap_url: str,
        strategy: AuthenticationStrategy,
        config_dir: Path,
        deadline: Optional[Deadline] = None,
    ) -> ProvisionResult:
        """Provision this node against the controller at bootstrap_url.

        Raises:
            ProvisionError: Any stage failure, unchanged
        """
        deadline = deadline or Deadline()
        config_dir = Path(config_dir)

        logger.info(f"Resolving controller metadata from {bootstrap_url}")
        metadata = self.directory.resolve(bootstrap_url, deadline)

        credential = strategy.authenticate(metadata, deadline)

        keypair = self.keygen.generate(config_dir)

        logger.info("Requesting signed certificate")
        signing_response = credential.request_signature(
            self.signing_client,
            metadata,
            bootstrap_url,
            keypair.public_key_pem(),
            deadline,
        )
        logger.info(
            f"Certificate signed ({len(signing_response.lighthouses)} lighthouses, "
            f"{len(signing_response.blocklist)} blocklisted)"
        )

        synthesis = self.synthesizer.write(signing_response, keypair, metadata.ca_cert, config_dir)

        return ProvisionResult(
            action=strategy.name,
            bootstrap_url=bootstrap_url,
            config_dir=config_dir,
            metadata=metadata,
            keypair=keypair,
            signing_response=signing_response,
            synthesis=synthesis,
        )
