"""Node config synthesis: the only place signed artifacts are written.

Writes, in order and all within one call:
- node.crt: signed certificate
- ca.crt: controller CA certificate
- zz_controller_config.yml: minimal Nebula config referencing the above

and seeds default.yml from a template when the directory has none.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

import yaml

from provision.common import replace_file
from provision.errors import FilesystemError
from provision.keys import KeyPair
from provision.signing import SigningResponse

logger = logging.getLogger(__name__)

CERT_FILE = "node.crt"
CA_FILE = "ca.crt"
NODE_CONFIG_FILE = "zz_controller_config.yml"
DEFAULT_CONFIG_FILE = "default.yml"


def build_node_config(signing_response: SigningResponse, cert_name: str, ca_name: str, key_name: str) -> dict:
    """Minimal Nebula config derived from a signing response.

    PKI entries are file names relative to the config directory; host map
    and blocklist are taken from the response unchanged.
    """
    return {
        "pki": {
            "ca": ca_name,
            "cert": cert_name,
            "key": key_name,
            "blocklist": list(signing_response.blocklist),
        },
        "static_host_map": {name: list(addrs) for name, addrs in signing_response.static_host_map.items()},
        "lighthouse": {
            "am_lighthouse": False,
            "hosts": list(signing_response.lighthouses),
        },
    }


@dataclass
class SynthesisResult:
    """Paths written by a synthesis run."""

    cert_path: Path
    ca_path: Path
    node_config_path: Path
    default_config_path: Optional[Path] = None
    template_copied: bool = False
    artifacts: list = field(default_factory=list)


class ConfigSynthesizer:
    """Persists the signed identity and derived node config."""

    def __init__(self, template_paths: Sequence[Path] = ()):
        """Initialize synthesizer.

        Args:
            template_paths: Candidate default.yml templates, first existing wins
        """
        self.template_paths = [Path(p) for p in template_paths]

    def find_template(self) -> Optional[Path]:
        for candidate in self.template_paths:
            if candidate.is_file():
                return candidate
        return None

    def write(
        self,
        signing_response: SigningResponse,
        keypair: KeyPair,
        ca_cert: str,
        config_dir: Path,
    ) -> SynthesisResult:
        """Write certificate, CA certificate and node config into config_dir.

        Raises:
            FilesystemError: If any artifact cannot be written
        """
        config_dir = Path(config_dir)

        cert_path = replace_file(config_dir / CERT_FILE, signing_response.certificate)
        ca_path = replace_file(config_dir / CA_FILE, ca_cert)

        node_config = build_node_config(
            signing_response,
            cert_name=cert_path.name,
            ca_name=ca_path.name,
            key_name=keypair.private_key_path.name,
        )
        node_config_path = replace_file(
            config_dir / NODE_CONFIG_FILE,
            yaml.safe_dump(node_config, default_flow_style=False, sort_keys=False),
        )
        logger.info(f"Wrote node config: {node_config_path}")

        result = SynthesisResult(
            cert_path=cert_path,
            ca_path=ca_path,
            node_config_path=node_config_path,
            artifacts=[cert_path, ca_path, node_config_path],
        )
        self._seed_default_config(config_dir, result)
        return result

    def _seed_default_config(self, config_dir: Path, result: SynthesisResult):
        """Copy a default.yml template in if the directory has none."""
        default_path = config_dir / DEFAULT_CONFIG_FILE
        result.default_config_path = default_path
        if default_path.exists():
            logger.debug(f"Keeping existing {default_path}")
            return

        template = self.find_template()
        if template is None:
            logger.warning(f"Warning - no {DEFAULT_CONFIG_FILE} found, config will be minimal")
            result.default_config_path = None
            return

        try:
            shutil.copyfile(template, default_path)
        except OSError as e:
            raise FilesystemError(f"Could not copy {template} to {default_path}: {e}") from e
        result.template_copied = True
        logger.info(f"Copied default config template from {template}")
