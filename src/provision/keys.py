"""Ephemeral X25519 keypair generation.

Each run draws a fresh private scalar, derives the public half, and writes
both in Nebula's PEM framing. Prior key files are replaced, never reused.
"""

import base64
import logging
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import x25519

from provision.common import replace_file
from provision.errors import FilesystemError, KeyGenerationError

logger = logging.getLogger(__name__)

PUBLIC_KEY_FILE = "node.pub"
PRIVATE_KEY_FILE = "node.key"
KEY_SIZE = 32

PUBLIC_KEY_LABEL = "NEBULA X25519 PUBLIC KEY"
PRIVATE_KEY_LABEL = "NEBULA X25519 PRIVATE KEY"

RandomSource = Callable[[int], bytes]


def marshal_pem(label: str, raw: bytes) -> str:
    """Frame raw key bytes as a PEM block."""
    body = base64.encodebytes(raw).decode("ascii")
    return f"-----BEGIN {label}-----\n{body}-----END {label}-----\n"


def unmarshal_pem(label: str, pem: str) -> bytes:
    """Extract raw bytes from a PEM block with the given label.

    Raises:
        ValueError: If the framing or label does not match
    """
    lines = pem.strip().splitlines()
    if len(lines) < 3 or lines[0] != f"-----BEGIN {label}-----" or lines[-1] != f"-----END {label}-----":
        raise ValueError(f"Not a {label} PEM block")
    return base64.b64decode("".join(lines[1:-1]))


def derive_public_key(private_raw: bytes) -> bytes:
    """X25519 base-point multiplication of a 32-byte scalar."""
    private_key = x25519.X25519PrivateKey.from_private_bytes(private_raw)
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


@dataclass(frozen=True)
class KeyPair:
    """Paths of a generated keypair."""

    public_key_path: Path
    private_key_path: Path

    def public_key_pem(self) -> str:
        try:
            return self.public_key_path.read_text(encoding="ascii")
        except OSError as e:
            raise FilesystemError(f"Could not read public key {self.public_key_path}: {e}") from e


class KeyPairProvisioner:
    """Generates and persists X25519 keypairs."""

    def __init__(self, random_source: RandomSource = secrets.token_bytes):
        self.random_source = random_source

    def _draw_private_key(self) -> bytes:
        try:
            raw = self.random_source(KEY_SIZE)
        except Exception as e:
            raise KeyGenerationError(f"Randomness source failed: {e}") from e
        if not isinstance(raw, bytes) or len(raw) != KEY_SIZE:
            raise KeyGenerationError(
                f"Randomness source returned {len(raw) if isinstance(raw, bytes) else type(raw).__name__}"
                f" instead of {KEY_SIZE} bytes"
            )
        return raw

    def generate(self, directory: Path) -> KeyPair:
        """Generate a keypair into directory, replacing node.pub/node.key.

        Raises:
            KeyGenerationError: If the randomness source fails (nothing is written)
            FilesystemError: If a key file cannot be written
        """
        directory = Path(directory)
        private_raw = self._draw_private_key()
        public_raw = derive_public_key(private_raw)

        public_path = replace_file(
            directory / PUBLIC_KEY_FILE, marshal_pem(PUBLIC_KEY_LABEL, public_raw), mode=0o644
        )
        private_path = replace_file(
            directory / PRIVATE_KEY_FILE, marshal_pem(PRIVATE_KEY_LABEL, private_raw), mode=0o600
        )

        logger.info(f"Generated keypair: {public_path}")
        return KeyPair(public_key_path=public_path, private_key_path=private_path)
