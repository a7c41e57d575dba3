"""Error taxonomy for the provisioning workflow.

Every failure is raised as a ProvisionError subclass and propagates to the
CLI driver, which logs it once and exits non-zero.
"""

from typing import Optional

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class ProvisionError(Exception):
    """Base exception for provisioning errors."""

    default_code = "E100"

    def __init__(self, message: str, code: Optional[str] = None, exit_code: int = EXIT_FAILURE):
        self.code = code or self.default_code
        self.message = message
        self.exit_code = exit_code
        super().__init__(f"{self.code}: {message}")


class ConfigurationError(ProvisionError):
    """Required input (server URL, token, settings) missing or invalid."""

    default_code = "E101"


class DirectoryError(ProvisionError):
    """Configuration directory cannot be entered."""

    default_code = "E102"


class NetworkError(ProvisionError):
    """Transport failure reaching the controller or identity provider."""

    default_code = "E200"


class DeadlineExceeded(NetworkError):
    """Run deadline expired before or during a network operation."""

    default_code = "E201"


class ProtocolError(ProvisionError):
    """Non-success or malformed response from the controller."""

    default_code = "E300"

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        self.status = status
        super().__init__(message, code=code)


class ControllerError(ProtocolError):
    """Structured rejection returned by the enrollment endpoint."""

    default_code = "E301"

    def __init__(self, status: str, message: str, http_status: Optional[int] = None):
        self.controller_status = status
        super().__init__(message, status=http_status)


class AuthenticationError(ProvisionError):
    """Interactive login denied, abandoned, or failed."""

    default_code = "E400"


class FilesystemError(ProvisionError):
    """A generated artifact could not be written."""

    default_code = "E500"


class KeyGenerationError(ProvisionError):
    """Randomness source failed; no key material may be produced."""

    default_code = "E900"
