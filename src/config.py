"""Helper configuration.

Settings are merged from, highest precedence first:
1. Command-line flags
2. NEBULA_HELPER_* environment variables
3. YAML settings file (--settings or NEBULA_HELPER_SETTINGS)
4. Defaults

Settings file example:

    server: https://controller.example.com/api
    request_timeout: 15
    login_timeout: 120
    callback_port: 18080
    ca_cert: /etc/nebula/controller-ca.pem
    template: /etc/nebula/default.yml
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from provision.errors import ConfigurationError

DEFAULT_TEMPLATE_PATH = Path("/usr/local/share/nebula-helper/default.yml")
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_LOGIN_TIMEOUT = 300.0

ACTIONS = ("oidc_login", "enroll")

# Environment variable -> setting name
ENV_VARS = {
    "NEBULA_HELPER_SERVER": "server",
    "NEBULA_HELPER_TOKEN": "token",
    "NEBULA_HELPER_CONFIG_PATH": "config_path",
    "NEBULA_HELPER_TEMPLATE": "template",
    "NEBULA_HELPER_TIMEOUT": "request_timeout",
}
SETTINGS_ENV_VAR = "NEBULA_HELPER_SETTINGS"

# Keys accepted in the settings file (token comes only from flags or environment)
SETTINGS_FILE_KEYS = (
    "server",
    "config_path",
    "request_timeout",
    "login_timeout",
    "deadline",
    "callback_port",
    "ca_cert",
    "insecure",
    "template",
)


@dataclass
class HelperConfig:
    """Runtime settings for one helper invocation."""

    action: str = "oidc_login"
    config_path: Path = field(default_factory=lambda: Path("."))
    server: str = ""
    token: str = field(default="", repr=False)
    template: Optional[Path] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    login_timeout: float = DEFAULT_LOGIN_TIMEOUT
    deadline: Optional[float] = None
    callback_port: int = 0
    ca_cert: Optional[Path] = None
    insecure: bool = False
    open_browser: bool = True
    verbose: bool = False
    # Working directory at launch; the CLI later enters config_path
    launch_dir: Path = field(default_factory=Path.cwd)

    def __post_init__(self):
        self.launch_dir = Path(self.launch_dir).expanduser().absolute()
        # Relative paths name files as seen from the launch directory, not config_path
        for name in ("config_path", "template", "ca_cert"):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, self.launch_dir / Path(value).expanduser())

        if self.ca_cert is not None and not self.ca_cert.is_file():
            raise ConfigurationError(f"CA certificate bundle not found: {self.ca_cert}")

        if self.action not in ACTIONS:
            raise ConfigurationError(f"Unknown action '{self.action}' (expected one of: {', '.join(ACTIONS)})")
        for name in ("request_timeout", "login_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.deadline is not None and self.deadline <= 0:
            raise ConfigurationError("deadline must be positive")
        if not 0 <= self.callback_port <= 65535:
            raise ConfigurationError(f"callback_port out of range: {self.callback_port}")

    @property
    def verify(self):
        """requests ``verify`` value for controller and IdP calls."""
        if self.insecure:
            return False
        if self.ca_cert:
            return str(self.ca_cert)
        return True

    def template_paths(self) -> list:
        """default.yml template candidates, first existing wins."""
        paths = []
        if self.template:
            paths.append(self.template)
        paths.append(self.launch_dir / "default.yml")
        paths.append(DEFAULT_TEMPLATE_PATH)
        return paths


def _coerce(name: str, value, source: str):
    """Convert a raw setting to the field's type."""
    try:
        if name in ("request_timeout", "login_timeout", "deadline"):
            return float(value)
        if name == "callback_port":
            return int(value)
        if name == "insecure":
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in ("1", "true", "yes", "on")
        if name in ("config_path", "template", "ca_cert"):
            return Path(os.path.expanduser(str(value)))
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name} in {source}: {value!r}") from e


def load_settings_file(path: Path) -> dict:
    """Load a YAML settings file.

    Raises:
        ConfigurationError: If the file is unreadable, invalid YAML, not a
            mapping, or contains unknown keys
    """
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in settings file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")

    unknown = sorted(set(data) - set(SETTINGS_FILE_KEYS))
    if unknown:
        raise ConfigurationError(f"Unknown keys in settings file {path}: {', '.join(map(str, unknown))}")

    return {name: _coerce(name, value, str(path)) for name, value in data.items() if value is not None}


def get_config_from_env(environ: Optional[dict] = None) -> dict:
    """Get configuration from environment variables.

    Returns:
        Dict of setting name -> value for every variable that is set
    """
    environ = os.environ if environ is None else environ
    config = {}
    for var, name in ENV_VARS.items():
        if value := environ.get(var):
            config[name] = _coerce(name, value, var)
    return config


def build_config(cli_values: dict, environ: Optional[dict] = None) -> HelperConfig:
    """Merge CLI values with environment, settings file and defaults.

    Args:
        cli_values: Setting name -> value from argparse; None means "not given"
        environ: Environment mapping (defaults to os.environ)

    Returns:
        HelperConfig

    Raises:
        ConfigurationError: On invalid values or settings file
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(HelperConfig)}

    merged: dict = {}
    settings_path = cli_values.get("settings") or environ.get(SETTINGS_ENV_VAR)
    if settings_path:
        merged.update(load_settings_file(Path(settings_path)))

    merged.update(get_config_from_env(environ))
    merged.update({k: v for k, v in cli_values.items() if v is not None and k in known})

    return HelperConfig(**merged)
