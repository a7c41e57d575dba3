#!/usr/bin/env python3
"""CLI entry point for nebula-helper.

Provisions this node into a Nebula mesh run by a controller:
- oidc_login: log in through the controller's identity provider
- enroll: use a one-time token issued by the controller

Usage:
    nebula-helper --action oidc_login --config-path /etc/nebula
    nebula-helper --action enroll --server https://ctrl/api --token <ott>

Exit codes: 0 on success, 1 on any failure.
"""

import argparse
import logging
import os
import sys
import webbrowser
from pathlib import Path

import requests

from config import ACTIONS, HelperConfig, build_config
from provision.auth import AuthenticationStrategy, InteractiveLogin, OneTimeToken
from provision.common import Deadline
from provision.directory import ControllerDirectory
from provision.errors import (
    EXIT_SUCCESS,
    ConfigurationError,
    DirectoryError,
    KeyGenerationError,
    ProvisionError,
)
from provision.signing import SigningClient
from provision.synth import ConfigSynthesizer
from provision.workflow import ProvisioningWorkflow, ProvisionResult, resolve_bootstrap_url

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Optional flags default to None so unset flags fall through to the
    environment and settings file.
    """
    parser = argparse.ArgumentParser(
        prog="nebula-helper",
        description="Obtain a Nebula node certificate and config from a mesh controller",
    )
    parser.add_argument(
        "--action",
        choices=ACTIONS,
        default="oidc_login",
        help="Action to run: oidc_login or enroll (default: oidc_login)",
    )
    parser.add_argument(
        "--config-path",
        dest="config_path",
        type=Path,
        help="Nebula config directory (default: current directory). Env: NEBULA_HELPER_CONFIG_PATH",
    )
    parser.add_argument(
        "--server",
        "-s",
        help="Controller bootstrap URL. Env: NEBULA_HELPER_SERVER",
    )
    parser.add_argument(
        "--token",
        "-t",
        help="One-time token for enrollment. Env: NEBULA_HELPER_TOKEN",
    )
    parser.add_argument(
        "--template",
        type=Path,
        help="default.yml template to copy in when the config directory has none. Env: NEBULA_HELPER_TEMPLATE",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        help="YAML settings file. Env: NEBULA_HELPER_SETTINGS",
    )
    parser.add_argument(
        "--timeout",
        dest="request_timeout",
        type=float,
        help="Per-request timeout in seconds (default: 30). Env: NEBULA_HELPER_TIMEOUT",
    )
    parser.add_argument(
        "--login-timeout",
        dest="login_timeout",
        type=float,
        help="Seconds to wait for the browser login (default: 300)",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        help="Overall time limit for the run in seconds (default: none)",
    )
    parser.add_argument(
        "--callback-port",
        dest="callback_port",
        type=int,
        help="Local port for the login redirect (default: any free port)",
    )
    parser.add_argument(
        "--ca-cert",
        dest="ca_cert",
        type=Path,
        help="CA bundle for verifying the controller and identity provider",
    )
    parser.add_argument(
        "--insecure",
        "-k",
        action="store_true",
        default=None,
        help="Skip TLS certificate verification",
    )
    parser.add_argument(
        "--no-browser",
        dest="open_browser",
        action="store_false",
        default=None,
        help="Print the login URL instead of opening a browser",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=None,
        help="Enable verbose output",
    )
    return parser


def enter_config_dir(config_path: Path) -> Path:
    """Change into the config directory and return its absolute path.

    Raises:
        DirectoryError: If the directory cannot be entered
    """
    path = Path(config_path).expanduser().absolute()
    try:
        os.chdir(path)
    except OSError as e:
        raise DirectoryError(f"Could not chdir to config path {path}: {e}") from e
    return path


def _select_strategy(config: HelperConfig, session: requests.Session) -> AuthenticationStrategy:
    if config.action == "enroll":
        return OneTimeToken(config.token)
    return InteractiveLogin(
        session=session,
        request_timeout=config.request_timeout,
        login_timeout=config.login_timeout,
        callback_port=config.callback_port,
        open_browser=webbrowser.open if config.open_browser else None,
        verify=config.verify,
    )


def _build_workflow(config: HelperConfig, session: requests.Session) -> ProvisioningWorkflow:
    return ProvisioningWorkflow(
        directory=ControllerDirectory(session, config.request_timeout, config.verify),
        signing_client=SigningClient(session, config.request_timeout, config.verify),
        synthesizer=ConfigSynthesizer(config.template_paths()),
    )


def run_oidc_login(config: HelperConfig) -> ProvisionResult:
    """Provision through an interactive login.

    Enters the config directory first so the server URL can fall back to
    metadata.json.
    """
    deadline = Deadline(config.deadline)
    with requests.Session() as session:
        config_dir = enter_config_dir(config.config_path)
        bootstrap_url = resolve_bootstrap_url(config.server, config_dir)
        strategy = _select_strategy(config, session)
        return _build_workflow(config, session).run(bootstrap_url, strategy, config_dir, deadline)


def run_enroll(config: HelperConfig) -> ProvisionResult:
    """Provision with a one-time token.

    Server URL and token are checked before the config directory is entered.
    """
    deadline = Deadline(config.deadline)
    if not config.server:
        raise ConfigurationError("Cannot enroll without server URL")
    with requests.Session() as session:
        strategy = _select_strategy(config, session)
        config_dir = enter_config_dir(config.config_path)
        return _build_workflow(config, session).run(config.server, strategy, config_dir, deadline)


def run(config: HelperConfig) -> ProvisionResult:
    """Run the configured action.

    Raises:
        ProvisionError: On any failure
    """
    if config.action == "enroll":
        return run_enroll(config)
    return run_oidc_login(config)


def main(argv=None) -> int:
    """CLI entry point.

    Returns:
        Exit code
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",  # Simple format for CLI output
    )

    try:
        config = build_config(vars(args))
        if config.insecure:
            logger.warning("Warning: TLS certificate verification disabled")
        result = run(config)
    except KeyGenerationError as e:
        logger.critical(f"Refusing to continue without secure key material: {e.code} - {e.message}")
        return e.exit_code
    except ProvisionError as e:
        logger.error(f"Error: {e.code} - {e.message}")
        return e.exit_code

    logger.info(f"Successfully obtained mesh config in {result.config_dir} ({result.lighthouse_count} lighthouses)")
    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
