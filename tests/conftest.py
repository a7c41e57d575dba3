"""Shared pytest fixtures for nebula-helper tests."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

CA_PEM = "-----BEGIN NEBULA CERTIFICATE-----\nCA\n-----END NEBULA CERTIFICATE-----\n"
CERT_PEM = "-----BEGIN NEBULA CERTIFICATE-----\nNODE\n-----END NEBULA CERTIFICATE-----\n"


@pytest.fixture
def make_response():
    """Factory for fake requests.Response objects.

    json_data is returned by .json(); without it .json() raises ValueError
    like a non-JSON body does.
    """
    def _make(status_code=200, json_data=None, text=None):
        resp = MagicMock()
        resp.status_code = status_code
        if json_data is not None:
            resp.json.return_value = json_data
            resp.text = text if text is not None else str(json_data)
        else:
            resp.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
            resp.text = text if text is not None else ""
        return resp
    return _make


@pytest.fixture
def metadata_doc():
    """Controller /config document."""
    return {
        "certEndpoint": "https://ctrl.example.com/cert",
        "oidcClientID": "abc",
        "oidcConfigURL": "https://idp/openid",
        "signEndpoint": "https://ctrl.example.com/sign",
        "nodeConfigEndpoint": "https://ctrl.example.com/node-config",
        "ca": CA_PEM,
    }


@pytest.fixture
def signing_doc():
    """Successful sign/enroll response body."""
    return {
        "certificate": CERT_PEM,
        "static_host_map": {"lh1": ["1.2.3.4:4242"]},
        "lighthouses": ["lh1"],
        "blocklist": [],
    }


@pytest.fixture
def config_dir(tmp_path):
    """Empty Nebula config directory."""
    path = tmp_path / 'nebula'
    path.mkdir()
    return path


@pytest.fixture
def restore_cwd():
    """Restore the working directory after tests that chdir."""
    import os
    cwd = os.getcwd()
    yield cwd
    os.chdir(cwd)
