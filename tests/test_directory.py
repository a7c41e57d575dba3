"""Tests for provision.directory."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from provision.common import Deadline
from provision.directory import (
    ControllerDirectory,
    ControllerMetadata,
    TunnelMetadata,
    endpoint_url,
    load_tunnel_metadata,
)
from provision.errors import DeadlineExceeded, NetworkError, ProtocolError


class TestEndpointUrl:
    """Tests for endpoint_url()."""

    @pytest.mark.parametrize("base", [
        "https://ctrl.example.com/api",
        "https://ctrl.example.com/api/",
    ])
    def test_base_with_path(self, base):
        assert endpoint_url(base, "config") == "https://ctrl.example.com/api/config"

    @pytest.mark.parametrize("base", [
        "https://ctrl.example.com",
        "https://ctrl.example.com/",
    ])
    def test_base_without_path(self, base):
        assert endpoint_url(base, "enroll") == "https://ctrl.example.com/enroll"

    def test_keeps_port_and_query(self):
        url = endpoint_url("http://ctrl:8080/v1/mesh?tenant=a", "config")
        assert url == "http://ctrl:8080/v1/mesh/config?tenant=a"


class TestControllerMetadata:
    """Tests for ControllerMetadata.from_dict()."""

    def test_decodes_wire_names(self, metadata_doc):
        meta = ControllerMetadata.from_dict(metadata_doc)
        assert meta.sign_endpoint == "https://ctrl.example.com/sign"
        assert meta.oidc_client_id == "abc"
        assert meta.oidc_config_url == "https://idp/openid"
        assert meta.ca_cert == metadata_doc["ca"]
        assert meta.cert_endpoint == "https://ctrl.example.com/cert"
        assert meta.node_config_endpoint == "https://ctrl.example.com/node-config"

    def test_missing_fields_are_empty(self):
        meta = ControllerMetadata.from_dict({"signEndpoint": "https://c/sign"})
        assert meta.ca_cert == ""
        assert meta.oidc_client_id == ""

    def test_is_immutable(self, metadata_doc):
        meta = ControllerMetadata.from_dict(metadata_doc)
        with pytest.raises(AttributeError):
            meta.sign_endpoint = "https://evil/sign"

    def test_non_object_rejected(self):
        with pytest.raises(ProtocolError):
            ControllerMetadata.from_dict(["not", "an", "object"])

    def test_wrong_field_type_rejected(self):
        with pytest.raises(ProtocolError) as exc_info:
            ControllerMetadata.from_dict({"signEndpoint": 42})
        assert "signEndpoint" in exc_info.value.message


class TestLoadTunnelMetadata:
    """Tests for load_tunnel_metadata()."""

    def test_loads_all_fields(self, config_dir):
        (config_dir / 'metadata.json').write_text(json.dumps({
            "controller_url": "https://ctrl.example.com/api",
            "tunnel_name": "office",
            "fingerprint": "ab12",
        }))
        meta = load_tunnel_metadata(config_dir)
        assert meta == TunnelMetadata(
            controller_url="https://ctrl.example.com/api",
            tunnel_name="office",
            fingerprint="ab12",
        )

    def test_partial_fields(self, config_dir):
        (config_dir / 'metadata.json').write_text('{"controller_url": "https://c"}')
        meta = load_tunnel_metadata(config_dir)
        assert meta.controller_url == "https://c"
        assert meta.tunnel_name == ""

    def test_missing_file_is_absent(self, config_dir):
        """No metadata.json means not yet bootstrapped, not an error."""
        assert load_tunnel_metadata(config_dir) is None

    def test_invalid_json_is_absent(self, config_dir):
        (config_dir / 'metadata.json').write_text("{not json")
        assert load_tunnel_metadata(config_dir) is None

    def test_non_object_is_absent(self, config_dir):
        (config_dir / 'metadata.json').write_text('["https://c"]')
        assert load_tunnel_metadata(config_dir) is None

    def test_wrong_field_type_is_absent(self, config_dir):
        (config_dir / 'metadata.json').write_text('{"controller_url": 5}')
        assert load_tunnel_metadata(config_dir) is None

    def test_unreadable_path_is_absent(self, tmp_path):
        assert load_tunnel_metadata(tmp_path / 'does-not-exist') is None


class TestControllerDirectoryResolve:
    """Tests for ControllerDirectory.resolve()."""

    def test_fetches_config_endpoint(self, make_response, metadata_doc):
        session = MagicMock()
        session.get.return_value = make_response(200, metadata_doc)
        directory = ControllerDirectory(session=session, request_timeout=12.0)

        meta = directory.resolve("https://ctrl.example.com/api")

        assert meta.sign_endpoint == "https://ctrl.example.com/sign"
        args, kwargs = session.get.call_args
        assert args[0] == "https://ctrl.example.com/api/config"
        assert kwargs["timeout"] == 12.0
        assert kwargs["verify"] is True

    def test_passes_ca_bundle(self, make_response, metadata_doc):
        session = MagicMock()
        session.get.return_value = make_response(200, metadata_doc)
        ControllerDirectory(session=session, verify="/etc/ca.pem").resolve("https://c")
        assert session.get.call_args.kwargs["verify"] == "/etc/ca.pem"

    def test_connection_error_is_network_error(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(NetworkError) as exc_info:
            ControllerDirectory(session=session).resolve("https://c")
        assert "Cannot connect" in exc_info.value.message

    def test_timeout_is_network_error(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.Timeout()
        with pytest.raises(NetworkError) as exc_info:
            ControllerDirectory(session=session).resolve("https://c")
        assert "Timeout" in exc_info.value.message

    def test_malformed_body_is_protocol_error(self, make_response):
        session = MagicMock()
        session.get.return_value = make_response(200, text="<html>")
        with pytest.raises(ProtocolError):
            ControllerDirectory(session=session).resolve("https://c")

    def test_non_200_is_protocol_error(self, make_response):
        session = MagicMock()
        session.get.return_value = make_response(503, text="unavailable")
        with pytest.raises(ProtocolError) as exc_info:
            ControllerDirectory(session=session).resolve("https://c")
        assert exc_info.value.status == 503

    def test_expired_deadline_skips_request(self):
        session = MagicMock()
        deadline = Deadline(1.0, clock=iter([0.0, 5.0]).__next__)
        with pytest.raises(DeadlineExceeded):
            ControllerDirectory(session=session).resolve("https://c", deadline)
        session.get.assert_not_called()
