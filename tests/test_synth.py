"""Tests for provision.synth."""

import logging
from unittest.mock import patch

import pytest
import yaml

from provision.errors import FilesystemError
from provision.keys import KeyPair
from provision.signing import SigningResponse
from provision.synth import ConfigSynthesizer, build_node_config

CA_PEM = "-----BEGIN NEBULA CERTIFICATE-----\nCA\n-----END NEBULA CERTIFICATE-----\n"
CERT_PEM = "-----BEGIN NEBULA CERTIFICATE-----\nNODE\n-----END NEBULA CERTIFICATE-----\n"


@pytest.fixture
def signing_response(signing_doc):
    return SigningResponse.from_dict(signing_doc)


@pytest.fixture
def keypair(config_dir):
    return KeyPair(public_key_path=config_dir / 'node.pub', private_key_path=config_dir / 'node.key')


@pytest.fixture
def template(tmp_path):
    path = tmp_path / 'templates' / 'default.yml'
    path.parent.mkdir()
    path.write_text("listen:\n  host: 0.0.0.0\n  port: 4242\n")
    return path


class TestBuildNodeConfig:
    """Tests for build_node_config()."""

    def test_structure(self, signing_response):
        config = build_node_config(signing_response, "node.crt", "ca.crt", "node.key")
        assert config == {
            "pki": {"ca": "ca.crt", "cert": "node.crt", "key": "node.key", "blocklist": []},
            "static_host_map": {"lh1": ["1.2.3.4:4242"]},
            "lighthouse": {"am_lighthouse": False, "hosts": ["lh1"]},
        }

    def test_blocklist_carried_verbatim(self):
        resp = SigningResponse(certificate="C", blocklist=["aa11", "bb22"])
        assert build_node_config(resp, "c", "a", "k")["pki"]["blocklist"] == ["aa11", "bb22"]


class TestConfigSynthesizer:
    """Tests for ConfigSynthesizer.write()."""

    def test_writes_artifacts(self, signing_response, keypair, config_dir, template):
        result = ConfigSynthesizer([template]).write(signing_response, keypair, CA_PEM, config_dir)

        assert (config_dir / 'node.crt').read_text() == CERT_PEM
        assert (config_dir / 'ca.crt').read_text() == CA_PEM
        node_config = yaml.safe_load((config_dir / 'zz_controller_config.yml').read_text())
        assert node_config["pki"] == {
            "ca": "ca.crt",
            "cert": "node.crt",
            "key": "node.key",
            "blocklist": [],
        }
        assert node_config["static_host_map"] == {"lh1": ["1.2.3.4:4242"]}
        assert node_config["lighthouse"]["hosts"] == ["lh1"]
        assert result.artifacts == [
            config_dir / 'node.crt',
            config_dir / 'ca.crt',
            config_dir / 'zz_controller_config.yml',
        ]

    def test_copies_template_once(self, signing_response, keypair, config_dir, template):
        synth = ConfigSynthesizer([template])
        first = synth.write(signing_response, keypair, CA_PEM, config_dir)
        assert first.template_copied is True
        assert (config_dir / 'default.yml').read_text() == template.read_text()

        (config_dir / 'default.yml').write_text("# edited by operator\n")
        second = synth.write(signing_response, keypair, CA_PEM, config_dir)

        assert second.template_copied is False
        assert second.default_config_path == config_dir / 'default.yml'
        assert (config_dir / 'default.yml').read_text() == "# edited by operator\n"

    def test_first_existing_template_wins(self, signing_response, keypair, config_dir, template, tmp_path):
        missing = tmp_path / 'nowhere' / 'default.yml'
        synth = ConfigSynthesizer([missing, template])
        assert synth.find_template() == template

    def test_missing_template_warns(self, signing_response, keypair, config_dir, tmp_path, caplog):
        synth = ConfigSynthesizer([tmp_path / 'nowhere.yml'])
        with caplog.at_level(logging.WARNING, logger="provision.synth"):
            result = synth.write(signing_response, keypair, CA_PEM, config_dir)

        assert "no default.yml found, config will be minimal" in caplog.text
        assert result.default_config_path is None
        assert not (config_dir / 'default.yml').exists()
        assert (config_dir / 'zz_controller_config.yml').exists()

    def test_replaces_previous_artifacts(self, keypair, config_dir):
        (config_dir / 'node.crt').write_text("old certificate with more bytes than the new one")
        ConfigSynthesizer().write(SigningResponse(certificate="NEW"), keypair, CA_PEM, config_dir)
        assert (config_dir / 'node.crt').read_text() == "NEW"

    def test_template_copy_failure(self, signing_response, keypair, config_dir, template):
        with patch("provision.synth.shutil.copyfile", side_effect=OSError("disk full")):
            with pytest.raises(FilesystemError) as exc_info:
                ConfigSynthesizer([template]).write(signing_response, keypair, CA_PEM, config_dir)
        assert "disk full" in exc_info.value.message

    def test_unwritable_directory(self, signing_response, keypair, tmp_path):
        with pytest.raises(FilesystemError):
            ConfigSynthesizer().write(signing_response, keypair, CA_PEM, tmp_path / 'missing')
