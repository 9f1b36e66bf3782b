import pytest

from burrow.core.exceptions import ConfigurationError, UnknownProviderError
from burrow.providers import build
from burrow.providers.hetzner import HetznerClient
from burrow.providers.registry import HetznerProvider, ScalewayProvider
from burrow.providers.scaleway import ScalewayClient


class TestBuild:
    def test_builds_hetzner(self):
        provider = build("hetzner", api_key="k", location="fsn1")

        assert isinstance(provider, HetznerProvider)
        assert provider.location == "fsn1"
        assert isinstance(provider.client(), HetznerClient)

    def test_builds_scaleway(self):
        provider = build("scaleway", api_key="k", project_id="p")

        assert isinstance(provider, ScalewayProvider)
        assert isinstance(provider.client(), ScalewayClient)

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError):
            build("linode")

    def test_invalid_values(self):
        with pytest.raises(ConfigurationError, match="Invalid hetzner"):
            build("hetzner", server_type=12)


class TestHetznerProvider:
    def test_validate_requires_key_files(self, tmp_path):
        private = tmp_path / "id_ed25519"
        private.write_text("PRIVATE")

        with pytest.raises(ConfigurationError, match="public key"):
            HetznerProvider(api_key="k", ssh_key_path=str(private)).validate()

        (tmp_path / "id_ed25519.pub").write_text("ssh-ed25519 AAAA operator\n")
        HetznerProvider(api_key="k", ssh_key_path=str(private)).validate()

    def test_operator_public_key(self, tmp_path):
        private = tmp_path / "id_ed25519"
        (tmp_path / "id_ed25519.pub").write_text("ssh-ed25519 AAAA operator\n")

        assert HetznerProvider(ssh_key_path=str(private)).operator_public_key() == "ssh-ed25519 AAAA operator"
        assert HetznerProvider().operator_public_key() is None

    def test_scaleway_requires_project(self):
        with pytest.raises(ConfigurationError, match="project_id"):
            ScalewayProvider(api_key="k").validate()
