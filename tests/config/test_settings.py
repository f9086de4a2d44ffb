"""
Tests for environment-driven settings.
"""

import base64

import pytest

from trading_config.settings import Settings, decode_builder_secret, normalize_base64_secret


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "POLY_BUILDER_API_KEY",
        "POLY_BUILDER_SECRET",
        "POLY_BUILDER_PASSPHRASE",
        "POLYGON_FALLBACK_RPC_URLS",
        "POLYGON_RPC_URL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestNormalizeBase64Secret:
    def test_url_safe_alphabet_is_converted(self):
        assert normalize_base64_secret("ab-_") == "ab+/"

    def test_missing_padding_is_added(self):
        assert normalize_base64_secret("abcdef") == "abcdef=="

    def test_whitespace_is_stripped(self):
        assert normalize_base64_secret("  abcd\n") == "abcd"

    def test_none_passes_through(self):
        assert normalize_base64_secret(None) is None


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.chain_id == 137
        assert settings.max_batch_size == 10
        assert settings.deploy_poll_max_attempts == 90
        assert settings.approval_poll_max_attempts == 60
        assert not settings.builder_configured

    def test_builder_secret_from_env_is_normalized(self, monkeypatch):
        raw = base64.urlsafe_b64encode(b"\xfb\xff builder secret").decode().rstrip("=")
        monkeypatch.setenv("POLY_BUILDER_API_KEY", "key")
        monkeypatch.setenv("POLY_BUILDER_SECRET", raw)
        monkeypatch.setenv("POLY_BUILDER_PASSPHRASE", "pass")

        settings = Settings(_env_file=None)

        assert settings.builder_configured
        assert decode_builder_secret(settings) == b"\xfb\xff builder secret"

    def test_decode_without_secret_raises(self):
        with pytest.raises(ValueError):
            decode_builder_secret(Settings(_env_file=None))

    def test_fallback_rpcs_from_comma_separated_env(self, monkeypatch):
        monkeypatch.setenv("POLYGON_RPC_URL", "https://primary")
        monkeypatch.setenv("POLYGON_FALLBACK_RPC_URLS", "https://a, https://b,,https://primary")

        settings = Settings(_env_file=None)

        assert settings.polygon_fallback_rpc_urls == ["https://a", "https://b", "https://primary"]
        assert settings.rpc_urls == ["https://primary", "https://a", "https://b"]

    def test_empty_fallback_env_means_primary_only(self, monkeypatch):
        monkeypatch.setenv("POLYGON_FALLBACK_RPC_URLS", "")

        settings = Settings(_env_file=None)

        assert settings.rpc_urls == [settings.polygon_rpc_url]
