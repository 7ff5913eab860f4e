"""Tests for configuration loading and profile management."""

import logging

import pytest

from roe.config import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    RoeConfig,
    RoeConfigManager,
    RoeProfile,
    load_config,
    parse_bool,
    parse_duration,
    parse_headers,
)
from roe.errors import ConfigurationError


class TestRoeConfig:
    """Tests for RoeConfig validation."""

    def test_minimal_config(self):
        """Test defaults."""
        config = RoeConfig(api_key="k", organization_id="o")

        assert config.base_url == DEFAULT_BASE_URL
        assert config.timeout == DEFAULT_TIMEOUT
        assert config.max_retries == DEFAULT_MAX_RETRIES
        assert config.auto_request_id is True
        assert "Authorization" in config.redact_headers

    def test_base_url_trailing_slash(self):
        """Test the base URL is normalised."""
        config = RoeConfig(api_key="k", organization_id="o", base_url="https://x.test/")

        assert config.base_url == "https://x.test"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("timeout", -1),
            ("max_retries", -1),
            ("retry_initial_interval", 0),
            ("retry_multiplier", 0.5),
            ("retry_jitter", 1.5),
            ("max_idle_conns", -1),
            ("idle_conn_timeout", -1),
        ],
    )
    def test_out_of_range(self, field, value):
        """Test range checks."""
        with pytest.raises(ValueError):
            RoeConfig(api_key="k", organization_id="o", **{field: value})


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_api_key(self):
        """Test a missing API key is reported."""
        with pytest.raises(ConfigurationError, match="API key is required"):
            load_config(organization_id="o")

    def test_missing_organization_id(self):
        """Test a missing organization id is reported."""
        with pytest.raises(ConfigurationError, match="Organization ID is required"):
            load_config(api_key="k")

    def test_from_parameters(self):
        """Test explicit parameters."""
        config = load_config("k", "o", "https://x.test", 10, 1)

        assert config.api_key == "k"
        assert config.organization_id == "o"
        assert config.base_url == "https://x.test"
        assert config.timeout == 10
        assert config.max_retries == 1

    def test_from_environment(self, monkeypatch):
        """Test ROE_* environment variables."""
        monkeypatch.setenv("ROE_API_KEY", "env-key")
        monkeypatch.setenv("ROE_ORGANIZATION_ID", "env-org")
        monkeypatch.setenv("ROE_BASE_URL", "https://env.test")
        monkeypatch.setenv("ROE_TIMEOUT", "30s")
        monkeypatch.setenv("ROE_MAX_RETRIES", "5")
        monkeypatch.setenv("ROE_DEBUG", "true")
        monkeypatch.setenv("ROE_RETRY_INITIAL_MS", "250")
        monkeypatch.setenv("ROE_EXTRA_HEADERS", "X-Team: ml")

        config = load_config()

        assert config.api_key == "env-key"
        assert config.organization_id == "env-org"
        assert config.base_url == "https://env.test"
        assert config.timeout == 30
        assert config.max_retries == 5
        assert config.debug is True
        assert config.retry_initial_interval == pytest.approx(0.25)
        assert config.extra_headers == [("X-Team", "ml")]

    def test_parameters_override_environment(self, monkeypatch):
        """Test precedence of parameters over environment."""
        monkeypatch.setenv("ROE_API_KEY", "env-key")
        monkeypatch.setenv("ROE_ORGANIZATION_ID", "env-org")
        monkeypatch.setenv("ROE_MAX_RETRIES", "5")

        config = load_config(api_key="param-key", max_retries=0)

        assert config.api_key == "param-key"
        assert config.organization_id == "env-org"
        assert config.max_retries == 0

    def test_zero_timeout_uses_default(self):
        """Test a zero timeout selects the default."""
        config = load_config("k", "o", timeout=0)

        assert config.timeout == DEFAULT_TIMEOUT

    def test_bad_environment_value(self, monkeypatch):
        """Test unparseable environment values name the variable."""
        monkeypatch.setenv("ROE_MAX_RETRIES", "many")

        with pytest.raises(ConfigurationError, match="parse ROE_MAX_RETRIES"):
            load_config("k", "o")

    def test_from_profile(self, config_path):
        """Test values from a stored profile."""
        RoeConfigManager(config_path).set_profile(
            "staging",
            RoeProfile(
                api_key="profile-key",
                organization_id="profile-org",
                base_url="https://staging.test",
                extra_headers={"X-Env": "staging"},
            ),
        )

        config = load_config(profile="staging", config_path=config_path)

        assert config.api_key == "profile-key"
        assert config.base_url == "https://staging.test"
        assert config.extra_headers == [("X-Env", "staging")]

    def test_env_overrides_profile(self, monkeypatch, config_path):
        """Test environment wins over the profile."""
        RoeConfigManager(config_path).set_profile(
            "default", RoeProfile(api_key="profile-key", organization_id="profile-org")
        )
        monkeypatch.setenv("ROE_API_KEY", "env-key")

        config = load_config(config_path=config_path)

        assert config.api_key == "env-key"
        assert config.organization_id == "profile-org"

    def test_profile_from_environment(self, monkeypatch, config_path):
        """Test ROE_PROFILE selects the profile."""
        RoeConfigManager(config_path).set_profile(
            "prod", RoeProfile(api_key="prod-key", organization_id="prod-org")
        )
        monkeypatch.setenv("ROE_PROFILE", "prod")

        config = load_config(config_path=config_path)

        assert config.api_key == "prod-key"

    def test_missing_named_profile(self, config_path):
        """Test an explicitly requested profile must exist."""
        with pytest.raises(ConfigurationError, match="profile 'nope' not found"):
            load_config("k", "o", profile="nope", config_path=config_path)

    def test_header_order(self, monkeypatch):
        """Test parameter headers come before environment headers."""
        monkeypatch.setenv("ROE_EXTRA_HEADERS", "X-B: 2")

        config = load_config("k", "o", extra_headers={"X-A": "1"})

        assert config.extra_headers == [("X-A", "1"), ("X-B", "2")]

    def test_logger_passthrough(self):
        """Test a custom logger is kept."""
        custom = logging.getLogger("custom")

        config = load_config("k", "o", logger=custom)

        assert config.logger is custom


class TestRoeConfigManager:
    """Tests for RoeConfigManager."""

    def test_read_missing_file(self, config_path):
        """Test reading when no file exists."""
        manager = RoeConfigManager(config_path)

        assert manager.read().profiles == {}
        assert manager.get_profile() is None

    def test_set_and_get_profile(self, config_path):
        """Test round trip through config.toml."""
        manager = RoeConfigManager(config_path)
        manager.set_profile("default", RoeProfile(api_key="k", timeout=15))

        profile = manager.get_profile("default")

        assert config_path.exists()
        assert profile.api_key == "k"
        assert profile.timeout == 15
        assert profile.organization_id is None

    def test_list_and_remove(self, config_path):
        """Test listing and removing profiles."""
        manager = RoeConfigManager(config_path)
        manager.set_profile("b", RoeProfile(api_key="1"))
        manager.set_profile("a", RoeProfile(api_key="2"))

        assert manager.list_profiles() == ["a", "b"]
        assert manager.remove_profile("a") is True
        assert manager.remove_profile("a") is False
        assert manager.list_profiles() == ["b"]

    def test_env_path(self, monkeypatch, config_path):
        """Test ROE_CONFIG_FILE sets the default path."""
        monkeypatch.setenv("ROE_CONFIG_FILE", str(config_path))

        assert RoeConfigManager().config_path == config_path


class TestParsers:
    """Tests for environment value parsers."""

    @pytest.mark.parametrize(
        "value,expected",
        [("30", 30.0), ("1.5", 1.5), ("500ms", 0.5), ("2s", 2.0), ("1m30s", 90.0), ("1h", 3600.0)],
    )
    def test_parse_duration(self, value, expected):
        """Test durations with and without units."""
        assert parse_duration(value) == pytest.approx(expected)

    def test_parse_duration_unit(self):
        """Test bare numbers scale by the unit."""
        assert parse_duration("200", 1e-3) == pytest.approx(0.2)
        assert parse_duration("1s", 1e-3) == pytest.approx(1.0)

    def test_parse_duration_invalid(self):
        """Test invalid durations."""
        with pytest.raises(ValueError):
            parse_duration("soon")

    def test_parse_bool(self):
        """Test boolean parsing."""
        assert parse_bool("TRUE") is True
        assert parse_bool("0") is False
        with pytest.raises(ValueError):
            parse_bool("maybe")

    def test_parse_headers(self):
        """Test header list parsing."""
        assert parse_headers("X-Team: ml; X-Env=prod") == [("X-Team", "ml"), ("X-Env", "prod")]

    def test_parse_headers_invalid(self):
        """Test malformed header entries."""
        with pytest.raises(ValueError):
            parse_headers("no-separator")
