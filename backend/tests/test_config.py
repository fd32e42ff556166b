"""Tests for configuration validation."""

import pytest

from nitrod.config import Settings, ConfigurationError, validate_config_on_startup


class TestSettingsValidation:
    """Test Settings.validate_required() method."""

    def test_default_settings_are_valid(self):
        """Defaults describe a working local setup."""
        settings = Settings()
        assert settings.validate_required() == []

    def test_missing_version_fails(self):
        settings = Settings(version="")
        errors = settings.validate_required()
        assert any("VERSION" in e for e in errors)

    def test_admin_url_must_be_http(self):
        settings = Settings(caddy_admin_url="unix:///run/caddy.sock")
        errors = settings.validate_required()
        assert any("CADDY_ADMIN_URL" in e for e in errors)

    def test_https_admin_url_allowed(self):
        settings = Settings(caddy_admin_url="https://proxy.internal:2019")
        assert settings.validate_required() == []

    @pytest.mark.parametrize("field", ["nitro_http_port", "nitro_https_port", "nitro_api_port"])
    def test_non_numeric_port_fails(self, field):
        settings = Settings(**{field: "eighty"})
        errors = settings.validate_required()
        assert any(field.upper() in e for e in errors)

    def test_port_out_of_range_fails(self):
        settings = Settings(nitro_http_port="70000")
        errors = settings.validate_required()
        assert any("NITRO_HTTP_PORT" in e for e in errors)

    def test_custom_ports_pass(self):
        settings = Settings(nitro_http_port="8080", nitro_https_port="8443", nitro_api_port="5001")
        assert settings.validate_required() == []

    def test_unknown_exec_mode_fails(self):
        settings = Settings(exec_mode="ssh")
        errors = settings.validate_required()
        assert any("EXEC_MODE" in e for e in errors)

    def test_zero_timeout_fails(self):
        settings = Settings(process_timeout=0)
        errors = settings.validate_required()
        assert any("PROCESS_TIMEOUT" in e for e in errors)

    def test_retry_attempts_must_be_positive(self):
        settings = Settings(caddy_retry_attempts=0)
        errors = settings.validate_required()
        assert any("CADDY_RETRY_ATTEMPTS" in e for e in errors)

    def test_poll_delays_must_be_ordered(self):
        settings = Settings(exec_poll_initial_delay=1.0, exec_poll_max_delay=0.5)
        errors = settings.validate_required()
        assert any("EXEC_POLL_MAX_DELAY" in e for e in errors)

    def test_development_mode_only_warns(self, caplog):
        settings = Settings(nitro_development=True)
        assert settings.validate_required() == []
        assert "NITRO_DEVELOPMENT" in caplog.text

    def test_commands_run_in_containers_by_default(self):
        assert Settings().exec_mode == "container"

    def test_local_exec_mode_only_warns(self, caplog):
        settings = Settings(exec_mode="local")
        assert settings.validate_required() == []
        assert "MySQL targets are refused" in caplog.text


class TestDerivedSettings:
    def test_proxy_image_ref_uses_version(self):
        settings = Settings(proxy_image="craftcms/nitro-proxy", version="2.0.1")
        assert settings.proxy_image_ref == "craftcms/nitro-proxy:2.0.1"


class TestValidateConfigOnStartup:
    """Test validate_config_on_startup() function."""

    def test_raises_on_invalid_config(self):
        settings = Settings(exec_mode="bogus", caddy_admin_url="not-a-url")

        with pytest.raises(ConfigurationError) as exc_info:
            validate_config_on_startup(settings)

        assert "EXEC_MODE" in str(exc_info.value)
        assert "CADDY_ADMIN_URL" in str(exc_info.value)

    def test_passes_on_valid_config(self):
        validate_config_on_startup(Settings())
