from functools import lru_cache
import logging
import sys
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
    pass


class Settings(BaseSettings):
    """Daemon configuration pulled from environment variables or .env file."""

    # Reported by /api/version and compared verbatim by the CLI
    version: str = "2.0.0-beta.2"

    # Caddy admin API running next to the daemon inside the proxy container
    caddy_admin_url: str = "http://127.0.0.1:2019"
    caddy_timeout: float = 10.0
    caddy_retry_attempts: int = 2
    static_root: str = "/var/www/html"
    caddyfile_path: str = "/etc/caddy/Caddyfile"

    # Proxy container
    proxy_image: str = "craftcms/nitro-proxy"
    proxy_name: str = "nitro-proxy"
    proxy_data_path: str = "/data"
    proxy_network: str = "nitro-network"
    environment_name: str = "nitro-dev"
    nitro_http_port: str = "80"
    nitro_https_port: str = "443"
    nitro_api_port: str = "5000"
    nitro_development: bool = False

    # Database provisioning
    reachability_timeout: float = 3.0
    reachability_inverted: bool = True
    exec_mode: str = "container"
    process_timeout: float = 600.0
    show_process_output: bool = False
    log_process_commands: bool = True
    import_temp_dir: str | None = None

    # Container exec completion polling
    exec_poll_initial_delay: float = 0.05
    exec_poll_max_delay: float = 2.0
    exec_wait_timeout: float = 600.0

    # Database settings
    sqlite_db_path: str = "nitrod.db"
    audit_retention_days: int = 90
    audit_max_output_length: int = 10000

    # Server
    listen_host: str = "0.0.0.0"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    @property
    def proxy_image_ref(self) -> str:
        return f"{self.proxy_image}:{self.version}"

    def validate_required(self) -> list[str]:
        """Validate configuration settings.

        Returns a list of error messages for invalid settings.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not self.version:
            errors.append("VERSION is required but not set")

        parsed = urlparse(self.caddy_admin_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"CADDY_ADMIN_URL must be an http(s) URL, got '{self.caddy_admin_url}'")

        for name in ("nitro_http_port", "nitro_https_port", "nitro_api_port"):
            raw = getattr(self, name)
            if not raw.isdigit() or not 1 <= int(raw) <= 65535:
                errors.append(f"{name.upper()} must be a port number between 1 and 65535, got '{raw}'")

        if self.exec_mode not in ("local", "container"):
            errors.append(f"EXEC_MODE must be 'local' or 'container', got '{self.exec_mode}'")

        for name in ("caddy_timeout", "reachability_timeout", "process_timeout", "exec_wait_timeout"):
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be greater than zero")

        if self.caddy_retry_attempts < 1:
            errors.append("CADDY_RETRY_ATTEMPTS must be at least 1")

        if self.exec_poll_initial_delay <= 0 or self.exec_poll_max_delay < self.exec_poll_initial_delay:
            errors.append("EXEC_POLL_MAX_DELAY must be >= EXEC_POLL_INITIAL_DELAY > 0")

        if self.exec_mode == "local":
            warnings.append("EXEC_MODE is local, MySQL targets are refused because their commands name no host")

        if self.nitro_development:
            warnings.append("NITRO_DEVELOPMENT is enabled, the proxy image check is skipped")

        if self.reachability_inverted:
            warnings.append(
                "REACHABILITY_INVERTED is enabled, database operations are refused "
                "when the database port accepts connections"
            )

        for warning in warnings:
            logger.warning(f"Config warning: {warning}")

        return errors


def validate_config_on_startup(settings: Settings) -> None:
    """Validate configuration and exit if critical settings are invalid."""
    errors = settings.validate_required()

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        print("\nConfiguration Error:", file=sys.stderr)
        print("The following settings are missing or invalid:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        print("\nPlease check your .env file or environment variables.", file=sys.stderr)
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    logger.info("Configuration validated successfully")


@lru_cache
def get_settings() -> Settings:
    return Settings()
