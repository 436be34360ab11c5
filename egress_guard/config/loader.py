"""Configuration loading from environment and YAML files."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from egress_guard.models import EgressConfig, TrustedOrigin

DEFAULT_API_BASE_URL = "https://api.example.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Trusted origin for relative endpoints
    api_base_url: str = DEFAULT_API_BASE_URL

    # Optional static bearer token (token acquisition itself is external)
    egress_auth_token: str = ""

    # Timeouts (milliseconds)
    default_timeout_ms: float = 30_000
    max_timeout_ms: float = 60_000

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Service info
    service_name: str = "egress-guard"
    service_version: str = "1.0.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def user_agent(self) -> str:
        return f"{self.service_name}/{self.service_version}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_egress_file(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load egress configuration from a YAML file.

    Args:
        config_path: Path to the config file. If None, uses default location.

    Returns:
        Dictionary with configuration data.
    """
    if config_path is None:
        possible_paths = [
            Path("config/egress.yaml"),
            Path(__file__).parent.parent.parent / "config" / "egress.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            return {"allowed_hostnames": []}

    config_path = Path(config_path)
    if not config_path.exists():
        return {"allowed_hostnames": []}

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return config


def get_allowed_hostnames(config: dict[str, Any] | None = None) -> list[str]:
    """Get the extra allow-listed hostnames, lowercased."""
    if config is None:
        config = load_egress_file()
    hostnames = config.get("allowed_hostnames") or []
    if not isinstance(hostnames, list):
        raise ValueError("allowed_hostnames must be a list")
    return [str(h).strip().lower() for h in hostnames if str(h).strip()]


def build_egress_config(
    settings: Settings | None = None,
    config: dict[str, Any] | None = None,
) -> EgressConfig:
    """
    Build the immutable egress configuration.

    The trusted origin is checked here once (https, not private); the
    validator checks it again on every relative call.

    Raises:
        pydantic.ValidationError: If the origin or timeouts are misconfigured.
    """
    if settings is None:
        settings = get_settings()

    return EgressConfig(
        trusted_origin=TrustedOrigin.from_url(settings.api_base_url),
        extra_allowed_hostnames=frozenset(get_allowed_hostnames(config)),
        default_timeout_ms=settings.default_timeout_ms,
        max_timeout_ms=settings.max_timeout_ms,
    )
