"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
    )

    # Application
    log_level: str = "INFO"
    app_mode: str = "demo"

    # Bootstrap collaborator. Empty URL means the static fixture is used.
    bootstrap_url: str = ""
    bootstrap_timeout_seconds: float = 10.0

    # Fiscal emission
    driver_placeholder: str = "TBD"
    freight_rate_per_kg: float = 0.15
    freight_flat_fallback: float = 1500.0
    waybill_series: str = "WB"
    manifest_series: str = "MF"

    def normalized_app_mode(self) -> str:
        mode = (self.app_mode or "").strip().lower()
        return mode if mode in {"demo", "production"} else "production"

    def resolved_bootstrap_url(self) -> str | None:
        """
        Return the bootstrap endpoint, or None when no usable URL is configured.

        A bare host such as ``localhost:3001`` is accepted and given an http
        scheme; anything without a hostname is rejected.
        """
        raw = (self.bootstrap_url or "").strip().rstrip("/")
        if not raw:
            return None
        if "://" not in raw:
            raw = f"http://{raw}"
        if not urlparse(raw).hostname:
            return None
        return raw

    def is_driver_placeholder(self, driver_name: str | None) -> bool:
        name = (driver_name or "").strip()
        if not name:
            return True
        return name.casefold() == self.driver_placeholder.strip().casefold()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
