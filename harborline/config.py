"""Runtime configuration: env-driven.

Centralized config using pydantic-settings.  Reads from a .env file and
HARBORLINE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from harborline.models.artifacts import Credential


class HarborlineSettings(BaseSettings):
    """Runtime settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export HARBORLINE_LOG_LEVEL=DEBUG
        export HARBORLINE_MAX_WORKERS=2
        export HARBORLINE_REGISTRY_USERNAME=ci-bot
        export HARBORLINE_REGISTRY_PASSWORD=...

    Or via .env file::

        HARBORLINE_LEDGER_PATH=/data/ledger.db
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HARBORLINE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage
    ledger_path: Path = Path(".harborline/ledger.db")

    # External container tool
    docker_binary: str = "docker"
    command_timeout_seconds: float = 600.0

    # Scheduling
    max_workers: int = 4

    # Registry retry policy
    retry_attempts: int = 3
    retry_base_delay_seconds: float = 2.0

    # Verification defaults
    probe_timeout_seconds: float = 30.0
    probe_interval_seconds: float = 1.0

    # Registry secrets, injected into the run as an explicit Credential
    registry_username: str = ""
    registry_password: SecretStr | None = None

    def credential_for(self, registry: str) -> Credential | None:
        """Build the Credential handed to jobs, or None if unconfigured."""
        if not self.registry_username or self.registry_password is None:
            return None
        return Credential(
            registry=registry,
            username=self.registry_username,
            secret=self.registry_password,
        )
