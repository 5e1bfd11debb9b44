"""
Application configuration using Pydantic Settings.

Loads process-level configuration from SHIPLINE_* environment variables and
an optional .env file. The pipeline definition itself (repository, branches,
stages, targets) lives in the project's shipline.yaml.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="SHIPLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="shipline", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_redaction_enabled: bool = Field(default=True, description="Mask credentials in logs")

    # Files
    config_path: str = Field(default="shipline.yaml", description="Pipeline definition file")
    state_dir: str = Field(default=".shipline", description="Run records, logs and workspaces")
    keep_workspaces: bool = Field(default=False, description="Keep checkout workspaces after a run")

    # Webhook listener
    webhook_host: str = Field(default="127.0.0.1", description="Webhook bind address")
    webhook_port: int = Field(default=8080, description="Webhook bind port")
    webhook_secret: str | None = Field(default=None, description="GitHub webhook HMAC secret")

    # Polling listener
    poll_interval: float = Field(default=60.0, gt=0, description="Seconds between ls-remote polls")

    # Execution
    stage_timeout: float = Field(default=1800.0, gt=0, description="Default local stage timeout (seconds)")
    deploy_timeout: float = Field(default=600.0, gt=0, description="Default remote session timeout (seconds)")
    ssh_binary: str = Field(default="ssh", description="OpenSSH client executable")
    ssh_connect_timeout: int = Field(default=15, gt=0, description="SSH ConnectTimeout (seconds)")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"

    @model_validator(mode="after")
    def _validate_log_level(self) -> "Settings":
        """Fail fast on a log level the logging module does not know."""
        if self.log_level.upper() not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Unknown log level: {self.log_level}")
        return self


# Global settings instance
settings = Settings()
