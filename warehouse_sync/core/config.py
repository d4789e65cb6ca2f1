from typing import Annotated, Literal

from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Target store (checkpoints, audit trail, synced records)
    DATABASE_URL: str = "sqlite:///./warehouse_sync.db"

    # Source warehouse, e.g. bigquery://project/dataset or postgresql+psycopg2://...
    SOURCE_DATABASE_URL: str | None = None

    # Table definitions (YAML)
    SYNC_CONFIG_PATH: str = "config.yaml"

    # Cluster membership
    NODE_ID: str = "node-0"
    CLUSTER_NODES: Annotated[list[str], NoDecode] = []
    CLUSTER_API_URL: str | None = None
    CLUSTER_API_USERNAME: str | None = None
    CLUSTER_API_PASSWORD: str | None = None

    # Logging
    LOG_LEVEL: str = "INFO"
    SLACK_WEBHOOK_URL: str | None = None

    # Sync / validation
    SYNC_ENABLED: bool = True  # Start engines automatically on startup
    VALIDATION_INTERVAL_SECONDS: int = 0  # 0 disables the scheduled validator
    VALIDATION_SAMPLE_SIZE: int = 5

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @field_validator("CLUSTER_NODES", mode="before")
    @classmethod
    def _split_nodes(cls, value):
        # Accept "a,b,c" from the environment as well as a real list
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development


settings = Settings()
