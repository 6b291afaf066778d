"""Application configuration."""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = False

    # Database (hosted PostgreSQL holding properties, users and import_logs)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "postgres"
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_sslmode: Optional[str] = None
    db_connect_timeout: int = 10
    query_timeout: int = 30

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: List[str] = ["*"]

    # Identity provider
    identity_url: str = "http://localhost:54321"
    identity_api_key: str = ""
    identity_timeout: float = 10.0

    # Import
    import_max_file_size: int = 10485760  # 10MB
    import_row_cap: Optional[int] = None
    import_row_delay_ms: int = 50
    import_progress_every: int = 5
    import_emit_diagnostics: bool = True
    import_log_errors: bool = True
    import_allowed_roles: List[str] = []

    # Logging
    log_level: str = "INFO"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.environment == "production" and not self.identity_api_key:
            raise ValueError(
                "IDENTITY_API_KEY must be set in production environment"
            )
        if self.import_row_cap is not None and self.import_row_cap < 1:
            raise ValueError("IMPORT_ROW_CAP must be a positive integer")
        if self.import_progress_every < 1:
            raise ValueError("IMPORT_PROGRESS_EVERY must be a positive integer")

    @property
    def import_row_delay(self) -> float:
        """Delay between imported rows, in seconds."""
        return max(self.import_row_delay_ms, 0) / 1000.0


settings = Settings()
