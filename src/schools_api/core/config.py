"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="PostgreSQL async connection string",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # Import jobs
    import_batch_size: int = Field(
        default=1500,
        description="Source rows processed per batch invocation",
        gt=0,
    )
    import_insert_sub_batch_size: int = Field(
        default=100,
        description="Records per bulk insert attempt",
        gt=0,
    )
    import_disambiguation_suffix_length: int = Field(
        default=6,
        description="Characters of the record fingerprint appended to colliding slugs",
        ge=4,
        le=40,
    )
    import_skip_known_fingerprints: bool = Field(
        default=True,
        description="Skip rows whose fingerprint already exists in the schools table",
    )
    import_max_logged_errors: int = Field(
        default=200,
        description="Maximum row errors kept in a job's error_details",
        ge=0,
    )
    import_upload_dir: str = Field(
        default="./uploads/imports",
        description="Directory where uploaded source files are kept until their job completes",
    )
    import_max_file_size_mb: int = Field(
        default=50,
        description="Maximum accepted upload size in megabytes",
        gt=0,
    )

    # Enrichment: AI text normalization
    ai_enrichment_enabled: bool = Field(
        default=False,
        description="Enable AI-assisted name/type/email normalization (requires API key)",
    )
    ai_gateway_base_url: str = Field(
        default="https://ai.gateway.lovable.dev/v1",
        description="Base URL of the OpenAI-compatible chat completions gateway",
    )
    ai_gateway_api_key: str | None = Field(
        default=None,
        description="API key for the AI gateway",
    )
    ai_model: str = Field(
        default="google/gemini-2.5-flash",
        description="Model identifier sent to the AI gateway",
    )
    ai_timeout: float = Field(
        default=30.0,
        description="AI gateway request timeout in seconds",
        gt=0,
    )
    ai_name_corrections_enabled: bool = Field(
        default=True,
        description="Apply AI-suggested school name corrections (other corrections still apply)",
    )
    enrichment_sub_batch_size: int = Field(
        default=50,
        description="Rows per AI normalization call",
        gt=0,
    )
    enrichment_max_concurrency: int = Field(
        default=5,
        description="Maximum concurrent AI normalization calls per batch",
        gt=0,
    )

    # Enrichment: postal code lookup
    postal_lookup_enabled: bool = Field(
        default=True,
        description="Fill missing address/city/state from the postal code",
    )
    postal_lookup_order: str = Field(
        default="viacep,nominatim",
        description="Comma-separated postal lookup provider fallback order",
    )
    postal_lookup_max_concurrency: int = Field(
        default=5,
        description="Maximum concurrent postal lookups per batch",
        gt=0,
    )
    viacep_base_url: str = Field(
        default="https://viacep.com.br/ws",
        description="ViaCEP API base URL",
    )
    viacep_timeout: float = Field(
        default=5.0,
        description="ViaCEP request timeout in seconds",
        gt=0,
    )
    nominatim_email: str = Field(
        default="",
        description="Email for Nominatim usage policy compliance",
    )
    nominatim_timeout: float = Field(
        default=10.0,
        description="Nominatim request timeout in seconds",
        gt=0,
    )

    @property
    def postal_lookup_order_list(self) -> list[str]:
        """Parse the postal lookup order string into a list of provider names.

        Returns:
            List of provider names in fallback order.
        """
        if not self.postal_lookup_order.strip():
            return []
        return [p.strip().lower() for p in self.postal_lookup_order.split(",") if p.strip()]

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )
    cors_origin_regex: str = Field(
        default="",
        description="Regex pattern for allowed CORS origins",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
