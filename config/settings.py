"""
Notebook settings loaded from environment variables.

Uses Pydantic Settings for type-safe configuration with validation.
All settings can be overridden via ``DUCKDB_NOTEBOOK_*`` environment
variables or a ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ONE_MIB = 1024 * 1024


class Settings(BaseSettings):
    """
    Notebook configuration.

    Presentation preferences (preview limit, describe cell, JSON parsing)
    shape the bootstrap cells only; they have no bearing on execution,
    brokering or transfer. The persisted "allow external file reads" flag is
    not a setting: it lives in the host configuration store at
    ``config_path``.
    """

    model_config = SettingsConfigDict(
        env_prefix="DUCKDB_NOTEBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_json: bool = Field(
        default=True,
        description="Emit structured JSON logs (False for human-readable text)",
    )

    # Bootstrap cells
    preview_limit: int = Field(
        default=5,
        ge=1,
        le=100_000,
        description="Row limit of the preview cell created on load",
    )
    show_describe: bool = Field(
        default=True,
        description="Insert a DESCRIBE cell between setup and preview",
    )
    force_json_parsing: bool = Field(
        default=False,
        description="Render JSON-looking strings as objects (presentation only)",
    )

    # Bulk transfer
    chunk_size_bytes: int = Field(
        default=ONE_MIB,
        ge=1,
        description="Maximum payload of one saveFileChunk message",
    )
    chunk_pacing_seconds: float = Field(
        default=0.01,
        ge=0.0,
        description="Pause between chunk messages so the sandbox loop stays responsive",
    )

    # Cancellation
    interrupt_timeout_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="How long stop() waits for a cooperative interrupt before teardown",
    )
    rebuild_grace_seconds: float = Field(
        default=0.1,
        ge=0.0,
        description="Delay between engine teardown and bootstrap replay",
    )

    # Engine
    engine_sandboxed: bool = Field(
        default=True,
        description="Confine the engine to its scratch directory (no direct host file access)",
    )
    engine_max_memory_mb: int = Field(
        default=512,
        ge=64,
        description="DuckDB max_memory for the notebook connection",
    )
    engine_threads: int | None = Field(
        default=None,
        ge=1,
        description="DuckDB worker threads (None keeps the engine default)",
    )

    # Host
    config_path: Path = Field(
        default=Path.home() / ".duckdb-notebook" / "settings.json",
        description="Host configuration store (holds allowExternalFileAccess)",
    )
    workspace_root: Path | None = Field(
        default=None,
        description="Destination root for COPY exports (defaults to the source file's directory)",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance with all configuration loaded.

    Example:
        >>> settings = get_settings()
        >>> settings.chunk_size_bytes
        1048576
    """
    return Settings()
