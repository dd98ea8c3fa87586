"""Configuration management.

Uses pydantic-settings for type-safe configuration from environment variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_config_dir() -> Path:
    """Find the config directory by walking up from the package location.

    Falls back to relative Path("config") if not found.
    """
    # config.py -> core/ -> schemasense/ -> src/ -> root/
    package_dir = Path(__file__).resolve().parent.parent.parent.parent
    candidate = package_dir / "config"
    if candidate.is_dir():
        return candidate

    return Path("config")


def _default_type_compatibility() -> list[list[str]]:
    return []


class Settings(BaseSettings):
    """Application settings.

    All settings can be overridden via environment variables.
    Prefix: SCHEMASENSE_
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEMASENSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars (like ANTHROPIC_API_KEY)
    )

    # Metadata store (SQLAlchemy)
    database_url: str = Field(
        default="sqlite:///./schemasense.db",
        description="SQLAlchemy database URL for the metadata store",
    )

    # DuckDB (schema/data source)
    duckdb_path: str = Field(
        default=":memory:",
        description="Path to DuckDB database file, or :memory: for in-memory",
    )
    duckdb_memory_limit: str = Field(default="2GB")

    config_path: Path = Field(
        default_factory=_find_config_dir,
        description="Path to configuration files (llm.yaml, patterns/, prompts/)",
    )

    # Profiling
    sample_size: int = Field(
        default=1000,
        description="Reservoir size for per-column value samples",
    )

    # Relationship discovery
    overlap_sample_size: int = Field(
        default=500,
        description="Distinct source values sampled for the overlap pass",
    )
    min_overlap: float = Field(
        default=0.5,
        description="Minimum fraction of sampled values found in the target",
    )
    type_compatibility: list[list[str]] = Field(
        default_factory=_default_type_compatibility,
        description="Extra [source_type, target_type] pairs treated as join-compatible",
    )

    # Concurrency
    max_workers: int = Field(
        default=4,
        description="Bounded worker pool size for per-step sub-operations",
    )

    # Retry policy
    retry_max_attempts: int = Field(default=5)
    retry_initial_delay: float = Field(default=0.1)
    retry_max_delay: float = Field(default=5.0)
    retry_multiplier: float = Field(default=2.0)
    retry_jitter: float = Field(default=0.1)
    retry_max_same_error: int = Field(default=5)

    # Runs stuck in "running" longer than this are considered abandoned
    stale_run_timeout_seconds: int = Field(default=3600)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")  # 'json' or 'console'


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
