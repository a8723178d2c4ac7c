"""
Docsyphon configuration.

Every setting can be supplied through the environment or a ``.env`` file;
names are case-insensitive (``MAX_BATCH_SIZE`` sets ``max_batch_size``).
"""

import os
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _xdg_path(env_var: str, home_relative: str, fallback: str) -> str:
    """``$env_var/docsyphon``, else ``$HOME/<home_relative>/docsyphon``, else ``fallback``."""
    base = os.getenv(env_var)
    if base:
        return str(Path(base) / "docsyphon")
    home = os.getenv("HOME")
    if home:
        return str(Path(home) / home_relative / "docsyphon")
    return fallback


def get_xdg_cache_dir() -> str:
    """Cache root for LLM responses."""
    return _xdg_path("XDG_CACHE_HOME", ".cache", ".docsyphon_cache")


def get_xdg_state_dir() -> str:
    """Default log directory."""
    state = _xdg_path("XDG_STATE_HOME", ".local/state", "")
    return str(Path(state) / "logs") if state else "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    postgres_db: str = "docsyphon"
    postgres_user: str = "docsyphon"
    postgres_password: str = "docsyphon_dev_password"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str = ""  # Full SQLAlchemy URL (e.g. sqlite:///local.db)
    db_pool_size: int = 5
    db_pool_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # LLM
    llm_provider: Literal["openai", "anthropic"] = "openai"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    classification_model: str = "gpt-4o-mini"
    proposal_model: str = "gpt-4o"
    classification_max_tokens: int = 16000
    proposal_max_tokens: int = 16000
    llm_temperature: float = 0.2
    llm_max_attempts: int = 3  # Attempts per structured request (transient + schema errors)
    llm_retry_base_delay: float = 1.0  # Seconds, doubled after each failed attempt
    embedding_model: str = "text-embedding-3-small"

    # LLM response cache
    llm_cache_enabled: bool = False
    llm_cache_dir: str = f"{get_xdg_cache_dir()}/llm"
    llm_cache_ttl_days: int = 7

    # Batch processing
    batch_window_hours: int = 24
    context_window_hours: int = 24
    max_batch_size: int = 30  # Messages per classification call
    context_max_messages: int = 100
    rag_top_k: int = 5
    max_proposals_per_conversation: int = 10
    max_conversation_workers: int = 4
    excluded_streams: list[str] = ["pipeline-test"]
    job_lock_ttl_minutes: int = 120

    # Quality review
    ruleset_cache_ttl_seconds: int = 300
    related_doc_min_similarity: float = 0.6
    related_doc_max: int = 5
    duplication_threshold: int = 50  # Percent n-gram overlap flagged as duplication
    duplication_ngram_size: int = 3

    # Optional LLM rewrites of proposal text
    content_validation_enabled: bool = False
    content_validation_max_retries: int = 2
    content_validation_skip_patterns: list[str] = []  # Regexes on page paths
    length_reduction_enabled: bool = False
    length_reduction_max_length: int = 1500  # Characters
    length_reduction_target_length: int = 1000
    rewrite_max_tokens: int = 8192

    # Tenant
    tenant_id: str = "default"
    project_name: str = "the project"
    project_domain: str = "software documentation"

    # Application
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    # LLM Logging
    llm_logging_enabled: bool = False  # Enable detailed LLM interaction logging
    llm_log_requests: bool = True
    llm_log_responses: bool = True
    llm_log_tokens: bool = True

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())

    @property
    def llm_api_key(self) -> str:
        """API key for the configured LLM provider."""
        if self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key


# Global settings instance
settings = Settings()
