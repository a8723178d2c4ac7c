"""
Startup dependency checks for the batch worker.

Validates configuration, database reachability and schema version before a
processing run starts, failing fast with actionable messages.
"""

import time
from pathlib import Path
from typing import Callable, Optional

from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import text

from docsyphon.config import Settings, settings as default_settings
from docsyphon.db.connection import SessionLocal, engine

ALEMBIC_INI = "alembic.ini"


class StartupCheckError(Exception):
    """Raised when a critical startup check fails."""

    def __init__(self, message: str, hint: Optional[str] = None):
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        error_msg = f"\n{'='*70}\nSTARTUP CHECK FAILED\n{'='*70}\n\n{self.message}\n"
        if self.hint:
            error_msg += f"\nHint: {self.hint}\n"
        error_msg += f"{'='*70}\n"
        return error_msg


def check_required_environment(config: Optional[Settings] = None) -> None:
    """
    Validate settings a processing run cannot do without.

    Raises:
        StartupCheckError: If required settings are missing
    """
    config = config or default_settings
    missing = []

    if not config.database_url_override:
        if not config.postgres_host:
            missing.append("POSTGRES_HOST")
        if not config.postgres_db:
            missing.append("POSTGRES_DB")
        if not config.postgres_user:
            missing.append("POSTGRES_USER")

    if not config.llm_api_key:
        missing.append(f"{config.llm_provider.upper()}_API_KEY")
    if config.llm_provider != "openai" and not config.openai_api_key:
        # Document search embeds queries with OpenAI whatever the chat provider
        missing.append("OPENAI_API_KEY")

    if missing:
        raise StartupCheckError(
            "Missing required environment variables:\n"
            + "\n".join(f"  - {var}" for var in missing),
            "Set these variables in your .env file",
        )


# Substrings of driver errors mapped to what the operator should do about them
_CONNECTION_HINTS = [
    (("could not connect", "connection refused"),
     "PostgreSQL is not running or not reachable at the configured host"),
    (("authentication failed", "password"),
     "Database authentication failed; check POSTGRES_USER and POSTGRES_PASSWORD"),
    (("does not exist",), "Create the database, then run: alembic upgrade head"),
]


def _connection_hint(error: Exception) -> str:
    message = str(error).lower()
    for needles, hint in _CONNECTION_HINTS:
        if any(needle in message for needle in needles):
            return hint
    return f"Check your database configuration in .env\nError: {error}"


def check_database_connection() -> None:
    """
    Run a trivial query against the configured database.

    Raises:
        StartupCheckError: If the connection fails
    """
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1")).scalar()
    except Exception as e:
        raise StartupCheckError(
            f"Cannot connect to database\nURL: {engine.url.render_as_string(hide_password=True)}",
            _connection_hint(e),
        ) from e


def check_database_migrations(alembic_ini: str = ALEMBIC_INI) -> None:
    """
    Verify Alembic migrations are at head.

    Raises:
        StartupCheckError: If the schema is missing or behind
    """
    if not Path(alembic_ini).exists():
        raise StartupCheckError(
            "Alembic configuration not found",
            f"Run from the project root, where {alembic_ini} lives",
        )

    try:
        script = ScriptDirectory.from_config(AlembicConfig(alembic_ini))
        head_revision = script.get_current_head()
        with engine.connect() as connection:
            current_revision = MigrationContext.configure(connection).get_current_revision()
    except Exception as e:
        raise StartupCheckError(
            f"Failed to check migration status: {e}",
            "Verify Alembic is properly configured",
        ) from e

    if current_revision is None:
        raise StartupCheckError(
            "Database has no migration version\nDatabase appears uninitialized",
            "Run migrations: alembic upgrade head",
        )
    if current_revision != head_revision:
        raise StartupCheckError(
            f"Database migrations are out of date\n"
            f"Current revision: {current_revision}\n"
            f"Expected revision: {head_revision}",
            "Run: alembic upgrade head",
        )


def check_cache_directory(config: Optional[Settings] = None) -> None:
    """
    Ensure the LLM response cache directory is writable, when caching is on.

    Raises:
        StartupCheckError: If the directory cannot be created or written
    """
    config = config or default_settings
    if not config.llm_cache_enabled:
        return

    cache_dir = Path(config.llm_cache_dir)
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
        test_file = cache_dir / ".write_test"
        test_file.write_text("test")
        test_file.unlink()
    except OSError as e:
        raise StartupCheckError(
            f"LLM cache directory is not writable: {cache_dir}\nError: {e}",
            f"Fix permissions or set LLM_CACHE_DIR (current: {cache_dir})",
        ) from e


STARTUP_CHECKS: list[tuple[str, Callable[[], None]]] = [
    ("Environment Variables", check_required_environment),
    ("Database Connection", check_database_connection),
    ("Database Migrations", check_database_migrations),
    ("Cache Directory", check_cache_directory),
]


def run_all_startup_checks(
    report: Callable[[str, bool, float], None] = lambda name, ok, ms: None,
) -> None:
    """
    Execute all startup checks in dependency order.

    Args:
        report: Called with (check name, passed, duration ms) after each check

    Raises:
        StartupCheckError: From the first failing check
    """
    for check_name, check_func in STARTUP_CHECKS:
        check_start = time.time()
        try:
            check_func()
        except StartupCheckError:
            report(check_name, False, (time.time() - check_start) * 1000)
            raise
        report(check_name, True, (time.time() - check_start) * 1000)
