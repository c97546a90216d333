"""Programmatic access to the channel sync Alembic migrations."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

# Wheel installs carry the scripts inside the package; source checkouts keep them at the root.
_PACKAGED_SCRIPTS = Path(__file__).resolve().parents[1] / "migrations"
_CHECKOUT_SCRIPTS = Path(__file__).resolve().parents[3] / "alembic"


def migrations_dir() -> Path:
    for candidate in (_PACKAGED_SCRIPTS, _CHECKOUT_SCRIPTS):
        if (candidate / "env.py").is_file():
            return candidate
    raise FileNotFoundError(
        f"Alembic scripts are not found in {_PACKAGED_SCRIPTS} or {_CHECKOUT_SCRIPTS}",
    )


def alembic_config(db_path: Path) -> Config:
    """Alembic config for one SQLite file, independent of any ``alembic.ini``."""

    config = Config()
    config.set_main_option("script_location", str(migrations_dir()))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Apply Alembic migrations up to head for the given SQLite database."""

    command.upgrade(alembic_config(db_path), "head")


def current_revision(db_path: Path) -> str | None:
    """Revision recorded in the database, ``None`` before the first upgrade."""

    engine = create_engine(f"sqlite:///{db_path}", poolclass=NullPool)
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
