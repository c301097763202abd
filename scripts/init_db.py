from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from luckydraw.config import configure_logging
from luckydraw.db.engine import make_engine

logger = logging.getLogger("init_db")


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to the requested revision."""
    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def report_tables() -> None:
    """Log the draw tables present in the configured database."""
    engine = make_engine()
    try:
        names = sorted(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    logger.info(f"Tables in {engine.url.render_as_string(hide_password=True)}: {', '.join(names)}")


def main() -> None:
    """Migrate the lucky draw database to the latest revision."""
    configure_logging()
    upgrade_db()
    report_tables()


if __name__ == "__main__":
    main()
