from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from alembic.autogenerate import api as ag_api
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.exc import SQLAlchemyError

from luckydraw.config import configure_logging
from luckydraw.db.engine import make_engine
from luckydraw.models import Base

logger = logging.getLogger("check_schema_drift")

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _describe_ops(ops, indent: int = 0) -> list[str]:
    lines = []
    prefix = "  " * indent
    for op in ops:
        lines.append(f"{prefix}- {op}")
        sub_ops = getattr(op, "ops", None)
        if sub_ops:
            lines.extend(_describe_ops(sub_ops, indent + 1))
    return lines


def _head_revision() -> Optional[str]:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return ScriptDirectory.from_config(cfg).get_current_head()


def check(database_url: Optional[str] = None) -> int:
    """Compare the lucky draw models with the live schema.

    Returns ``0`` when the database matches the models and is at the latest
    migration, ``1`` when differences are found and ``2`` on errors.
    """
    engine = make_engine(database_url=database_url)
    url_display = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "compare_server_default": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            current = context.get_current_revision()
            migration = ag_api.produce_migrations(context, Base.metadata)
    except SQLAlchemyError as exc:
        logger.error(f"Schema drift check: ERROR for {url_display}: {exc}")
        return 2
    finally:
        engine.dispose()

    status = 0
    head = _head_revision()
    if current != head:
        logger.warning(
            f"Database {url_display} is at revision {current}, latest is {head}"
        )
        status = 1

    upgrade_ops = migration.upgrade_ops
    if upgrade_ops is None:
        logger.error(f"Schema drift check: ERROR for {url_display}: missing upgrade ops")
        return 2
    if upgrade_ops.is_empty():
        logger.info(f"Schema drift check: no model differences for {url_display}")
        return status

    logger.warning(f"Schema drift check: differences detected for {url_display}:")
    for line in _describe_ops(upgrade_ops.ops or []):
        logger.warning(line)
    return 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Check that the draw database matches the ORM models."
    )
    parser.add_argument("--database-url", help="Overrides DB_URL from the environment.")
    args = parser.parse_args(argv)
    configure_logging()
    return check(args.database_url)


if __name__ == "__main__":
    sys.exit(main())
