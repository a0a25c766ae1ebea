#!/usr/bin/env python
"""Apply schema migrations before the API or the sweeper worker starts.

    python scripts/run_migrations.py                 # upgrade to head
    python scripts/run_migrations.py --revision <id> # upgrade/downgrade to a revision
    python scripts/run_migrations.py --current       # print the applied revision
"""
import argparse
import logging
import os
import sys

from alembic import command
from alembic.config import Config

BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(BACKEND_DIR)

from authcore.core.config import settings  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("authcore.migrations")


def alembic_config() -> Config:
    config = Config(os.path.join(BACKEND_DIR, "alembic.ini"))
    config.set_main_option("script_location", os.path.join(BACKEND_DIR, "alembic"))
    config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    return config


def run_migrations(revision: str = "head", downgrade: bool = False) -> bool:
    """Move the schema to ``revision``. Returns False when alembic fails."""
    config = alembic_config()
    try:
        if downgrade:
            logger.info(f"Downgrading schema to {revision}")
            command.downgrade(config, revision)
        else:
            logger.info(f"Upgrading schema to {revision}")
            command.upgrade(config, revision)
    except Exception as e:
        logger.error(f"Migrations failed: {e}", exc_info=True)
        return False

    logger.info("Schema is up to date")
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Apply database migrations.")
    parser.add_argument("--revision", default="head", help="Target revision (default: head)")
    parser.add_argument("--downgrade", action="store_true", help="Downgrade to --revision")
    parser.add_argument("--current", action="store_true", help="Show the applied revision and exit")
    args = parser.parse_args(argv)

    if args.current:
        command.current(alembic_config(), verbose=True)
        return 0

    return 0 if run_migrations(args.revision, args.downgrade) else 1


if __name__ == "__main__":
    sys.exit(main())
