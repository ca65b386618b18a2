"""Database management CLI for the ordering domain.

Usage:
    PROTEAN_ENV=sqlite python src/manage.py setup-db   # Create all tables
    PROTEAN_ENV=sqlite python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys

import structlog

from ordering.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def setup_databases():
    from ordering.domain import ordering
    from ordering.utils.db import setup_db, uses_sql

    ordering.init()
    if not uses_sql(ordering):
        logger.warning("No SQL provider configured; nothing to create. Set PROTEAN_ENV=sqlite or production.")
        return False
    setup_db(ordering)
    logger.info("Ordering schema ready")
    return True


def drop_databases():
    from ordering.domain import ordering
    from ordering.utils.db import drop_db, uses_sql

    ordering.init()
    if not uses_sql(ordering):
        logger.warning("No SQL provider configured; nothing to drop.")
        return False
    drop_db(ordering)
    logger.info("Ordering schema dropped")
    return True


def main(argv=None):
    parser = argparse.ArgumentParser(description="Storefront ordering database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args(argv)
    configure_logging()

    if args.command == "setup-db":
        ok = setup_databases()
    elif args.command == "drop-db":
        ok = drop_databases()
    else:
        parser.print_help()
        sys.exit(1)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
