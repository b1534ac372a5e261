# hms_billing/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy import inspect

from hms_billing.db.session import engine
from hms_billing.db.base import Base

# Import all models so metadata is complete
from hms_billing.models import billing  # noqa: F401

logger = logging.getLogger(__name__)


def run(fresh: bool = False) -> None:
    if fresh:
        logger.warning("Dropping ALL billing tables (dev only)")
        Base.metadata.drop_all(bind=engine)

    logger.info("Creating all missing tables")
    Base.metadata.create_all(bind=engine)

    names = inspect(engine).get_table_names()
    logger.info("Existing tables: %s", names)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(
        description="Initialize the billing DB (create tables).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
