#!/usr/bin/env python3
"""Block until the configured database accepts connections."""
import logging
import sys
import time

from gearguard.core.logging import setup_logging
from gearguard.db.health import check_db

LOG = logging.getLogger("wait_for_db")


def wait_for_db(timeout: int = 60) -> int:
    for _ in range(timeout):
        if check_db():
            LOG.info("database is available")
            return 0
        LOG.info("waiting for database...")
        time.sleep(1)

    LOG.error("database did not become available in time")
    return 1


if __name__ == "__main__":
    setup_logging("INFO")
    sys.exit(wait_for_db())
