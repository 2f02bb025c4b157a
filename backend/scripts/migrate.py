#!/usr/bin/env python3
"""
Bring the order desk schema up to date.

Databases left at an older revision keep working in a reduced mode; this
script applies the missing migrations.
"""

import logging
import subprocess
import sys
from pathlib import Path

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_migrations() -> bool:
    """Run alembic upgrade head from the backend directory."""
    try:
        logger.info("Applying migrations...")
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=Path(__file__).parent.parent,
            capture_output=True,
            text=True,
            check=True,
        )
        logger.info("Migrations applied")
        logger.info("Migration output: %s", result.stdout or result.stderr)
        return True

    except subprocess.CalledProcessError as e:
        logger.error("Migration failed: %s", e)
        logger.error("Error output: %s", e.stderr)
        return False


def main():
    success = run_migrations()
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
