from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def run_upgrade_head(ini_path: Path = ALEMBIC_INI, revision: str = "head") -> None:
    config = Config(str(ini_path))
    logger.info("upgrading database schema to %s", revision)
    command.upgrade(config, revision)


if __name__ == "__main__":
    run_upgrade_head()
