"""
Programmatic Alembic runner for the municipal schema.

No alembic.ini is shipped; the script location is the migrations package
next to this module and the URL comes from the database settings.

Usage:
    python -m municipal_api.db.run_migrations upgrade head
    python -m municipal_api.db.run_migrations downgrade -1
    python -m municipal_api.db.run_migrations current
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List

from alembic import command
from alembic.config import Config

from municipal_api.db.config import get_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# command name -> (alembic function, default positional arguments)
_COMMANDS: Dict[str, tuple[Callable, List[str]]] = {
    "upgrade": (command.upgrade, ["head"]),
    "downgrade": (command.downgrade, ["-1"]),
    "current": (command.current, []),
    "history": (command.history, []),
    "heads": (command.heads, []),
}


# PUBLIC_INTERFACE
def build_config() -> Config:
    """Alembic Config pointing at the bundled migrations."""
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    cfg.set_main_option("sqlalchemy.url", get_settings().sync_database_url)
    return cfg


# PUBLIC_INTERFACE
def main(argv: List[str] | None = None) -> None:
    """
    Run one Alembic command.

    Must not be called from a running event loop: the online migration path
    drives its own loop with asyncio.run.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0] not in _COMMANDS:
        raise SystemExit(f"Usage: run_migrations {{{'|'.join(_COMMANDS)}}} [revision]")

    func, defaults = _COMMANDS[args[0]]
    params = args[1:] or defaults
    logger.info("alembic %s %s", args[0], " ".join(params))
    func(build_config(), *params)


if __name__ == "__main__":
    main()
