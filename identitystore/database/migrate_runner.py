"""Database migration runner.

Migrations are Alembic revisions whose revision id is a timestamp-prefixed
version stamp (e.g. `20251101080738_init`), each with a paired
upgrade()/downgrade().

Policy:
- Pending revisions are applied one at a time, in ascending order, each in its
  own transaction.
- On the first failure the runner stops and raises `MigrationFailure` carrying
  the last version that did apply. Earlier steps are not rolled back.

Usable in-process (`MigrationRunner(engine).upgrade()`, see `init_db`) or as a
one-off job at deploy time: `identitystore-migrate upgrade`.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Callable, List, Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Engine

from identitystore.database.database import DATABASE_URL, build_engine
from identitystore.database.schema import schema_statements
from identitystore.errors import MigrationFailure

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def _alembic_cfg(database_url: Optional[str] = None) -> Config:
    ini_path = os.getenv("ALEMBIC_INI")
    cfg = Config(ini_path) if ini_path else Config()
    if not ini_path:
        # Scripts ship inside the package, so an installed copy needs no ini file.
        cfg.set_main_option("script_location", str(MIGRATIONS_DIR).replace("%", "%%"))
    if database_url:
        # ConfigParser interpolation: escape literal percent signs.
        cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return cfg


class MigrationRunner:
    """Applies and reverts versioned migrations against one engine."""

    def __init__(self, engine: Engine, config: Optional[Config] = None):
        self.engine = engine
        self.config = config or _alembic_cfg(engine.url.render_as_string(hide_password=False))
        self.script = ScriptDirectory.from_config(self.config)

    def versions(self) -> List[str]:
        """All known versions, oldest first."""
        return [rev.revision for rev in reversed(list(self.script.walk_revisions()))]

    def current_version(self) -> Optional[str]:
        """The applied version, or None on a fresh database."""
        with self.engine.connect() as conn:
            return MigrationContext.configure(conn).get_current_revision()

    def pending(self) -> List[str]:
        versions = self.versions()
        current = self.current_version()
        if current is None:
            return versions
        if current not in versions:
            raise RuntimeError(f"Database is at unknown migration version {current!r}")
        return versions[versions.index(current) + 1:]

    def _index_of(self, target: str, versions: List[str]) -> int:
        if target not in versions:
            raise ValueError(f"Unknown migration version {target!r}")
        return versions.index(target)

    def _run(self, step: Callable[[Config, str], None], revision: str) -> None:
        # Share one connection with env.py so the step and its version bump commit together.
        with self.engine.begin() as conn:
            self.config.attributes["connection"] = conn
            try:
                step(self.config, revision)
            finally:
                self.config.attributes.pop("connection", None)

    def upgrade(self, target: str = "head") -> Optional[str]:
        """Apply pending migrations up to and including `target`.

        Returns:
            The version the database is at afterwards

        Raises:
            MigrationFailure: a step failed; `last_applied` is where the schema stopped
        """
        versions = self.versions()
        applied = self.current_version()
        if not versions:
            return applied
        stop = versions[-1] if target == "head" else target
        stop_index = self._index_of(stop, versions)

        for version in self.pending():
            if versions.index(version) > stop_index:
                break
            logger.info(f"Applying migration {version}")
            try:
                self._run(command.upgrade, version)
            except Exception as e:
                logger.error(f"Migration {version} failed: {type(e).__name__}: {str(e)}")
                raise MigrationFailure(version, applied, e) from e
            applied = version
        logger.info(f"Database at version {applied or '<none>'}")
        return applied

    def downgrade(self, target: str = "base") -> Optional[str]:
        """Revert applied migrations down to (excluding) `target`; "base" reverts all."""
        versions = self.versions()
        current = self.current_version()
        if current is None:
            logger.info("No migrations applied; nothing to revert")
            return None
        stop_index = -1 if target == "base" else self._index_of(target, versions)

        for index in range(self._index_of(current, versions), stop_index, -1):
            version = versions[index]
            previous = versions[index - 1] if index > 0 else None
            logger.info(f"Reverting migration {version}")
            try:
                self._run(command.downgrade, previous or "base")
            except Exception as e:
                logger.error(f"Reverting {version} failed: {type(e).__name__}: {str(e)}")
                raise MigrationFailure(version, version, e) from e
            current = previous
        logger.info(f"Database at version {current or '<none>'}")
        return current


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="identitystore schema migrations")
    parser.add_argument("--database-url", default=DATABASE_URL, help="Overrides DATABASE_URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    upgrade_parser = subparsers.add_parser("upgrade", help="Apply pending migrations")
    upgrade_parser.add_argument("--to", default="head", help="Target version (default: head)")

    downgrade_parser = subparsers.add_parser("downgrade", help="Revert applied migrations")
    downgrade_parser.add_argument("--to", default="base", help="Version to stop at (default: base)")

    subparsers.add_parser("current", help="Print the applied version")

    sql_parser = subparsers.add_parser("sql", help="Print schema DDL without connecting")
    sql_parser.add_argument("direction", choices=["up", "down"])
    sql_parser.add_argument("--dialect", default="postgresql", choices=["postgresql", "sqlite"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "sql":
        for statement in schema_statements(args.dialect, args.direction):
            print(f"{statement};\n")
        return 0

    runner = MigrationRunner(build_engine(args.database_url))
    if args.command == "current":
        print(runner.current_version() or "<none>")
        return 0

    try:
        if args.command == "upgrade":
            runner.upgrade(args.to)
        else:
            runner.downgrade(args.to)
    except MigrationFailure as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
