"""Schema manager for the users table.

The schema is a fixed, ordered list of database objects. `apply()` creates
them in dependency order (extension before table, table before indexes and
trigger); `revert()` drops them in exactly the reverse order. Every step
checks for the object first, so both directions are safe to repeat.

PostgreSQL gets the production schema. SQLite gets an equivalent table,
indexes and trigger for local development and tests; it has no extensions
or stored functions.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Union

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
EMAIL_INDEX = "idx_user_email"
PID_INDEX = "idx_user_pid"
TIMESTAMP_FUNCTION = "update_timestamp"
UPDATED_AT_TRIGGER = "update_user_updated_at_trigger"
UUID_EXTENSION = "uuid-ossp"


class SchemaState(str, Enum):
    ABSENT = "absent"
    PRESENT = "present"
    # Some objects exist, e.g. after an interrupted apply/revert.
    PARTIAL = "partial"


@dataclass(frozen=True)
class SchemaObject:
    """One database object with its DDL and existence probe.

    `exists_sql` must return a single scalar that is truthy iff the object exists.
    """

    kind: str
    name: str
    create_sql: str
    drop_sql: str
    exists_sql: str
    exists_params: dict = field(default_factory=dict)

    def exists(self, conn: Connection) -> bool:
        return bool(conn.execute(text(self.exists_sql), self.exists_params).scalar())


def _postgres_objects() -> List[SchemaObject]:
    regclass = "SELECT to_regclass(:name) IS NOT NULL"
    return [
        SchemaObject(
            kind="extension",
            name=UUID_EXTENSION,
            create_sql='CREATE EXTENSION IF NOT EXISTS "uuid-ossp"',
            drop_sql='DROP EXTENSION IF EXISTS "uuid-ossp"',
            exists_sql="SELECT count(*) FROM pg_extension WHERE extname = :name",
            exists_params={"name": UUID_EXTENSION},
        ),
        SchemaObject(
            kind="table",
            name=USERS_TABLE,
            create_sql=(
                'CREATE TABLE "users" (\n'
                "    id SERIAL PRIMARY KEY,\n"
                "    pid UUID NOT NULL UNIQUE DEFAULT uuid_generate_v4(),\n"
                "    email VARCHAR(255) NOT NULL UNIQUE,\n"
                "    name VARCHAR(255) NOT NULL,\n"
                "    password VARCHAR(255) NOT NULL,\n"
                "    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,\n"
                "    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP\n"
                ")"
            ),
            drop_sql="DROP TABLE IF EXISTS users",
            exists_sql=regclass,
            exists_params={"name": USERS_TABLE},
        ),
        SchemaObject(
            kind="index",
            name=EMAIL_INDEX,
            create_sql="CREATE INDEX idx_user_email ON users(email)",
            drop_sql="DROP INDEX IF EXISTS idx_user_email",
            exists_sql=regclass,
            exists_params={"name": EMAIL_INDEX},
        ),
        SchemaObject(
            kind="index",
            name=PID_INDEX,
            create_sql="CREATE INDEX idx_user_pid ON users(pid)",
            drop_sql="DROP INDEX IF EXISTS idx_user_pid",
            exists_sql=regclass,
            exists_params={"name": PID_INDEX},
        ),
        SchemaObject(
            kind="function",
            name=TIMESTAMP_FUNCTION,
            create_sql=(
                "CREATE OR REPLACE FUNCTION update_timestamp()\n"
                "RETURNS TRIGGER AS $$\n"
                "BEGIN\n"
                "    NEW.updated_at = NOW();\n"
                "    RETURN NEW;\n"
                "END;\n"
                "$$ LANGUAGE plpgsql"
            ),
            drop_sql="DROP FUNCTION IF EXISTS update_timestamp",
            exists_sql=(
                "SELECT count(*) FROM pg_proc "
                "WHERE proname = :name AND pronamespace = current_schema()::regnamespace"
            ),
            exists_params={"name": TIMESTAMP_FUNCTION},
        ),
        SchemaObject(
            kind="trigger",
            name=UPDATED_AT_TRIGGER,
            create_sql=(
                "CREATE TRIGGER update_user_updated_at_trigger\n"
                "BEFORE UPDATE ON users\n"
                "FOR EACH ROW\n"
                "EXECUTE FUNCTION update_timestamp()"
            ),
            drop_sql="DROP TRIGGER IF EXISTS update_user_updated_at_trigger ON users",
            exists_sql=(
                "SELECT count(*) FROM pg_trigger t JOIN pg_class c ON c.oid = t.tgrelid "
                "WHERE t.tgname = :name AND c.relname = :table"
            ),
            exists_params={"name": UPDATED_AT_TRIGGER, "table": USERS_TABLE},
        ),
    ]


def _sqlite_objects() -> List[SchemaObject]:
    master = "SELECT count(*) FROM sqlite_master WHERE type = :type AND name = :name"
    return [
        SchemaObject(
            kind="table",
            name=USERS_TABLE,
            create_sql=(
                'CREATE TABLE "users" (\n'
                # AUTOINCREMENT: ids of deleted rows are never handed out again.
                "    id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
                "    pid CHAR(32) NOT NULL UNIQUE,\n"
                "    email VARCHAR(255) NOT NULL UNIQUE,\n"
                "    name VARCHAR(255) NOT NULL,\n"
                "    password VARCHAR(255) NOT NULL,\n"
                "    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,\n"
                "    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP\n"
                ")"
            ),
            drop_sql="DROP TABLE IF EXISTS users",
            exists_sql=master,
            exists_params={"type": "table", "name": USERS_TABLE},
        ),
        SchemaObject(
            kind="index",
            name=EMAIL_INDEX,
            create_sql="CREATE INDEX idx_user_email ON users(email)",
            drop_sql="DROP INDEX IF EXISTS idx_user_email",
            exists_sql=master,
            exists_params={"type": "index", "name": EMAIL_INDEX},
        ),
        SchemaObject(
            kind="index",
            name=PID_INDEX,
            create_sql="CREATE INDEX idx_user_pid ON users(pid)",
            drop_sql="DROP INDEX IF EXISTS idx_user_pid",
            exists_sql=master,
            exists_params={"type": "index", "name": PID_INDEX},
        ),
        SchemaObject(
            kind="trigger",
            name=UPDATED_AT_TRIGGER,
            # Only fires when the writer left updated_at untouched. The %f000
            # suffix pads milliseconds to the microsecond format SQLAlchemy stores.
            create_sql=(
                "CREATE TRIGGER update_user_updated_at_trigger\n"
                "AFTER UPDATE ON users\n"
                "FOR EACH ROW\n"
                "WHEN NEW.updated_at IS OLD.updated_at\n"
                "BEGIN\n"
                "    UPDATE users SET updated_at = strftime('%Y-%m-%d %H:%M:%f000', 'now')\n"
                "    WHERE id = NEW.id;\n"
                "END"
            ),
            drop_sql="DROP TRIGGER IF EXISTS update_user_updated_at_trigger",
            exists_sql=master,
            exists_params={"type": "trigger", "name": UPDATED_AT_TRIGGER},
        ),
    ]


def schema_objects(dialect_name: str) -> List[SchemaObject]:
    """Return the schema objects for a dialect, in creation order."""
    if dialect_name == "postgresql":
        return _postgres_objects()
    if dialect_name == "sqlite":
        return _sqlite_objects()
    raise ValueError(f"Unsupported database dialect: {dialect_name}")


def schema_statements(dialect_name: str, direction: str = "up") -> List[str]:
    """Render the DDL apply ("up") or revert ("down") would run on an empty/full database."""
    objects = schema_objects(dialect_name)
    if direction == "up":
        return [obj.create_sql for obj in objects]
    if direction == "down":
        return [obj.drop_sql for obj in reversed(objects)]
    raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")


class SchemaManager:
    """Creates and drops the users schema on an Engine or an open Connection.

    With an Engine, each call runs in its own transaction. With a Connection
    the caller owns the transaction (this is how migrations use it).
    """

    def __init__(self, bind: Union[Engine, Connection]):
        self.bind = bind
        self.objects = schema_objects(bind.dialect.name)

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        if isinstance(self.bind, Engine):
            with self.bind.begin() as conn:
                yield conn
        else:
            yield self.bind

    def statements(self, direction: str = "up") -> List[str]:
        return schema_statements(self.bind.dialect.name, direction)

    def existing(self) -> List[str]:
        """Names of the schema objects currently present."""
        with self._connection() as conn:
            return [obj.name for obj in self.objects if obj.exists(conn)]

    def state(self) -> SchemaState:
        present = self.existing()
        if not present:
            return SchemaState.ABSENT
        if len(present) == len(self.objects):
            return SchemaState.PRESENT
        return SchemaState.PARTIAL

    def apply(self) -> List[str]:
        """Create missing objects in dependency order. Returns the names created."""
        created: List[str] = []
        with self._connection() as conn:
            for obj in self.objects:
                if obj.exists(conn):
                    logger.debug(f"Schema {obj.kind} {obj.name} already present")
                    continue
                conn.execute(text(obj.create_sql))
                created.append(obj.name)
                logger.info(f"Created {obj.kind} {obj.name}")
        return created

    def revert(self) -> List[str]:
        """Drop present objects in reverse dependency order. Returns the names dropped."""
        dropped: List[str] = []
        with self._connection() as conn:
            for obj in reversed(self.objects):
                if not obj.exists(conn):
                    logger.debug(f"Schema {obj.kind} {obj.name} already absent")
                    continue
                conn.execute(text(obj.drop_sql))
                dropped.append(obj.name)
                logger.info(f"Dropped {obj.kind} {obj.name}")
        return dropped
