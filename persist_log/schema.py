"""Dialect-specific DDL for the transaction log table."""

import logging

from .builder import DEFAULT_TABLE
from .db import Database
from .errors import UnsupportedDialectError

logger = logging.getLogger(__name__)

MYSQL_TABLE = (
    """
    CREATE TABLE IF NOT EXISTS {table} (
        id BINARY(16) NOT NULL PRIMARY KEY,
        req_hash BINARY(16) NOT NULL,
        headers TEXT NOT NULL,
        body BLOB,
        created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
        INDEX ix_{table}_hash (req_hash)
    )""",
)

SQLITE_TABLE = (
    """
    CREATE TABLE IF NOT EXISTS {table} (
        id BYTEA PRIMARY KEY,
        req_hash BYTEA NOT NULL,
        headers TEXT NOT NULL,
        body BYTEA,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )""",
    "CREATE INDEX IF NOT EXISTS ix_{table}_hash ON {table} (req_hash)",
)

DIALECTS: dict[str, tuple[str, ...]] = {
    "mysql": MYSQL_TABLE,
    "sqlite3": SQLITE_TABLE,
}


def resolve_dialect(db: Database, override: str = "") -> str:
    return override or db.natural_dialect


def table_ddl(dialect: str, table: str = DEFAULT_TABLE) -> list[str]:
    if dialect not in DIALECTS:
        raise UnsupportedDialectError(dialect)
    return [stmt.format(table=table) for stmt in DIALECTS[dialect]]


def create_default_table(db: Database, dialect: str = "", table: str = DEFAULT_TABLE) -> None:
    """Create the log table and its hash index unless they already exist."""
    name = resolve_dialect(db, dialect)
    statements = table_ddl(name, table)
    cursor = db.conn.cursor()
    try:
        for stmt in statements:
            cursor.execute(stmt)
        db.conn.commit()
    finally:
        cursor.close()
    logger.info("Table %s ready (%s)", table, name)
