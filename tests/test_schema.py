"""Tests for schema provisioning."""

import pytest

from persist_log.db import DbConfig, connect_db
from persist_log.errors import UnsupportedDialectError
from persist_log.schema import create_default_table, resolve_dialect, table_ddl


class RecordingConnection:
    def __init__(self):
        self.executed: list[str] = []

    def cursor(self):
        return self

    def execute(self, sql, *args):
        self.executed.append(sql)

    def commit(self):
        pass

    def close(self):
        pass


def test_creates_table_and_index(db):
    rows = db.conn.execute("SELECT id, req_hash, headers, body, created_at FROM tx_log").fetchall()
    assert rows == []

    index = db.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' AND tbl_name='tx_log'"
    ).fetchall()
    assert ("ix_tx_log_hash",) in index


def test_is_idempotent(db):
    create_default_table(db)
    create_default_table(db)

    tables = db.conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name='tx_log'"
    ).fetchone()[0]
    indexes = db.conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='index' AND name='ix_tx_log_hash'"
    ).fetchone()[0]
    assert (tables, indexes) == (1, 1)


def test_created_at_defaults_to_now(db):
    db.conn.execute("INSERT INTO tx_log (id, req_hash, headers) VALUES (?, ?, ?)", (b"1" * 16, "h", "x"))

    assert db.conn.execute("SELECT created_at FROM tx_log").fetchone()[0]


def test_unsupported_dialect_executes_nothing(db):
    conn = RecordingConnection()
    db.conn, real = conn, db.conn
    try:
        with pytest.raises(UnsupportedDialectError, match="unsupported SQL dialect"):
            create_default_table(db, "sqlite")
    finally:
        db.conn = real

    assert conn.executed == []


def test_override_takes_precedence(db):
    assert resolve_dialect(db) == "sqlite3"
    assert resolve_dialect(db, "mysql") == "mysql"


def test_mysql_ddl():
    (stmt,) = table_ddl("mysql")

    assert "CREATE TABLE IF NOT EXISTS tx_log" in stmt
    assert "id BINARY(16) NOT NULL PRIMARY KEY" in stmt
    assert "body BLOB," in stmt
    assert "INDEX ix_tx_log_hash (req_hash)" in stmt


def test_custom_table_name():
    connection = connect_db(DbConfig(driver="sqlite3", dsn=":memory:"))
    try:
        create_default_table(connection, table="audit_log")
        assert connection.conn.execute("SELECT COUNT(*) FROM audit_log").fetchone() == (0,)
    finally:
        connection.close()
