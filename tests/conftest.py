"""
Pytest configuration and fixtures for persist-log tests.
"""

import sqlite3
from collections.abc import Generator
from datetime import datetime, timezone
from typing import Any

import pytest

from persist_log.db import Database, DbConfig, connect_db
from persist_log.models import TxRecord
from persist_log.schema import create_default_table


class FakeWriter:
    """Collects pushed records in memory."""

    def __init__(self):
        self.records: list[Any] = []

    def push(self, record: Any) -> None:
        self.records.append(record)


class SequenceIds:
    """Id generator returning predictable ids, failing on selected calls."""

    def __init__(self, fail_on: set[int] | None = None, size: int = 16):
        self.calls = 0
        self.fail_on = fail_on or set()
        self.size = size

    def generate(self) -> bytes:
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError("entropy exhausted")
        return self.calls.to_bytes(self.size, "big")


@pytest.fixture
def fake_writer() -> FakeWriter:
    return FakeWriter()


@pytest.fixture
def db() -> Generator[Database, None, None]:
    """In-memory SQLite database with the tx_log table."""
    database = connect_db(DbConfig(driver="sqlite3", dsn=":memory:"))
    create_default_table(database)
    yield database
    database.close()


@pytest.fixture
def make_record():
    def _make(
        line: str = "GET http://localhost/t",
        headers: bytes = b"GET /t HTTP/1.1\r\nHost: localhost\r\n\r\n",
        body: bytes | None = b"test body",
    ) -> TxRecord:
        return TxRecord(
            correlation_line=line,
            headers=headers,
            body=body,
            timestamp=datetime(2024, 5, 17, 8, 30, 15, 123456, tzinfo=timezone.utc),
        )

    return _make


def count_rows(conn: sqlite3.Connection, sql: str, *params: Any) -> int:
    return conn.execute(sql, params).fetchone()[0]
