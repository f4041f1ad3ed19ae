"""Conversion of pushed record batches into a multi-row INSERT."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import IO, Any

from .errors import (
    BatchError,
    EmptyRequestError,
    HashError,
    InvalidRecordsError,
    RecordError,
)
from .hasher import Hasher, IdGenerator, Sha256Hasher, UuidGenerator, fingerprint
from .models import FailedRecord, TxRecord

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "tx_log"
DEFAULT_COLUMNS = ("id", "req_hash", "headers", "body", "created_at")


def header_text(head: bytes) -> str:
    """Text for the ``headers`` column: UTF-8 when valid, latin-1 otherwise."""
    try:
        return head.decode("utf-8")
    except UnicodeDecodeError:
        return head.decode("latin-1")


@dataclass
class BuildResult:
    """Column values of one batch.

    ``args`` holds ``rows * len(columns)`` values in column order, row
    after row, in the order the records were received.
    """

    rows: int = 0
    args: list[Any] = field(default_factory=list)
    failed: list[FailedRecord] = field(default_factory=list)


class ValueBuilder:
    """Turns records into column values.

    The hasher and id generator are owned by this builder; give each
    thread its own builder.
    """

    def __init__(
        self,
        hasher: Hasher | None = None,
        id_generator: IdGenerator | None = None,
    ):
        self.hasher = hasher if hasher is not None else Sha256Hasher()
        self.id_generator = id_generator if id_generator is not None else UuidGenerator()

    def build(self, records: Sequence[Any]) -> BuildResult:
        """Convert ``records``.

        Records failing identity generation, carrying a malformed id or no
        headers, and elements that are not records at all, are collected
        in ``failed`` and skipped. An empty correlation line or a hasher
        failure discards the whole batch by raising a ``BatchError``.
        """
        if isinstance(records, (str, bytes, bytearray)) or not isinstance(records, Sequence):
            raise InvalidRecordsError()

        result = BuildResult()
        for index, record in enumerate(records):
            if not isinstance(record, TxRecord):
                result.failed.append(
                    FailedRecord(index, f"invalid record: {type(record).__name__}")
                )
                continue
            try:
                row_id = self._new_id()
            except RecordError as e:
                result.failed.append(FailedRecord(index, str(e), record))
                continue
            if not record.correlation_line:
                raise EmptyRequestError(index)
            if not record.headers:
                result.failed.append(FailedRecord(index, "no headers", record))
                continue
            try:
                req_hash = fingerprint(self.hasher, record.correlation_line)
            except Exception as e:
                raise HashError(f"error hashing request line: {e}") from e
            result.args.extend(
                (
                    row_id,
                    req_hash,
                    header_text(record.headers),
                    record.body or None,
                    record.created_at(),
                )
            )
            result.rows += 1
        return result

    def _new_id(self) -> bytes:
        try:
            row_id = self.id_generator.generate()
        except Exception as e:
            raise RecordError(f"error generating UUID: {e}") from e
        if not isinstance(row_id, (bytes, bytearray)) or len(row_id) != 16:
            raise RecordError(f"error marshaling UUID: {row_id!r}")
        return bytes(row_id)


class StatementBuilder:
    """Renders batches into ``(sql, args)`` pairs for the cached writer.

    Failed records are appended to ``failed_log``; writing there is best
    effort and only ever logged. A batch error yields ``("", None)``,
    which the writer treats as nothing to execute.
    """

    def __init__(
        self,
        values: ValueBuilder,
        failed_log: IO[str] | None = None,
        table: str = DEFAULT_TABLE,
        columns: Sequence[str] = DEFAULT_COLUMNS,
        placeholder: str = "?",
    ):
        if len(columns) != len(DEFAULT_COLUMNS):
            raise ValueError(f"expected {len(DEFAULT_COLUMNS)} columns, got {len(columns)}")
        self.values = values
        self.failed_log = failed_log
        self.table = table
        self.columns = tuple(columns)
        self.placeholder = placeholder

    def __call__(self, batch: Sequence[Any]) -> tuple[str, list[Any] | None]:
        try:
            result = self.values.build(batch)
        except BatchError as e:
            logger.error("error building values: %s", e)
            return "", None

        if result.failed:
            logger.error(
                "error building values: %d of %d record(s) failed",
                len(result.failed),
                len(batch),
            )
            self._sink(result.failed)
        if result.rows == 0:
            return "", None
        return self.render(result.rows), result.args

    def render(self, rows: int) -> str:
        group = "(" + ",".join([self.placeholder] * len(self.columns)) + ")"
        return (
            f"INSERT INTO {self.table} ({', '.join(self.columns)}) VALUES"
            + ",".join([group] * rows)
            + ";"
        )

    def _sink(self, failed: list[FailedRecord]) -> None:
        if self.failed_log is None:
            return
        for item in failed:
            try:
                self.failed_log.write(f"{item.describe()};\n")
            except Exception as e:
                logger.error("can't log fails: %s", e)
        try:
            self.failed_log.flush()
        except Exception as e:
            logger.error("can't log fails: %s", e)
