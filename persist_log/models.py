"""Data models for captured HTTP transaction records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

RecordKind = Literal["request", "response"]

# Layout of the created_at column
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TxRecord:
    """One logged line of an HTTP exchange.

    Both halves of an exchange carry the request's ``METHOD URL`` line as
    ``correlation_line`` so they hash to the same ``req_hash``.
    """

    correlation_line: str
    headers: bytes
    body: bytes | None = None
    timestamp: datetime = field(default_factory=_now)
    kind: RecordKind = "request"

    @classmethod
    def for_request(cls, line: str, head: bytes, body: bytes | None) -> "TxRecord":
        return cls(line, head, body or None, _now(), "request")

    @classmethod
    def for_response(cls, line: str, head: bytes, body: bytes | None) -> "TxRecord":
        return cls(line, head, body or None, _now(), "response")

    def created_at(self) -> str:
        """Format the timestamp for the created_at column."""
        return self.timestamp.strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class FailedRecord:
    """A batch element that could not be converted into a row."""

    index: int
    reason: str
    record: TxRecord | None = None

    def describe(self) -> str:
        if self.record is None:
            return f"<invalid record #{self.index}: {self.reason}>"
        return repr(self.record)
