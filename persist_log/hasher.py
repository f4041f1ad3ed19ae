"""Fingerprinting of correlation lines and row identity generation."""

import hashlib
import uuid
from typing import Protocol


class Hasher(Protocol):
    """Stateful 64-bit string hasher. Not safe for concurrent use."""

    def reset(self) -> None: ...

    def write(self, data: str) -> int: ...

    def sum64(self) -> int: ...


class IdGenerator(Protocol):
    def generate(self) -> bytes: ...


class Sha256Hasher:
    """64-bit fingerprint taken from the leading bytes of a SHA256 digest.

    The value is stable across processes, so ``"%016x" % sum64()`` equals
    the first 16 characters of the hex digest of the written text.
    """

    def __init__(self):
        self._digest = hashlib.sha256()

    def reset(self) -> None:
        self._digest = hashlib.sha256()

    def write(self, data: str) -> int:
        encoded = data.encode("utf-8")
        self._digest.update(encoded)
        return len(encoded)

    def sum64(self) -> int:
        return int.from_bytes(self._digest.digest()[:8], "big")


class UuidGenerator:
    """Random 128-bit identifiers as 16 raw bytes."""

    def generate(self) -> bytes:
        return uuid.uuid4().bytes


def fingerprint(hasher: Hasher, line: str) -> str:
    """Reset ``hasher``, feed it ``line`` and return the zero-padded hex sum."""
    hasher.reset()
    hasher.write(line)
    return f"{hasher.sum64():016x}"
