"""Configuration loaded from environment variables."""

import os
import signal
from collections.abc import Mapping
from dataclasses import dataclass, field

from .db import DbConfig
from .errors import ConfigError

SHUTDOWN_MODES = ("drain", "legacy")
UNIX_PREFIX = "unix:"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_int(name: str, value: str, base: int = 10) -> int:
    try:
        number = int(value.strip(), base)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if number < 0:
        raise ConfigError(f"{name} must not be negative, got {value!r}")
    return number


def _parse_float(name: str, value: str) -> float:
    try:
        number = float(value.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return number


def parse_signals(value: str) -> tuple[signal.Signals, ...]:
    """``"SIGINT,SIGTERM"`` -> signal members."""
    result = []
    for name in value.split(","):
        name = name.strip().upper()
        if not name:
            continue
        if not name.startswith("SIG"):
            name = "SIG" + name
        try:
            result.append(signal.Signals[name])
        except KeyError:
            raise ConfigError(f"unknown signal {name!r}") from None
    if not result:
        raise ConfigError("TERM_SIGNALS must name at least one signal")
    return tuple(result)


@dataclass(frozen=True)
class ServerConfig:
    db: DbConfig = field(default_factory=DbConfig)
    listen: str = ":80"
    request_log_file: str = "failed_req.log"
    db_log_file: str = "failed_db.log"
    file_mode: int = 0o644
    debug: bool = False
    max_retries: int = 3
    retry_backoff: float = 0.1
    flush_interval: float = 1.0
    term_signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)
    shutdown_grace: float = 10.0
    shutdown_mode: str = "drain"

    @property
    def unix_socket(self) -> str | None:
        """Socket path when ``listen`` carries the ``unix:`` prefix."""
        if self.listen.startswith(UNIX_PREFIX):
            return self.listen[len(UNIX_PREFIX):]
        return None

    @property
    def host_port(self) -> tuple[str, int]:
        host, sep, port = self.listen.rpartition(":")
        if not sep:
            raise ConfigError(f"LISTEN must be host:port, got {self.listen!r}")
        return host.strip("[]") or "0.0.0.0", _parse_int("LISTEN port", port)


def load_config(environ: Mapping[str, str] | None = None) -> ServerConfig:
    """Build ServerConfig from environment variables with defaults."""
    env = os.environ if environ is None else environ
    mode = env.get("SHUTDOWN_MODE", ServerConfig.shutdown_mode).strip().lower()
    if mode not in SHUTDOWN_MODES:
        raise ConfigError(f"SHUTDOWN_MODE must be one of {SHUTDOWN_MODES}, got {mode!r}")
    return ServerConfig(
        db=DbConfig(
            driver=env.get("DB_DRIVER", ""),
            dsn=env.get("DB_DSN", ""),
            dialect=env.get("DB_DIALECT", ""),
        ),
        listen=env.get("LISTEN", ServerConfig.listen),
        request_log_file=env.get("REQ_FAILED_FILE", ServerConfig.request_log_file),
        db_log_file=env.get("DB_FAILED_FILE", ServerConfig.db_log_file),
        file_mode=_parse_int("LOG_FILE_MODE", env.get("LOG_FILE_MODE", "0644"), 8),
        debug=_parse_bool(env.get("LOG_DEBUG", "false")),
        max_retries=_parse_int("MAX_RETRIES", env.get("MAX_RETRIES", "3")),
        retry_backoff=_parse_float("RETRY_BACKOFF", env.get("RETRY_BACKOFF", "0.1")),
        flush_interval=_parse_float("INTERVAL", env.get("INTERVAL", "1")),
        term_signals=parse_signals(env.get("TERM_SIGNALS", "SIGINT,SIGTERM")),
        shutdown_grace=_parse_float("SHUTDOWN_GRACE", env.get("SHUTDOWN_GRACE", "10")),
        shutdown_mode=mode,
    )
