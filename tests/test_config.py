"""Tests for environment configuration."""

import signal

import pytest

from persist_log.config import ServerConfig, load_config, parse_signals
from persist_log.errors import ConfigError


def test_defaults():
    cfg = load_config({})

    assert cfg == ServerConfig()
    assert cfg.listen == ":80"
    assert cfg.file_mode == 0o644
    assert cfg.term_signals == (signal.SIGINT, signal.SIGTERM)
    assert cfg.shutdown_mode == "drain"


def test_reads_environment():
    cfg = load_config(
        {
            "DB_DRIVER": "sqlite3",
            "DB_DSN": "/tmp/tx.db",
            "DB_DIALECT": "sqlite3",
            "LISTEN": "unix:/tmp/persist.sock",
            "REQ_FAILED_FILE": "req.log",
            "DB_FAILED_FILE": "db.log",
            "LOG_FILE_MODE": "0600",
            "LOG_DEBUG": "true",
            "MAX_RETRIES": "5",
            "RETRY_BACKOFF": "0.25",
            "INTERVAL": "2.5",
            "TERM_SIGNALS": "SIGTERM, hup",
            "SHUTDOWN_GRACE": "3",
            "SHUTDOWN_MODE": "LEGACY",
        }
    )

    assert (cfg.db.driver, cfg.db.dsn, cfg.db.dialect) == ("sqlite3", "/tmp/tx.db", "sqlite3")
    assert cfg.unix_socket == "/tmp/persist.sock"
    assert (cfg.request_log_file, cfg.db_log_file) == ("req.log", "db.log")
    assert cfg.file_mode == 0o600
    assert cfg.debug is True
    assert cfg.max_retries == 5
    assert cfg.retry_backoff == 0.25
    assert cfg.flush_interval == 2.5
    assert cfg.term_signals == (signal.SIGTERM, signal.SIGHUP)
    assert cfg.shutdown_grace == 3.0
    assert cfg.shutdown_mode == "legacy"


@pytest.mark.parametrize(
    "listen, expected",
    [(":80", ("0.0.0.0", 80)), ("127.0.0.1:8080", ("127.0.0.1", 8080))],
)
def test_host_port(listen, expected):
    cfg = ServerConfig(listen=listen)

    assert cfg.unix_socket is None
    assert cfg.host_port == expected


def test_host_port_requires_port():
    with pytest.raises(ConfigError):
        ServerConfig(listen="localhost").host_port


@pytest.mark.parametrize(
    "env",
    [
        {"MAX_RETRIES": "three"},
        {"MAX_RETRIES": "-1"},
        {"LOG_FILE_MODE": "0999"},
        {"INTERVAL": "0"},
        {"RETRY_BACKOFF": "-0.1"},
        {"SHUTDOWN_GRACE": "soon"},
        {"TERM_SIGNALS": "SIGNOPE"},
        {"TERM_SIGNALS": " , "},
        {"SHUTDOWN_MODE": "abrupt"},
    ],
)
def test_invalid_values(env):
    with pytest.raises(ConfigError):
        load_config(env)


def test_parse_signals_accepts_short_names():
    assert parse_signals("int,term") == (signal.SIGINT, signal.SIGTERM)
