"""HTTP server that persists every request/response pair it handles."""

import contextlib
import enum
import logging
import os
import signal
import threading
from collections.abc import Callable, Sequence
from typing import IO, Any

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import BaseRoute, Route

from .builder import StatementBuilder, ValueBuilder
from .config import ServerConfig
from .db import Database, connect_db
from .middleware import RecordSink, RequestLogger
from .schema import create_default_table
from .writer import CachedWriter

logger = logging.getLogger(__name__)


class ServerState(enum.Enum):
    CREATED = "created"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class _UvicornServer(uvicorn.Server):
    """uvicorn server whose termination signals are handled by ``Server``."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def create_app(writer: RecordSink, routes: Sequence[BaseRoute] | None = None) -> Starlette:
    """Create the Starlette application with request capture installed."""

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "ok"})

    return Starlette(
        routes=[Route("/health", health, methods=["GET"]), *(routes or [])],
        middleware=[Middleware(RequestLogger, writer=writer)],
    )


def open_log_file(path: str, mode: int) -> IO[str]:
    """Open ``path`` for appending, creating it with permission ``mode``."""
    fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, mode)
    return os.fdopen(fd, "a", encoding="utf-8")


class Server:
    """Wires database, failure logs, cached writer and HTTP app together.

    Lifecycle: ``startup()`` -> ``serve()`` -> ``shutdown()``. A configured
    termination signal ends ``serve()``; ``shutdown()`` then stops the
    writer and closes every resource, returning the process exit code.
    """

    def __init__(self, config: ServerConfig, routes: Sequence[BaseRoute] | None = None):
        self.config = config
        self.routes = list(routes or [])
        self.state = ServerState.CREATED
        self.db: Database | None = None
        self.request_log: IO[str] | None = None
        self.db_log: IO[str] | None = None
        self.writer: CachedWriter | None = None
        self.app: Starlette | None = None
        self.stop_event = threading.Event()
        self._uvicorn: _UvicornServer | None = None
        self._previous_handlers: dict[signal.Signals, Any] = {}

    def startup(self) -> None:
        """Provision the schema, open log files, start the writer, trap signals.

        Any failure here is fatal; resources opened so far are released
        before the error propagates.
        """
        cfg = self.config
        try:
            self.db = connect_db(cfg.db)
            create_default_table(self.db, cfg.db.dialect)
            self.db_log = open_log_file(cfg.db_log_file, cfg.file_mode)
            self.request_log = open_log_file(cfg.request_log_file, cfg.file_mode)
        except Exception:
            self._close_resources()
            raise

        builder = StatementBuilder(
            ValueBuilder(), self.request_log, placeholder=self.db.placeholder
        )
        self.writer = CachedWriter(
            self.db,
            builder,
            interval=cfg.flush_interval,
            max_retries=cfg.max_retries,
            retry_backoff=cfg.retry_backoff,
            failed_log=self.db_log,
        )
        self.writer.start(self.stop_event)
        self.app = create_app(self.writer, self.routes)
        self._install_signal_handlers()

    def configure(self, fn: Callable[["Server"], Any]) -> None:
        fn(self)

    def add_route(self, path: str, endpoint: Callable, methods: list[str] | None = None) -> None:
        if self.app is None:
            self.routes.append(Route(path, endpoint, methods=methods))
        else:
            self.app.router.routes.append(Route(path, endpoint, methods=methods))

    def serve(self) -> bool:
        """Serve until a termination signal arrives. Returns False if serving failed."""
        if self.app is None:
            raise RuntimeError("startup() must be called before serve()")
        cfg = self.config
        options: dict[str, Any] = {
            "log_level": "debug" if cfg.debug else "info",
            "timeout_graceful_shutdown": int(cfg.shutdown_grace) or 1,
        }
        if cfg.unix_socket is not None:
            options["uds"] = cfg.unix_socket
        else:
            options["host"], options["port"] = cfg.host_port
        self._uvicorn = _UvicornServer(uvicorn.Config(self.app, **options))

        logger.info("Serving on %s", cfg.listen)
        self.state = ServerState.SERVING
        try:
            self._uvicorn.run()
        except SystemExit:
            # uvicorn exits when it cannot bind the listen address
            logger.error("Serve error on %s", cfg.listen)
            return False
        return True

    def handle_signal(self, signum: int, frame: Any = None) -> None:
        logger.info("Received signal: %s. Shutting down...", signal.Signals(signum).name)
        self.state = ServerState.SHUTTING_DOWN
        if self._uvicorn is not None:
            self._uvicorn.should_exit = True

    def shutdown(self) -> int:
        """Stop the writer and release resources; 0 on a clean shutdown, else 1."""
        self.state = ServerState.SHUTTING_DOWN
        if self._uvicorn is not None:
            self._uvicorn.should_exit = True

        ok = True
        if self.writer is not None:
            if self.config.shutdown_mode == "drain":
                ok = self.writer.stop(wait=True, timeout=self.config.shutdown_grace)
            else:
                self.writer.stop(wait=False)
        else:
            self.stop_event.set()

        if self.writer is not None and self.writer.running:
            # The writer thread still uses the connection and both logs
            logger.warning(
                "Writer still flushing, leaving database and logs open; "
                "%d buffered record(s) may be lost",
                self.writer.pending_count,
            )
            self.request_log = self.db_log = self.db = None
        else:
            ok = self._close_resources() and ok
        self._restore_signal_handlers()
        self.state = ServerState.STOPPED
        if ok:
            logger.info("Server gracefully stopped. Bye.")
        else:
            logger.error("Server shutdown finished with errors")
        return 0 if ok else 1

    def _close_resources(self) -> bool:
        ok = True
        for name, resource in (
            ("request log", self.request_log),
            ("DB log", self.db_log),
            ("database", self.db),
        ):
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as e:
                logger.error("Failed to close %s: %s", name, e)
                ok = False
        self.request_log = self.db_log = self.db = None
        return ok

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, termination signals not trapped")
            return
        for sig in self.config.term_signals:
            self._previous_handlers[sig] = signal.signal(sig, self.handle_signal)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            if handler is not None:
                signal.signal(sig, handler)
        self._previous_handlers.clear()
