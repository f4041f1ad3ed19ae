"""Command-line interface for persist-log."""

import argparse
import dataclasses
import logging
import sys

from uvicorn.importer import ImportFromStringError, import_from_string

from .config import load_config
from .db import connect_db
from .errors import PersistLogError
from .schema import create_default_table, resolve_dialect
from .server import Server

logger = logging.getLogger(__name__)


def run_serve(args: argparse.Namespace) -> int:
    """Run the capturing server until a termination signal arrives."""
    config = load_config()
    if args.listen:
        config = dataclasses.replace(config, listen=args.listen)
    if args.debug:
        config = dataclasses.replace(config, debug=True)
    _setup_logging(config.debug)

    configure = import_from_string(args.routes) if args.routes else None

    server = Server(config)
    server.startup()
    if configure is not None:
        try:
            server.configure(configure)
        except Exception:
            server.shutdown()
            raise

    print("Starting persist-log server...")
    print(f"  Listening on: {config.listen}")
    print(f"  Database:     {config.db.driver}")
    print(f"  Failed logs:  {config.request_log_file}, {config.db_log_file}")
    print()

    served = server.serve()
    code = server.shutdown()
    return code if served else 1


def run_init_db(args: argparse.Namespace) -> int:
    """Create the log table and index, then exit."""
    config = load_config()
    _setup_logging(config.debug)
    db = connect_db(config.db)
    try:
        create_default_table(db, config.db.dialect)
    finally:
        db.close()
    print(f"Schema ready ({resolve_dialect(db, config.db.dialect)})")
    return 0


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="persist-log - HTTP server that logs every exchange to a SQL database",
        epilog="Database and log settings are read from the environment "
        "(DB_DRIVER, DB_DSN, DB_DIALECT, LISTEN, REQ_FAILED_FILE, DB_FAILED_FILE, ...).",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser(
        "serve", help="Start the server and persist every request/response pair"
    )
    serve_parser.add_argument(
        "--listen",
        type=str,
        default=None,
        help="host:port or unix:/path/to.sock (default: $LISTEN or :80)",
    )
    serve_parser.add_argument(
        "--routes",
        type=str,
        default=None,
        help="module:callable receiving the Server to register routes on",
    )
    serve_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers.add_parser("init-db", help="Create the tx_log table if it does not exist")

    args = parser.parse_args(argv)

    try:
        if args.command == "serve":
            return run_serve(args)
        elif args.command == "init-db":
            return run_init_db(args)
    except (PersistLogError, ImportFromStringError, OSError) as e:
        logger.critical("Startup failed: %s", e)
        return 1
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
