"""Application entry point for the Sofia indexer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

from sofia_indexer import settings as settings_module
from sofia_indexer.adapters.report_formatting import format_record, format_record_line, format_status
from sofia_indexer.adapters.sqlite_storage import SQLiteCheckpoint, SQLiteStorage
from sofia_indexer.client import build_chain_client, build_verifier
from sofia_indexer.core.checkpoint import initialize_checkpoint
from sofia_indexer.core.errors import ConfigError, FatalError
from sofia_indexer.core.models import IndexerStatus
from sofia_indexer.core.processor import RecordPipeline
from sofia_indexer.core.retry import RetryPolicy
from sofia_indexer.core.scanner import EventScanner
from sofia_indexer.settings import Settings, load_settings

NAME = "SOFIA INDEXER"
FONT = "tarty-1"

EXIT_FATAL = 1
EXIT_CONFIG = 2

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: dict) -> None:
    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    # The watcher is useless without per-cycle output, so fall back to console INFO.
    if not config.get("enabled", False):
        logging.basicConfig(level=logging.INFO, format=fmt, datefmt=datefmt)
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/sofia_indexer.log")
        if not os.path.isabs(path):
            path = os.path.join(settings_module.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _install_signal_handlers(scanner: EventScanner) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, scanner.stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops lack add_signal_handler; Ctrl+C still
            # interrupts via KeyboardInterrupt.
            LOGGER.debug("Signal handler for %s not installed", signum)


async def _run_indexer(settings: Settings) -> IndexerStatus:
    storage = SQLiteStorage(settings.db_path)
    storage.init_db()
    checkpoint = SQLiteCheckpoint(storage)

    chain = build_chain_client(settings)
    verifier = build_verifier(settings)
    try:
        pipeline = RecordPipeline(
            chain=chain,
            verifier=verifier,
            store=storage,
            atoms=storage,
            retry_policy=RetryPolicy.from_config(settings.retry, settings.verifier.max_attempts),
        )
        scanner = EventScanner(
            chain=chain,
            pipeline=pipeline,
            checkpoint=checkpoint,
            store=storage,
            config=settings.scan,
            # The scanner retries forever; attempts only bound in-call retries.
            backoff=RetryPolicy.from_config(settings.retry, max_attempts=1),
        )
        _install_signal_handlers(scanner)

        LOGGER.info("Monitoring contract %s", settings.chain.contract_address)
        LOGGER.info("Chain: %s (%s)", settings.chain.name, settings.chain.chain_id)

        fresh = await initialize_checkpoint(checkpoint, chain, settings.scan.start_block)
        LOGGER.info("Starting from block %s", checkpoint.get())
        if fresh:
            await scanner.warm_up(settings.scan.lookback_blocks)

        LOGGER.info("Indexer running. Press Ctrl+C to stop.")
        await scanner.run()
        return scanner.status()
    finally:
        await chain.aclose()
        await verifier.aclose()


def _run(settings: Settings) -> int:
    _print_banner()
    _configure_logging(settings.logging)
    LOGGER.info("Starting sofia indexer")

    status = asyncio.run(_run_indexer(settings))
    LOGGER.info("Sofia indexer stopped")
    print(format_status(status, settings.chain))
    return 0


def _open_storage(settings: Settings) -> Optional[SQLiteStorage]:
    if not os.path.exists(settings.db_path):
        print(f"No database at {settings.db_path}; run the indexer first.")
        return None
    storage = SQLiteStorage(settings.db_path)
    storage.init_db()
    return storage


def _status(settings: Settings) -> int:
    storage = _open_storage(settings)
    if storage is None:
        return EXIT_FATAL
    checkpoint = SQLiteCheckpoint(storage)
    status = IndexerStatus(
        state="stored",
        checkpoint=checkpoint.get(),
        records=storage.count(),
        totals=checkpoint.totals(),
        last_cycle_at=checkpoint.last_updated_at(),
    )
    print(format_status(status, settings.chain))
    return 0


def _records(settings: Settings, args: argparse.Namespace) -> int:
    storage = _open_storage(settings)
    if storage is None:
        return EXIT_FATAL

    action = args.records_command or "list"
    if action == "count":
        print(storage.count())
        return 0
    if action == "show":
        record = storage.get(args.record_id)
        if record is None:
            print(f"No record with id {args.record_id}")
            return EXIT_FATAL
        print(format_record(record, settings.chain))
        return 0

    records = storage.list()
    limit = getattr(args, "limit", None)
    if limit:
        records = records[-limit:]
    for record in records:
        print(format_record_line(record))
    print(f"{len(records)} of {storage.count()} records")
    return 0


def _browse(settings: Settings) -> int:
    from sofia_indexer.frontend.app import RecordsApp

    if _open_storage(settings) is None:
        return EXIT_FATAL
    RecordsApp(db_path=settings.db_path, chain=settings.chain).run()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sofia-indexer")
    parser.add_argument("--config", help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the watcher")
    subparsers.add_parser("status", help="Show checkpoint and record count")
    subparsers.add_parser("browse", help="Browse admitted records in a TUI")

    records = subparsers.add_parser("records", help="Query admitted records")
    records_sub = records.add_subparsers(dest="records_command")
    list_parser = records_sub.add_parser("list", help="List records (default)")
    list_parser.add_argument("--limit", type=int, default=None, help="Show only the newest N")
    show_parser = records_sub.add_parser("show", help="Show one record")
    show_parser.add_argument("record_id", help="<transaction_hash>:<log_index>")
    records_sub.add_parser("count", help="Print the number of records")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = load_settings(config_path=args.config)
        if args.command == "status":
            return _status(settings)
        if args.command == "records":
            return _records(settings, args)
        if args.command == "browse":
            return _browse(settings)
        return _run(settings)
    except ConfigError as exc:
        LOGGER.critical("Configuration error: %s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except FatalError as exc:
        LOGGER.critical("Fatal error, indexer halted: %s", exc)
        print(f"Fatal error, indexer halted: {exc}", file=sys.stderr)
        return EXIT_FATAL
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
