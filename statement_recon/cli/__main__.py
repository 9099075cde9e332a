from __future__ import annotations

import argparse
import json
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from statement_recon.config.loader import DEFAULT_CONFIG_PATH, ConfigError, ImportConfig, load_config
from statement_recon.db.repository import InMemoryPaymentRepository, PostgresPaymentRepository
from statement_recon.db.resolver import NullReferenceResolver, PostgresReferenceResolver
from statement_recon.logging.error_log import DECODE_ERROR, MESSAGE_PARSE_ERROR, ErrorLogBuffer
from statement_recon.logging.init import log_summary, set_debug, setup_logging
from statement_recon.mapping.column_mapper import MappingError
from statement_recon.masks.registry import UnknownMaskError
from statement_recon.models.fields import field_label
from statement_recon.services.committer import CommitError
from statement_recon.services.pipeline import MessageParseError, StatementImportSession
from statement_recon.services.summary import render_feedback_line, render_summary_line
from statement_recon.tabular.reader import DecodeError

"""CLI entrypoint.

    python -m statement_recon.cli preview FILE [options]
    python -m statement_recon.cli import FILE --sacco ID [--ikimina ID] [options]

FILE is a CSV / XLSX statement, or with --messages a JSON Lines file of
already parsed SMS messages (one object per line).

Exit codes: 0 every row accepted, 2 finished but some rows were rejected,
1 fatal (config, decode, mapping, storage).
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_REJECTED_ROWS = 2

PREVIEW_REJECTION_LIMIT = 10


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Provide a psycopg2 cursor.

    Connection settings, first match wins:
        1. DATABASE_URL / PGDSN (``.env`` is loaded with override first)
        2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. the database section of config/import.yml
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    try:
        # transaction boundaries are explicit (repository runs BEGIN/COMMIT)
        conn.autocommit = True
        cur = conn.cursor()
        try:
            yield cur
        finally:
            cur.close()
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env so that its connection settings win over the config file."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _pairs(values: list[str] | None, option: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"{option} expects field=value, got {item!r}")
        result[key.strip()] = value.strip()
    return result


def _parse_args(argv: list[str]) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("file", type=Path, help="Statement file (CSV / XLSX) or JSON Lines with --messages")
    common.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config YAML path")
    common.add_argument("--variant", help="Statement source variant (default from config)")
    common.add_argument("--mask", action="append", metavar="FIELD=MASK", help="Mask override, repeatable")
    common.add_argument("--map", action="append", metavar="FIELD=COLUMN", help="Column override, repeatable")
    common.add_argument("--sheet", help="Workbook sheet name (first sheet by default)")
    common.add_argument("--messages", action="store_true", help="FILE holds parsed SMS messages")
    common.add_argument("--debug", action="store_true", help="Enable debug logging")

    p = argparse.ArgumentParser(prog="statement_recon", description="Statement import & reconciliation")
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("preview", parents=[common], help="Validate and report without importing")
    imp = sub.add_parser("import", parents=[common], help="Validate and import payments")
    imp.add_argument("--sacco", required=True, help="SACCO id the payments belong to")
    imp.add_argument("--ikimina", help="Ikimina id kept on unallocated payments")
    return p.parse_args(argv)


def _parse_message_line(line: str) -> dict[str, Any]:
    parsed = json.loads(line)
    if not isinstance(parsed, dict):
        raise ValueError("expected a JSON object")
    return parsed


def _load(session: StatementImportSession, args: argparse.Namespace) -> None:
    if args.messages:
        try:
            lines = args.file.read_text(encoding="utf-8").splitlines()
        except UnicodeDecodeError as e:
            raise MessageParseError(f"file is not UTF-8 text: {e}") from e
        session.load_messages(lines, _parse_message_line)
    else:
        session.load_path(args.file, sheet_name=args.sheet)


def _log_rejections(logger, session: StatementImportSession, limit: int) -> None:
    for row in session.process().invalid_rows[:limit]:
        logger.warning("row=%d %s", row.index + 1, "; ".join(row.errors))


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None only: an explicit [] must not fall back to sys.argv
    if argv is None:
        argv = sys.argv[1:]
    try:
        args = _parse_args(argv)
    except SystemExit as e:
        return EXIT_SUCCESS if e.code == 0 else EXIT_FATAL
    if args.debug:
        set_debug()
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    started = time.perf_counter()
    error_log = ErrorLogBuffer()
    try:
        session = StatementImportSession.from_config(
            cfg,
            variant=args.variant,
            mask_overrides=_pairs(args.mask, "--mask"),
            error_log=error_log,
        )
        _load(session, args)
        for field_key, column in _pairs(args.map, "--map").items():
            session.set_mapping(field_key, column or None)
        batch = session.process()
    except (argparse.ArgumentTypeError, UnknownMaskError, MappingError) as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL
    except DecodeError as e:
        logger.error(f"decode: {e}")
        error_log.record_file_error(args.file.name, DECODE_ERROR, str(e))
        error_log.flush()
        return EXIT_FATAL
    except MessageParseError as e:
        logger.error(f"messages: {e}")
        error_log.record_file_error(args.file.name, MESSAGE_PARSE_ERROR, str(e))
        error_log.flush()
        return EXIT_FATAL
    except OSError as e:
        logger.error(f"read: {e}")
        return EXIT_FATAL

    mapping_text = ", ".join(f"{field_label(k)}<-{c}" for k, c in session.mapping.as_dict().items())
    logger.info(f"variant={session.variant} mapping: {mapping_text}")
    logger.debug(f"masks={session.masks}")
    logger.info(render_feedback_line(session.feedback()))

    valid_count = len(batch.valid_rows)
    result = None
    if args.command == "preview":
        _log_rejections(logger, session, PREVIEW_REJECTION_LIMIT)
    elif len(batch) == 0:
        logger.error("import: no rows to import")
        return EXIT_FATAL
    elif valid_count == 0:
        session.record_rejections()
        logger.error("import: no valid rows to import")
    else:
        disable_db = os.getenv("DISABLE_DB_CONNECT") == "1"
        try:
            if disable_db:
                logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
                result = session.commit(InMemoryPaymentRepository(), args.sacco, args.ikimina, NullReferenceResolver())
            else:
                with _db_connection(cfg) as cur:
                    repository = PostgresPaymentRepository(cur, table=cfg.database.payments_table)
                    result = session.commit(repository, args.sacco, args.ikimina, PostgresReferenceResolver(cur))
        except CommitError as e:
            logger.error(f"import: {e}")
            error_log.flush()
            return EXIT_FATAL
        except psycopg2.Error as e:
            logger.error(f"database: {e}")
            return EXIT_FATAL
        logger.info(f"mode={'mock' if disable_db else 'live'} sacco={args.sacco}")

    log_path = error_log.flush()
    if log_path is not None:
        logger.info(f"error log written: {log_path}")

    # log_summary adds the SUMMARY label itself
    summary_line = render_summary_line(len(batch), valid_count, result, time.perf_counter() - started)
    log_summary(summary_line[len("SUMMARY "):])

    return EXIT_REJECTED_ROWS if batch.invalid_rows else EXIT_SUCCESS


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
