from __future__ import annotations

import json
from pathlib import Path

import psycopg2
import pytest

import statement_recon.cli.__main__ as cli_module
from statement_recon.cli.__main__ import EXIT_FATAL, EXIT_REJECTED_ROWS, EXIT_SUCCESS
from statement_recon.cli.__main__ import main as cli_main


@pytest.fixture()
def mock_mode(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


def _write(temp_workdir: Path, name: str, text: str) -> Path:
    f = temp_workdir / "data" / name
    f.write_text(text, encoding="utf-8")
    return f


def test_preview_reports_feedback_and_rejections(clean_logging, write_config, write_statement, capsys):
    code = cli_main(["preview", "data/statement.csv"])
    out = capsys.readouterr().out
    assert code == EXIT_REJECTED_ROWS
    assert "INFO FEEDBACK total=3 duplicate_ids=0" in out
    assert "WARN row=3 MSISDN:" in out
    assert "SUMMARY rows=3 valid=2 rejected=1 inserted=0" in out


def test_import_mock_mode(clean_logging, write_config, write_statement, mock_mode, temp_workdir, capsys):
    code = cli_main(["import", "data/statement.csv", "--sacco", "sacco-1"])
    out = capsys.readouterr().out
    assert code == EXIT_REJECTED_ROWS
    assert "SUMMARY rows=3 valid=2 rejected=1 inserted=2 duplicates=0 posted=0 unallocated=2" in out
    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    record = json.loads(logs[0].read_text(encoding="utf-8").splitlines()[0])
    assert (record["source"], record["row"], record["field"]) == ("statement.csv", 3, "msisdn")


def test_import_all_valid_exits_zero(clean_logging, write_config, mock_mode, temp_workdir, capsys):
    _write(temp_workdir, "ok.csv", "Date,Txn ID,Phone,Amount\n01/09/2024,TX1,0788123456,100\n")
    code = cli_main(["import", "data/ok.csv", "--sacco", "sacco-1", "--ikimina", "ikm-1"])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS
    assert "inserted=1" in out
    assert not list((temp_workdir / "logs").glob("errors-*.log"))


def test_import_with_no_valid_rows(clean_logging, write_config, mock_mode, temp_workdir, capsys):
    _write(temp_workdir, "bad.csv", "Date,Txn ID,Phone,Amount\n01/09/2024,TX1,123,100\n")
    code = cli_main(["import", "data/bad.csv", "--sacco", "sacco-1"])
    out = capsys.readouterr().out
    assert code == EXIT_REJECTED_ROWS
    assert "ERROR import: no valid rows to import" in out
    assert len(list((temp_workdir / "logs").glob("errors-*.log"))) == 1


def test_import_header_only_file_is_fatal(clean_logging, write_config, mock_mode, temp_workdir, capsys):
    _write(temp_workdir, "empty.csv", "Date,Txn ID,Phone,Amount\n")
    assert cli_main(["import", "data/empty.csv", "--sacco", "sacco-1"]) == EXIT_FATAL
    assert "ERROR import: no rows to import" in capsys.readouterr().out


def test_variant_mask_and_map_overrides(clean_logging, write_config, temp_workdir, capsys):
    _write(temp_workdir, "bank.csv", "Posted,Code,Mobile,Value\n09/01/2024,TX1,0788123456,\"1.234,50\"\n")
    code = cli_main(
        [
            "preview",
            "data/bank.csv",
            "--variant", "bank",
            "--mask", "amount=decimal-comma",
            "--map", "occurred_at=Posted",
            "--map", "txn_id=Code",
            "--map", "msisdn=Mobile",
            "--map", "amount=Value",
        ]
    )
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS, out
    assert "variant=bank" in out


def test_missing_config_is_fatal(clean_logging, temp_workdir, write_statement, capsys):
    code = cli_main(["preview", "data/statement.csv"])
    assert code == EXIT_FATAL
    assert "ERROR config: config file not found" in capsys.readouterr().out


@pytest.mark.parametrize(
    "extra, message",
    [
        (["--mask", "amount=rw-msisdn"], "ERROR input:"),
        (["--mask", "amount"], "ERROR input:"),
        (["--variant", "airtel"], "ERROR input:"),
        (["--map", "iban=Date"], "ERROR input: unknown field"),
    ],
)
def test_bad_options_are_fatal(clean_logging, write_config, write_statement, capsys, extra, message):
    assert cli_main(["preview", "data/statement.csv", *extra]) == EXIT_FATAL
    assert message in capsys.readouterr().out


def test_incomplete_mapping_is_fatal(clean_logging, write_config, write_statement, capsys):
    code = cli_main(["preview", "data/statement.csv", "--map", "msisdn="])
    assert code == EXIT_FATAL
    assert "required fields are not mapped: msisdn" in capsys.readouterr().out


def test_decode_error_is_fatal_and_logged(clean_logging, write_config, temp_workdir, capsys):
    (temp_workdir / "data" / "old.xls").write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1")
    assert cli_main(["preview", "data/old.xls"]) == EXIT_FATAL
    assert "ERROR decode: legacy Excel" in capsys.readouterr().out
    log = next((temp_workdir / "logs").glob("errors-*.log"))
    record = json.loads(log.read_text(encoding="utf-8"))
    assert (record["row"], record["error_type"]) == (-1, "DECODE_ERROR")


def test_missing_file_is_fatal(clean_logging, write_config, capsys):
    assert cli_main(["preview", "data/nope.csv"]) == EXIT_FATAL
    assert "ERROR decode:" in capsys.readouterr().out


def test_messages_mode(clean_logging, write_config, mock_mode, temp_workdir, capsys):
    lines = [
        {"txnId": "MP1", "occurredAt": "2024-09-01T08:53:00", "msisdn": "0788123456", "amount": 5000},
        {"txnId": "MP1", "occurredAt": "2024-09-01T08:53:00", "msisdn": "0788123457", "amount": 3000},
    ]
    _write(temp_workdir, "sms.jsonl", "\n".join(json.dumps(x) for x in lines) + "\n")
    code = cli_main(["import", "data/sms.jsonl", "--messages", "--sacco", "sacco-1"])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS
    assert "duplicate_rows=2" in out
    assert "inserted=1 duplicates=1" in out


def test_messages_mode_parse_failure(clean_logging, write_config, temp_workdir, capsys):
    _write(temp_workdir, "sms.jsonl", '{"txnId": "MP1"}\nnot json\n')
    assert cli_main(["preview", "data/sms.jsonl", "--messages"]) == EXIT_FATAL
    assert "ERROR messages: line 2" in capsys.readouterr().out


def test_messages_mode_non_utf8_file(clean_logging, write_config, temp_workdir, capsys):
    (temp_workdir / "data" / "sms.jsonl").write_bytes(b'{"txnId": "MP1"}\n\xff\xfe\n')
    assert cli_main(["preview", "data/sms.jsonl", "--messages"]) == EXIT_FATAL
    assert "ERROR messages: file is not UTF-8 text" in capsys.readouterr().out


def test_debug_flag(clean_logging, write_config, write_statement, capsys):
    cli_main(["preview", "data/statement.csv", "--debug"])
    out = capsys.readouterr().out
    assert "DEBUG debug mode enabled" in out
    assert "DEBUG masks=" in out


def test_usage_error_is_fatal(clean_logging, capsys):
    assert cli_main([]) == EXIT_FATAL
    assert cli_main(["import", "data/x.csv"]) == EXIT_FATAL  # --sacco missing


class FakeCursor:
    def __init__(self) -> None:
        self.statements: list[str] = []
        self._result: list[tuple] = []

    def execute(self, sql, params=None):
        self.statements.append(sql)
        self._result = []

    def fetchall(self):
        return self._result

    def close(self):
        pass


class FakeConnection:
    def __init__(self) -> None:
        self.cur = FakeCursor()
        self.autocommit = False
        self.closed = False

    def cursor(self):
        return self.cur

    def close(self):
        self.closed = True


def test_import_live_mode(clean_logging, write_config, write_statement, monkeypatch, capsys):
    import statement_recon.db.batch_insert as bi

    conn = FakeConnection()
    dsns = []

    def fake_connect(dsn):
        dsns.append(dsn)
        return conn

    def fake_execute_values(cursor, sql, rows, page_size=100, template=None, fetch=False):
        cursor.statements.append(sql)
        return [(row[1],) for row in rows]

    monkeypatch.delenv("DISABLE_DB_CONNECT", raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgresql://u@db/sacco")
    monkeypatch.setattr(cli_module.psycopg2, "connect", fake_connect)
    monkeypatch.setattr(bi, "execute_values", fake_execute_values)

    code = cli_main(["import", "data/statement.csv", "--sacco", "sacco-1"])
    out = capsys.readouterr().out
    assert code == EXIT_REJECTED_ROWS
    assert dsns == ["postgresql://u@db/sacco"]
    assert conn.closed
    assert "BEGIN" in conn.cur.statements and "COMMIT" in conn.cur.statements
    assert "mode=live" in out
    assert "inserted=2" in out


def test_import_live_mode_connection_failure(clean_logging, write_config, write_statement, monkeypatch, capsys):
    def refuse(dsn):
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.delenv("DISABLE_DB_CONNECT", raising=False)
    monkeypatch.setattr(cli_module.psycopg2, "connect", refuse)
    assert cli_main(["import", "data/statement.csv", "--sacco", "sacco-1"]) == EXIT_FATAL
    assert "ERROR database: could not connect" in capsys.readouterr().out
