# Shared pytest fixtures
from __future__ import annotations

import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

from statement_recon.logging.init import reset_logging
from statement_recon.models.statement import StatementRow


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """default_variant: momo
variants:
  generic: {}
  momo:
    occurred_at: day-first
  bank:
    occurred_at: month-first
    reference: reference-grammar
limits:
  max_file_bytes: 1048576
  max_rows: 100
null_sentinels: ["NULL", "N/A"]
database:
  host: localhost
  port: 5432
  user: sacco
  password: secret
  database: sacco
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def statement_csv() -> str:
    return (
        "Date,Txn ID,Phone,Amount,Reference\n"
        "01/09/2024 08:53,TX1,0788123456,\"5,000\",NYA.KIG.IKM01.M001\n"
        "02/09/2024,TX2,0722123456,2500,\n"
        "03/09/2024,TX3,12345,1000,NYA.KIG.IKM01\n"
    )


@pytest.fixture()
def write_statement(temp_workdir: Path, statement_csv: str) -> Path:
    f = temp_workdir / "data" / "statement.csv"
    f.write_text(statement_csv, encoding="utf-8")
    return f


@pytest.fixture()
def make_row():
    def _make(txn_id: str, reference: str | None = None, amount: str = "1000") -> StatementRow:
        return StatementRow(
            occurred_at="2024-09-01T08:53:00",
            txn_id=txn_id,
            msisdn="+250788123456",
            amount=Decimal(amount),
            reference=reference,
        )
    return _make


@pytest.fixture()
def clean_logging():
    reset_logging()
    yield
    reset_logging()
