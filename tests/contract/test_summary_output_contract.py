from __future__ import annotations

import re

from statement_recon.cli.__main__ import main as cli_main

"""SUMMARY line format contract.

SUMMARY rows={n} valid={v} rejected={r} inserted={i} duplicates={d} posted={p} unallocated={u} elapsed_sec={s}
"""

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY rows=(\d+) valid=(\d+) rejected=(\d+) inserted=(\d+) duplicates=(\d+) "
    r"posted=(\d+) unallocated=(\d+) elapsed_sec=(\d+(?:\.\d+)?)$"
)


def _summary_lines(out: str) -> list[str]:
    return [line for line in out.splitlines() if line.startswith("SUMMARY ")]


def test_summary_pattern_example_line():
    line = "SUMMARY rows=4 valid=3 rejected=1 inserted=2 duplicates=1 posted=1 unallocated=1 elapsed_sec=0.84"
    assert SUMMARY_PATTERN.match(line)


def test_cli_emits_exactly_one_summary_line(clean_logging, write_config, write_statement, monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    cli_main(["import", "data/statement.csv", "--sacco", "s1"])
    lines = _summary_lines(capsys.readouterr().out)
    assert len(lines) == 1
    m = SUMMARY_PATTERN.match(lines[0])
    assert m, lines[0]
    rows, valid, rejected, inserted, duplicates, posted, unallocated, _ = (int(float(g)) for g in m.groups())
    assert valid + rejected == rows
    assert inserted + duplicates == valid
    assert posted + unallocated == inserted


def test_preview_summary_matches_pattern(clean_logging, write_config, write_statement, capsys):
    cli_main(["preview", "data/statement.csv"])
    lines = _summary_lines(capsys.readouterr().out)
    assert len(lines) == 1
    assert SUMMARY_PATTERN.match(lines[0])
