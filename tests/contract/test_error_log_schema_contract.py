from __future__ import annotations

import json

import jsonschema
import pytest

from statement_recon.logging.error_log import SCHEMA_PATH, ErrorLogBuffer
from statement_recon.models.error_record import FILE_LEVEL_ROW, ErrorRecord

"""Error log JSON schema contract (statement_recon/logging/error_log_schema.json)."""


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_valid_example(schema):
    record = {
        "timestamp": "2024-09-01T08:53:00Z",
        "source": "statement.csv",
        "row": 3,
        "field": "msisdn",
        "error_type": "VALIDATION_ERROR",
        "message": "'12345' is not a Rwandan mobile number (07XXXXXXXX)",
    }
    jsonschema.validate(record, schema)


def test_row_minus_one_and_null_field_for_file_errors(schema):
    record = ErrorRecord.create("statement.xlsx", FILE_LEVEL_ROW, "DECODE_ERROR", "header row is blank")
    jsonschema.validate(json.loads(record.to_json_line()), schema)


def test_rejects_extra_key(schema):
    record = json.loads(ErrorRecord.create("s.csv", 1, "VALIDATION_ERROR", "x").to_json_line())
    record["sheet"] = "Sheet1"
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(record, schema)


def test_rejects_row_below_minus_one(schema):
    record = json.loads(ErrorRecord.create("s.csv", -2, "VALIDATION_ERROR", "x").to_json_line())
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(record, schema)


def test_flushed_lines_match_schema(schema, tmp_path):
    buf = ErrorLogBuffer(logs_dir=tmp_path)
    buf.record_file_error("<sms>", "MESSAGE_PARSE_ERROR", "line 2: not recognised")
    buf.append(ErrorRecord.create("s.csv", 4, "VALIDATION_ERROR", "value is required", field="txn_id"))
    path = buf.flush()
    for line in path.read_text(encoding="utf-8").splitlines():
        jsonschema.validate(json.loads(line), schema)
