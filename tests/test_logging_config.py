from __future__ import annotations

import json
import logging

import pytest

from payrecon.logging_config import JsonFormatter, _sanitize_obj, _sanitize_str, setup_logging


def test_sanitize_authorization_bearer_masked() -> None:
    s = "Authorization: Bearer ABCDEFGHIJKLMNOP"
    out = _sanitize_str(s)
    assert "Bearer [REDACTED]" in out


def test_sanitize_access_token_kv_masked() -> None:
    s = '{"access_token":"abc.def.ghi","other":"x"}'
    out = _sanitize_str(s)
    assert '"access_token":"[REDACTED]"' in out


def test_sanitize_signed_attachment_url_masked() -> None:
    s = "https://files.example.com/proofs/77.png?X-Amz-Signature=deadbeef&size=large"
    out = _sanitize_str(s)
    assert "X-Amz-Signature=[REDACTED]" in out
    assert "size=large" in out


def test_sanitize_iban_keeps_country_and_tail() -> None:
    out = _sanitize_str("paid from DE89370400440532013000")
    assert "DE89***3000" in out
    assert "370400440532" not in out


def test_sanitize_nested_objects() -> None:
    obj = {
        "authorization": "Authorization: Bearer VERYSECRETTOKEN",
        "nested": [
            {"access_token": "abc123"},
            {"attachment_url": "https://files/p.png?token=T0KENXYZ"},
        ],
    }
    out = _sanitize_obj(obj)
    # Access token masked
    assert out["nested"][0]["access_token"].startswith("***") or out["nested"][0]["access_token"] == "[REDACTED]"
    # Signed URL token masked
    assert "token=[REDACTED]" in out["nested"][1]["attachment_url"]
    # Authorization header masked
    assert "[REDACTED]" in out["authorization"]


def test_json_formatter_merges_extra() -> None:
    record = logging.LogRecord("payrecon.test", logging.INFO, __file__, 1, "decision applied", None, None)
    record.extra = {"ref": "proof:1", "iban": "DE89370400440532013000"}
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "decision applied"
    assert payload["ref"] == "proof:1"
    assert payload["iban"] == "***3000"


def test_aiogram_logger_level_warning_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("LOG_TO_FILE", "0")
    setup_logging()
    logger = logging.getLogger("aiogram")
    assert logger.level == logging.WARNING or logger.getEffectiveLevel() == logging.WARNING
