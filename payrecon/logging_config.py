from __future__ import annotations

import json
import logging
import logging.config
import os
import re
from typing import Any, Dict


# ================= Sensitive Data Masking ================= #
_BEARER_RE = re.compile(r"(Authorization\s*:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE)
# Signed attachment URLs: https://storage/.../proof.png?token=<secret>&X-Amz-Signature=<secret>
_SIGNED_URL_RE = re.compile(r"([?&](?:token|signature|x-amz-signature|sig)=)([^&\s\"]+)", re.IGNORECASE)
# Common JSON-like access_token / api_key patterns inside strings
_ACCESS_TOKEN_KV_RE = re.compile(r"((?:access_token|api_key|secret)\"?\s*[:=]\s*\"?)([A-Za-z0-9._-]+)", re.IGNORECASE)
# IBAN-like account identifiers (two letters, two digits, 10-30 alphanumerics)
_IBAN_RE = re.compile(r"\b([A-Z]{2}\d{2})([A-Z0-9]{6,26})([A-Z0-9]{4})\b")
# Bare bank account / card numbers
_ACCOUNT_NO_RE = re.compile(r"\b(\d{6,15})(\d{4})\b")


def _mask_tail(val: str, keep: int = 4) -> str:
    if not isinstance(val, str):
        return val
    if len(val) <= keep:
        return "[REDACTED]"
    return "***" + val[-keep:]


def _sanitize_str(s: str) -> str:
    if not isinstance(s, str) or not s:
        return s
    s = _BEARER_RE.sub(lambda m: m.group(1) + "[REDACTED]", s)
    s = _SIGNED_URL_RE.sub(lambda m: m.group(1) + "[REDACTED]", s)
    s = _ACCESS_TOKEN_KV_RE.sub(lambda m: m.group(1) + "[REDACTED]", s)
    s = _IBAN_RE.sub(lambda m: m.group(1) + "***" + m.group(3), s)
    s = _ACCOUNT_NO_RE.sub(lambda m: "***" + m.group(2), s)
    return s


def _sanitize_obj(obj: Any) -> Any:
    # Recursively sanitize dict/list/tuple and strings
    try:
        if isinstance(obj, dict):
            out: Dict[str, Any] = {}
            for k, v in obj.items():
                lk = str(k).lower()
                if lk in {"token", "access_token", "api_key", "account_number", "iban"}:
                    out[k] = "[REDACTED]" if not isinstance(v, str) else _mask_tail(v)
                elif lk in {"attachment_url", "url", "authorization", "auth"}:
                    out[k] = _sanitize_str(str(v))
                else:
                    out[k] = _sanitize_obj(v)
            return out
        if isinstance(obj, (list, tuple)):
            t = type(obj)
            return t(_sanitize_obj(v) for v in obj)
        if isinstance(obj, str):
            return _sanitize_str(obj)
    except Exception:
        return obj
    return obj


class SensitiveDataFilter(logging.Filter):
    """A logging filter that masks sensitive data in record message, args, and extra."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            if isinstance(record.msg, str):
                record.msg = _sanitize_str(record.msg)
            if record.args:
                if isinstance(record.args, tuple):
                    record.args = tuple(_sanitize_obj(a) for a in record.args)
                elif isinstance(record.args, dict):
                    record.args = _sanitize_obj(record.args)
            if hasattr(record, "extra") and isinstance(record.extra, dict):
                record.extra = _sanitize_obj(record.extra)
        except Exception:
            # Never break logging
            pass
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            payload.update(record.extra)
        payload = _sanitize_obj(payload)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def setup_logging() -> None:
    """Configure structured logging with sensitive data masking.

    ENV:
      - APP_ENV: production|staging|development (default: production)
      - LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: INFO in prod, DEBUG otherwise)
      - LOG_FORMAT: json|text (default: json in prod, text otherwise)
      - LOG_TO_FILE: 1/0 (default: 1 if the log file is writable)
      - LOG_FILE_PATH: path to log file (default: ./logs/payrecon.log)
    """
    app_env = os.getenv("APP_ENV", "production").lower()
    default_level = "INFO" if app_env == "production" else "DEBUG"
    log_level = os.getenv("LOG_LEVEL", default_level).upper()
    log_format = os.getenv("LOG_FORMAT", "json" if app_env == "production" else "text").lower()

    logs_dir_default = os.path.join(os.getcwd(), "logs")
    log_file_path = os.getenv("LOG_FILE_PATH", os.path.join(logs_dir_default, "payrecon.log"))

    env_log_to_file = os.getenv("LOG_TO_FILE")
    log_to_file_default = False
    if env_log_to_file is None:
        try:
            log_dir = os.path.dirname(log_file_path)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            with open(log_file_path, "a", encoding="utf-8"):
                pass
            log_to_file_default = True
        except OSError:
            log_to_file_default = False

    log_to_file = _bool(env_log_to_file, log_to_file_default)
    formatter_name = "json" if log_format == "json" else "plain"

    filters: Dict[str, Dict[str, Any]] = {
        "sensitive": {"()": SensitiveDataFilter}
    }

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "stream": "ext://sys.stdout",
            "formatter": formatter_name,
            "filters": ["sensitive"],
        }
    }

    if log_to_file:
        try:
            os.makedirs(os.path.dirname(log_file_path), exist_ok=True)
        except OSError:
            pass
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "filename": log_file_path,
            "maxBytes": 5 * 1024 * 1024,  # 5MB
            "backupCount": 3,
            "encoding": "utf-8",
            "delay": True,
            "formatter": formatter_name,
            "filters": ["sensitive"],
        }

    aiogram_level = "WARNING" if app_env == "production" else "INFO"

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": filters,
        "formatters": {
            "json": {
                "()": JsonFormatter,
            },
            "plain": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": handlers,
        "root": {
            "level": log_level,
            "handlers": list(handlers.keys()),
        },
        "loggers": {
            # Reduce noise
            "aiogram": {"level": aiogram_level},
            "aiojobs": {"level": aiogram_level},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    }

    logging.config.dictConfig(config)

    logging.getLogger(__name__).info(
        "logging configured",
        extra={
            "extra": {
                "env": app_env,
                "level": log_level,
                "format": log_format,
                "to_file": log_to_file,
                "file": log_file_path if log_to_file else None,
            }
        },
    )
