from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List


def _parse_csv_ints(raw: str) -> List[int]:
    ids: List[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            pass
    return ids


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    app_env: str = os.getenv("APP_ENV", "production")
    tz: str = os.getenv("TZ", "UTC")

    db_url: str = os.getenv("DB_URL", "")

    telegram_bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    telegram_admin_ids: List[int] = field(default_factory=lambda: _parse_csv_ints(os.getenv("TELEGRAM_ADMIN_IDS", "")))
    log_chat_id: str = os.getenv("LOG_CHAT_ID", "")

    queue_page_size: int = int(os.getenv("QUEUE_PAGE_SIZE", "10"))
    batch_concurrency: int = int(os.getenv("BATCH_CONCURRENCY", "1"))
    order_conflict_retries: int = int(os.getenv("ORDER_CONFLICT_RETRIES", "3"))
    order_conflict_backoff: float = float(os.getenv("ORDER_CONFLICT_BACKOFF", "0.05"))
    notify_on_decision: bool = _bool_env("NOTIFY_ON_DECISION", True)


settings = Settings()
