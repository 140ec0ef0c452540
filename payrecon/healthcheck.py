import os
import sys
import asyncio

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import create_async_engine

# Healthcheck: validate ENV, Telegram token presence, DB connectivity (SELECT 1)
# and that the payment evidence tables are migrated.
#
# Skip the schema check with HEALTHCHECK_SKIP_SCHEMA=1 (e.g. before the first migration).

REQUIRED_TABLES = (
    "customers",
    "orders",
    "payment_proofs",
    "payment_transactions",
    "payment_ledger",
    "audit_logs",
)


async def _check_db(db_url: str, *, check_schema: bool = True) -> bool:
    if not db_url:
        return False
    try:
        engine = create_async_engine(db_url, pool_pre_ping=True)
        try:
            async with engine.connect() as conn:  # type: ignore[func-returns-value]
                await conn.execute(text("SELECT 1"))
                if check_schema:
                    tables = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
                    missing = [t for t in REQUIRED_TABLES if t not in tables]
                    if missing:
                        print(f"missing tables: {', '.join(missing)}", file=sys.stderr)
                        return False
        finally:
            await engine.dispose()
        return True
    except Exception as e:
        print(f"db error: {e}", file=sys.stderr)
        return False


def main() -> int:
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    if not token:
        print("missing TELEGRAM_BOT_TOKEN", file=sys.stderr)
        return 1

    skip_schema = (os.getenv("HEALTHCHECK_SKIP_SCHEMA", "0").strip().lower() in {"1", "true", "yes", "on"})
    ok_db = asyncio.run(_check_db(os.getenv("DB_URL", ""), check_schema=not skip_schema))
    if not ok_db:
        print("db not ready", file=sys.stderr)
        return 1

    print("ok")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
