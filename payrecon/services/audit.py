from __future__ import annotations

import json
from typing import Any, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrecon.db.models import AuditLog
from payrecon.utils.time import utcnow_naive


async def log_audit(
    session: AsyncSession,
    *,
    actor: str,
    action: str,
    target_type: str,
    target_id: Optional[int] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> None:
    """Stage an audit row in the caller's transaction; it commits or rolls back with it."""
    entry = AuditLog(
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta=json.dumps(dict(meta), ensure_ascii=False, default=str) if meta else None,
        created_at=utcnow_naive(),
    )
    session.add(entry)
    await session.flush()


async def list_audit(
    session: AsyncSession,
    *,
    target_type: str,
    target_id: int,
    limit: int = 50,
) -> List[AuditLog]:
    """Audit rows for one target, newest first."""
    rows = await session.scalars(
        select(AuditLog)
        .where(AuditLog.target_type == target_type, AuditLog.target_id == target_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    )
    return list(rows.all())
