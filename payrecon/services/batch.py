from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from payrecon.config import settings
from payrecon.payment.evidence import Decision
from payrecon.services.verification import Outcome, VerificationEngine
from payrecon.utils.correlation import correlation_scope

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR = "unexpected_error"


@dataclass
class BatchFailure:
    ref: str
    error_code: str
    message: str


@dataclass
class BatchSummary:
    decision: Decision
    requested: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: List[BatchFailure] = field(default_factory=list)
    outcomes: List[Outcome] = field(default_factory=list)

    @property
    def state(self) -> str:
        """completed | partial | failed | empty"""
        if self.requested == 0:
            return "empty"
        if self.failed == 0:
            return "completed"
        if self.succeeded == 0:
            return "failed"
        return "partial"

    def record(self, outcome: Outcome) -> None:
        self.outcomes.append(outcome)
        if outcome.ok:
            self.succeeded += 1
        else:
            self.failed += 1
            self.failures.append(
                BatchFailure(ref=outcome.ref, error_code=outcome.error_code or UNEXPECTED_ERROR, message=outcome.message or "")
            )


def _unique(refs: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for ref in refs:
        ref = (ref or "").strip()
        if ref and ref not in seen:
            seen.add(ref)
            out.append(ref)
    return out


async def decide_batch(
    engine: VerificationEngine,
    refs: Iterable[str],
    decision: Decision,
    note: Optional[str] = None,
    *,
    decided_by: str,
    concurrency: Optional[int] = None,
) -> BatchSummary:
    """Run one decision over many evidence refs; a failing item never stops its siblings.

    Items are independent units of work. With concurrency > 1 they are fanned out, and
    the summary is the only state they share.
    """
    decision = Decision(decision)
    items = _unique(refs)
    limit = max(1, concurrency if concurrency is not None else settings.batch_concurrency)
    summary = BatchSummary(decision=decision, requested=len(items))
    sem = asyncio.Semaphore(limit)

    async def _run(ref: str) -> None:
        async with sem:
            try:
                outcome = await engine.decide(ref, decision, note, decided_by=decided_by)
            except Exception as e:
                logger.exception("batch item crashed", extra={"extra": {"ref": ref}})
                outcome = Outcome.failure(ref, decision, UNEXPECTED_ERROR, str(e))
            summary.record(outcome)

    with correlation_scope() as cid:
        logger.info(
            "batch decision started",
            extra={"extra": {"cid": cid, "decision": decision.value, "items": len(items), "concurrency": limit}},
        )
        if limit == 1:
            for ref in items:
                await _run(ref)
        else:
            await asyncio.gather(*(_run(ref) for ref in items))
        log = logger.warning if summary.failed else logger.info
        log(
            "batch decision finished",
            extra={
                "extra": {
                    "cid": cid,
                    "decision": decision.value,
                    "state": summary.state,
                    "succeeded": summary.succeeded,
                    "failed": summary.failed,
                    "failures": [f"{f.ref}:{f.error_code}" for f in summary.failures],
                }
            },
        )
    return summary
