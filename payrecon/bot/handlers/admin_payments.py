from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from payrecon.config import settings
from payrecon.payment.aggregator import STATUS_FILTERS, EvidencePage, EvidenceQuery, PageRequest
from payrecon.payment.errors import EvidenceNotFound
from payrecon.payment.evidence import Decision, PaymentEvidence, VerificationStatus
from payrecon.services import payments
from payrecon.services.batch import BatchSummary
from payrecon.services.notifications import notify_log
from payrecon.services.verification import Outcome
from payrecon.utils.money import format_amount, to_money

router = Router()
logger = logging.getLogger(__name__)

NO_ACCESS = "⛔️ You are not allowed to review payments."
QUEUE_USAGE = (
    "Usage: /payments [all|pending|verified|rejected] [method=stripe] "
    "[from=2026-10-01] [to=2026-10-31] [search words] [page]"
)

_STATUS_EMOJI = {
    VerificationStatus.PENDING: "🕒",
    VerificationStatus.VERIFIED: "✅",
    VerificationStatus.REJECTED: "❌",
}

_BATCH_HEADLINE = {
    "completed": "✅ All items applied",
    "partial": "⚠️ Partially applied",
    "failed": "❌ Nothing applied",
    "empty": "ℹ️ No evidence references given",
}

# Last queue filter per admin; paging buttons reuse it (callback_data is capped at 64 bytes)
_admin_filters: Dict[int, EvidenceQuery] = {}


def _is_admin(uid: Optional[int]) -> bool:
    return bool(uid and uid in settings.telegram_admin_ids)


def _actor(uid: int) -> str:
    return f"tg:{uid}"


def _evidence_line(ev: PaymentEvidence) -> str:
    emoji = _STATUS_EMOJI.get(ev.verification_status, "ℹ️")
    ts = ev.submitted_at.strftime("%Y-%m-%d %H:%M") if ev.submitted_at else "-"
    line = (
        f"{emoji} {ev.ref} • {ev.order_display_id} • {format_amount(ev.claimed_amount, ev.currency)}"
        f" • {ev.payment_method} • {ts}\n    👤 {ev.customer_name} ({ev.customer_email})"
    )
    if ev.orphaned:
        line += " • ⚠️ orphaned"
    if ev.status_unmapped:
        line += f" • ⚠️ gateway status {ev.gateway_status!r}"
    return line


def _describe(query: EvidenceQuery) -> str:
    parts = [query.status]
    if query.payment_method != "all":
        parts.append(query.payment_method)
    if query.search:
        parts.append(f"“{query.search}”")
    if query.date_from or query.date_to:
        start = query.date_from.strftime("%Y-%m-%d") if query.date_from else "…"
        end = query.date_to.strftime("%Y-%m-%d") if query.date_to else "…"
        parts.append(f"{start}..{end}")
    return " • ".join(parts)


def render_page(page: EvidencePage, query: EvidenceQuery) -> Tuple[str, InlineKeyboardMarkup]:
    stats = page.stats
    lines = [
        f"💳 Payment evidence • {_describe(query)} • page {page.page}/{max(page.total_pages, 1)}",
        f"Total {stats.total} • pending {stats.pending} • verified {stats.verified} • rejected {stats.rejected}",
        "",
    ]
    rows: List[List[InlineKeyboardButton]] = []
    if not page.items:
        lines.append("No evidence matches this filter.")
    for ev in page.items:
        lines.append(_evidence_line(ev))
        if ev.is_decidable:
            rows.append([
                InlineKeyboardButton(text=f"Verify {ev.ref} ✅", callback_data=f"pay:v:{ev.ref}"),
                InlineKeyboardButton(text="Reject ❌", callback_data=f"pay:r:{ev.ref}"),
            ])
    nav = []
    if page.has_previous:
        nav.append(InlineKeyboardButton(text="◀️ Prev", callback_data=f"pay:page:{page.page - 1}"))
    if page.has_next:
        nav.append(InlineKeyboardButton(text="Next ▶️", callback_data=f"pay:page:{page.page + 1}"))
    if nav:
        rows.append(nav)
    return "\n".join(lines), InlineKeyboardMarkup(inline_keyboard=rows)


def render_outcome(outcome: Outcome) -> str:
    if outcome.ok:
        text = f"{_STATUS_EMOJI.get(outcome.status, 'ℹ️')} {outcome.ref} {outcome.status.value if outcome.status else ''}"
        if outcome.payment_status is not None:
            text += f" • applied {outcome.verified_amount} • paid {outcome.amount_paid} ({outcome.payment_status.value})"
        return text
    return f"⚠️ {outcome.ref}: {outcome.error_code} ({outcome.message})"


def render_summary(summary: BatchSummary) -> str:
    lines = [
        f"{_BATCH_HEADLINE[summary.state]} • {summary.decision.value}",
        f"Succeeded {summary.succeeded}/{summary.requested} • failed {summary.failed}",
    ]
    for failure in summary.failures:
        lines.append(f"  • {failure.ref}: {failure.error_code} ({failure.message})")
    return "\n".join(lines)


def _parse_day(raw: str) -> datetime:
    return datetime.strptime(raw, "%Y-%m-%d")


def parse_queue_args(args: Optional[str]) -> Tuple[EvidenceQuery, int]:
    """`pending method=stripe from=2026-10-01 ada 2` -> (query, page). Raises ValueError."""
    tokens = (args or "").split()
    page_no = 1
    if tokens and tokens[-1].isdigit():
        page_no = max(1, int(tokens.pop()))
    status = "pending"
    if tokens and tokens[0].lower() in STATUS_FILTERS:
        status = tokens.pop(0).lower()
    method = "all"
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    words: List[str] = []
    for tok in tokens:
        key, sep, value = tok.partition("=")
        key = key.lower()
        if sep and key == "method":
            method = value or "all"
        elif sep and key == "from":
            date_from = _parse_day(value)
        elif sep and key == "to":
            # Inclusive whole day
            date_to = _parse_day(value) + timedelta(days=1) - timedelta(microseconds=1)
        else:
            words.append(tok)
    query = EvidenceQuery(
        status=status,
        payment_method=method,
        search=" ".join(words),
        date_from=date_from,
        date_to=date_to,
    )
    return query, page_no


def parse_batch_args(args: Optional[str]) -> Tuple[List[str], Optional[str]]:
    """`proof:1 proof:2 -- note text` -> (["proof:1", "proof:2"], "note text")"""
    raw = (args or "").strip()
    refs_part, sep, note = raw.partition("--")
    refs = [tok for tok in refs_part.replace(",", " ").split() if tok]
    return refs, (note.strip() or None) if sep else None


def split_amount(tokens: List[str]) -> Tuple[List[str], Optional[Decimal]]:
    """Pull an `=60.00` token out of the ref list. Raises ValueError on a malformed amount."""
    refs: List[str] = []
    amount: Optional[Decimal] = None
    for tok in tokens:
        if not tok.startswith("="):
            refs.append(tok)
            continue
        if amount is not None:
            raise ValueError("only one amount may be given")
        try:
            amount = to_money(tok[1:])
        except InvalidOperation:
            raise ValueError(f"invalid amount {tok[1:]!r}") from None
    return refs, amount


async def _send_queue(target: Message, query: EvidenceQuery, page_no: int, *, edit: bool = False) -> None:
    page = await payments.query_evidence(
        query,
        PageRequest(page=max(1, page_no), size=settings.queue_page_size),
    )
    text, kb = render_page(page, query)
    if edit:
        try:
            await target.edit_text(text, reply_markup=kb)
            return
        except Exception:
            logger.debug("queue edit failed; sending a new message", exc_info=True)
    await target.answer(text, reply_markup=kb)


@router.message(Command("payments"))
async def admin_payments_queue(message: Message, command: CommandObject) -> None:
    if not (message.from_user and _is_admin(message.from_user.id)):
        await message.answer(NO_ACCESS)
        return
    try:
        query, page_no = parse_queue_args(command.args)
    except ValueError:
        await message.answer(QUEUE_USAGE)
        return
    _admin_filters[message.from_user.id] = query
    await _send_queue(message, query, page_no)


@router.callback_query(F.data.startswith("pay:page:"))
async def cb_payments_page(cb: CallbackQuery) -> None:
    if not (cb.from_user and _is_admin(cb.from_user.id)):
        await cb.answer(NO_ACCESS, show_alert=True)
        return
    try:
        page_no = int((cb.data or "").rsplit(":", 1)[-1])
    except ValueError:
        await cb.answer("Invalid page", show_alert=True)
        return
    query = _admin_filters.get(cb.from_user.id) or EvidenceQuery(status="pending")
    await _send_queue(cb.message, query, page_no, edit=True)
    await cb.answer()


@router.callback_query(F.data.startswith("pay:v:") | F.data.startswith("pay:r:"))
async def cb_payment_decide(cb: CallbackQuery) -> None:
    if not (cb.from_user and _is_admin(cb.from_user.id)):
        await cb.answer(NO_ACCESS, show_alert=True)
        return
    try:
        _, action, ref = (cb.data or "").split(":", 2)
    except ValueError:
        await cb.answer("Invalid evidence reference", show_alert=True)
        return
    decision = Decision.VERIFY if action == "v" else Decision.REJECT
    outcome = await payments.decide(ref, decision, decided_by=_actor(cb.from_user.id))
    await cb.answer(render_outcome(outcome), show_alert=not outcome.ok)
    if outcome.ok and cb.message is not None:
        try:
            await cb.message.edit_text((cb.message.text or "") + "\n\n" + render_outcome(outcome))
        except Exception:
            logger.debug("could not annotate queue message", exc_info=True)


async def _batch(message: Message, command: CommandObject, decision: Decision) -> None:
    if not (message.from_user and _is_admin(message.from_user.id)):
        await message.answer(NO_ACCESS)
        return
    usage = f"Usage: /{command.command} proof:12 proof:15 -- optional note"
    if decision is Decision.VERIFY:
        usage += f"\n       /{command.command} proof:12 =60.00 -- optional note"
    tokens, note = parse_batch_args(command.args)
    try:
        refs, amount = split_amount(tokens)
    except ValueError as e:
        await message.answer(f"⚠️ {e}\n{usage}")
        return
    if not refs or (amount is not None and (decision is not Decision.VERIFY or len(refs) != 1)):
        await message.answer(usage)
        return
    actor = _actor(message.from_user.id)
    if amount is not None:
        outcome = await payments.decide(refs[0], decision, note, decided_by=actor, verified_amount=amount)
        await message.answer(render_outcome(outcome))
        return
    summary = await payments.decide_batch(refs, decision, note, decided_by=actor)
    await message.answer(render_summary(summary))
    await notify_log(f"🧾 Batch by {actor}\n" + render_summary(summary))


@router.message(Command("pay_verify"))
async def admin_payments_verify(message: Message, command: CommandObject) -> None:
    await _batch(message, command, Decision.VERIFY)


@router.message(Command("pay_reject"))
async def admin_payments_reject(message: Message, command: CommandObject) -> None:
    await _batch(message, command, Decision.REJECT)


@router.message(Command("pay_details"))
async def admin_payment_details(message: Message, command: CommandObject) -> None:
    if not (message.from_user and _is_admin(message.from_user.id)):
        await message.answer(NO_ACCESS)
        return
    ref = (command.args or "").strip()
    try:
        details = await payments.get_verification_details(ref)
        history = await payments.get_action_history(ref)
    except EvidenceNotFound:
        await message.answer(f"⚠️ Evidence {ref or '-'} not found")
        return
    lines = [
        f"🔎 {details.ref} • order #{details.order_id if details.order_id is not None else '-'}",
        f"Total {details.order_total} • paid {details.existing_paid} • remaining {details.remaining_balance}",
        f"Suggested amount {details.suggested_amount} • can verify: {'yes' if details.can_verify else 'no'}",
    ]
    lines += [f"  • {n}" for n in details.notes]
    if history:
        lines.append("History:")
        for h in history:
            line = f"  {h.at:%Y-%m-%d %H:%M} {h.action} by {h.actor}"
            if h.amount is not None:
                line += f" • {h.amount}"
            if h.note:
                line += f" • {h.note}"
            lines.append(line)
    await message.answer("\n".join(lines))
