"""Commission ledger: append-only entries and their status transitions.

State machine::

    pending -> approved -> paid
                        -> unpaid

Bulk transitions only touch entries currently in the expected prior state;
anything else is left alone, so replays and overlapping batches are no-ops.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_desk.core.payouts import quantize_money, week_bounds
from affiliate_desk.core.tiers import CommissionQuote
from affiliate_desk.errors import DuplicateCommissionError
from affiliate_desk.models import Commission, Course, Payment, User

logger = logging.getLogger(__name__)


def record_commission(
    db: Session,
    sponsor: User,
    purchaser: User,
    payment: Payment,
    bundle: Course,
    quote: CommissionQuote,
) -> Commission:
    """Insert a pending entry for (sponsor, payment).

    Raises ``DuplicateCommissionError`` when the pair already has an entry.
    The session's transaction is unusable afterwards and must be rolled back.
    """

    entry = Commission(
        user_id=sponsor.id,
        referral_user_id=purchaser.id,
        transaction_id=payment.id,
        bundle_course_id=bundle.id,
        amount=Decimal(quote.amount),
        percent=quote.percent,
        base_amount=quantize_money(quote.base_amount),
        status="pending",
    )
    db.add(entry)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateCommissionError(
            f"Commission already recorded for user {sponsor.id} and payment {payment.id}"
        ) from exc
    logger.info(
        "Recorded commission %s of %s for user %s on payment %s",
        entry.id,
        entry.amount,
        sponsor.id,
        payment.id,
    )
    return entry


def list_pending(db: Session, user_id: int, week_start: date, week_end: date) -> Sequence[Commission]:
    """Pending entries in ``[week_start, week_end]`` whose payment was captured."""

    start, end = week_bounds(week_start, week_end)
    stmt = (
        select(Commission)
        .join(Payment, Payment.id == Commission.transaction_id)
        .where(
            Commission.user_id == user_id,
            Commission.status == "pending",
            Commission.created_at >= start,
            Commission.created_at < end,
            Payment.status == "captured",
        )
        .order_by(Commission.created_at, Commission.id)
    )
    return db.execute(stmt).scalars().all()


def pending_totals_by_user(db: Session, week_start: date, week_end: date) -> dict[int, Decimal]:
    start, end = week_bounds(week_start, week_end)
    stmt = (
        select(Commission.user_id, func.coalesce(func.sum(Commission.amount), 0))
        .join(Payment, Payment.id == Commission.transaction_id)
        .where(
            Commission.status == "pending",
            Commission.created_at >= start,
            Commission.created_at < end,
            Payment.status == "captured",
        )
        .group_by(Commission.user_id)
    )
    return {user_id: quantize_money(total) for user_id, total in db.execute(stmt).all()}


def list_unpaid_before(db: Session, before: date | datetime, user_id: int | None = None) -> Sequence[Commission]:
    cutoff = before if isinstance(before, datetime) else datetime.combine(before, datetime.min.time())
    stmt = select(Commission).where(Commission.status == "unpaid", Commission.created_at < cutoff)
    if user_id is not None:
        stmt = stmt.where(Commission.user_id == user_id)
    stmt = stmt.order_by(Commission.created_at, Commission.id)
    return db.execute(stmt).scalars().all()


def unpaid_total_before(db: Session, user_id: int, before: date | datetime) -> Decimal:
    return sum(
        (quantize_money(entry.amount) for entry in list_unpaid_before(db, before, user_id=user_id)),
        Decimal("0.00"),
    )


def list_for_user(db: Session, user_id: int, status: str | None = None) -> Sequence[Commission]:
    stmt = select(Commission).where(Commission.user_id == user_id)
    if status:
        stmt = stmt.where(Commission.status == status)
    stmt = stmt.order_by(Commission.created_at.desc(), Commission.id.desc())
    return db.execute(stmt).scalars().all()


def _transition(db: Session, entry_ids: Iterable[int], prior: str, new: str) -> int:
    ids = list(entry_ids)
    if not ids:
        return 0
    result = db.execute(
        update(Commission)
        .where(Commission.id.in_(ids), Commission.status == prior)
        .values(status=new, updated_at=datetime.now())
        .execution_options(synchronize_session="fetch")
    )
    changed = result.rowcount or 0
    if changed != len(ids):
        logger.warning(
            "Moved %s of %s commissions from %s to %s; the rest were not %s",
            changed,
            len(ids),
            prior,
            new,
            prior,
        )
    return changed


def mark_approved(db: Session, entry_ids: Iterable[int]) -> int:
    return _transition(db, entry_ids, "pending", "approved")


def mark_paid(db: Session, entry_ids: Iterable[int]) -> int:
    return _transition(db, entry_ids, "approved", "paid")


def mark_unpaid(db: Session, entry_ids: Iterable[int]) -> int:
    return _transition(db, entry_ids, "approved", "unpaid")
