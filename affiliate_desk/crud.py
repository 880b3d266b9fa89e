"""Database access helpers."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from affiliate_desk.models import (
    Course,
    Enrollment,
    IndustryEarning,
    Lead,
    Payment,
    Payout,
    ProfileCourse,
    User,
)
from affiliate_desk.schemas import PaymentOrderCreate

SETTLED_PAYMENT_STATUSES = ("captured", "refunded")


def get_user(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> User | None:
    stmt = select(User).where(func.lower(User.email) == email.strip().lower())
    return db.execute(stmt).scalars().first()


def get_user_by_referral_code(db: Session, code: str) -> User | None:
    stmt = select(User).where(User.referral_code == code.strip())
    return db.execute(stmt).scalars().first()


def get_course(db: Session, course_id: int | None) -> Course | None:
    if course_id is None:
        return None
    return db.get(Course, course_id)


def list_bundles_by_price(db: Session) -> Sequence[Course]:
    stmt = (
        select(Course)
        .where(Course.is_bundle.is_(True), Course.status == "published")
        .order_by(Course.price.asc(), Course.id.asc())
    )
    return db.execute(stmt).scalars().all()


def active_course_ids(db: Session, user_id: int) -> set[int]:
    stmt = select(Enrollment.course_id).where(
        Enrollment.user_id == user_id,
        Enrollment.status == "active",
    )
    return set(db.execute(stmt).scalars().all())


def is_enrolled(db: Session, user_id: int, course_id: int) -> bool:
    stmt = select(Enrollment.id).where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    return db.execute(stmt).first() is not None


def add_profile_course(db: Session, user_id: int, course_id: int) -> bool:
    """Append a course to the learner profile unless it is already listed."""

    stmt = select(ProfileCourse.id).where(ProfileCourse.user_id == user_id, ProfileCourse.course_id == course_id)
    if db.execute(stmt).first() is not None:
        return False
    db.add(ProfileCourse(user_id=user_id, course_id=course_id, progress=0))
    db.flush()
    return True


def increment_course_learners(db: Session, course_id: int, delta: int = 1) -> None:
    db.execute(
        update(Course)
        .where(Course.id == course_id)
        .values(learners_enrolled=Course.learners_enrolled + delta)
    )


def increment_industry_earnings(db: Session, user_id: int, label: str, delta: Decimal) -> None:
    """Create-or-increment the user's running total for ``label``."""

    result = db.execute(
        update(IndustryEarning)
        .where(IndustryEarning.user_id == user_id, IndustryEarning.label == label)
        .values(current_total=IndustryEarning.current_total + delta)
    )
    if result.rowcount == 0:
        db.add(IndustryEarning(user_id=user_id, label=label, current_total=delta))
        db.flush()


def increment_referral_earnings(db: Session, user_id: int, delta: Decimal) -> None:
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(referral_earnings=User.referral_earnings + delta)
    )


def promote_to_affiliate(db: Session, user_id: int) -> bool:
    result = db.execute(
        update(User).where(User.id == user_id, User.role == "student").values(role="affiliate")
    )
    return result.rowcount > 0


def convert_lead(db: Session, lead_user_id: int) -> bool:
    result = db.execute(
        update(Lead)
        .where(Lead.lead_user_id == lead_user_id, Lead.status != "converted")
        .values(status="converted", updated_at=datetime.now())
    )
    return result.rowcount > 0


def create_payment_order(db: Session, payload: PaymentOrderCreate) -> Payment:
    payment = Payment(
        user_id=payload.user_id,
        course_id=payload.course_id,
        bundle_course_id=payload.bundle_course_id or payload.course_id,
        gateway_order_id=payload.order_id,
        amount_paid=payload.amount,
        currency=payload.currency,
        status="created",
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def get_payment(db: Session, payment_id: int) -> Payment | None:
    return db.get(Payment, payment_id)


def get_payment_by_order(db: Session, order_id: str) -> Payment | None:
    stmt = select(Payment).where(Payment.gateway_order_id == order_id)
    return db.execute(stmt).scalars().first()


def get_payment_by_gateway_id(db: Session, gateway_payment_id: str) -> Payment | None:
    stmt = select(Payment).where(Payment.gateway_payment_id == gateway_payment_id)
    return db.execute(stmt).scalars().first()


def claim_payment(
    db: Session,
    order_id: str,
    gateway_payment_id: str,
    status: str,
    currency: str | None,
    method: str | None,
) -> bool:
    """Attach a gateway payment attempt to its order.

    An order accepts new attempts until one settles it (captured or
    refunded); a failed attempt can be replaced by a later capture. The
    conditional UPDATE is the idempotency guard: of two concurrent
    deliveries for the same order only one sees a changed row.
    """

    values = {
        "gateway_payment_id": gateway_payment_id,
        "status": status,
        "method": method,
        "paid_at": datetime.now(),
    }
    if currency:
        values["currency"] = currency.upper()
    result = db.execute(
        update(Payment)
        .where(Payment.gateway_order_id == order_id, Payment.status.notin_(SETTLED_PAYMENT_STATUSES))
        .values(**values)
    )
    return result.rowcount == 1


def list_payments(db: Session, status: str | None = None, user_id: int | None = None) -> Sequence[Payment]:
    stmt = select(Payment)
    if status:
        stmt = stmt.where(Payment.status == status)
    if user_id is not None:
        stmt = stmt.where(Payment.user_id == user_id)
    stmt = stmt.order_by(Payment.created_at.desc(), Payment.id.desc())
    return db.execute(stmt).scalars().all()


def list_payouts(db: Session, status: str, newest_first_by: str = "created_at") -> Sequence[Payout]:
    order_column = Payout.updated_at if newest_first_by == "updated_at" else Payout.created_at
    stmt = (
        select(Payout)
        .options(selectinload(Payout.user), selectinload(Payout.commissions))
        .where(Payout.status == status)
        .order_by(order_column.desc(), Payout.id.desc())
    )
    return db.execute(stmt).scalars().all()


def list_week_payouts(db: Session, status: str, week_start: date, week_end: date) -> Sequence[Payout]:
    stmt = (
        select(Payout)
        .options(selectinload(Payout.user))
        .where(Payout.status == status, Payout.from_date == week_start, Payout.to_date == week_end)
        .order_by(Payout.id)
    )
    return db.execute(stmt).scalars().all()


def list_paid_payouts_between(db: Session, start: datetime, end: datetime) -> Sequence[Payout]:
    """Paid payouts whose bank transaction falls in ``[start, end)``."""
    stmt = (
        select(Payout)
        .options(selectinload(Payout.user))
        .where(
            Payout.status == "paid",
            Payout.transaction_date >= start,
            Payout.transaction_date < end,
        )
        .order_by(Payout.user_id, Payout.transaction_date, Payout.id)
    )
    return db.execute(stmt).scalars().all()


def list_users(db: Session, user_ids: Sequence[int]) -> Sequence[User]:
    if not user_ids:
        return []
    stmt = select(User).options(selectinload(User.kyc)).where(User.id.in_(user_ids)).order_by(User.id)
    return db.execute(stmt).scalars().all()
