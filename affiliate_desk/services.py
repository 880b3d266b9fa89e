"""Application service layer."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from affiliate_desk import crud, ledger
from affiliate_desk.config import Settings, get_settings
from affiliate_desk.core.payouts import quantize_money
from affiliate_desk.core.tiers import BundleTier, affiliate_level, resolve_commission
from affiliate_desk.database import atomic
from affiliate_desk.enrollment import enroll_for_payment
from affiliate_desk.errors import NotFoundError, StateConflictError
from affiliate_desk.models import Commission, Payment, User
from affiliate_desk.notifications import PayoutNotifier
from affiliate_desk.schemas import CaptureResult, EarningsSummary, IndustryEarningRead, PaymentEvent, PaymentOrderCreate

logger = logging.getLogger(__name__)


class PaymentCaptureService:
    """Turns verified gateway events into enrollments and commissions."""

    def __init__(
        self,
        db: Session,
        notifier: PayoutNotifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.notifier = notifier
        self.settings = settings or get_settings()

    def record_order(self, payload: PaymentOrderCreate) -> Payment:
        if crud.get_user(self.db, payload.user_id) is None:
            raise NotFoundError(f"User {payload.user_id} not found")
        if crud.get_course(self.db, payload.course_id) is None:
            raise NotFoundError(f"Course {payload.course_id} not found")
        if crud.get_payment_by_order(self.db, payload.order_id) is not None:
            raise StateConflictError(f"Order {payload.order_id} already recorded")
        payment = crud.create_payment_order(self.db, payload)
        logger.info("Recorded order %s for user %s", payment.gateway_order_id, payment.user_id)
        return payment

    def process_event(self, event: PaymentEvent) -> CaptureResult:
        """Apply one gateway event exactly once.

        Claim, enrollments, commission, counters and lead conversion share a
        single transaction. The commission email goes out after commit.
        """

        if crud.get_payment_by_gateway_id(self.db, event.payment_id) is not None:
            logger.info("Payment %s already processed", event.payment_id)
            return CaptureResult(outcome="already_processed", message="Payment already processed")

        commission: Commission | None = None
        with atomic(self.db):
            claimed = crud.claim_payment(
                self.db,
                order_id=event.order_id,
                gateway_payment_id=event.payment_id,
                status=event.status,
                currency=event.currency,
                method=event.method,
            )
            payment = crud.get_payment_by_order(self.db, event.order_id)
            if payment is None:
                raise NotFoundError(f"Payment order {event.order_id} not found")
            if not claimed:
                logger.info("Order %s is already settled", event.order_id)
                return CaptureResult(
                    outcome="already_processed",
                    message="Payment already processed",
                    payment_id=payment.id,
                )

            if event.status != "captured":
                logger.info("Recorded %s event for order %s", event.status, event.order_id)
                return CaptureResult(
                    outcome="recorded",
                    message=f"Payment marked {event.status}",
                    payment_id=payment.id,
                )

            purchaser = payment.user
            if crud.promote_to_affiliate(self.db, purchaser.id):
                logger.info("Promoted user %s to affiliate", purchaser.id)
            cascade = enroll_for_payment(self.db, payment)
            commission = self._accrue(payment, purchaser)
            if crud.convert_lead(self.db, purchaser.id):
                logger.info("Converted lead for user %s", purchaser.id)

            result = CaptureResult(
                outcome="processed",
                message="Payment processed",
                payment_id=payment.id,
                enrolled_course_ids=cascade.enrolled,
                commission_id=commission.id if commission else None,
                commission_amount=commission.amount if commission else None,
            )

        if commission is not None and self.notifier is not None:
            course = crud.get_course(self.db, commission.bundle_course_id)
            self.notifier.commission_earned(
                commission.user,
                commission.referral_user,
                commission,
                course.title if course else "a course",
            )
        return result

    def _accrue(self, payment: Payment, purchaser: User) -> Optional[Commission]:
        if not purchaser.sponsor_code:
            return None
        sponsor = crud.get_user_by_referral_code(self.db, purchaser.sponsor_code)
        if sponsor is None or sponsor.id == purchaser.id:
            logger.warning(
                "User %s has unusable sponsor code %r; no commission for payment %s",
                purchaser.id,
                purchaser.sponsor_code,
                payment.id,
            )
            return None

        bundle = crud.get_course(self.db, payment.purchased_bundle_id)
        if bundle is None:
            logger.warning("Payment %s bundle %s not found; no commission", payment.id, payment.purchased_bundle_id)
            return None

        bundles = [BundleTier.from_course(course) for course in crud.list_bundles_by_price(self.db)]
        held = crud.active_course_ids(self.db, sponsor.id) & {tier.id for tier in bundles}
        quote = resolve_commission(bundles, held, BundleTier.from_course(bundle), payment.amount_paid)
        if quote.capped:
            logger.info(
                "Commission for sponsor %s capped at tier %s on payment %s",
                sponsor.id,
                quote.sponsor_tier_id,
                payment.id,
            )

        entry = ledger.record_commission(self.db, sponsor, purchaser, payment, bundle, quote)
        delta = Decimal(quote.amount)
        crud.increment_industry_earnings(self.db, sponsor.id, self.settings.EARNINGS_LABEL, delta)
        crud.increment_referral_earnings(self.db, sponsor.id, delta)
        return entry

    def refund(self, payment_id: int) -> Payment:
        payment = crud.get_payment(self.db, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        if payment.status != "captured":
            raise StateConflictError(f"Only captured payments can be refunded (payment is {payment.status})")
        with atomic(self.db):
            payment.status = "refunded"
        self.db.refresh(payment)
        logger.info("Refunded payment %s", payment.id)
        return payment


def earnings_summary(db: Session, user_id: int) -> EarningsSummary:
    user = crud.get_user(db, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")

    stmt = (
        select(Commission.status, func.coalesce(func.sum(Commission.amount), 0))
        .where(Commission.user_id == user_id)
        .group_by(Commission.status)
    )
    totals = {status: quantize_money(total) for status, total in db.execute(stmt).all()}
    referral_earnings = quantize_money(user.referral_earnings or 0)
    return EarningsSummary(
        user_id=user.id,
        referral_earnings=referral_earnings,
        level=affiliate_level(referral_earnings),
        industry_earnings=[IndustryEarningRead.model_validate(row) for row in user.industry_earnings],
        commission_totals=totals,
    )

