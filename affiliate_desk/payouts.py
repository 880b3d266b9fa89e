"""Weekly payout batches: approve pending commissions and emit bank instructions.

Each affiliate is handled in its own transaction. An affiliate either ends
up with an approved Payout whose commissions are all approved, or nothing
about it changes. The instruction file is written once the affiliates are
committed; if that write fails the week can be rebuilt from its approved
payouts, and a rerun of the same week does so automatically.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from affiliate_desk import crud, ledger
from affiliate_desk.config import Settings, get_settings
from affiliate_desk.core.payouts import (
    Withholding,
    beneficiary_problems,
    build_instruction_row,
    compute_withholding,
    previous_week,
    sum_amounts,
    unpaid_remark,
)
from affiliate_desk.database import SessionLocal, atomic
from affiliate_desk.errors import (
    AffiliateDeskError,
    KycIncompleteError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from affiliate_desk.exporting.payout_csv import find_week_file, write_instruction_file
from affiliate_desk.models import Payout
from affiliate_desk.schemas import EligibleAffiliateRead

logger = logging.getLogger(__name__)


@dataclass
class AffiliateOutcome:
    user_id: int
    status: str
    reason: Optional[str] = None
    payout_id: Optional[int] = None
    total_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "status": self.status,
            "reason": self.reason,
            "payout_id": self.payout_id,
            "total_amount": str(self.total_amount) if self.total_amount is not None else None,
            "net_amount": str(self.net_amount) if self.net_amount is not None else None,
        }


@dataclass
class BatchOutcome:
    week_start: date
    week_end: date
    results: List[AffiliateOutcome] = field(default_factory=list)
    file_name: Optional[str] = None
    file_error: Optional[str] = None
    rebuilt: bool = False

    @property
    def outcome(self) -> str:
        if self.file_error:
            return "file_failed"
        if self.file_name:
            return "rebuilt" if self.rebuilt else "generated"
        return "no_op"

    def _count(self, status: str) -> int:
        return sum(1 for item in self.results if item.status == status)

    @property
    def created(self) -> int:
        return self._count("created")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def errors(self) -> int:
        return self._count("error")

    def as_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "week_start": self.week_start.isoformat(),
            "week_end": self.week_end.isoformat(),
            "file_name": self.file_name,
            "file_error": self.file_error,
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "results": [item.as_dict() for item in self.results],
        }


class PayoutBatchGenerator:
    """Builds one week's payouts for a set of affiliates."""

    def __init__(self, db: Session, settings: Settings | None = None, export_dir: Path | None = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.export_dir = Path(export_dir or self.settings.EXPORT_DIR)

    def generate(self, user_ids: Iterable[int], week_start: date, week_end: date) -> BatchOutcome:
        if week_end < week_start:
            raise ValidationError("week_end must not be before week_start")

        outcome = BatchOutcome(week_start=week_start, week_end=week_end)
        rows: List[dict] = []
        for user_id in dict.fromkeys(user_ids):
            try:
                with atomic(self.db):
                    result, row = self._process_affiliate(user_id, week_start, week_end)
            except (KycIncompleteError, NotFoundError) as exc:
                logger.warning("Skipping affiliate %s: %s", user_id, exc.message)
                result, row = AffiliateOutcome(user_id=user_id, status="skipped", reason=exc.message), None
            except (AffiliateDeskError, SQLAlchemyError, ValueError) as exc:
                logger.exception("Payout for affiliate %s failed", user_id)
                reason = exc.message if isinstance(exc, AffiliateDeskError) else str(exc)
                result, row = AffiliateOutcome(user_id=user_id, status="error", reason=reason), None
            outcome.results.append(result)
            if row is not None:
                rows.append(row)

        if not rows:
            # A week whose payouts were approved but whose file never landed is recovered here.
            if find_week_file(self.export_dir, week_start, week_end) is None and crud.list_week_payouts(
                self.db, "approved", week_start, week_end
            ):
                logger.warning("Approved payouts for %s to %s have no instruction file; rebuilding", week_start, week_end)
                outcome.rebuilt = True
                rows = self._rows_for_week(week_start, week_end)
            else:
                logger.info("No payouts for %s to %s; no instruction file written", week_start, week_end)
                return outcome

        try:
            path = write_instruction_file(rows, self.export_dir, week_start, week_end)
        except OSError as exc:
            logger.exception("Could not write the instruction file for %s to %s", week_start, week_end)
            outcome.file_error = str(exc)
            return outcome
        outcome.file_name = path.name
        logger.info(
            "Wrote %s payout instructions for %s to %s into %s",
            len(rows),
            week_start,
            week_end,
            path,
        )
        return outcome

    def rebuild_instruction_file(self, week_start: date, week_end: date) -> Path:
        """Write a fresh instruction file from the week's approved payouts."""

        rows = self._rows_for_week(week_start, week_end)
        if not rows:
            raise NotFoundError(f"No approved payouts for {week_start} to {week_end}")
        path = write_instruction_file(rows, self.export_dir, week_start, week_end)
        logger.info("Rebuilt %s payout instructions for %s to %s into %s", len(rows), week_start, week_end, path)
        return path

    def _rows_for_week(self, week_start: date, week_end: date) -> List[dict]:
        return [
            build_instruction_row(
                beneficiary_name=payout.beneficiary_name,
                account_number=payout.account_number,
                ifsc_code=payout.ifsc_code,
                transaction_type=payout.transaction_type,
                withholding=Withholding(
                    total_amount=payout.total_amount,
                    tds_percent=payout.tds_percent,
                    tds_amount=payout.tds_amount,
                    net_amount=payout.net_amount,
                ),
                currency=self.settings.CURRENCY,
                email=payout.user.email,
                remarks=payout.remarks or "",
            )
            for payout in crud.list_week_payouts(self.db, "approved", week_start, week_end)
        ]

    def _process_affiliate(self, user_id: int, week_start: date, week_end: date) -> tuple[AffiliateOutcome, Optional[dict]]:
        commissions = ledger.list_pending(self.db, user_id, week_start, week_end)
        if not commissions:
            return AffiliateOutcome(user_id=user_id, status="skipped", reason="no pending commissions"), None

        user = crud.get_user(self.db, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        if user.kyc_status != "approved":
            raise KycIncompleteError(f"KYC status is {user.kyc_status}")
        kyc = user.kyc
        if kyc is None:
            raise KycIncompleteError("bank details missing")
        problems = beneficiary_problems(kyc.account_holder_name, kyc.account_number, kyc.ifsc_code)
        if problems:
            raise KycIncompleteError("; ".join(problems))

        withholding = compute_withholding(sum_amounts(c.amount for c in commissions), self.settings.TDS_PERCENT)
        remark = unpaid_remark(ledger.unpaid_total_before(self.db, user_id, week_start))

        commission_ids = [c.id for c in commissions]
        if ledger.mark_approved(self.db, commission_ids) != len(commission_ids):
            raise StateConflictError(f"Commissions for user {user_id} changed while the batch was running")

        beneficiary_name = kyc.account_holder_name.strip()
        account_number = kyc.account_number.strip()
        ifsc_code = kyc.ifsc_code.strip().upper()
        payout = Payout(
            user_id=user.id,
            total_amount=withholding.total_amount,
            tds_amount=withholding.tds_amount,
            tds_percent=withholding.tds_percent,
            net_amount=withholding.net_amount,
            beneficiary_name=beneficiary_name,
            account_number=account_number,
            ifsc_code=ifsc_code,
            transaction_type=self.settings.DEFAULT_TRANSACTION_TYPE,
            remarks=remark or None,
            status="approved",
            from_date=week_start,
            to_date=week_end,
            commissions=list(commissions),
        )
        self.db.add(payout)
        self.db.flush()
        logger.info(
            "Approved payout %s for user %s: total %s, tds %s, net %s",
            payout.id,
            user.id,
            withholding.total_amount,
            withholding.tds_amount,
            withholding.net_amount,
        )

        row = build_instruction_row(
            beneficiary_name=beneficiary_name,
            account_number=account_number,
            ifsc_code=ifsc_code,
            transaction_type=payout.transaction_type,
            withholding=withholding,
            currency=self.settings.CURRENCY,
            email=user.email,
            remarks=remark,
        )
        return (
            AffiliateOutcome(
                user_id=user.id,
                status="created",
                payout_id=payout.id,
                total_amount=withholding.total_amount,
                net_amount=withholding.net_amount,
            ),
            row,
        )


def eligible_affiliates(
    db: Session,
    week_start: date,
    week_end: date,
    kyc_status: str | None = "approved",
) -> List[EligibleAffiliateRead]:
    """Affiliates with pending commissions in the week, with their carry-over."""

    totals = ledger.pending_totals_by_user(db, week_start, week_end)
    report: List[EligibleAffiliateRead] = []
    for user in crud.list_users(db, list(totals)):
        if kyc_status and user.kyc_status != kyc_status:
            continue
        report.append(
            EligibleAffiliateRead(
                id=user.id,
                full_name=user.full_name,
                email=user.email,
                kyc_status=user.kyc_status,
                total_pending_amount=totals[user.id],
                unpaid_from_last_week=ledger.unpaid_total_before(db, user.id, week_start),
            )
        )
    return report


def run_weekly_payout(
    session_factory: Callable[[], Session] = SessionLocal,
    today: date | None = None,
    settings: Settings | None = None,
) -> BatchOutcome:
    """Generate last week's payouts for every affiliate holding pending commissions."""

    week_start, week_end = previous_week(today or date.today())
    db = session_factory()
    try:
        user_ids = sorted(ledger.pending_totals_by_user(db, week_start, week_end))
        if not user_ids:
            logger.info("Weekly payout %s to %s: nothing pending", week_start, week_end)
            return BatchOutcome(week_start=week_start, week_end=week_end)
        outcome = PayoutBatchGenerator(db, settings=settings).generate(user_ids, week_start, week_end)
        logger.info(
            "Weekly payout %s to %s finished at %s: %s created, %s skipped, %s errors",
            week_start,
            week_end,
            datetime.now().isoformat(timespec="seconds"),
            outcome.created,
            outcome.skipped,
            outcome.errors,
        )
        return outcome
    finally:
        db.close()
