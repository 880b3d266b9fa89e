"""Monthly TDS statement over paid payouts.

A payout belongs to the month of its bank transaction date. Each affiliate
gets one row with gross, net and withheld totals plus a per-payout
breakdown, which is what the compliance filing is prepared from.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from affiliate_desk import crud
from affiliate_desk.config import Settings, get_settings
from affiliate_desk.core.formatting import format_display_date
from affiliate_desk.core.payouts import quantize_money
from affiliate_desk.database import SessionLocal
from affiliate_desk.errors import NotFoundError, ValidationError
from affiliate_desk.exporting.tds_csv import write_tds_file
from affiliate_desk.schemas import TdsReportRow

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month(value: str) -> date:
    """First day of a ``YYYY-MM`` month."""

    match = MONTH_PATTERN.match((value or "").strip())
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValidationError(f"Month must look like YYYY-MM (got '{value}')")
    return date(int(match.group(1)), int(match.group(2)), 1)


def month_bounds(month_start: date) -> tuple[datetime, datetime]:
    next_month = (month_start.replace(day=28) + timedelta(days=4)).replace(day=1)
    return datetime.combine(month_start, time.min), datetime.combine(next_month, time.min)


def _entry(amount, paid_on: str) -> str:
    return f"{quantize_money(amount):.2f} ({paid_on})"


def monthly_tds_report(db: Session, month: str) -> List[TdsReportRow]:
    start, end = month_bounds(parse_month(month))
    rows: dict[int, TdsReportRow] = {}
    for payout in crud.list_paid_payouts_between(db, start, end):
        user = payout.user
        row = rows.get(user.id)
        if row is None:
            kyc = user.kyc
            row = rows[user.id] = TdsReportRow(
                user_id=user.id,
                name=user.full_name,
                affiliate_code=user.referral_code or "N/A",
                pan=(kyc.pan_number or "") if kyc else "",
            )
        paid_on = format_display_date(payout.transaction_date)
        row.total_income = quantize_money(row.total_income + payout.total_amount)
        row.total_paid_amount = quantize_money(row.total_paid_amount + payout.net_amount)
        row.total_tds = quantize_money(row.total_tds + payout.tds_amount)
        row.income_breakdown.append(_entry(payout.total_amount, paid_on))
        row.paid_breakdown.append(_entry(payout.net_amount, paid_on))
        row.tds_breakdown.append(_entry(payout.tds_amount, paid_on))
        row.payment_dates.append(paid_on)
    return list(rows.values())


def generate_tds_file(db: Session, month: str, export_dir: Path) -> Path:
    report = monthly_tds_report(db, month)
    if not report:
        raise NotFoundError(f"No paid payouts found for {month}")
    path = write_tds_file(report, export_dir, month)
    logger.info("Wrote TDS statement for %s (%s affiliates) to %s", month, len(report), path)
    return path


def run_monthly_tds_report(
    session_factory: Callable[[], Session] = SessionLocal,
    today: date | None = None,
    settings: Settings | None = None,
) -> Optional[Path]:
    """Write the statement for the month containing ``today``; runs on its last day."""

    settings = settings or get_settings()
    month = (today or date.today()).strftime("%Y-%m")
    db = session_factory()
    try:
        return generate_tds_file(db, month, settings.TDS_EXPORT_DIR)
    except NotFoundError:
        logger.info("No paid payouts in %s; TDS statement skipped", month)
        return None
    finally:
        db.close()
