"""Payout arithmetic and bank-instruction helpers shared by the batch job and API."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, List, Optional

MONEY_QUANT = Decimal("0.01")

ACCOUNT_NUMBER_PATTERN = re.compile(r"^\d{9,20}$")
IFSC_PATTERN = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")

INSTRUCTION_COLUMNS: tuple[str, ...] = (
    "Beneficiary Name",
    "Beneficiary Account Number",
    "IFSC",
    "Transaction Type",
    "Total Amount",
    "TDS Amount",
    "Amount",
    "Currency",
    "Beneficiary Email ID",
    "Remarks",
)

FILENAME_PREFIX = "payout-week"


@dataclass(frozen=True)
class Withholding:
    """Gross, tax withheld and net for one payout, all at two decimal places."""

    total_amount: Decimal
    tds_percent: Decimal
    tds_amount: Decimal
    net_amount: Decimal


def quantize_money(value) -> Decimal:
    """Coerce a value into a currency decimal rounded half-up to 0.01."""

    try:
        decimal_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid money amount '{value}'") from exc
    return decimal_value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def sum_amounts(values: Iterable) -> Decimal:
    """Sum money values, rounding each one before it is added."""

    total = Decimal("0.00")
    for value in values:
        total += quantize_money(value)
    return quantize_money(total)


def compute_withholding(total_amount, tds_percent) -> Withholding:
    total = quantize_money(total_amount)
    percent = Decimal(str(tds_percent))
    if percent < 0 or percent > 100:
        raise ValueError(f"TDS percent must be between 0 and 100 (got {percent})")
    tds_amount = quantize_money(percent / Decimal(100) * total)
    net_amount = quantize_money(total - tds_amount)
    return Withholding(
        total_amount=total,
        tds_percent=percent,
        tds_amount=tds_amount,
        net_amount=net_amount,
    )


def beneficiary_problems(name: Optional[str], account_number: Optional[str], ifsc_code: Optional[str]) -> List[str]:
    """Return the reasons bank details cannot be used for a transfer (empty when fine)."""

    problems: List[str] = []
    if not (name or "").strip():
        problems.append("beneficiary name is missing")
    account = (account_number or "").strip()
    if not account:
        problems.append("account number is missing")
    elif not ACCOUNT_NUMBER_PATTERN.match(account):
        problems.append("account number must be 9-20 digits")
    ifsc = (ifsc_code or "").strip().upper()
    if not ifsc:
        problems.append("IFSC code is missing")
    elif not IFSC_PATTERN.match(ifsc):
        problems.append(f"IFSC code '{ifsc}' is malformed")
    return problems


def format_rupees(amount) -> str:
    value = quantize_money(amount)
    if value == value.to_integral_value():
        return f"₹{int(value)}"
    return f"₹{value}"


def unpaid_remark(unpaid_amount: Decimal) -> str:
    if unpaid_amount and unpaid_amount > 0:
        return f"last week payout pending: {format_rupees(unpaid_amount)}"
    return ""


def week_bounds(week_start: date, week_end: date) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` datetimes where ``end`` covers the whole last day."""

    if week_end < week_start:
        raise ValueError("week_end must not be before week_start")
    start = datetime.combine(week_start, time.min)
    end = datetime.combine(week_end + timedelta(days=1), time.min)
    return start, end


def previous_week(today: date) -> tuple[date, date]:
    """Monday to Sunday of the week before the one containing ``today``."""

    this_monday = today - timedelta(days=today.weekday())
    start = this_monday - timedelta(days=7)
    return start, start + timedelta(days=6)


def build_instruction_row(
    *,
    beneficiary_name: str,
    account_number: str,
    ifsc_code: str,
    transaction_type: str,
    withholding: Withholding,
    currency: str,
    email: str,
    remarks: str,
) -> dict:
    return {
        "Beneficiary Name": beneficiary_name,
        # Spreadsheet tools strip leading zeros from bare numbers.
        "Beneficiary Account Number": f'="{account_number}"',
        "IFSC": ifsc_code,
        "Transaction Type": transaction_type,
        "Total Amount": f"{withholding.total_amount:.2f}",
        "TDS Amount": f"{withholding.tds_amount:.2f}",
        "Amount": f"{withholding.net_amount:.2f}",
        "Currency": currency,
        "Beneficiary Email ID": email,
        "Remarks": remarks,
    }


def week_prefix(week_start: date, week_end: date) -> str:
    return f"{FILENAME_PREFIX}-{week_start.isoformat()}-to-{week_end.isoformat()}"


def payout_filename(week_start: date, week_end: date, generated_at: datetime) -> str:
    timestamp = int(generated_at.timestamp() * 1000)
    return f"{week_prefix(week_start, week_end)}-{timestamp}.csv"


__all__ = [
    "INSTRUCTION_COLUMNS",
    "MONEY_QUANT",
    "Withholding",
    "beneficiary_problems",
    "build_instruction_row",
    "compute_withholding",
    "format_rupees",
    "payout_filename",
    "previous_week",
    "quantize_money",
    "sum_amounts",
    "unpaid_remark",
    "week_bounds",
    "week_prefix",
]
