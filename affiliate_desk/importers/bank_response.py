"""Reconcile the bank's transfer response file against approved payouts."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Protocol, Sequence

import pandas as pd
from dateutil import parser as date_parser
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from affiliate_desk import crud, ledger
from affiliate_desk.config import Settings, get_settings
from affiliate_desk.core.payouts import quantize_money
from affiliate_desk.database import atomic
from affiliate_desk.errors import AffiliateDeskError, NotFoundError, ParseError
from affiliate_desk.models import TRANSACTION_TYPE_ENUM, Payout, User
from affiliate_desk.notifications import PayoutNotifier

logger = logging.getLogger(__name__)

BANK_RESPONSE_COLUMNS: dict[str, dict[str, Any]] = {
    "email": {"aliases": ["beneficiary email id", "beneficiary email", "email"], "required": True},
    "amount": {"aliases": ["amount", "net amount"], "required": True},
    "transaction_type": {"aliases": ["transaction type", "txn type"], "required": False},
    "transaction_date": {"aliases": ["transaction date", "txn date", "value date"], "required": False},
    "utr_number": {"aliases": ["utr number", "utr", "utr no"], "required": False},
    "status": {"aliases": ["status", "transaction status"], "required": True},
    "errors": {"aliases": ["errors", "error", "error description"], "required": False},
}

SUPPORTED_SUFFIXES = (".csv", ".xlsx", ".xls")
DATE_FORMATS: tuple[str, ...] = ("%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d", "%d/%m/%Y %H:%M:%S", "%Y-%m-%d %H:%M:%S")
_AMOUNT_PATTERN = re.compile(r"\d+(?:\.\d+)?")
PAID_REMARK = "Payout completed"
DEFAULT_BANK_ERROR = "Bank error"


def _header_key(value: Any) -> str:
    return " ".join(str(value).split()).lower()


def resolve_headers(headers: Iterable[Any]) -> dict[str, str]:
    """Map each canonical field to the source header that carries it."""

    lookup = {_header_key(header): str(header) for header in headers}
    mapping: dict[str, str] = {}
    missing: list[str] = []
    for canonical, column_spec in BANK_RESPONSE_COLUMNS.items():
        for alias in column_spec["aliases"]:
            if alias in lookup:
                mapping[canonical] = lookup[alias]
                break
        else:
            if column_spec["required"]:
                missing.append(canonical)
    if missing:
        raise ParseError(f"Missing required column(s) in bank response: {', '.join(missing)}")
    return mapping


def clean_string(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    try:
        if pd.isna(raw):
            return None
    except (TypeError, ValueError):
        pass
    text = str(raw).strip()
    return text or None


class RowSource(Protocol):
    """Restartable source of bank rows keyed by canonical field name."""

    def rows(self) -> Iterator[dict[str, Optional[str]]]:
        ...


class RecordRowSource:
    """Rows from in-memory mappings, e.g. already-parsed API payloads."""

    def __init__(self, records: Sequence[Mapping[str, Any]]) -> None:
        self.records = list(records)
        headers: dict[str, None] = {}
        for record in self.records:
            for key in record:
                headers.setdefault(str(key), None)
        self.columns = resolve_headers(headers)

    def rows(self) -> Iterator[dict[str, Optional[str]]]:
        for record in self.records:
            normalized = {str(key): value for key, value in record.items()}
            yield {canonical: clean_string(normalized.get(source)) for canonical, source in self.columns.items()}


class DataFrameRowSource:
    def __init__(self, df: pd.DataFrame) -> None:
        self.df = df
        self.columns = resolve_headers(df.columns)

    def rows(self) -> Iterator[dict[str, Optional[str]]]:
        for _, record in self.df.iterrows():
            yield {canonical: clean_string(record[source]) for canonical, source in self.columns.items()}


def load_row_source(filename: str, content: bytes) -> DataFrameRowSource:
    """Parse an uploaded CSV or Excel bank response."""

    suffix = Path(filename).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ParseError("Only CSV or XLSX files are allowed.")
    if not content:
        raise ParseError("The uploaded file is empty.")
    try:
        if suffix == ".csv":
            df = pd.read_csv(BytesIO(content), dtype=str, keep_default_na=False)
        else:
            df = pd.read_excel(BytesIO(content), dtype=str)
    except ImportError as exc:
        raise ParseError(f"Cannot read {suffix} files on this server: {exc}") from exc
    except (ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise ParseError(f"Could not read bank response file '{filename}': {exc}") from exc
    return DataFrameRowSource(df)


def parse_amount(raw: Optional[str]) -> Decimal:
    """Read a bank amount cell such as ``₹1,234.50``, ``Rs.980`` or ``-980.00``."""

    text = (raw or "").replace(",", "").strip()
    match = _AMOUNT_PATTERN.search(text)
    if match is None or re.search(r"\d", text[match.end():]):
        raise ParseError(f"Invalid amount '{raw}'")
    value = Decimal(match.group())
    if "-" in text[: match.start()]:
        value = -value
    if value <= 0:
        raise ParseError(f"Amount must be greater than zero (got {raw})")
    return quantize_money(value)


def parse_transaction_date(raw: Optional[str], default: datetime) -> datetime:
    if not raw:
        return default
    for pattern in DATE_FORMATS:
        try:
            return datetime.strptime(raw, pattern)
        except ValueError:
            continue
    try:
        return date_parser.parse(raw, dayfirst=True)
    except (ValueError, OverflowError):
        logger.warning("Unrecognised transaction date '%s'; using %s", raw, default.isoformat())
        return default


def find_matching_payout(
    db: Session,
    user_id: int,
    amount: Decimal,
    tolerance: Decimal,
    since: datetime,
) -> Optional[Payout]:
    """Closest approved payout within tolerance; ties go to the earliest created."""

    stmt = (
        select(Payout)
        .where(Payout.user_id == user_id, Payout.status == "approved", Payout.created_at >= since)
        .order_by(Payout.created_at, Payout.id)
    )
    candidates = []
    for payout in db.execute(stmt).scalars():
        delta = abs(quantize_money(payout.net_amount) - amount)
        if delta <= tolerance:
            candidates.append((delta, payout.created_at, payout.id, payout))
    if not candidates:
        return None
    return min(candidates, key=lambda item: item[:3])[3]


@dataclass
class RowOutcome:
    row: int
    status: str
    email: Optional[str] = None
    reason: Optional[str] = None
    payout_id: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "status": self.status,
            "email": self.email,
            "reason": self.reason,
            "payout_id": self.payout_id,
        }


@dataclass
class ReconciliationReport:
    rows: list[RowOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for item in self.rows if item.status == status)

    @property
    def paid(self) -> int:
        return self._count("paid")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def errors(self) -> int:
        return self._count("error")

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": len(self.rows),
            "paid": self.paid,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
            "rows": [item.as_dict() for item in self.rows],
        }


def _apply_row(
    db: Session,
    row_number: int,
    row: Mapping[str, Optional[str]],
    settings: Settings,
    now: datetime,
) -> tuple[RowOutcome, User, Payout]:
    email = row.get("email")
    if not email:
        raise ParseError("Beneficiary email is missing")
    amount = parse_amount(row.get("amount"))
    bank_status = (row.get("status") or "").lower()
    if not bank_status:
        raise ParseError("Status is missing")

    user = crud.get_user_by_email(db, email)
    if user is None:
        raise NotFoundError(f"No user found for email {email}")

    since = now - timedelta(days=settings.RECONCILE_LOOKBACK_DAYS)
    payout = find_matching_payout(db, user.id, amount, settings.RECONCILE_TOLERANCE, since)
    if payout is None:
        raise NotFoundError(f"No approved payout of {amount} found for {email}")

    transaction_type = (row.get("transaction_type") or "").upper()
    if transaction_type in TRANSACTION_TYPE_ENUM:
        payout.transaction_type = transaction_type
    elif transaction_type:
        logger.warning(
            "Row %s: unknown transaction type '%s'; keeping %s",
            row_number,
            transaction_type,
            payout.transaction_type,
        )
    payout.transaction_date = parse_transaction_date(row.get("transaction_date"), now)
    payout.utr_number = row.get("utr_number")

    commission_ids = payout.commission_ids
    if bank_status == "success":
        payout.status = "paid"
        payout.remarks = PAID_REMARK
        payout.failure_reason = None
        changed = ledger.mark_paid(db, commission_ids)
    else:
        reason = row.get("errors") or DEFAULT_BANK_ERROR
        payout.status = "failed"
        payout.remarks = reason[:300]
        payout.failure_reason = reason
        changed = ledger.mark_unpaid(db, commission_ids)
    db.flush()
    logger.info(
        "Row %s: payout %s for %s marked %s (%s of %s commissions updated)",
        row_number,
        payout.id,
        email,
        payout.status,
        changed,
        len(commission_ids),
    )
    return RowOutcome(row=row_number, status=payout.status, email=email, payout_id=payout.id), user, payout


def reconcile(
    db: Session,
    source: RowSource,
    notifier: PayoutNotifier | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> ReconciliationReport:
    """Apply every row of a bank response; one bad row never stops the file.

    Row numbers count the header as row 1, matching what a spreadsheet shows.
    """

    settings = settings or get_settings()
    now = now or datetime.now()
    report = ReconciliationReport()

    for row_number, row in enumerate(source.rows(), start=2):
        email = row.get("email")
        try:
            with atomic(db):
                outcome, user, payout = _apply_row(db, row_number, row, settings, now)
        except (ParseError, NotFoundError) as exc:
            logger.warning("Skipping bank response row %s: %s", row_number, exc.message)
            report.rows.append(RowOutcome(row=row_number, status="skipped", email=email, reason=exc.message))
            continue
        except (AffiliateDeskError, SQLAlchemyError) as exc:
            logger.exception("Bank response row %s failed", row_number)
            reason = exc.message if isinstance(exc, AffiliateDeskError) else str(exc)
            report.rows.append(RowOutcome(row=row_number, status="error", email=email, reason=reason))
            continue

        report.rows.append(outcome)
        if notifier is not None:
            if payout.status == "paid":
                notifier.payout_succeeded(user, payout)
            else:
                notifier.payout_failed(user, payout)

    logger.info(
        "Bank response processed: %s paid, %s failed, %s skipped, %s errors",
        report.paid,
        report.failed,
        report.skipped,
        report.errors,
    )
    return report
