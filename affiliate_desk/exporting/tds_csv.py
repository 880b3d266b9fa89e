from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

from affiliate_desk.schemas import TdsReportRow

TDS_FILENAME_PREFIX = "TDS"

TDS_COLUMNS: tuple[str, ...] = (
    "Name",
    "Affiliate Code",
    "PAN",
    "Total Income",
    "Income Breakdown",
    "Total Paid Amount",
    "Paid Breakdown",
    "Total TDS",
    "TDS Breakdown",
    "Payment Dates",
)

_TDS_FILE_PATTERN = re.compile(rf"^{TDS_FILENAME_PREFIX}-(\d{{4}}-\d{{2}})\.csv$")


@dataclass(frozen=True)
class TdsFile:
    file_name: str
    month: str
    path: Path
    created_at: datetime


def tds_filename(month: str) -> str:
    return f"{TDS_FILENAME_PREFIX}-{month}.csv"


def _tds_df(report: Sequence[TdsReportRow]) -> pd.DataFrame:
    records = [
        {
            "Name": row.name,
            "Affiliate Code": row.affiliate_code,
            "PAN": row.pan,
            "Total Income": f"{row.total_income:.2f}",
            "Income Breakdown": "; ".join(row.income_breakdown),
            "Total Paid Amount": f"{row.total_paid_amount:.2f}",
            "Paid Breakdown": "; ".join(row.paid_breakdown),
            "Total TDS": f"{row.total_tds:.2f}",
            "TDS Breakdown": "; ".join(row.tds_breakdown),
            "Payment Dates": "; ".join(row.payment_dates),
        }
        for row in report
    ]
    return pd.DataFrame(records, columns=list(TDS_COLUMNS))


def write_tds_file(report: Sequence[TdsReportRow], export_dir: Path, month: str) -> Path:
    """Write (or overwrite) the month's TDS statement and return its path."""

    if not report:
        raise ValueError("Refusing to write a TDS file without rows")
    export_dir = Path(export_dir)
    export_dir.mkdir(parents=True, exist_ok=True)
    path = export_dir / tds_filename(month)
    _tds_df(report).to_csv(path, index=False, encoding="utf-8")
    return path


def list_tds_files(export_dir: Path) -> List[TdsFile]:
    export_dir = Path(export_dir)
    if not export_dir.exists():
        return []
    files = []
    for path in export_dir.glob(f"{TDS_FILENAME_PREFIX}-*.csv"):
        match = _TDS_FILE_PATTERN.match(path.name)
        if not match or not path.is_file():
            continue
        files.append(
            TdsFile(
                file_name=path.name,
                month=match.group(1),
                path=path,
                created_at=datetime.fromtimestamp(path.stat().st_mtime),
            )
        )
    files.sort(key=lambda item: (item.created_at, item.file_name), reverse=True)
    return files


def find_tds_file(export_dir: Path, file_name: str) -> Optional[TdsFile]:
    """Look a statement up by name; anything not shaped like ``TDS-YYYY-MM.csv`` is unknown."""

    for item in list_tds_files(export_dir):
        if item.file_name == file_name:
            return item
    return None
