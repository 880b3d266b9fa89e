from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd

from affiliate_desk.core.payouts import FILENAME_PREFIX, INSTRUCTION_COLUMNS, payout_filename, week_prefix


_WEEK_PATTERN = re.compile(rf"^{FILENAME_PREFIX}-(\d{{4}}-\d{{2}}-\d{{2}})-to-(\d{{4}}-\d{{2}}-\d{{2}})-\d+\.csv$")


@dataclass(frozen=True)
class InstructionFile:
    file_name: str
    path: Path
    created_at: datetime

    @property
    def week(self) -> Optional[tuple[date, date]]:
        match = _WEEK_PATTERN.match(self.file_name)
        if not match:
            return None
        return date.fromisoformat(match.group(1)), date.fromisoformat(match.group(2))


def _instructions_df(rows: Iterable[dict]) -> pd.DataFrame:
    return pd.DataFrame(list(rows), columns=list(INSTRUCTION_COLUMNS))


def write_instruction_file(
    rows: List[dict],
    export_dir: Path,
    week_start: date,
    week_end: date,
    generated_at: datetime | None = None,
) -> Path:
    """Write the bank-transfer instruction CSV and return its path."""

    if not rows:
        raise ValueError("Refusing to write an instruction file without rows")
    export_dir = Path(export_dir)
    export_dir.mkdir(parents=True, exist_ok=True)
    path = export_dir / payout_filename(week_start, week_end, generated_at or datetime.now())
    _instructions_df(rows).to_csv(path, index=False, encoding="utf-8")
    return path


def list_instruction_files(export_dir: Path) -> List[InstructionFile]:
    export_dir = Path(export_dir)
    if not export_dir.exists():
        return []
    files = [
        InstructionFile(
            file_name=path.name,
            path=path,
            created_at=datetime.fromtimestamp(path.stat().st_mtime),
        )
        for path in export_dir.glob(f"{FILENAME_PREFIX}-*.csv")
        if path.is_file()
    ]
    files.sort(key=lambda item: (item.created_at, item.file_name), reverse=True)
    return files


def find_week_file(export_dir: Path, week_start: date, week_end: date) -> Optional[InstructionFile]:
    """Newest instruction file generated for the given week, if any."""

    prefix = week_prefix(week_start, week_end)
    for item in list_instruction_files(export_dir):
        if item.file_name.startswith(f"{prefix}-"):
            return item
    return None
