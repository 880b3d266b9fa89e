"""Admin routes for the monthly TDS statement."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from affiliate_desk.database import get_session
from affiliate_desk.dependencies import get_admin_user, get_tds_dir
from affiliate_desk.exporting.tds_csv import find_tds_file, list_tds_files
from affiliate_desk.models import User
from affiliate_desk.schemas import TdsFileRead, TdsGenerateRequest, TdsReportRow
from affiliate_desk.tds import generate_tds_file, monthly_tds_report

router = APIRouter(prefix="/admin/tds", tags=["TDS"])


def _download_url(file_name: str) -> str:
    return f"/admin/tds/files/{file_name}"


@router.get("/report", response_model=List[TdsReportRow])
def preview_report(
    month: str = Query(..., description="Month as YYYY-MM"),
    db: Session = Depends(get_session),
    admin: User = Depends(get_admin_user),
):
    return monthly_tds_report(db, month)


@router.post("/generate", response_model=TdsFileRead)
def generate_report(
    payload: TdsGenerateRequest,
    db: Session = Depends(get_session),
    tds_dir: Path = Depends(get_tds_dir),
    admin: User = Depends(get_admin_user),
):
    path = generate_tds_file(db, payload.month, tds_dir)
    return TdsFileRead(
        file_name=path.name,
        month=payload.month,
        url=_download_url(path.name),
        created_at=datetime.fromtimestamp(path.stat().st_mtime),
    )


@router.get("/files", response_model=List[TdsFileRead])
def list_files(tds_dir: Path = Depends(get_tds_dir), admin: User = Depends(get_admin_user)):
    return [
        TdsFileRead(
            file_name=item.file_name,
            month=item.month,
            url=_download_url(item.file_name),
            created_at=item.created_at,
        )
        for item in list_tds_files(tds_dir)
    ]


@router.get("/files/{file_name}")
def download_file(file_name: str, tds_dir: Path = Depends(get_tds_dir), admin: User = Depends(get_admin_user)):
    item = find_tds_file(tds_dir, file_name)
    if item is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(item.path, filename=item.file_name, media_type="text/csv")
