"""Admin routes for weekly payout batches and bank reconciliation."""
from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from affiliate_desk import crud
from affiliate_desk.core.formatting import format_display_date, format_display_datetime
from affiliate_desk.core.payouts import quantize_money
from affiliate_desk.database import get_session
from affiliate_desk.dependencies import get_admin_user, get_export_dir, get_notifier
from affiliate_desk.exporting.payout_csv import find_week_file, list_instruction_files
from affiliate_desk.importers.bank_response import load_row_source, reconcile
from affiliate_desk.models import KYC_STATUS_ENUM, User
from affiliate_desk.notifications import PayoutNotifier
from affiliate_desk.payouts import PayoutBatchGenerator, eligible_affiliates
from affiliate_desk.schemas import (
    EligibleAffiliateRead,
    FailedPayoutRead,
    PayoutFileRead,
    PayoutGenerateRequest,
    PayoutRead,
)

router = APIRouter(prefix="/admin/payouts", tags=["Payouts"])


@router.get("/eligible", response_model=List[EligibleAffiliateRead])
def list_eligible(
    week_start: date = Query(...),
    week_end: date = Query(...),
    kyc_status: Optional[str] = Query("approved"),
    db: Session = Depends(get_session),
    admin: User = Depends(get_admin_user),
):
    """Affiliates holding pending commissions for the week."""
    if week_end < week_start:
        raise HTTPException(status_code=400, detail="week_end must not be before week_start")
    if kyc_status and kyc_status not in KYC_STATUS_ENUM:
        raise HTTPException(status_code=400, detail=f"Unknown KYC status '{kyc_status}'")
    return eligible_affiliates(db, week_start, week_end, kyc_status=kyc_status or None)


@router.post("/generate")
def generate_payouts(
    payload: PayoutGenerateRequest,
    db: Session = Depends(get_session),
    export_dir: Path = Depends(get_export_dir),
    admin: User = Depends(get_admin_user),
):
    outcome = PayoutBatchGenerator(db, export_dir=export_dir).generate(
        payload.user_ids, payload.week_start, payload.week_end
    )
    return outcome.as_dict()


@router.get("/files", response_model=List[PayoutFileRead])
def list_files(
    export_dir: Path = Depends(get_export_dir),
    admin: User = Depends(get_admin_user),
):
    files = []
    for item in list_instruction_files(export_dir):
        week = item.week
        url = (
            f"/admin/payouts/files/download?week_start={week[0].isoformat()}&week_end={week[1].isoformat()}"
            if week
            else ""
        )
        files.append(PayoutFileRead(file_name=item.file_name, url=url, created_at=item.created_at))
    return files


@router.get("/files/download")
def download_file(
    week_start: date = Query(...),
    week_end: date = Query(...),
    export_dir: Path = Depends(get_export_dir),
    admin: User = Depends(get_admin_user),
):
    item = find_week_file(export_dir, week_start, week_end)
    if item is None:
        raise HTTPException(status_code=404, detail="No payout file for that week")
    return FileResponse(item.path, filename=item.file_name, media_type="text/csv")


@router.post("/files/rebuild", response_model=PayoutFileRead)
def rebuild_file(
    week_start: date = Query(...),
    week_end: date = Query(...),
    db: Session = Depends(get_session),
    export_dir: Path = Depends(get_export_dir),
    admin: User = Depends(get_admin_user),
):
    """Regenerate a week's instruction file from its approved payouts."""
    path = PayoutBatchGenerator(db, export_dir=export_dir).rebuild_instruction_file(week_start, week_end)
    return PayoutFileRead(
        file_name=path.name,
        url=f"/admin/payouts/files/download?week_start={week_start.isoformat()}&week_end={week_end.isoformat()}",
        created_at=datetime.fromtimestamp(path.stat().st_mtime),
    )


@router.post("/bank-response")
async def upload_bank_response(
    file: UploadFile = File(...),
    db: Session = Depends(get_session),
    notifier: PayoutNotifier = Depends(get_notifier),
    admin: User = Depends(get_admin_user),
):
    """Reconcile the bank's response file; every row is attempted."""
    contents = await file.read()
    source = load_row_source(file.filename or "", contents)
    report = reconcile(db, source, notifier=notifier)
    return report.as_dict()


@router.get("/processing", response_model=List[PayoutRead])
def list_processing(db: Session = Depends(get_session), admin: User = Depends(get_admin_user)):
    return crud.list_payouts(db, "approved")


@router.get("/completed", response_model=List[PayoutRead])
def list_completed(db: Session = Depends(get_session), admin: User = Depends(get_admin_user)):
    return crud.list_payouts(db, "paid", newest_first_by="updated_at")


@router.get("/failed", response_model=List[FailedPayoutRead])
def list_failed(db: Session = Depends(get_session), admin: User = Depends(get_admin_user)):
    return [
        FailedPayoutRead(
            id=payout.id,
            user_id=payout.user_id,
            full_name=payout.user.full_name,
            email=payout.user.email,
            referral_code=payout.user.referral_code,
            amount=quantize_money(payout.net_amount),
            reason=payout.failure_reason or payout.remarks or "",
            transaction_date=format_display_datetime(payout.transaction_date, placeholder="-"),
            payout_date=format_display_date(payout.created_at),
        )
        for payout in crud.list_payouts(db, "failed", newest_first_by="updated_at")
    ]
