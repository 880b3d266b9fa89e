"""Affiliate-facing commission and earnings views."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from affiliate_desk import crud, ledger
from affiliate_desk.database import get_session
from affiliate_desk.dependencies import get_current_user
from affiliate_desk.models import COMMISSION_STATUS_ENUM, User
from affiliate_desk.schemas import CommissionRead, EarningsSummary
from affiliate_desk.services import earnings_summary

router = APIRouter(prefix="/affiliates", tags=["Affiliates"])


def _ensure_access(user: User, user_id: int) -> None:
    if user.role != "admin" and user.id != user_id:
        raise HTTPException(status_code=403, detail="Not allowed to view another affiliate")


@router.get("/{user_id}/commissions", response_model=List[CommissionRead])
def list_commissions(
    user_id: int,
    status: Optional[str] = Query(None),
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    _ensure_access(user, user_id)
    if status and status not in COMMISSION_STATUS_ENUM:
        raise HTTPException(status_code=400, detail=f"Unknown commission status '{status}'")
    if crud.get_user(db, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    return ledger.list_for_user(db, user_id, status=status)


@router.get("/{user_id}/earnings", response_model=EarningsSummary)
def get_earnings(
    user_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    _ensure_access(user, user_id)
    return earnings_summary(db, user_id)
