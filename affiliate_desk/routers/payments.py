"""Payment order, webhook and refund routes."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from affiliate_desk import crud
from affiliate_desk.database import get_session
from affiliate_desk.dependencies import get_admin_user, get_current_user, get_notifier
from affiliate_desk.models import PAYMENT_STATUS_ENUM, User
from affiliate_desk.notifications import PayoutNotifier
from affiliate_desk.schemas import CaptureResult, PaymentEvent, PaymentOrderCreate, PaymentRead
from affiliate_desk.services import PaymentCaptureService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/orders", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: PaymentOrderCreate,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    """Record a gateway order before the customer pays."""
    if user.role != "admin" and payload.user_id != user.id:
        raise HTTPException(status_code=403, detail="Orders can only be created for yourself")
    return PaymentCaptureService(db).record_order(payload)


@router.post("/webhook", response_model=CaptureResult)
def payment_webhook(
    event: PaymentEvent,
    db: Session = Depends(get_session),
    notifier: PayoutNotifier = Depends(get_notifier),
):
    """Apply a verified gateway event; replays answer ``already_processed``."""
    return PaymentCaptureService(db, notifier=notifier).process_event(event)


@router.get("", response_model=List[PaymentRead])
def list_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: Optional[int] = Query(None),
    db: Session = Depends(get_session),
    admin: User = Depends(get_admin_user),
):
    if status_filter and status_filter not in PAYMENT_STATUS_ENUM:
        raise HTTPException(status_code=400, detail=f"Unknown payment status '{status_filter}'")
    return crud.list_payments(db, status=status_filter, user_id=user_id)


@router.get("/{payment_id}", response_model=PaymentRead)
def get_payment(
    payment_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    payment = crud.get_payment(db, payment_id)
    if not payment or (user.role != "admin" and payment.user_id != user.id):
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


@router.post("/{payment_id}/refund", response_model=PaymentRead)
def refund_payment(
    payment_id: int,
    db: Session = Depends(get_session),
    admin: User = Depends(get_admin_user),
):
    return PaymentCaptureService(db).refund(payment_id)
