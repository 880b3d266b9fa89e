"""Shared FastAPI dependencies."""
from __future__ import annotations

from pathlib import Path

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from affiliate_desk import crud
from affiliate_desk.config import get_settings
from affiliate_desk.database import get_session
from affiliate_desk.models import User
from affiliate_desk.notifications import PayoutNotifier


def get_current_user(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_session),
) -> User:
    """Resolve the caller identified by the upstream auth gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        user_id = int(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid user id")

    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_admin_user(user: User = Depends(get_current_user)) -> User:
    """Dependency to ensure user is admin."""
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def get_notifier() -> PayoutNotifier:
    return PayoutNotifier()


def get_export_dir() -> Path:
    return Path(get_settings().EXPORT_DIR)


def get_tds_dir() -> Path:
    return Path(get_settings().TDS_EXPORT_DIR)
