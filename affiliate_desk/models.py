"""SQLAlchemy models for the commission and payout pipeline."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from affiliate_desk.database import Base

ROLE_ENUM = ("student", "affiliate", "admin")
KYC_STATUS_ENUM = ("pending", "approved", "rejected")
COURSE_STATUS_ENUM = ("draft", "published")
PAYMENT_STATUS_ENUM = ("created", "captured", "failed", "refunded")
ENROLLMENT_STATUS_ENUM = ("active", "completed", "cancelled", "refunded", "pending")
LEAD_STATUS_ENUM = ("new", "converted")
COMMISSION_STATUS_ENUM = ("pending", "approved", "unpaid", "paid")
PAYOUT_STATUS_ENUM = ("pending", "approved", "paid", "unpaid", "failed")
TRANSACTION_TYPE_ENUM = ("NEFT", "IMPS", "RTGS")


class User(Base):
    """A learner, affiliate or administrator."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    referral_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    sponsor_code: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="student")
    kyc_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    referral_earnings: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    kyc: Mapped["UserKyc | None"] = relationship(back_populates="user", uselist=False, cascade="all, delete-orphan")
    industry_earnings: Mapped[list["IndustryEarning"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("role IN ('student', 'affiliate', 'admin')", name="ck_users_role_valid"),
        CheckConstraint("kyc_status IN ('pending', 'approved', 'rejected')", name="ck_users_kyc_status_valid"),
    )


class IndustryEarning(Base):
    __tablename__ = "industry_earnings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    current_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)

    user: Mapped[User] = relationship(back_populates="industry_earnings")

    __table_args__ = (UniqueConstraint("user_id", "label", name="uq_industry_earnings_user_label"),)


class UserKyc(Base):
    __tablename__ = "user_kyc"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    account_holder_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    ifsc_code: Mapped[str | None] = mapped_column(String(11), nullable=True)
    pan_number: Mapped[str | None] = mapped_column(String(10), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    branch: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    user: Mapped[User] = relationship(back_populates="kyc")


class Course(Base):
    """A catalog entry; bundles are courses flagged ``is_bundle``."""

    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    is_bundle: Mapped[bool] = mapped_column(default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="published")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discounted_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    commission_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=20)
    learners_enrolled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Plain id lists rather than foreign keys: catalog edits may leave dangling ids behind.
    related_course_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    related_bundle_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    @property
    def effective_price(self) -> Decimal:
        return self.discounted_price if self.discounted_price is not None else self.price

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_courses_price_nonnegative"),
        CheckConstraint(
            "commission_percent >= 0 AND commission_percent <= 100",
            name="ck_courses_commission_percent_range",
        ),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"), nullable=False)
    bundle_course_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gateway_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="created")
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="INR")
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    user: Mapped[User] = relationship()
    course: Mapped[Course] = relationship()

    @property
    def purchased_bundle_id(self) -> int:
        return self.bundle_course_id or self.course_id

    __table_args__ = (
        CheckConstraint("amount_paid >= 0", name="ck_payments_amount_nonnegative"),
        CheckConstraint(
            "status IN ('created', 'captured', 'failed', 'refunded')",
            name="ck_payments_status_valid",
        ),
    )


class Enrollment(Base):
    __tablename__ = "enrollments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    course: Mapped[Course] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_enrollments_progress_range"),
    )


class ProfileCourse(Base):
    """The learner profile's enrolled-course list."""

    __tablename__ = "profile_courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_profile_courses_user_course"),)


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referral_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lead_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    bundle_course_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )


payout_commissions = Table(
    "payout_commissions",
    Base.metadata,
    Column("payout_id", ForeignKey("payouts.id", ondelete="CASCADE"), primary_key=True),
    Column("commission_id", ForeignKey("commissions.id", ondelete="CASCADE"), primary_key=True),
)


class Commission(Base):
    """One ledger entry: what an affiliate earned from one payment."""

    __tablename__ = "commissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    referral_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False)
    bundle_course_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    base_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    user: Mapped[User] = relationship(foreign_keys=[user_id])
    referral_user: Mapped[User | None] = relationship(foreign_keys=[referral_user_id])
    payment: Mapped[Payment] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "transaction_id", name="uq_commissions_user_transaction"),
        CheckConstraint("amount >= 0", name="ck_commissions_amount_nonnegative"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'unpaid', 'paid')",
            name="ck_commissions_status_valid",
        ),
        Index("idx_commissions_user_status_created", "user_id", "status", "created_at"),
    )


class Payout(Base):
    """A disbursement to one affiliate covering a set of ledger entries."""

    __tablename__ = "payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tds_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    tds_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=2)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    # Snapshot of the KYC bank details at approval time.
    beneficiary_name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_number: Mapped[str] = mapped_column(String(20), nullable=False)
    ifsc_code: Mapped[str] = mapped_column(String(11), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(10), nullable=False, default="NEFT")
    transaction_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    utr_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    remarks: Mapped[str | None] = mapped_column(String(300), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    from_date: Mapped[date] = mapped_column(Date, nullable=False)
    to_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    user: Mapped[User] = relationship()
    commissions: Mapped[list[Commission]] = relationship(secondary=payout_commissions)

    @property
    def commission_ids(self) -> list[int]:
        return [commission.id for commission in self.commissions]

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_payouts_total_nonnegative"),
        CheckConstraint("tds_amount >= 0", name="ck_payouts_tds_nonnegative"),
        CheckConstraint("tds_percent >= 0 AND tds_percent <= 100", name="ck_payouts_tds_percent_range"),
        CheckConstraint("net_amount >= 0", name="ck_payouts_net_nonnegative"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'paid', 'unpaid', 'failed')",
            name="ck_payouts_status_valid",
        ),
        CheckConstraint("transaction_type IN ('NEFT', 'IMPS', 'RTGS')", name="ck_payouts_transaction_type_valid"),
        Index("idx_payouts_user_status", "user_id", "status"),
        Index("idx_payouts_transaction_date", "transaction_date"),
    )
