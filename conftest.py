import itertools
import os
import shutil
import tempfile
from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Create a temporary SQLite database file for the whole test session
_TEMP_DIR = tempfile.mkdtemp(prefix="affiliate_tests_")
_DB_FILE = os.path.join(_TEMP_DIR, "test_affiliate.db")
os.environ["AFFILIATE_DATABASE_URL"] = f"sqlite:///{_DB_FILE}"
os.environ["AFFILIATE_EXPORT_DIR"] = os.path.join(_TEMP_DIR, "exports")
os.environ["AFFILIATE_SMTP_USER"] = ""
os.environ["AFFILIATE_SMTP_PASSWORD"] = ""
os.environ["AFFILIATE_PAYOUT_SCHEDULER_ENABLED"] = "false"


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize a fresh temporary SQLite database for tests and clean it up after."""
    # Import after setting env vars so the app uses the temp DB
    from affiliate_desk.database import engine, init_db

    init_db()

    yield

    engine.dispose()
    shutil.rmtree(_TEMP_DIR, ignore_errors=True)


@pytest.fixture()
def db_session():
    from affiliate_desk.database import Base, enable_sqlite_foreign_keys

    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class RecordingNotifier:
    """Stands in for PayoutNotifier and remembers what would have been sent."""

    def __init__(self):
        self.sent = []

    def commission_earned(self, sponsor, purchaser, commission, course_title):
        self.sent.append(("commission_earned", sponsor.email, commission.id))
        return True

    def payout_succeeded(self, user, payout):
        self.sent.append(("payout_succeeded", user.email, payout.id))
        return True

    def payout_failed(self, user, payout):
        self.sent.append(("payout_failed", user.email, payout.id))
        return True

    def kinds(self):
        return [item[0] for item in self.sent]


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def export_dir(tmp_path):
    path = tmp_path / "payouts"
    path.mkdir()
    return path


@pytest.fixture()
def tds_dir(tmp_path):
    return tmp_path / "tds"


class Seed:
    """Small factory for committed rows used across the suite."""

    def __init__(self, session):
        self.session = session
        self._seq = itertools.count(1)

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def user(self, *, name=None, email=None, sponsor=None, role="student", kyc_status="pending", referral_code=None):
        from affiliate_desk.models import User

        n = next(self._seq)
        return self._save(
            User(
                full_name=name or f"User {n}",
                email=email or f"user{n}@example.com",
                referral_code=referral_code or f"REF{n:04d}",
                sponsor_code=sponsor.referral_code if sponsor is not None else None,
                role=role,
                kyc_status=kyc_status,
            )
        )

    def kyc(
        self,
        user,
        *,
        account_holder_name="Asha Verma",
        account_number="001234567890",
        ifsc_code="HDFC0001234",
        pan_number="ABCDE1234F",
    ):
        from affiliate_desk.models import UserKyc

        return self._save(
            UserKyc(
                user_id=user.id,
                account_holder_name=account_holder_name,
                account_number=account_number,
                ifsc_code=ifsc_code,
                pan_number=pan_number,
                bank_name="HDFC Bank",
                branch="Andheri",
                verified_at=datetime.now(),
            )
        )

    def affiliate(self, *, sponsor=None, with_kyc=True, kyc_status="approved", **kwargs):
        user = self.user(sponsor=sponsor, role="affiliate", kyc_status=kyc_status, **kwargs)
        if with_kyc:
            self.kyc(user)
        return user

    def course(
        self,
        *,
        title=None,
        price="1000",
        discounted_price=None,
        commission_percent="20",
        is_bundle=False,
        related_course_ids=(),
        related_bundle_ids=(),
    ):
        from affiliate_desk.models import Course

        n = next(self._seq)
        return self._save(
            Course(
                title=title or f"Course {n}",
                is_bundle=is_bundle,
                status="published",
                price=Decimal(str(price)),
                discounted_price=Decimal(str(discounted_price)) if discounted_price is not None else None,
                commission_percent=Decimal(str(commission_percent)),
                related_course_ids=list(related_course_ids),
                related_bundle_ids=list(related_bundle_ids),
            )
        )

    def bundle(self, **kwargs):
        return self.course(is_bundle=True, **kwargs)

    def payment(self, user, course, *, amount=None, status="created", gateway_payment_id=None, order_id=None):
        from affiliate_desk.models import Payment

        n = next(self._seq)
        return self._save(
            Payment(
                user_id=user.id,
                course_id=course.id,
                bundle_course_id=course.id,
                gateway_order_id=order_id or f"order_{n}",
                gateway_payment_id=gateway_payment_id,
                status=status,
                currency="INR",
                amount_paid=Decimal(str(amount if amount is not None else course.effective_price)),
                paid_at=datetime.now() if status == "captured" else None,
            )
        )

    def enroll(self, user, course):
        from affiliate_desk.models import Enrollment

        payment = self.payment(user, course, status="captured", gateway_payment_id=f"pay_seed_{next(self._seq)}")
        return self._save(Enrollment(user_id=user.id, course_id=course.id, payment_id=payment.id, status="active"))

    def commission(self, earner, *, amount, status="pending", created_at=None, payment_status="captured"):
        from affiliate_desk.models import Commission

        buyer = self.user(sponsor=earner)
        course = self.bundle(price=amount)
        payment = self.payment(
            buyer,
            course,
            status=payment_status,
            gateway_payment_id=f"pay_seed_{next(self._seq)}",
        )
        return self._save(
            Commission(
                user_id=earner.id,
                referral_user_id=buyer.id,
                transaction_id=payment.id,
                bundle_course_id=course.id,
                amount=Decimal(str(amount)),
                percent=Decimal("20"),
                base_amount=Decimal(str(amount)),
                status=status,
                created_at=created_at or datetime.now(),
            )
        )


@pytest.fixture()
def seed(db_session):
    return Seed(db_session)


@pytest.fixture()
def admin(seed):
    return seed.user(name="Admin", email="admin@example.com", role="admin", kyc_status="approved")


@pytest.fixture()
def client(db_session, notifier, export_dir, tds_dir, admin):
    from affiliate_desk.database import get_session
    from affiliate_desk.dependencies import get_export_dir, get_notifier, get_tds_dir
    from affiliate_desk.main import app

    def override_session():
        try:
            yield db_session
        finally:
            db_session.rollback()

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_export_dir] = lambda: export_dir
    app.dependency_overrides[get_tds_dir] = lambda: tds_dir

    with TestClient(app) as test_client:
        test_client.headers.update({"X-User-Id": str(admin.id)})
        yield test_client

    app.dependency_overrides.clear()
