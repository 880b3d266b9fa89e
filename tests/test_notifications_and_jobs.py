import email
import smtplib
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

from apscheduler.schedulers.background import BackgroundScheduler

from affiliate_desk.config import Settings
from affiliate_desk.jobs.scheduler import MONTHLY_TDS_JOB_ID, WEEKLY_PAYOUT_JOB_ID, register_jobs
from affiliate_desk.notifications import EmailService, PayoutNotifier

USER = SimpleNamespace(full_name="Asha Verma", email="asha@example.com")
PAYOUT = SimpleNamespace(
    id=7,
    total_amount=Decimal("1000.00"),
    tds_amount=Decimal("20.00"),
    net_amount=Decimal("980.00"),
    from_date=date(2025, 1, 6),
    to_date=date(2025, 1, 12),
    transaction_date=datetime(2025, 1, 13, 9, 0),
    utr_number="UTR1",
    failure_reason=None,
)


class FakeSMTP:
    sent = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        if self.fail_with is not None:
            raise self.fail_with

    def sendmail(self, sender, recipient, message):
        FakeSMTP.sent.append((sender, recipient, message))


def _plain_body(message):
    for part in email.message_from_string(message).walk():
        if part.get_content_type() == "text/plain":
            return part.get_payload(decode=True).decode(part.get_content_charset() or "utf-8")
    return ""


def _service():
    return EmailService(smtp_user="bot@example.com", smtp_password="secret", from_name="Affiliate Desk")


def test_unconfigured_email_is_skipped(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    FakeSMTP.sent = []
    assert EmailService().send_email("a@example.com", "Hi", "<p>Hi</p>") is False
    assert FakeSMTP.sent == []


def test_payout_success_mail_is_sent(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    FakeSMTP.sent = []
    FakeSMTP.fail_with = None

    assert PayoutNotifier(_service()).payout_succeeded(USER, PAYOUT) is True

    sender, recipient, message = FakeSMTP.sent[0]
    assert sender == "bot@example.com"
    assert recipient == "asha@example.com"
    assert "To: asha@example.com" in message
    body = _plain_body(message)
    assert "Total commission: ₹1000" in body
    assert "TDS deducted: ₹20" in body
    assert "Amount credited: ₹980" in body
    assert "UTR: UTR1" in body


def test_transport_failure_is_contained(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    FakeSMTP.sent = []
    FakeSMTP.fail_with = smtplib.SMTPAuthenticationError(535, b"bad credentials")
    try:
        assert PayoutNotifier(_service()).payout_failed(USER, PAYOUT) is False
    finally:
        FakeSMTP.fail_with = None
    assert FakeSMTP.sent == []


def test_jobs_are_registered_on_cron_triggers():
    scheduler = BackgroundScheduler(timezone="Asia/Kolkata")
    settings = Settings(PAYOUT_SCHEDULE_DAY="tue", PAYOUT_SCHEDULE_HOUR=3, TDS_REPORT_HOUR=22, TDS_REPORT_MINUTE=30)

    register_jobs(scheduler, settings)

    jobs = {job.id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {WEEKLY_PAYOUT_JOB_ID, MONTHLY_TDS_JOB_ID}
    weekly = str(jobs[WEEKLY_PAYOUT_JOB_ID].trigger)
    assert "day_of_week='tue'" in weekly
    assert "hour='3'" in weekly
    monthly = str(jobs[MONTHLY_TDS_JOB_ID].trigger)
    assert "day='last'" in monthly
    assert "hour='22'" in monthly
    assert "minute='30'" in monthly
