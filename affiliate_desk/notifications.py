"""Outbound email for commission and payout events."""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from affiliate_desk.config import Settings, get_settings
from affiliate_desk.core.formatting import format_display_date
from affiliate_desk.core.payouts import format_rupees
from affiliate_desk.errors import ExternalServiceError
from affiliate_desk.models import Commission, Payout, User

logger = logging.getLogger(__name__)


class EmailService:
    """Send transactional email over SMTP with STARTTLS."""

    def __init__(
        self,
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "",
        from_name: str = "AffiliateDesk",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email or smtp_user
        self.from_name = from_name

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "EmailService":
        settings = settings or get_settings()
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            from_email=settings.SMTP_FROM_EMAIL,
            from_name=settings.SMTP_FROM_NAME,
        )

    @property
    def configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        """Send one message.

        Returns False without connecting when SMTP credentials are missing.
        Raises ``ExternalServiceError`` when the transport fails.
        """
        if not self.configured:
            logger.warning("Email not configured. SMTP credentials missing; not sending '%s'.", subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        if text_content:
            msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            raise ExternalServiceError("SMTP authentication failed. Check email credentials.") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise ExternalServiceError(f"Could not send email to {to_email}: {exc}") from exc

        logger.info("Email sent to %s", to_email)
        return True


class PayoutNotifier:
    """Best-effort affiliate notifications.

    Every method returns whether a message went out; delivery problems are
    logged and never propagate into the calling transaction.
    """

    def __init__(self, email_service: EmailService | None = None) -> None:
        self.email_service = email_service or EmailService.from_settings()

    def _deliver(self, to_email: str, subject: str, html: str, text: str) -> bool:
        try:
            return self.email_service.send_email(to_email, subject, html, text)
        except ExternalServiceError as exc:
            logger.error("Notification '%s' to %s failed: %s", subject, to_email, exc.message)
            return False

    def commission_earned(self, sponsor: User, purchaser: User, commission: Commission, course_title: str) -> bool:
        amount = format_rupees(commission.amount)
        subject = f"You earned a commission of {amount}"
        text = (
            f"Hi {sponsor.full_name},\n\n"
            f"{purchaser.full_name} purchased {course_title} with your referral code. "
            f"A commission of {amount} has been added to your account and will be "
            "included in the next weekly payout.\n"
        )
        html = (
            f"<p>Hi {sponsor.full_name},</p>"
            f"<p><strong>{purchaser.full_name}</strong> purchased <strong>{course_title}</strong> "
            f"with your referral code.</p>"
            f"<p>A commission of <strong>{amount}</strong> has been added to your account and will be "
            "included in the next weekly payout.</p>"
        )
        return self._deliver(sponsor.email, subject, html, text)

    def payout_succeeded(self, user: User, payout: Payout) -> bool:
        amount = format_rupees(payout.net_amount)
        total = format_rupees(payout.total_amount)
        tds = format_rupees(payout.tds_amount)
        paid_on = format_display_date(payout.transaction_date)
        period = f"{format_display_date(payout.from_date)} to {format_display_date(payout.to_date)}"
        subject = f"Payout of {amount} credited"
        text = (
            f"Hi {user.full_name},\n\n"
            f"Your payout for {period} was credited on {paid_on}.\n"
            f"Total commission: {total}\n"
            f"TDS deducted: {tds}\n"
            f"Amount credited: {amount}\n"
            f"UTR: {payout.utr_number or '-'}\n"
        )
        html = (
            f"<p>Hi {user.full_name},</p>"
            f"<p>Your payout for {period} was credited on {paid_on}.</p>"
            "<table>"
            f"<tr><td>Total commission</td><td>{total}</td></tr>"
            f"<tr><td>TDS deducted</td><td>{tds}</td></tr>"
            f"<tr><td>Amount credited</td><td><strong>{amount}</strong></td></tr>"
            "</table>"
            f"<p>UTR: {payout.utr_number or '-'}</p>"
        )
        return self._deliver(user.email, subject, html, text)

    def payout_failed(self, user: User, payout: Payout) -> bool:
        amount = format_rupees(payout.net_amount)
        reason = payout.failure_reason or "Bank error"
        subject = f"Payout of {amount} could not be completed"
        text = (
            f"Hi {user.full_name},\n\n"
            f"The bank could not complete your payout of {amount}.\n"
            f"Reason: {reason}\n"
            "Please review your bank details; the amount will be carried to a later payout.\n"
        )
        html = (
            f"<p>Hi {user.full_name},</p>"
            f"<p>The bank could not complete your payout of <strong>{amount}</strong>.</p>"
            f"<p>Reason: {reason}</p>"
            "<p>Please review your bank details; the amount will be carried to a later payout.</p>"
        )
        return self._deliver(user.email, subject, html, text)
