import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, List

from app.core.config import settings

logger = logging.getLogger(__name__)

CLUB_SIGNATURE = "Aurora Treasury"


def _send_email(to_email: str, subject: str, plain_text: str, html_text: str) -> None:
    """Low-level helper to send one email via SMTP."""
    if not all([settings.SMTP_HOST, settings.SMTP_USER, settings.SMTP_PASSWORD, settings.FROM_EMAIL]):
        logger.warning("SMTP not fully configured; skipping email to %s.", to_email)
        return

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = to_email
    if settings.REPLY_TO_EMAIL:
        msg["Reply-To"] = settings.REPLY_TO_EMAIL

    msg.attach(MIMEText(plain_text, "plain"))
    msg.attach(MIMEText(html_text, "html"))

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT or 587) as server:
        server.ehlo()
        server.starttls()
        server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.sendmail(settings.FROM_EMAIL, to_email, msg.as_string())


def _wrap_html(title: str, body_html: str) -> str:
    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; color: #1e3a5f; background: #f0f4ff; padding: 24px;">
      <div style="max-width: 480px; margin: 0 auto; background: #ffffff; border-radius: 12px;
                  border: 2px solid #bfdbfe; padding: 32px;">
        <h2 style="color: #1d4ed8; margin-bottom: 8px;">{title}</h2>
        {body_html}
        <p style="font-size: 12px; color: #94a3b8; margin-top: 24px;">{CLUB_SIGNATURE}</p>
      </div>
    </body>
    </html>
    """


def notify_safely(send: Callable, *args, **kwargs) -> None:
    """Fire-and-forget: a notification failure never undoes a committed change."""
    try:
        send(*args, **kwargs)
    except Exception:
        logger.exception("Notification %s failed", getattr(send, "__name__", send))


def send_payment_verified_email(member, record) -> None:
    """Tell a member their monthly fund payment was accepted."""
    if not member.email:
        return
    period = f"{record.month} {record.year}"
    subject = f"Group fund payment for {period} verified"
    plain_text = (
        f"Hello {member.name},\n\n"
        f"Your group fund payment of Rs {record.amount:,.2f} for {period} has been verified by the treasurer.\n"
        f"Reference: {record.payment_reference}\n\n"
        f"{CLUB_SIGNATURE}"
    )
    html_text = _wrap_html(
        "Payment Verified",
        f"<p>Hello {member.name},</p>"
        f"<p>Your group fund payment of <strong>&#8377;{record.amount:,.2f}</strong> for {period} "
        f"has been verified by the treasurer.</p>"
        f"<p style=\"font-size: 13px; color: #64748b;\">Reference: {record.payment_reference}</p>",
    )
    _send_email(member.email, subject, plain_text, html_text)


def send_payment_rejected_email(member, record, reason: str, resubmission: bool = False) -> None:
    """Tell a member their payment (or resubmitted proof) was rejected and why."""
    if not member.email:
        return
    period = f"{record.month} {record.year}"
    what = "resubmitted payment proof" if resubmission else "payment"
    subject = f"Group fund {what} for {period} rejected"
    plain_text = (
        f"Hello {member.name},\n\n"
        f"The treasurer rejected your {what} for {period}.\n"
        f"Reason: {reason}\n\n"
        f"You can upload new proof of payment from your dashboard.\n\n"
        f"{CLUB_SIGNATURE}"
    )
    html_text = _wrap_html(
        "Payment Rejected",
        f"<p>Hello {member.name},</p>"
        f"<p>The treasurer rejected your {what} for {period}.</p>"
        f"<p><strong>Reason:</strong> {reason}</p>"
        f"<p>You can upload new proof of payment from your dashboard.</p>",
    )
    _send_email(member.email, subject, plain_text, html_text)


def send_reconciliation_report(to_emails: List[str], failed_records: List[dict]) -> None:
    """Email treasurers the records the sweep just marked Failed."""
    if not failed_records:
        return

    subject = f"Group fund: {len(failed_records)} payment(s) marked failed"
    lines = ["The daily reconciliation marked these payments as Failed (deadline passed without confirmation):", ""]
    rows = ""
    for item in failed_records:
        lines.append(f"  - {item['member_name']} ({item['month']} {item['year']}): Rs {item['amount']:,.2f}")
        rows += (
            f'<tr><td style="padding:6px 12px;border-bottom:1px solid #e2e8f0;">{item["member_name"]}</td>'
            f'<td style="padding:6px 12px;border-bottom:1px solid #e2e8f0;">{item["month"]} {item["year"]}</td>'
            f'<td style="padding:6px 12px;border-bottom:1px solid #e2e8f0;text-align:right;">&#8377;{item["amount"]:,.2f}</td></tr>'
        )
    lines.append("")
    lines.append("This is an automated notification.")
    plain_text = "\n".join(lines)

    html_text = _wrap_html(
        "Reconciliation Report",
        f"""
        <table style="width:100%;border-collapse:collapse;font-size:14px;">
          <tr style="background:#eff6ff;">
            <th style="padding:8px 12px;text-align:left;">Member</th>
            <th style="padding:8px 12px;text-align:left;">Month</th>
            <th style="padding:8px 12px;text-align:right;">Amount</th>
          </tr>
          {rows}
        </table>""",
    )

    for email_addr in to_emails:
        try:
            _send_email(email_addr, subject, plain_text, html_text)
            logger.info("Reconciliation report sent to %s", email_addr)
        except Exception:
            logger.exception("Failed to send reconciliation report to %s", email_addr)
