"""
BrokerDesk - SendGrid email service
- Application status updates (approved / rejected / ticket opened)
- One-time login codes
- New submission alerts for the review team
"""

import html
import logging
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

from config import SENDGRID_API_KEY, SENDER_EMAIL, ADMIN_ALERT_EMAIL, OTP_TTL_MINUTES

logger = logging.getLogger("email_service")


_LAYOUT = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; background-color: #f5f5f5; }}
        .container {{ max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; overflow: hidden; }}
        .header {{ background: {color}; color: white; padding: 20px; text-align: center; }}
        .content {{ padding: 20px; color: #333; }}
        .footer {{ padding: 12px 20px; font-size: 12px; color: #888; text-align: center; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h2>{title}</h2></div>
        <div class="content">{body}</div>
        <div class="footer">BrokerDesk - this is an automated message</div>
    </div>
</body>
</html>
"""

STATUS_COLORS = {
    "approved": "#16a34a",
    "rejected": "#dc2626",
    "opened": "#2563eb",
}


class EmailService:
    """SendGrid-backed transactional email"""

    def __init__(self):
        self.api_key = SENDGRID_API_KEY
        self.sender = SENDER_EMAIL
        self.alert_recipient = ADMIN_ALERT_EMAIL

    def _send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        """Send one email; False on any failure"""
        if not self.api_key:
            logger.error("SENDGRID_API_KEY not configured")
            return False

        try:
            message = Mail(
                from_email=Email(self.sender, "BrokerDesk"),
                to_emails=To(to_email),
                subject=subject,
                html_content=Content("text/html", html_content)
            )

            sg = SendGridAPIClient(self.api_key)
            response = sg.send(message)

            if response.status_code in [200, 202]:
                logger.info(f"Email sent to {to_email}: {subject}")
                return True
            else:
                logger.error(f"Email send error: {response.status_code}")
                return False

        except Exception as e:
            logger.error(f"Email send exception: {str(e)}")
            return False

    def render(self, title: str, body_html: str, status: str = "opened") -> str:
        return _LAYOUT.format(title=title, body=body_html, color=STATUS_COLORS.get(status, "#2563eb"))

    # ==================== STATUS UPDATES ====================

    def status_update_html(self, name: str, kind: str, status: str, reference: str,
                           reason: str = "", admin_notes: str = "") -> str:
        """Body for approved / rejected / opened notices"""
        greeting = f"<p>Hello {html.escape(name or 'there')},</p>"
        if status == "approved":
            lines = f"<p>Your {kind} application has been <strong>approved</strong>.</p>"
        elif status == "rejected":
            lines = f"<p>Your {kind} application was not approved.</p>"
            if reason:
                lines += f"<p><strong>Reason:</strong> {html.escape(reason)}</p>"
        else:
            lines = f"<p>Your {kind} has been opened and our team will get back to you.</p>"
        if admin_notes:
            lines += f"<p><strong>Notes:</strong> {html.escape(admin_notes)}</p>"
        lines += f"<p>Reference: <code>{html.escape(str(reference))}</code></p>"
        return self.render(f"{kind.capitalize()} {status}", greeting + lines, status)

    def send_status_update(self, to_email: str, subject: str, html_content: str) -> bool:
        return self._send_email(to_email, subject, html_content)

    # ==================== OTP ====================

    def send_otp(self, to_email: str, code: str, name: str = "") -> bool:
        body = (
            f"<p>Hello {html.escape(name or 'there')},</p>"
            f"<p>Your verification code is:</p>"
            f"<h1 style='letter-spacing: 6px;'>{code}</h1>"
            f"<p>It expires in {OTP_TTL_MINUTES} minutes.</p>"
        )
        return self._send_email(to_email, "Your BrokerDesk verification code", self.render("Verification code", body))

    # ==================== ADMIN ALERTS ====================

    def send_new_submission_alert(self, submission_type: str, doc_id: str, details: dict = None) -> bool:
        """Alert the review team; no-op without ADMIN_ALERT_EMAIL"""
        if not self.alert_recipient:
            return False

        details_html = ""
        if details:
            details_html = "<ul>"
            for key, value in details.items():
                details_html += f"<li><strong>{html.escape(str(key))}:</strong> {html.escape(str(value))}</li>"
            details_html += "</ul>"

        body = f"<p>A new {submission_type} submission is waiting for review.</p><p>ID: <code>{doc_id}</code></p>{details_html}"
        return self._send_email(
            self.alert_recipient,
            f"New {submission_type} submission",
            self.render(f"New {submission_type}", body),
        )


# Shared instance
email_service = EmailService()
