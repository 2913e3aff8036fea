"""
Email Delivery for alerts.
"""

import sendgrid
import structlog
from sendgrid.helpers.mail import Mail

from core.config import get_settings

logger = structlog.get_logger()


def render_alert_email(alert_type: str, severity: str, title: str, message: str, forklift_id: str = "") -> tuple[str, str]:
    """Return (subject, html_content) for an alert email."""
    label = alert_type.replace("_", " ").title()
    subject = f"[{severity.upper()}] FleetPulse Alert: {title}"

    html_content = f"""
    <div style="font-family: Inter, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background: #0f172a; color: white; padding: 24px; border-radius: 12px 12px 0 0;">
        <h1 style="margin: 0; font-size: 20px;">FleetPulse Alert</h1>
      </div>
      <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0;">
        <div style="background: {'#fef2f2' if severity == 'critical' else '#fff7ed'};
                    border-left: 4px solid {'#dc2626' if severity == 'critical' else '#f59e0b'};
                    padding: 16px; border-radius: 0 8px 8px 0; margin-bottom: 16px;">
          <p style="margin: 0; font-weight: 600; color: #1e293b;">
            {severity.upper()} - {label}
          </p>
        </div>
        <p style="color: #334155; line-height: 1.6;">{message or title}</p>
        {'<p style="color: #64748b;"><strong>Unit:</strong> ' + forklift_id + '</p>' if forklift_id else ''}
      </div>
    </div>
    """
    return subject, html_content


async def send_alert_email(
    to_email: str,
    alert_type: str,
    severity: str,
    title: str,
    message: str = "",
    forklift_id: str = "",
) -> bool:
    """
    Send alert notification email via SendGrid.

    Only sends for high/critical severity to avoid alert fatigue.
    Returns True if sent successfully.
    """
    if severity not in ("high", "critical"):
        return False

    settings = get_settings()
    subject, html_content = render_alert_email(alert_type, severity, title, message, forklift_id)

    try:
        sg = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
        email = Mail(
            from_email=settings.alert_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=html_content,
        )
        response = sg.send(email)
        return response.status_code in (200, 201, 202)
    except Exception as exc:  # noqa: BLE001
        logger.warning("email.send_failed", to_email=to_email, error=str(exc))
        return False
