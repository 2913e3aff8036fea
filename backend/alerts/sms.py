"""SMS delivery for alerts through a Twilio-compatible REST gateway."""

import httpx
import structlog

from core.config import get_settings

logger = structlog.get_logger()

MAX_SMS_LENGTH = 320


def format_alert_sms(severity: str, title: str, forklift_id: str = "") -> str:
    unit = f" [{forklift_id}]" if forklift_id else ""
    return f"FleetPulse {severity.upper()}{unit}: {title}"[:MAX_SMS_LENGTH]


async def send_alert_sms(to_number: str, severity: str, title: str, forklift_id: str = "") -> bool:
    """Returns True if the gateway accepted the message."""
    settings = get_settings()
    if not settings.sms_gateway_url or not settings.sms_account_sid:
        logger.warning("sms.not_configured", to_number=to_number)
        return False

    url = f"{settings.sms_gateway_url.rstrip('/')}/Accounts/{settings.sms_account_sid}/Messages.json"
    data = {
        "To": to_number,
        "From": settings.sms_from_number,
        "Body": format_alert_sms(severity, title, forklift_id),
    }
    try:
        async with httpx.AsyncClient(timeout=settings.webhook_timeout_seconds) as client:
            response = await client.post(url, data=data, auth=(settings.sms_account_sid, settings.sms_auth_token))
        return 200 <= response.status_code < 300
    except httpx.HTTPError as exc:
        logger.warning("sms.send_failed", to_number=to_number, error=str(exc))
        return False
