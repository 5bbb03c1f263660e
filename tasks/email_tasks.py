import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Dict

from celery import current_app

from core.config import settings
from schemas.order import OrderOut
from services.email_templates import compose_order_confirmation

logger = logging.getLogger(__name__)

PLACEHOLDER_PASSWORD = "your-gmail-app-password"


def smtp_configured() -> bool:
    return bool(settings.SMTP_PASSWORD) and settings.SMTP_PASSWORD != PLACEHOLDER_PASSWORD


def deliver_email(to_email: str, subject: str, body: str) -> bool:
    """Send one plain-text message over SMTP.

    Returns False without connecting when no SMTP credentials are configured.
    SMTP errors propagate to the caller.
    """
    if not smtp_configured():
        logger.debug("Email would be sent to %s (subject: %s); configure SMTP credentials to send", to_email, subject)
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM or settings.SMTP_USERNAME
    msg["To"] = to_email
    msg.set_content(body)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        server.starttls()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)

    logger.info("Email sent to %s", to_email)
    return True


@current_app.task(bind=True, max_retries=3)
def send_order_confirmation_task(self, order_data: Dict[str, Any]):
    """
    Render and send the confirmation mail for a placed order.
    `order_data` is the JSON form of the order; retries up to 3 times on SMTP failure.
    """
    order = OrderOut.model_validate(order_data)
    if settings.TESTING:
        logger.debug("Confirmation for order %s skipped in testing mode", order.order_number)
        return {"status": "debug", "order_number": order.order_number}

    subject, body = compose_order_confirmation(order)
    try:
        sent = deliver_email(order.customer_email, subject, body)
    except Exception as exc:
        if settings.DEBUG:
            logger.error("Failed to send confirmation for order %s: %s", order.order_number, exc)
            return {"status": "failed", "order_number": order.order_number, "error": str(exc)}

        countdown = min(2 ** self.request.retries, 60)
        raise self.retry(exc=exc, countdown=countdown)

    return {"status": "sent" if sent else "skipped", "order_number": order.order_number}
