import logging

from core.config import settings
from schemas.order import OrderOut
from services.email_templates import compose_order_confirmation
from tasks.email_tasks import deliver_email, send_order_confirmation_task

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str) -> None:
    """Send one message right away. SMTP failures are logged, not raised."""
    try:
        deliver_email(to_email, subject, body)
    except Exception as e:
        logger.error("Email sending to %s failed: %s", to_email, e)


def send_order_confirmation(order: OrderOut) -> None:
    """Email the customer a summary of a freshly placed order.

    Queued to Celery when enabled, otherwise rendered and sent in-process.
    Runs after the response is sent; a failure here is logged and never
    affects the order itself.
    """
    try:
        if settings.EMAIL_USE_CELERY:
            try:
                send_order_confirmation_task.delay(order.model_dump(mode="json"))
                logger.info("Confirmation for order %s queued to Celery", order.order_number)
                return
            except Exception as e:
                logger.warning("Celery not available, falling back to direct email sending: %s", e)

        subject, body = compose_order_confirmation(order)
        send_email(order.customer_email, subject, body)
    except Exception:
        logger.exception("Could not send confirmation for order %s", order.order_number)
