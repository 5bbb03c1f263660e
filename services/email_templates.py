import os
from typing import Any, Dict, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import settings
from schemas.order import OrderOut

ORDER_CONFIRMATION_TEMPLATE = "emails/order_confirmation.txt"

# Plain-text templates are sent as-is, only markup gets escaped
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


def compose_order_confirmation(order: OrderOut) -> Tuple[str, str]:
    """Subject and body of the confirmation mail for `order`."""
    body = render_template(ORDER_CONFIRMATION_TEMPLATE, {
        "order": order,
        "currency": settings.CURRENCY,
        "app_name": settings.APP_NAME,
    })
    return f"Order confirmation {order.order_number}", body
