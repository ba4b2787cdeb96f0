"""Recovery email composition and dispatch."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from cart_recovery_service.config import Settings
from cart_recovery_service.infrastructure.database.models import AbandonedCart
from email_worker.services import EmailDeliveryError, EmailSender

logger = structlog.get_logger()

STEP_SUBJECTS: dict[int, str] = {
    1: "You left something in your cart at {store_name}",
    2: "Your cart at {store_name} is still waiting",
    3: "Last chance to complete your order at {store_name}",
}


def format_money(amount: float | None, currency: str | None = None) -> str:
    return f"{(amount or 0):,.2f} {currency or ''}".strip()


# Jinja env
_templates_dir = Path(__file__).resolve().parent.parent / "templates" / "emails"
_jinja_env = Environment(
    loader=FileSystemLoader(_templates_dir),
    autoescape=select_autoescape(["html", "xml"]),
)
_jinja_env.filters["money"] = format_money


def render_email(template_name: str, **context: Any) -> str:
    return _jinja_env.get_template(template_name).render(**context)


def summarize_lines(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Cart lines with quantity and line total for the items table."""
    lines = []
    for item in items:
        quantity = int(item.get("quantity") or 1)
        lines.append(
            {
                "name": str(item.get("name", "")),
                "quantity": quantity,
                "line_total": float(item.get("price") or 0) * quantity,
            }
        )
    return lines


@dataclass
class RecoveryMessage:
    """A composed recovery email."""

    to_email: str
    subject: str
    html_content: str


class RecoveryEmailSender:
    """Composes and sends the recovery email for one cart and step."""

    def __init__(self, email_sender: EmailSender, settings: Settings):
        self.email_sender = email_sender
        self.settings = settings

    def restore_url(self, cart: AbandonedCart) -> str:
        return f"{self.settings.restore_base_url.rstrip('/')}/{cart.restore_key}"

    def compose(self, cart: AbandonedCart, step: int) -> RecoveryMessage:
        step = step if step in STEP_SUBJECTS else max(STEP_SUBJECTS)
        html_content = render_email(
            f"recovery_step_{step}.html",
            customer_email=cart.email or "",
            cart_items=summarize_lines(cart.cart_items or []),
            cart_total=format_money(cart.total, cart.currency),
            currency=cart.currency,
            restore_url=self.restore_url(cart),
            store_name=self.settings.store_name,
            store_url=self.settings.store_url,
        )
        return RecoveryMessage(
            to_email=cart.email or "",
            subject=STEP_SUBJECTS[step].format(store_name=self.settings.store_name),
            html_content=html_content,
        )

    async def send(self, cart: AbandonedCart, step: int) -> bool:
        """
        Send the step's recovery email.

        Returns:
            bool: True only if the transport confirmed dispatch
        """
        if not cart.email:
            return False

        message = self.compose(cart, step)
        try:
            result = await self.email_sender.send_email(
                to_email=message.to_email,
                subject=message.subject,
                html_content=message.html_content,
                from_email=self.settings.email_from_address,
                from_name=self.settings.email_from_name,
                metadata={"cart_token": cart.cart_token, "step": step},
            )
        except EmailDeliveryError as e:
            logger.warning(
                "Recovery email failed",
                cart_token=cart.cart_token,
                step=step,
                error=str(e),
            )
            return False

        sent = bool(result.get("success"))
        logger.info("Recovery email dispatched", cart_token=cart.cart_token, step=step, sent=sent)
        return sent
