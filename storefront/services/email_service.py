"""
Email service for order confirmations.
Uses Flask-Mail for SMTP delivery; a disabled or unconfigured mailer never
breaks checkout.
"""
import logging
from html import escape

from flask import current_app
from flask_mail import Mail, Message

from storefront.utils.units import format_cents

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """Check if mail is properly configured and enabled."""
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def send_email(to: str, subject: str, text: str, html: str) -> dict:
    """
    Send a transactional email.

    Returns:
        {'skipped': True} when mail is disabled or sending failed,
        {'skipped': False} once the message was handed to the SMTP server
    """
    if not _mail_enabled():
        logger.warning(f"[MAIL DISABLED] Email skipped for {to}")
        return {'skipped': True}

    try:
        msg = Message(subject=subject, recipients=[to], body=text, html=html)
        mail.send(msg)
        logger.info(f"[EMAIL] Email sent to {to}")
        return {'skipped': False}

    except Exception as e:
        logger.exception(f"[EMAIL] Failed to send email to {to}: {e}")
        return {'skipped': True}


def build_order_email(public_id: str, first_name: str, items, total_cents: int, currency: str):
    """
    Plain text and HTML bodies of the order confirmation.

    Args:
        items: iterable of (title, qty, unit_price_cents)
    """
    currency = currency.upper()
    lines = "\n".join(
        f"- {title} x{qty} ({format_cents(unit_price)} {currency})"
        for title, qty, unit_price in items
    )
    items_html = "".join(
        f"<li>{escape(title)} x{qty} ({format_cents(unit_price)} {currency})</li>"
        for title, qty, unit_price in items
    )
    total = format_cents(total_cents)

    text = (
        f"Bonjour {first_name},\n\n"
        f"Merci pour votre commande {public_id}.\n\n"
        f"Articles:\n{lines}\n\n"
        f"Total: {total} {currency}\n\n"
        "Nous vous tiendrons informe des prochaines etapes.\n"
    )
    html = f"""
    <p>Bonjour {escape(first_name)},</p>
    <p>Merci pour votre commande <strong>{public_id}</strong>.</p>
    <p>Articles:</p>
    <ul>{items_html}</ul>
    <p>Total: <strong>{total} {currency}</strong></p>
    <p>Nous vous tiendrons informe des prochaines etapes.</p>
    """
    return text, html


def send_order_confirmation(order) -> dict:
    items = [(item.title_snapshot, item.qty, item.unit_price_cents_snapshot) for item in order.items]
    customer = order.customer
    text, html = build_order_email(
        public_id=order.public_id,
        first_name=customer.first_name or '',
        items=items,
        total_cents=order.total_cents,
        currency=order.currency,
    )
    return send_email(
        to=customer.email,
        subject=f"Confirmation de commande {order.public_id}",
        text=text,
        html=html,
    )
