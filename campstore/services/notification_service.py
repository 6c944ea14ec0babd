"""
Email notifications for store staff.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import logging
from flask import current_app, has_app_context
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def send_low_stock_alert(product_name: str, product_type: str, remaining: int) -> bool:
    """
    Email the configured recipients that a product is running low.

    Returns True if the alert was sent (or intentionally skipped),
    False if sending failed. Never raises: a failed alert must not
    undo the order that triggered it.
    """
    if not has_app_context():
        logger.warning(f"[EMAIL] No app context, low stock alert for '{product_name}' skipped")
        return False

    recipients = current_app.config.get('LOW_STOCK_ALERT_RECIPIENTS') or []
    if not recipients:
        logger.info(f"[EMAIL] No recipients configured, low stock alert for '{product_name}' skipped")
        return True

    if not _mail_enabled():
        logger.warning(f"[MAIL DISABLED] Low stock alert skipped for '{product_name}'")
        return True

    threshold = current_app.config.get('LOW_STOCK_THRESHOLD', 5)
    try:
        msg = Message(
            subject=f"Low Stock Alert - {product_name}",
            recipients=recipients,
            html=f"""
            <h2>Low Stock Alert</h2>
            <p><strong>Product:</strong> {product_name}</p>
            <p><strong>Type:</strong> {product_type}</p>
            <p><strong>Current Stock:</strong> {remaining}</p>
            <p style="color: red; font-weight: bold;">
              This product's stock has fallen to or below the threshold of {threshold} units.
            </p>
            <hr>
            <p style="font-size: 12px; color: #666;">
              Automated alert from the Camp Store inventory system.
            </p>
            """,
            body=f"{product_name} ({product_type}) has {remaining} units left."
        )
        mail.send(msg)
        logger.info(f"[EMAIL] Low stock alert sent for {product_type}: {product_name}")
        return True
    except Exception as e:
        logger.error(f"[EMAIL] Failed to send low stock alert for '{product_name}': {e}")
        return False
