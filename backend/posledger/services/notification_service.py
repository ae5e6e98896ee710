# Overview: Outbound notifications (low-stock alerts) with fire-and-forget delivery.

from __future__ import annotations

import smtplib
import threading
from email.message import EmailMessage

from flask import current_app


def build_low_stock_message(product_name: str, current_stock: int, threshold: int, *, sender: str,
                            recipient: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = f"Low stock alert: {product_name}"
    msg["From"] = sender
    msg["To"] = recipient
    msg.set_content(
        f"Stock for '{product_name}' is running low.\n\n"
        f"Current stock: {current_stock}\n"
        f"Alert threshold: {threshold}\n\n"
        "Please reorder soon."
    )
    return msg


def send_low_stock_alert(product_name: str, current_stock: int, threshold: int) -> bool:
    """
    Dispatch a low-stock alert.

    Returns True when a delivery was handed to a background sender, False
    when alerts are disabled or no mail server/recipient is configured.
    Never raises: delivery failures are logged by the sender thread and
    must not affect the stock change that triggered the alert.
    """
    app = current_app._get_current_object()
    config = app.config

    if not config.get("LOW_STOCK_ALERTS_ENABLED", True):
        return False

    server = config.get("MAIL_SERVER")
    recipient = config.get("LOW_STOCK_ALERT_RECIPIENT")
    if not server or not recipient:
        app.logger.warning(
            "Low stock: %s has %s units (threshold %s); no mail sink configured",
            product_name, current_stock, threshold,
        )
        return False

    msg = build_low_stock_message(
        product_name, current_stock, threshold,
        sender=config.get("MAIL_SENDER", "posledger@localhost"),
        recipient=recipient,
    )
    port = int(config.get("MAIL_PORT", 25))
    timeout = float(config.get("MAIL_TIMEOUT_SECONDS", 10))

    def _deliver():
        try:
            with smtplib.SMTP(server, port, timeout=timeout) as smtp:
                smtp.send_message(msg)
            app.logger.info("Low stock alert sent for %s", product_name)
        except (OSError, smtplib.SMTPException):
            app.logger.exception("Failed to send low stock alert for %s", product_name)

    threading.Thread(target=_deliver, name="low-stock-alert", daemon=True).start()
    return True
