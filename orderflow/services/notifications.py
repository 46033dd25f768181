"""
Outbound email collaborator.

The engine only relies on ``send(to, subject, html_body) -> SendResult``.
A failed send and a raised exception are treated the same by callers.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

from jinja2 import Environment, select_autoescape

from orderflow.app.config import settings

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None


class EmailSender(Protocol):
    def send(self, to: str, subject: str, html_body: str) -> SendResult: ...


class SmtpEmailSender:
    """Sends mail through an authenticated SMTP-over-SSL server (Gmail app password by default)."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        sender_name: str | None = None,
    ):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.user = user or settings.smtp_user
        self.password = password or settings.smtp_password
        self.sender_name = sender_name or settings.smtp_sender_name

    def send(self, to: str, subject: str, html_body: str) -> SendResult:
        if not self.user or not self.password:
            msg = "SMTP credentials are not configured"
            logger.error(msg)
            return SendResult(success=False, error=msg)

        message = MIMEMultipart("alternative")
        message["From"] = f'"{self.sender_name}" <{self.user}>'
        message["To"] = to
        message["Subject"] = subject
        message.attach(MIMEText(re.sub(r"<[^>]+>", "", html_body), "plain"))
        message.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=settings.smtp_timeout_seconds) as smtp:
                smtp.login(self.user, self.password)
                smtp.sendmail(self.user, [to], message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send to {to} failed: {e}")
            return SendResult(success=False, error=f"SMTP error: {e}")

        logger.info(f"Email sent to {to}: {subject}")
        return SendResult(success=True)


# ---------- Approval links ----------
def sign_approval_token(order_id: str, secret: str | None = None) -> str:
    key = (secret or settings.approval_link_secret).encode("utf-8")
    return hmac.new(key, f"approve:{order_id}".encode("utf-8"), hashlib.sha256).hexdigest()


def verify_approval_token(order_id: str, token: str | None, secret: str | None = None) -> bool:
    if not token:
        return False
    return hmac.compare_digest(sign_approval_token(order_id, secret), token)


def approval_url(order_id: str, base_url: str | None = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/approve/{order_id}?token={sign_approval_token(order_id)}"


_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))

APPROVAL_TEMPLATE = _env.from_string(
    """<h2>Purchase order {{ order_number }} awaiting approval</h2>
<p>Project: <strong>{{ project_name }}</strong><br>
Supplier: {{ supplier_name }}<br>
Date: {{ order_date }}<br>
Amount: <strong>{{ "%.2f"|format(total) }}</strong></p>
<table>
  <tr><th>Item</th><th>Qty</th><th>Price</th><th>Subtotal</th></tr>
  {% for line in lines %}
  <tr><td>{{ line.item_name }}</td><td>{{ line.quantity }} {{ line.unit }}</td>
      <td>{{ "%.2f"|format(line.unit_price) }}</td><td>{{ "%.2f"|format(line.subtotal) }}</td></tr>
  {% endfor %}
</table>
<p><a href="{{ approval_url }}">Review and approve the order</a></p>
"""
)


def render_approval_email(order) -> tuple[str, str]:
    subject = f"Approval required: purchase order {order.order_number}"
    body = APPROVAL_TEMPLATE.render(
        order_number=order.order_number,
        project_name=order.project_name,
        supplier_name=order.supplier_name or "",
        order_date=order.order_date.isoformat(),
        total=float(order.total),
        lines=[
            {
                "item_name": ln.item_name,
                "quantity": ln.quantity,
                "unit": ln.unit,
                "unit_price": float(ln.unit_price),
                "subtotal": float(ln.subtotal),
            }
            for ln in order.lines
        ],
        approval_url=approval_url(order.id),
    )
    return subject, body


def send_approval_request(sender: EmailSender, order, to: str | None = None) -> SendResult:
    """Send the approval email. Exceptions from the sender become a failed result."""
    subject, body = render_approval_email(order)
    recipient = to or settings.approval_recipient
    try:
        result = sender.send(recipient, subject, body)
    except Exception as e:
        logger.error(f"Approval email for order {order.id} raised: {e}")
        return SendResult(success=False, error=str(e))
    if result is None:
        return SendResult(success=False, error="Email sender returned no result")
    return result
