"""
Outbound email: rendering of the confirmation and receipt messages, and the SMTP
transport used to send them.
"""
import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape
from typing import List

from app.core.config import EMAIL_FROM, SMTP_HOST, SMTP_PASSWORD, SMTP_PORT, SMTP_USER
from app.models.event import Event, User
from app.models.order import Order

log = logging.getLogger("email")


class Mailer(ABC):

    @abstractmethod
    async def send(self, to: str, subject: str, html: str) -> None:
        pass


class SmtpMailer(Mailer):

    def __init__(self, host: str = SMTP_HOST, port: int = SMTP_PORT, user: str = SMTP_USER,
                 password: str = SMTP_PASSWORD, sender: str = EMAIL_FROM):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(message)

    async def send(self, to: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(html, subtype="html")
        await asyncio.to_thread(self._send_sync, message)
        log.info(f"Email '{subject}' sent to {to}")


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str


class RecordingMailer(Mailer):
    """Collects messages instead of sending them."""

    def __init__(self):
        self.outbox: List[SentEmail] = []

    async def send(self, to: str, subject: str, html: str) -> None:
        self.outbox.append(SentEmail(to=to, subject=subject, html=html))


# ----------- Templates -----------

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{title}</title></head>
<body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto;">
  <div style="background: #05213C; color: white; padding: 20px; text-align: center;"><h1>{heading}</h1></div>
  <p>Dear <strong>{username}</strong>,</p>
  <p>{intro}</p>
  <table style="width: 100%; border-collapse: collapse;">
{rows}
  </table>
  <p style="text-align: center;"><strong>{badge}</strong></p>
  <p>{outro}</p>
  <p>Best regards,<br>The Community Connect Team</p>
</body>
</html>
"""


def _rows(pairs) -> str:
    return "\n".join(
        f"    <tr><th style=\"text-align: left;\">{escape(label)}</th><td>{escape(str(value))}</td></tr>"
        for label, value in pairs
    )


def _event_rows(event: Event, order: Order) -> list:
    pairs = [
        ("Event Title", event.title),
        ("Date", event.starts_at.strftime("%A, %B %d, %Y")),
        ("Time", event.starts_at.strftime("%H:%M")),
        ("Location", event.location),
        ("Category", event.category),
        ("Number of Tickets", order.tickets),
    ]
    if order.special_requests:
        pairs.append(("Special Requests", order.special_requests))
    return pairs


def render_confirmation_email(user: User, event: Event, order: Order) -> tuple:
    subject = f"Registration Confirmed: {event.title}"
    pairs = _event_rows(event, order) + [("Total Amount", "Free")]
    html = _PAGE.format(
        title="Event Registration Confirmation",
        heading="Registration Confirmed!",
        username=escape(user.username),
        intro="Your registration for the following event has been confirmed. Thank you for joining us!",
        rows=_rows(pairs),
        badge=f"Confirmation #{order.confirmation_reference}",
        outro="If you have any questions, please don't hesitate to contact us.",
    )
    return subject, html


def render_receipt_email(user: User, event: Event, order: Order) -> tuple:
    subject = f"Receipt: Registration for {event.title}"
    pairs = _event_rows(event, order) + [
        ("Payment Method", order.payment_method or "Stripe"),
        ("Order Date", order.created_at.strftime("%m/%d/%Y")),
        ("Total Paid", f"${order.amount:.2f}"),
    ]
    html = _PAGE.format(
        title="Event Registration Receipt",
        heading="Payment Receipt",
        username=escape(user.username),
        intro="Thank you for your payment. Your registration for the following event is confirmed.",
        rows=_rows(pairs),
        badge=f"Receipt #{order.confirmation_reference}",
        outro="This serves as your official receipt. Please keep for your records.",
    )
    return subject, html
