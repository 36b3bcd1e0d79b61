"""
Investor e-mail notifications for confirmed and cancelled investments.

Sending is best-effort from the workflow's point of view: the dispatcher
raises :class:`NotificationError` on failure and the confirmation service
logs and swallows it.
"""

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from email.message import EmailMessage
from email.utils import formataddr
from html import escape
from typing import Optional, Protocol, Union

from investment_platform.core.config import Settings

logger = logging.getLogger(__name__)

CONFIRMATION_SUBJECT = "Investment Confirmed - RWA"
CANCELLATION_SUBJECT = "Investment Cancelled - RWA"


class NotificationError(Exception):
    kind = "notification_failed"


@dataclass
class InvestmentEmailDetails:
    """Everything an investor e-mail shows.  Mint fields are set only after a successful mint."""

    investor_name: str
    investment_id: str
    amount: Decimal
    bonds: int
    opportunity_title: str
    status: str
    date: Union[date, datetime]
    transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    mint_tx_hash: Optional[str] = None
    contract_address: Optional[str] = None
    wallet_address: Optional[str] = None
    explorer_url: Optional[str] = None
    reason: Optional[str] = None


class NotificationDispatcher(Protocol):
    async def send_confirmation(self, email: str, details: InvestmentEmailDetails) -> None:
        ...

    async def send_cancellation(self, email: str, details: InvestmentEmailDetails) -> None:
        ...


# ── Formatting helpers ──


def format_amount(amount: Decimal) -> str:
    """``Decimal("12500")`` → ``"12,500.00"``."""
    return f"{Decimal(amount):,.2f}"


def format_payment_method(method: Optional[str]) -> str:
    """``"bank_transfer"`` → ``"Bank Transfer"``."""
    if not method:
        return "Not specified"
    return " ".join(word.capitalize() for word in str(method).split("_"))


def shorten_address(address: Optional[str]) -> str:
    if not address:
        return ""
    return f"{address[:6]}...{address[-4:]}"


def shorten_tx_hash(tx_hash: Optional[str]) -> str:
    if not tx_hash:
        return ""
    return f"{tx_hash[:10]}...{tx_hash[-8:]}"


def format_date(value: Union[date, datetime]) -> str:
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y %I:%M %p")
    return value.strftime("%B %d, %Y")


def _row(label: str, value: str) -> str:
    return (
        f"<tr><td style=\"padding:4px 12px 4px 0;color:#666\">{escape(label)}</td>"
        f"<td style=\"padding:4px 0\"><strong>{escape(value)}</strong></td></tr>"
    )


def _summary_rows(details: InvestmentEmailDetails) -> str:
    rows = [
        _row("Investment ID", details.investment_id),
        _row("Opportunity", details.opportunity_title),
        _row("Amount", f"${format_amount(details.amount)}"),
        _row("Bonds", str(details.bonds)),
        _row("Payment method", format_payment_method(details.payment_method)),
        _row("Date", format_date(details.date)),
        _row("Status", details.status.upper()),
    ]
    if details.transaction_id:
        rows.insert(1, _row("Transaction ID", details.transaction_id))
    return "".join(rows)


def render_confirmation_html(details: InvestmentEmailDetails, frontend_url: str) -> str:
    blockchain = ""
    if details.mint_tx_hash:
        link = ""
        if details.explorer_url:
            link = (
                f"<p><a href=\"{escape(details.explorer_url)}\">"
                "View the transaction on the block explorer</a></p>"
            )
        blockchain = (
            "<h3>On-chain record</h3><table>"
            + _row("Transaction", shorten_tx_hash(details.mint_tx_hash))
            + _row("Bond contract", shorten_address(details.contract_address))
            + _row("Your wallet", shorten_address(details.wallet_address))
            + "</table>"
            + link
        )
    return (
        f"<p>Hi {escape(details.investor_name)},</p>"
        f"<p>Your investment in <strong>{escape(details.opportunity_title)}</strong> "
        "has been confirmed.</p>"
        f"<table>{_summary_rows(details)}</table>"
        f"{blockchain}"
        f"<p><a href=\"{escape(frontend_url.rstrip('/'))}/dashboard\">Go to your dashboard</a></p>"
        f"<p style=\"color:#999\">&copy; {datetime.now().year} RWA Investments</p>"
    )


def render_cancellation_html(details: InvestmentEmailDetails, frontend_url: str) -> str:
    reason = ""
    if details.reason:
        reason = f"<p>Reason: {escape(details.reason)}</p>"
    return (
        f"<p>Hi {escape(details.investor_name)},</p>"
        f"<p>Your investment in <strong>{escape(details.opportunity_title)}</strong> "
        "has been cancelled. No funds were committed.</p>"
        f"{reason}"
        f"<table>{_summary_rows(details)}</table>"
        f"<p><a href=\"{escape(frontend_url.rstrip('/'))}/dashboard\">Go to your dashboard</a></p>"
        f"<p style=\"color:#999\">&copy; {datetime.now().year} RWA Investments</p>"
    )


# ── SMTP implementation ──


class SmtpNotificationDispatcher:
    """
    Sends HTML e-mails through an SMTP relay.

    ``smtplib`` is blocking, so each send runs on a worker thread via
    ``asyncio.to_thread``; the event loop keeps serving other requests.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        sender: str,
        sender_name: str = "",
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        frontend_url: str = "http://localhost:3000",
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.sender_name = sender_name
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.frontend_url = frontend_url
        self.timeout = timeout

    async def send_confirmation(self, email: str, details: InvestmentEmailDetails) -> None:
        html = render_confirmation_html(details, self.frontend_url)
        await self._send(email, CONFIRMATION_SUBJECT, html)
        logger.info("Investment confirmation sent to %s", email)

    async def send_cancellation(self, email: str, details: InvestmentEmailDetails) -> None:
        html = render_cancellation_html(details, self.frontend_url)
        await self._send(email, CANCELLATION_SUBJECT, html)
        logger.info("Investment cancellation sent to %s", email)

    def _build_message(self, to: str, subject: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.sender_name, self.sender))
        msg["To"] = to
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(html, subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls(context=ssl.create_default_context())
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)

    async def _send(self, to: str, subject: str, html: str) -> None:
        msg = self._build_message(to, subject, html)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Could not send '{subject}' to {to}: {exc}") from exc


def build_notification_dispatcher(config: Settings) -> Optional[SmtpNotificationDispatcher]:
    """Return the configured dispatcher, or ``None`` when e-mail is disabled."""
    if not config.EMAIL_ENABLED:
        return None
    return SmtpNotificationDispatcher(
        config.SMTP_HOST,
        config.SMTP_PORT,
        sender=config.SMTP_FROM,
        sender_name=config.SMTP_FROM_NAME,
        user=config.SMTP_USER,
        password=config.SMTP_PASSWORD,
        use_tls=config.SMTP_USE_TLS,
        frontend_url=config.FRONTEND_URL,
    )
