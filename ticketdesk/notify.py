"""
Buyer email and operator chat notifications.

Everything here is best-effort: a failed delivery is logged and dropped, the
ticket has already been committed when these run.
"""
from __future__ import annotations
import html

import httpx
import structlog

from .config import Settings
from .model.db import Ticket

log = structlog.get_logger(__name__)


def ticket_email_html(ticket: Ticket) -> str:
    code = html.escape(ticket.ticket_code)
    return (
        "<html><body>"
        "<p>Thank you for your purchase!</p>"
        f"<p>Your ticket code: <b>{code}</b></p>"
        "<p>Show the attached QR code at the entrance.</p>"
        "</body></html>"
    )


class Notifier:
    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self.http = http
        self.settings = settings

    async def notify_buyer(self, ticket: Ticket) -> bool:
        s = self.settings
        if not s.mail_enabled:
            log.info("notify_buyer_skipped", reason="mail not configured",
                     email=ticket.email)
            return False

        # data:image/png;base64,<payload>
        qr_b64 = ticket.qr.split(",", 1)[-1]
        body = {
            "sender": {"name": s.mail_from_name, "email": s.mail_from},
            "to": [{"email": ticket.email}],
            "subject": "Your ticket",
            "htmlContent": ticket_email_html(ticket),
            "attachment": [
                {"name": f"{ticket.ticket_code}.png", "content": qr_b64},
            ],
        }
        headers = {
            "accept": "application/json",
            "api-key": s.mail_api_key,
        }
        return await self._post(
            "notify_buyer", s.mail_api_url, body, headers,
            email=ticket.email, ticket_code=ticket.ticket_code,
        )

    async def notify_operator(self, text: str) -> bool:
        s = self.settings
        if not s.telegram_enabled:
            log.info("notify_operator_skipped", reason="chat not configured")
            return False
        url = f"{s.telegram_api_url}/bot{s.telegram_bot_token}/sendMessage"
        return await self._post(
            "notify_operator", url,
            {"chat_id": s.telegram_chat_id, "text": text}, None,
        )

    async def _post(self, what: str, url: str, body: dict,
                    headers: dict | None, **ctx) -> bool:
        log.info(f"{what}_attempt", **ctx)
        try:
            r = await self.http.post(url, json=body, headers=headers)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.warning("notify_failed", target=what, error=str(e), **ctx)
            return False
        except Exception:
            # never propagate: the caller's work is already durable
            log.exception("notify_failed", target=what, **ctx)
            return False
        log.info(f"{what}_sent", **ctx)
        return True


def ticket_summary(ticket: Ticket) -> str:
    return (
        f"New ticket {ticket.ticket_code}\n"
        f"Email: {ticket.email}\n"
        f"Session: {ticket.session_id}"
    )


def signup_summary(number: int, name: str, email: str, phone: str) -> str:
    return (
        f"New signup #{number}\n"
        f"Name: {name}\n"
        f"Email: {email}\n"
        f"Phone: {phone}"
    )
