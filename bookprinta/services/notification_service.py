# FILE: bookprinta/services/notification_service.py
"""Best-effort outbound notifications: Resend email and Infobip WhatsApp.

Nothing in here raises. Each send returns True/False and logs its own
failure, so a broken channel never touches payment state.
"""
import asyncio
import html
import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from bookprinta.core.config import (
    FRONTEND_URL,
    RESEND_API_KEY,
    PAYMENTS_FROM_EMAIL,
    ADMIN_NOTIFICATION_EMAILS,
    INFOBIP_BASE_URL,
    INFOBIP_API_KEY,
    INFOBIP_WHATSAPP_FROM,
    ADMIN_WHATSAPP_NUMBERS,
)

logger = logging.getLogger("bookprinta.notifications")

RESEND_API_URL = "https://api.resend.com/emails"
SEND_TIMEOUT_SECONDS = 15

_SIGNUP_WHATSAPP = {
    "en": "Hi {name}, your BookPrinta payment was received. Finish setting up your account here: {url}",
    "fr": "Bonjour {name}, votre paiement BookPrinta a été reçu. Finalisez votre compte ici : {url}",
    "es": "Hola {name}, recibimos tu pago de BookPrinta. Completa tu cuenta aquí: {url}",
}

_SIGNUP_SUBJECT = {
    "en": "Finish setting up your BookPrinta account",
    "fr": "Finalisez votre compte BookPrinta",
    "es": "Completa tu cuenta de BookPrinta",
}


def normalize_phone(value: Optional[str]) -> str:
    """Digits only, keeping a leading + when present."""
    trimmed = (value or "").strip()
    if not trimmed:
        return ""
    if trimmed.startswith("+"):
        digits = re.sub(r"\D", "", trimmed[1:])
        return f"+{digits}" if digits else ""
    return re.sub(r"\D", "", trimmed)


def _money(amount: Any, currency: str) -> str:
    return f"{currency} {Decimal(str(amount)):,.2f}"


class NotificationService:
    def __init__(
        self,
        resend_api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        admin_emails: Optional[List[str]] = None,
        infobip_base_url: Optional[str] = None,
        infobip_api_key: Optional[str] = None,
        whatsapp_from: Optional[str] = None,
        admin_whatsapp_numbers: Optional[List[str]] = None,
        frontend_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.resend_api_key = RESEND_API_KEY if resend_api_key is None else resend_api_key
        self.from_email = from_email or PAYMENTS_FROM_EMAIL
        self.admin_emails = ADMIN_NOTIFICATION_EMAILS if admin_emails is None else admin_emails
        base = INFOBIP_BASE_URL if infobip_base_url is None else infobip_base_url
        if base and not base.startswith("http"):
            base = f"https://{base}"
        self.infobip_base_url = base.rstrip("/")
        self.infobip_api_key = INFOBIP_API_KEY if infobip_api_key is None else infobip_api_key
        self.whatsapp_from = INFOBIP_WHATSAPP_FROM if whatsapp_from is None else whatsapp_from
        self.admin_whatsapp_numbers = ADMIN_WHATSAPP_NUMBERS if admin_whatsapp_numbers is None else admin_whatsapp_numbers
        self.frontend_url = (frontend_url or FRONTEND_URL).rstrip("/")
        self._transport = transport

    def build_signup_url(self, token: str, locale: str = "en") -> str:
        return f"{self.frontend_url}/{locale or 'en'}/signup/finish?token={token}"

    # ---------- channels ----------

    async def send_email(self, to: List[str], subject: str, body_html: str) -> bool:
        if not self.resend_api_key:
            logger.warning("RESEND_API_KEY not set; email %r skipped", subject)
            return False
        if not to:
            return False
        try:
            async with httpx.AsyncClient(timeout=SEND_TIMEOUT_SECONDS, transport=self._transport) as client:
                resp = await client.post(
                    RESEND_API_URL,
                    json={"from": self.from_email, "to": to, "subject": subject, "html": body_html},
                    headers={"Authorization": f"Bearer {self.resend_api_key}"},
                )
            if resp.status_code >= 400:
                logger.error("Resend email %r failed (%s): %s", subject, resp.status_code, resp.text[:500])
                return False
            return True
        except Exception as e:
            logger.error("Resend email %r failed: %s", subject, e)
            return False

    async def send_whatsapp(self, phone: Optional[str], text: str, kind: str = "message") -> bool:
        if not (self.infobip_base_url and self.infobip_api_key and self.whatsapp_from):
            logger.warning("Infobip WhatsApp config missing; %s WhatsApp skipped", kind)
            return False
        to = normalize_phone(phone)
        if not to:
            logger.warning("Invalid phone number for %s WhatsApp delivery", kind)
            return False
        try:
            async with httpx.AsyncClient(timeout=SEND_TIMEOUT_SECONDS, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.infobip_base_url}/whatsapp/1/message/text",
                    json={"from": self.whatsapp_from, "to": to, "content": {"text": text}},
                    headers={
                        "Authorization": f"App {self.infobip_api_key}",
                        "Accept": "application/json",
                    },
                )
            if resp.status_code >= 400:
                logger.error("Infobip %s WhatsApp failed (%s): %s", kind, resp.status_code, resp.text[:500])
                return False
            return True
        except Exception as e:
            logger.error("Infobip %s WhatsApp failed: %s", kind, e)
            return False

    # ---------- payment flows ----------

    async def send_signup_link(
        self,
        *,
        email: str,
        name: str,
        locale: str,
        token: str,
        phone: Optional[str] = None,
    ) -> Dict[str, bool]:
        locale = locale if locale in _SIGNUP_WHATSAPP else "en"
        url = self.build_signup_url(token, locale)
        body = (
            f"<p>Hi {html.escape(name)},</p>"
            "<p>Your payment was received and your order is being prepared.</p>"
            f'<p><a href="{html.escape(url)}">Finish setting up your account</a></p>'
            "<p>This link expires in 24 hours.</p>"
        )
        email_task = self.send_email([email], _SIGNUP_SUBJECT[locale], body)
        if phone:
            wa_task = self.send_whatsapp(phone, _SIGNUP_WHATSAPP[locale].format(name=name, url=url), "signup link")
            email_ok, wa_ok = await asyncio.gather(email_task, wa_task)
        else:
            email_ok, wa_ok = await email_task, False

        if not email_ok and not wa_ok:
            logger.warning("Signup link for %s was not delivered on any channel", email)
        return {"email_delivered": email_ok, "whatsapp_delivered": wa_ok}

    async def send_bank_transfer_received(
        self, *, email: str, name: str, amount: Any, currency: str, reference: str
    ) -> bool:
        body = (
            f"<p>Hi {html.escape(name)},</p>"
            f"<p>We received your bank transfer of {_money(amount, currency)} (ref {html.escape(reference)}).</p>"
            "<p>Our team will confirm it shortly and you will get a link to set up your account.</p>"
        )
        return await self.send_email([email], "We received your bank transfer", body)

    async def send_admin_bank_transfer_email(
        self, *, payer_name: str, payer_email: str, amount: Any, currency: str, reference: str, receipt_url: Optional[str]
    ) -> bool:
        if not self.admin_emails:
            logger.warning("ADMIN_NOTIFICATION_EMAILS not set; admin bank transfer email skipped")
            return False
        receipt = f'<p><a href="{html.escape(receipt_url)}">View receipt</a></p>' if receipt_url else ""
        body = (
            "<p>A new bank transfer is awaiting approval.</p>"
            f"<p>{html.escape(payer_name)} ({html.escape(payer_email)}) sent {_money(amount, currency)}.</p>"
            f"<p>Reference: {html.escape(reference)}</p>{receipt}"
        )
        return await self.send_email(self.admin_emails, f"Bank transfer awaiting approval: {reference}", body)

    async def send_admin_bank_transfer_whatsapp(
        self, *, payer_name: str, amount: Any, currency: str, reference: str
    ) -> bool:
        if not self.admin_whatsapp_numbers:
            logger.warning("ADMIN_WHATSAPP_NUMBERS not set; admin bank transfer WhatsApp skipped")
            return False
        text = f"New bank transfer awaiting approval: {payer_name} sent {_money(amount, currency)} (ref {reference})."
        results = await asyncio.gather(
            *(self.send_whatsapp(number, text, "admin bank transfer") for number in self.admin_whatsapp_numbers)
        )
        return any(results)
