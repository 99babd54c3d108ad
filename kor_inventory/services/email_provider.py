"""
Email Provider (SendGrid)

Mail transport for inventory alerts. `send()` reports delivery as a bool and
never raises, so callers can record the outcome in the notification log.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import httpx

from kor_inventory.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: List[str]
    from_email: str
    subject: str
    html: str
    text: Optional[str] = None
    categories: List[str] = field(default_factory=list)


class MailTransport(Protocol):
    async def send(self, message: EmailMessage) -> bool:
        ...


class SendGridMailTransport:
    """SendGrid v3 mail/send client."""

    BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_name: Optional[str] = None,
        dry_run: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = settings.SENDGRID_API_KEY if api_key is None else api_key
        self.from_name = from_name or settings.SENDGRID_FROM_NAME
        self.dry_run = settings.EMAIL_DRY_RUN if dry_run is None else dry_run
        self.timeout = timeout or settings.SENDGRID_TIMEOUT_SECONDS
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http_client

    async def close(self):
        """Explicit cleanup method."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def build_payload(self, message: EmailMessage) -> dict:
        payload = {
            "personalizations": [{
                "to": [{"email": address} for address in message.to],
            }],
            "from": {"email": message.from_email, "name": self.from_name},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text or message.subject},
                {"type": "text/html", "value": message.html},
            ],
        }
        if message.categories:
            payload["categories"] = message.categories
        return payload

    async def send(self, message: EmailMessage) -> bool:
        """Send one message to all recipients. Returns True on acceptance."""
        if not message.to:
            logger.warning("Email has no recipients, skipping send")
            return False

        if self.dry_run:
            logger.info(f"[DRY RUN] Email '{message.subject}' to {', '.join(message.to)}")
            return True

        if not self.api_key:
            logger.error("SendGrid API key not configured")
            return False

        http = await self._get_http_client()

        try:
            resp = await http.post(f"{self.BASE_URL}/mail/send", json=self.build_payload(message))

            if resp.status_code in (200, 202):
                logger.info(
                    f"Email sent to {', '.join(message.to)} "
                    f"(message id {resp.headers.get('X-Message-Id', 'n/a')})"
                )
                return True

            logger.error(f"SendGrid send failed: {resp.status_code} - {resp.text}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"SendGrid send exception: {e}")
            return False
