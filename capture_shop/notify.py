"""EmailJS client for order confirmations."""

from __future__ import annotations
import logging
from typing import Any, Optional, Protocol

import httpx

from .errors import NotificationFailure

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, template_params: dict[str, Any]) -> None: ...


class EmailJSNotifier:
    """Sends a template email through the EmailJS REST API."""

    def __init__(
        self,
        service_id: str,
        template_id: str,
        user_id: str,
        access_token: Optional[str] = None,
        api_url: str = "https://api.emailjs.com/api/v1.0/email/send",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the notifier.

        Args:
            service_id: EmailJS service identifier
            template_id: EmailJS template identifier
            user_id: EmailJS account public key
            access_token: Optional private key, required when the account enforces it
            api_url: Send endpoint
            client: Shared HTTP client; one is created per call when omitted
        """
        self.service_id = service_id
        self.template_id = template_id
        self.user_id = user_id
        self.access_token = access_token
        self.api_url = api_url
        self.client = client

    def _payload(self, template_params: dict[str, Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "service_id": self.service_id,
            "template_id": self.template_id,
            "user_id": self.user_id,
            "template_params": template_params,
        }
        if self.access_token:
            payload["accessToken"] = self.access_token
        return payload

    async def send(self, template_params: dict[str, Any]) -> None:
        """
        Send one email.

        Raises:
            NotificationFailure: On transport errors or a non-2xx response
        """
        payload = self._payload(template_params)
        logger.info(f"Sending template {self.template_id} for order {template_params.get('order_id')}")
        try:
            if self.client is not None:
                response = await self.client.post(self.api_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(self.api_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"EmailJS rejected the message: {e.response.status_code} {e.response.text}")
            raise NotificationFailure(f"Email service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"EmailJS request failed: {e}")
            raise NotificationFailure(f"Email service unreachable: {e}") from e
