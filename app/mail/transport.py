"""
Outbound mail transport over Microsoft Graph.

The assistant sends as a fixed mailbox (settings.mail_sender) using an
app-only token from the MSAL client-credentials flow, so no user has to be
signed in for a confirmed draft to go out.

Usage:
    transport = GraphMailTransport()
    info = await transport.send(
        to="jane@example.com",
        subject="Hello",
        html="<p>Hi</p>",
        attachments=[OutboundAttachment("deck.pdf", "/uploads/deck.pdf", "application/pdf")],
    )
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol

import httpx
from msal import ConfidentialClientApplication

from app.config import settings
from app.logging.audit import audit, email_domain

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    """Raised when one email can't be handed to the mail service."""
    pass


@dataclass
class OutboundAttachment:
    filename: str
    path: str
    content_type: str = "application/octet-stream"
    content_id: Optional[str] = None  # Set for inline images referenced as cid:


@dataclass
class DeliveryInfo:
    recipient: str
    status_code: int
    request_id: str = ""


class MailTransport(Protocol):
    async def send(
        self, to: str, subject: str, html: str, attachments: list[OutboundAttachment]
    ) -> DeliveryInfo: ...


# Cache the MSAL app instance (thread-safe, keeps its own token cache)
_msal_app: Optional[ConfidentialClientApplication] = None


def get_msal_app() -> ConfidentialClientApplication:
    global _msal_app
    if _msal_app is None:
        _msal_app = ConfidentialClientApplication(
            client_id=settings.azure_client_id,
            client_credential=settings.azure_client_secret,
            authority=f"https://login.microsoftonline.com/{settings.azure_tenant_id}",
        )
    return _msal_app


async def acquire_app_token() -> str:
    """
    Get an app-only Graph token. MSAL serves it from cache until it expires.

    Raises:
        MailDeliveryError: if Entra ID refuses the client credentials or
            cannot be reached.
    """
    try:
        result = await asyncio.to_thread(
            get_msal_app().acquire_token_for_client, scopes=settings.graph_scopes
        )
    except Exception as e:
        logger.error(
            "mail.token_failed",
            extra={"action": "mail.token_failed", "error": f"{type(e).__name__}: {e}"},
            exc_info=True,
        )
        raise MailDeliveryError(f"Could not acquire Graph token: {e}") from e

    if "access_token" in result:
        return result["access_token"]

    error = result.get("error_description", result.get("error", "Unknown error"))
    logger.error(
        "mail.token_failed",
        extra={"action": "mail.token_failed", "error": error},
    )
    raise MailDeliveryError(f"Could not acquire Graph token: {error}")


def build_graph_attachment(attachment: OutboundAttachment) -> dict:
    try:
        content = Path(attachment.path).read_bytes()
    except OSError as e:
        raise MailDeliveryError(f"Attachment {attachment.filename} is not readable: {e}") from e

    payload = {
        "@odata.type": "#microsoft.graph.fileAttachment",
        "name": attachment.filename,
        "contentType": attachment.content_type,
        "contentBytes": base64.b64encode(content).decode("ascii"),
    }
    if attachment.content_id:
        payload["isInline"] = True
        payload["contentId"] = attachment.content_id
    return payload


class GraphMailTransport:
    """Sends HTML email through POST /users/{sender}/sendMail."""

    def __init__(
        self,
        sender: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        token_provider: Optional[Callable[[], Awaitable[str]]] = None,
    ):
        self._sender = sender or settings.mail_sender
        self._base = settings.graph_base_url
        self._http = http_client or httpx.AsyncClient(timeout=settings.mail_timeout_seconds)
        self._token_provider = token_provider or acquire_app_token

    async def aclose(self) -> None:
        await self._http.aclose()

    async def send(
        self, to: str, subject: str, html: str, attachments: list[OutboundAttachment]
    ) -> DeliveryInfo:
        """
        Send one email to one recipient.

        Raises:
            MailDeliveryError: on token, attachment, or HTTP failure.
        """
        start = time.monotonic()
        message = {
            "message": {
                "subject": subject,
                "body": {"contentType": "html", "content": html},
                "toRecipients": [{"emailAddress": {"address": to}}],
                "attachments": [build_graph_attachment(a) for a in attachments],
            },
            "saveToSentItems": True,
        }

        token = await self._token_provider()

        try:
            resp = await self._http.post(
                f"{self._base}/users/{self._sender}/sendMail",
                json=message,
                headers={"Authorization": f"Bearer {token}"},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "mail.send.failed",
                extra={
                    "action": "mail.send.failed",
                    "recipient_domain": email_domain(to),
                    "status_code": e.response.status_code,
                    "response_body": e.response.text[:500],
                },
            )
            raise MailDeliveryError(f"Graph sendMail returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(
                "mail.send.failed",
                extra={
                    "action": "mail.send.failed",
                    "recipient_domain": email_domain(to),
                    "error": str(e),
                },
            )
            raise MailDeliveryError(f"Graph sendMail failed: {e}") from e

        audit.info(
            "mail.sent",
            recipient_domain=email_domain(to),
            attachment_count=len(attachments),
            latency_ms=int((time.monotonic() - start) * 1000),
        )
        return DeliveryInfo(
            recipient=to,
            status_code=resp.status_code,
            request_id=resp.headers.get("request-id", ""),
        )
