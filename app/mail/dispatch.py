"""
Email dispatch for confirmed drafts.

Every outgoing email gets an HTML body built from the plain-text draft and the
company signature image attached inline. A confirmed draft is sent one
recipient at a time; failures are counted per recipient rather than aborting
the batch.
"""

import asyncio
import html
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.assistant.schemas import Attachment, PendingEmail
from app.config import settings
from app.logging.audit import audit, email_domain
from app.mail.transport import DeliveryInfo, MailDeliveryError, MailTransport, OutboundAttachment

logger = logging.getLogger(__name__)

SIGNATURE_CID = "signature_img"
SIGNATURE_FILENAME = "email-signature.jpeg"


def render_html(text: str) -> str:
    """Plain text → HTML: escape, newlines to <br>, signature image below."""
    body = html.escape(text).replace("\r\n", "\n").replace("\n", "<br>")
    return (
        f"{body}<br><br>"
        f'<img src="cid:{SIGNATURE_CID}" alt="Signature" style="width:300px; height:auto;" />'
    )


@dataclass
class DispatchOutcome:
    """Which recipients of a confirmed draft actually got the email."""
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return len(self.sent)

    @property
    def all_sent(self) -> bool:
        return not self.failed and bool(self.sent)


class EmailDispatcher:
    """Sends drafts through a MailTransport, always with the signature attached."""

    def __init__(
        self,
        transport: MailTransport,
        signature_path: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._transport = transport
        self._signature_path = signature_path or settings.signature_image_path
        self._timeout = timeout_seconds or settings.mail_timeout_seconds

    def _attachments(self, staged: list[Attachment]) -> list[OutboundAttachment]:
        files = [
            OutboundAttachment(filename=a.filename, path=a.path, content_type=a.mimetype)
            for a in staged
        ]
        files.append(
            OutboundAttachment(
                filename=SIGNATURE_FILENAME,
                path=self._signature_path,
                content_type="image/jpeg",
                content_id=SIGNATURE_CID,
            )
        )
        return files

    async def dispatch(
        self,
        address: str,
        subject: str,
        body: str,
        attachments: list[Attachment],
    ) -> DeliveryInfo:
        """
        Send one email.

        Raises:
            MailDeliveryError: if the transport fails or exceeds the timeout.
        """
        try:
            return await asyncio.wait_for(
                self._transport.send(
                    to=address,
                    subject=subject,
                    html=render_html(body),
                    attachments=self._attachments(attachments),
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise MailDeliveryError(f"Mail send timed out after {self._timeout}s") from e

    async def send_all(self, pending: PendingEmail) -> DispatchOutcome:
        """Send a confirmed draft to each recipient; count what actually went out."""
        outcome = DispatchOutcome()

        for recipient in pending.recipients:
            try:
                await self.dispatch(recipient, pending.subject, pending.body, pending.attachments)
                outcome.sent.append(recipient)
            except MailDeliveryError as e:
                outcome.failed.append(recipient)
                logger.error(
                    "email.dispatch_failed",
                    extra={
                        "action": "email.dispatch_failed",
                        "recipient_domain": email_domain(recipient),
                        "error": str(e),
                    },
                )
            except Exception as e:
                # Any other failure still counts against this recipient only.
                outcome.failed.append(recipient)
                logger.error(
                    "email.dispatch_failed",
                    extra={
                        "action": "email.dispatch_failed",
                        "recipient_domain": email_domain(recipient),
                        "error": f"{type(e).__name__}: {e}",
                    },
                    exc_info=True,
                )

        audit.info(
            "email.dispatched",
            intent=pending.intent,
            sent_count=outcome.sent_count,
            failed_count=len(outcome.failed),
            attachment_count=len(pending.attachments),
        )
        return outcome
