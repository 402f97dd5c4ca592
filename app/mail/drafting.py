"""
Email drafting helpers: recipient detection and resolution, and turning a
draft into the PendingEmail the router stages on the session.

Usage:
    name = extract_recipient_name("please email to John Smith about pricing")
    recipient = await resolve_recipient(directory, name)
    if recipient:
        pending = build_pending_email(subject, body, recipient, intent, attachments)
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from app.assistant.prompts import fill_name_placeholder
from app.assistant.schemas import Attachment, EmailDraft, PendingEmail
from app.leads.directory import LeadDirectory

# A message that mentions any of these might be an email request the
# classifier tagged as a query.
EMAIL_TRIGGER = re.compile(r"email|mail|send", re.IGNORECASE)

RECIPIENT_PHRASE = re.compile(
    r"(?:send mail to|write mail to|write email to|mail to|email to)\s+"
    r"([A-Za-z]+(?:\s[A-Za-z]+)?)",
    re.IGNORECASE,
)

ADDRESS = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class Recipient:
    """A resolved recipient: display name, address, and the lead if one matched."""
    name: str
    address: str
    lead: dict = field(default_factory=dict)


def looks_like_address(value: str) -> bool:
    return bool(ADDRESS.match(value.strip()))


def is_email_request(message: str) -> bool:
    return bool(EMAIL_TRIGGER.search(message))


def extract_recipient_name(message: str) -> Optional[str]:
    """Name after "mail to", "email to", "send mail to", ... or None."""
    match = RECIPIENT_PHRASE.search(message)
    return match.group(1) if match else None


def split_name(full_name: str) -> tuple[str, Optional[str]]:
    """First token, and the remaining tokens joined (None if there are none)."""
    tokens = full_name.split()
    if not tokens:
        return "", None
    return tokens[0], " ".join(tokens[1:]) or None


def lead_display_name(lead: dict) -> str:
    return f"{lead.get('firstName', '')} {lead.get('lastName', '')}".strip()


async def find_lead_by_name(
    directory: LeadDirectory, full_name: str, retry_first_name: bool = False
) -> Optional[dict]:
    """
    Case-insensitive exact match on first (and, if present, last) name.

    With retry_first_name, a miss on "First Second" is retried on "First"
    alone. The recipient phrase pattern can swallow the word after a single
    first name ("email to John about ...").
    """
    first, last = split_name(full_name)
    if not first:
        return None
    lead = await directory.find_one_by_name(first, last)
    if lead is None and last and retry_first_name:
        lead = await directory.find_one_by_name(first, None)
    return lead


async def resolve_recipient(
    directory: LeadDirectory,
    name_or_email: str,
    retry_first_name: bool = False,
) -> Optional[Recipient]:
    """An address is used as-is; a name is looked up in the lead directory."""
    value = (name_or_email or "").strip()
    if not value:
        return None
    if looks_like_address(value):
        return Recipient(name=value, address=value)

    lead = await find_lead_by_name(directory, value, retry_first_name=retry_first_name)
    if not lead or not lead.get("email"):
        return None
    return Recipient(name=lead_display_name(lead) or value, address=lead["email"], lead=lead)


def build_pending_email(
    subject: str,
    body: str,
    recipient: Recipient,
    intent: str,
    attachments: Optional[list[Attachment]] = None,
) -> PendingEmail:
    """A pending email bound to one resolved recipient."""
    first_name = recipient.lead.get("firstName", "") if recipient.lead else ""
    return PendingEmail(
        subject=subject,
        body=fill_name_placeholder(body, first_name),
        recipients=[recipient.address],
        intent=intent,
        attachments=list(attachments or []),
    )


def draft_for(pending: PendingEmail, recipient: Recipient) -> EmailDraft:
    return EmailDraft(
        subject=pending.subject,
        body=pending.body,
        to=recipient.address,
        recipient_name=recipient.name,
    )
