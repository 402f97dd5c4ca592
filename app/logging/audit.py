"""
Audit logging for tracking assistant actions.

SECURITY: Never log chat message text, email subjects or bodies, LLM prompts,
or LLM responses. Only log metadata (counts, intents, latencies, domains).

Usage:
    from app.logging.audit import audit
    audit.info("email.staged", recipient_count=1, attachment_count=0)
"""

import logging
from typing import Any


class AuditLogger:
    """Thin wrapper around logging that enforces structured action fields."""

    def __init__(self):
        self._logger = logging.getLogger("audit")

    def info(self, action: str, **fields: Any) -> None:
        self._logger.info(action, extra={"action": action, **fields})

    def warning(self, action: str, **fields: Any) -> None:
        self._logger.warning(action, extra={"action": action, **fields})

    def error(self, action: str, **fields: Any) -> None:
        self._logger.error(action, extra={"action": action, **fields})


audit = AuditLogger()


def email_domain(address: str) -> str:
    """Domain part of an address, safe to log in place of the address itself."""
    return address.split("@")[-1] if "@" in address else "unknown"
