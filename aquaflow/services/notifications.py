"""Outbound notices to customers.

Delivery is simulated: the notice is logged and kept in ``outbox`` so an
operator (or a test) can read it back.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from aquaflow.schemas.entities import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Notice:
    to: str
    subject: str
    body: str
    created_at: datetime = field(default_factory=utcnow)


class SimulatedNotifier:
    def __init__(self):
        self.outbox: list[Notice] = []

    def send(self, to: str, subject: str, body: str) -> Notice:
        notice = Notice(to=to, subject=subject, body=body)
        self.outbox.append(notice)
        logger.info("notice queued to=%s subject=%r", to, subject)
        return notice

    def send_reset_code(self, email: str, code: str) -> Notice:
        return self.send(
            email,
            "AquaFlow password reset",
            f"Your password reset code is {code}.\nIf you did not ask for it, ignore this message.",
        )
