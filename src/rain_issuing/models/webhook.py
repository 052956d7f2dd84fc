"""Webhook payload models for rain-issuing."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from .base import RainModel


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_REVIEW = "inReview"


class UserWebhookBody(RainModel):
    id: str
    application_status: Optional[str] = None


class ComplianceWebhook(RainModel):
    """User resource webhook, e.g. ``{"resource": "user", "action": "updated", ...}``."""

    id: Optional[str] = None
    resource: str
    action: str
    body: UserWebhookBody

    @property
    def is_user_event(self) -> bool:
        return self.resource == "user"
