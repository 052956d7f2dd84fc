"""Read-only compliance gate consulted before card issuance.

Approval decisions are made by the issuer; this process only mirrors the
latest application status per user, typically fed by user webhooks.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from .exceptions import UserNotApprovedError, ValidationError
from .models.webhook import ApplicationStatus, ComplianceWebhook

logger = logging.getLogger(__name__)


class ComplianceGate(Protocol):
    def is_user_approved(self, user_id: str) -> bool: ...


class ComplianceRegistry:
    """In-memory ComplianceGate keyed by user id."""

    def __init__(self, approved_users: Optional[Mapping[str, str]] = None) -> None:
        self._statuses: Dict[str, str] = {}
        for user_id, status in (approved_users or {}).items():
            self.set_status(user_id, status)

    def set_status(self, user_id: str, application_status: Union[str, ApplicationStatus]) -> None:
        status = _normalize(application_status)
        previous = self._statuses.get(user_id)
        self._statuses[user_id] = status
        if previous != status:
            logger.info("User %s application status: %s -> %s", user_id, previous, status)

    def status_of(self, user_id: str) -> Optional[str]:
        return self._statuses.get(user_id)

    def is_user_approved(self, user_id: str) -> bool:
        return self._statuses.get(user_id) == ApplicationStatus.APPROVED.value

    def require_approved(self, user_id: str) -> None:
        if not self.is_user_approved(user_id):
            raise UserNotApprovedError(user_id, self._statuses.get(user_id))

    def apply_webhook(self, payload: Union[ComplianceWebhook, Mapping[str, Any]]) -> bool:
        """Apply a user webhook. Returns False for events about other resources.

        Expected shape::

            {"resource": "user", "action": "updated",
             "body": {"id": "...", "applicationStatus": "approved"}}
        """
        if not isinstance(payload, ComplianceWebhook):
            try:
                payload = ComplianceWebhook.model_validate(payload)
            except ValueError as e:
                raise ValidationError(f"Malformed webhook payload: {e}", field="webhook") from e
        if not payload.is_user_event or payload.body.application_status is None:
            return False
        self.set_status(payload.body.id, payload.body.application_status)
        return True


def _normalize(status: Union[str, ApplicationStatus]) -> str:
    value = status.value if isinstance(status, ApplicationStatus) else str(status)
    # The API has used both "inReview" and "inreview"
    if value.lower() == ApplicationStatus.IN_REVIEW.value.lower():
        return ApplicationStatus.IN_REVIEW.value
    return value.lower() if value.lower() in {s.value for s in ApplicationStatus} else value
