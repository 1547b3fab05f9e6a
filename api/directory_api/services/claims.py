"""Admin review of agency claim requests.

Approval is a fixed sequence of independent writes (claim status, agency
ownership, requester role). There is no transaction around them; when a later
write fails the earlier ones are reverted one by one and a failed revert is
only logged. Audit logging and email delivery never affect the outcome.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from directory_api.services.email import ResendEmailClient
from directory_api.services.email_templates import claim_approved_email, claim_rejected_email
from directory_api.services.repository import (
    OPEN_CLAIM_STATUSES,
    PostgresRepository,
    RepositoryError,
    RepositoryNotFoundError,
)

logger = logging.getLogger(__name__)

APPROVED_MESSAGE = "Claim approved successfully. User role updated to agency_owner."
REJECTED_MESSAGE = "Claim rejected successfully. Requester will be notified."


class ClaimReviewError(Exception):
    """Base error for claim review failures."""


class ClaimNotFoundError(ClaimReviewError):
    pass


class ClaimAlreadyProcessedError(ClaimReviewError):
    def __init__(self, status: str) -> None:
        super().__init__(f"Claim has already been processed with status: {status}")
        self.status = status


class ClaimWriteError(ClaimReviewError):
    """Raised when one of the review writes fails; the message is client-facing."""


class ClaimReviewService:
    def __init__(
        self,
        repository: PostgresRepository,
        email_client: ResendEmailClient,
        *,
        site_url: str,
    ) -> None:
        self.repository = repository
        self.email_client = email_client
        self.site_url = site_url.rstrip("/")

    async def approve(self, *, claim_id: str, admin_id: str) -> dict[str, Any]:
        claim = await self._load_open_claim(claim_id)
        original_status = claim["status"]
        now = datetime.now(timezone.utc)

        try:
            updated = await self.repository.mark_claim_reviewed(
                claim_id=claim_id,
                status="approved",
                reviewed_by=admin_id,
                reviewed_at=now,
            )
        except RepositoryError as exc:
            logger.error("claim approval failed to update status claim_id=%s: %s", claim_id, exc)
            raise ClaimWriteError("Failed to update claim status") from exc

        try:
            await self.repository.set_agency_claimed(
                agency_id=claim["agency_id"],
                user_id=claim["user_id"],
                claimed_at=now,
            )
        except RepositoryError as exc:
            logger.error("claim approval failed to update agency claim_id=%s: %s", claim_id, exc)
            await self._revert_claim(claim_id, original_status)
            raise ClaimWriteError("Failed to update agency ownership") from exc

        try:
            await self.repository.set_profile_role(user_id=claim["user_id"], role="agency_owner")
        except RepositoryError as exc:
            logger.error("claim approval failed to update role claim_id=%s: %s", claim_id, exc)
            await self._revert_claim(claim_id, original_status)
            await self._revert_agency(claim["agency_id"])
            raise ClaimWriteError("Failed to update user role") from exc

        await self._audit(claim_id=claim_id, admin_id=admin_id, action="approved")
        await self._send_approval_email(claim)
        return updated

    async def reject(self, *, claim_id: str, admin_id: str, rejection_reason: str) -> dict[str, Any]:
        claim = await self._load_open_claim(claim_id)

        try:
            updated = await self.repository.mark_claim_reviewed(
                claim_id=claim_id,
                status="rejected",
                reviewed_by=admin_id,
                reviewed_at=datetime.now(timezone.utc),
                rejection_reason=rejection_reason,
            )
        except RepositoryError as exc:
            logger.error("claim rejection failed to update status claim_id=%s: %s", claim_id, exc)
            raise ClaimWriteError("Failed to update claim status") from exc

        await self._audit(claim_id=claim_id, admin_id=admin_id, action="rejected", notes=rejection_reason)
        await self._send_rejection_email(claim, rejection_reason)
        return updated

    async def _load_open_claim(self, claim_id: str) -> dict[str, Any]:
        try:
            claim = await self.repository.get_claim(claim_id)
        except RepositoryNotFoundError as exc:
            raise ClaimNotFoundError("Claim request not found") from exc
        if claim["status"] not in OPEN_CLAIM_STATUSES:
            raise ClaimAlreadyProcessedError(claim["status"])
        return claim

    async def _revert_claim(self, claim_id: str, original_status: str) -> None:
        try:
            await self.repository.revert_claim_review(claim_id=claim_id, status=original_status)
        except RepositoryError as exc:
            logger.error("rollback of claim status failed claim_id=%s: %s", claim_id, exc)

    async def _revert_agency(self, agency_id: str) -> None:
        try:
            await self.repository.clear_agency_claim(agency_id=agency_id)
        except RepositoryError as exc:
            logger.error("rollback of agency ownership failed agency_id=%s: %s", agency_id, exc)

    async def _audit(self, *, claim_id: str, admin_id: str, action: str, notes: str | None = None) -> None:
        try:
            await self.repository.insert_claim_audit_log(
                claim_id=claim_id,
                admin_id=admin_id,
                action=action,
                notes=notes,
            )
        except RepositoryError as exc:
            logger.error("claim audit log insert failed claim_id=%s action=%s: %s", claim_id, action, exc)

    async def _send_approval_email(self, claim: dict[str, Any]) -> None:
        agency = claim.get("agency")
        user = claim.get("user")
        if not self.email_client.configured or not agency or not user or not user.get("email"):
            logger.warning("approval email skipped claim_id=%s: missing email config or claim relations", claim["id"])
            return
        result = await self.email_client.send(
            claim_approved_email(
                recipient_email=user["email"],
                recipient_name=user.get("full_name"),
                agency_name=agency["name"],
                agency_slug=agency["slug"],
                site_url=self.site_url,
            )
        )
        if not result.sent:
            logger.warning("claim review email failed claim_id=%s reason=%s", claim["id"], result.reason)

    async def _send_rejection_email(self, claim: dict[str, Any], rejection_reason: str) -> None:
        agency = claim.get("agency")
        user = claim.get("user")
        if not self.email_client.configured or not agency or not user or not user.get("email"):
            logger.warning("rejection email skipped claim_id=%s: missing email config or claim relations", claim["id"])
            return
        result = await self.email_client.send(
            claim_rejected_email(
                recipient_email=user["email"],
                recipient_name=user.get("full_name"),
                agency_name=agency["name"],
                agency_slug=agency["slug"],
                rejection_reason=rejection_reason,
                site_url=self.site_url,
            )
        )
        if not result.sent:
            logger.warning("claim review email failed claim_id=%s reason=%s", claim["id"], result.reason)
