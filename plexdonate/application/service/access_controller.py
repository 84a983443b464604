"""Plex access controller.

Turns "this donor should (not) have Plex access" into idempotent calls
against Plex, and owns the invite email flow. Provider failures are caught
here, logged and recorded in the audit trail; store failures propagate.
"""

from enum import Enum

import logfire
from pydantic import BaseModel

from plexdonate.adapter.error import ProviderError
from plexdonate.domain.error import ConflictError
from plexdonate.domain.model import Donor, DonorFields, Invite, InviteDraft
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.service import (
    AuditService,
    DonorService,
    InviteService,
    MailClient,
    Notifier,
    PlexClient,
    donor_share_state,
    relay_flags,
)
from plexdonate.domain.value import (
    CancelOutcome,
    DonorStatus,
    EmailEnvelope,
    PlexInviteResult,
    PlexShare,
    RevokeOutcome,
    ShareState,
)


class InviteOutcome(str, Enum):
    """What ``ensure_invite`` did."""

    SKIPPED = "skipped"
    REUSED = "reused"
    EMAIL_SENT = "email_sent"
    CREATED = "created"
    FAILED = "failed"


class AccessChange(str, Enum):
    """What ``ensure_revoked`` did."""

    PRESERVED = "preserved"
    REVOKED = "revoked"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    FAILED = "failed"


class InviteResult(BaseModel):
    """Outcome of an invite pass for one donor."""

    outcome: InviteOutcome
    donor: Donor
    invite: Invite | None = None
    reason: str | None = None


async def send_email(
    mail_client: MailClient, envelope: EmailEnvelope | None, **attributes
) -> bool:
    """Send an email, logging failures instead of raising.

    Returns:
        True if the email went out; False if there was nothing to send or
        the transport failed
    """
    if envelope is None:
        return False
    try:
        await mail_client.send(envelope)
    except ProviderError as e:
        logfire.warn(
            "Email delivery failed",
            template=envelope.template,
            error=str(e),
            **attributes,
        )
        return False
    return True


class AccessController:
    """Idempotent Plex share provisioning and revocation for donors."""

    def __init__(
        self,
        plex_client: PlexClient,
        mail_client: MailClient,
        notifier: Notifier,
        donor_service: DonorService,
        invite_service: InviteService,
        audit_service: AuditService,
    ) -> None:
        """Initialize access controller.

        Args:
            plex_client: Plex facade
            mail_client: Outbound mail transport
            notifier: Email composer
            donor_service: Donor domain service
            invite_service: Invite domain service
            audit_service: Audit trail
        """
        self.plex_client = plex_client
        self.mail_client = mail_client
        self.notifier = notifier
        self.donor_service = donor_service
        self.invite_service = invite_service
        self.audit_service = audit_service

    async def current_shares(self) -> list[PlexShare]:
        """Users and shares of the Plex server.

        Raises:
            ProviderError: If Plex cannot be read
        """
        return await self.plex_client.list_current_shares()

    async def share_state(
        self, donor: Donor, shares: list[PlexShare] | None = None
    ) -> ShareState:
        if shares is None:
            shares = await self.current_shares()
        invites = await self.invite_service.list_for_donor(donor.id)
        return donor_share_state(donor, shares, invites)

    async def _skip(
        self, donor: Donor, reason: str, invite: Invite | None = None, **payload
    ) -> InviteResult:
        logfire.info("Invite skipped", donor_id=donor.id, reason=reason)
        await self.audit_service.log(
            "invite.auto.skipped",
            donorId=donor.id,
            inviteId=invite.id if invite else None,
            reason=reason,
            **payload,
        )
        outcome = (
            InviteOutcome.REUSED
            if reason == "existing_invite_reused"
            else InviteOutcome.SKIPPED
        )
        return InviteResult(outcome=outcome, donor=donor, invite=invite, reason=reason)

    async def _fail(
        self, donor: Donor, reason: str, error: Exception, invite: Invite | None = None
    ) -> InviteResult:
        logfire.warn(
            "Automatic invite failed", donor_id=donor.id, reason=reason, error=str(error)
        )
        await self.audit_service.log(
            "invite.auto.failed",
            donorId=donor.id,
            inviteId=invite.id if invite else None,
            reason=reason,
            error=str(error),
        )
        return InviteResult(
            outcome=InviteOutcome.FAILED, donor=donor, invite=invite, reason=reason
        )

    async def ensure_invite(
        self, donor: Donor, source: str = "webhook", payment_id: str | None = None
    ) -> InviteResult:
        """Make sure an active donor has a Plex share or a delivered invite.

        Safe to call repeatedly: donors already on the server, donors with a
        pending share and donors whose invite email went out are skipped.

        Args:
            donor: Donor to provision
            source: Trigger recorded in audit events
            payment_id: Provider payment that triggered the pass, if any

        Returns:
            What was done, with the donor and invite after the pass
        """
        with logfire.span(
            "access_controller.ensure_invite", donor_id=donor.id, source=source
        ):
            if donor.status != DonorStatus.ACTIVE:
                return await self._skip(
                    donor, "status_not_active", status=donor.status.value
                )

            invite_email = donor.plex_invite_email
            if not invite_email:
                return await self._skip(donor, "missing_email")

            invites = await self.invite_service.list_for_donor(donor.id)

            if self.plex_client.is_configured:
                try:
                    shares = await self.current_shares()
                except ProviderError as e:
                    return await self._fail(donor, "plex_lookup_failed", e)

                state = donor_share_state(donor, shares, invites)
                if state == ShareState.SHARED:
                    donor = await self._detect_preexisting_access(donor, invites)
                    return await self._skip(donor, "already_on_server")
                if state == ShareState.PENDING:
                    return await self._skip(donor, "invite_pending")

            active = next((invite for invite in invites if invite.is_active), None)
            if (
                active is not None
                and active.is_usable
                and not self.invite_service.is_stale(active)
            ):
                if active.email_sent_at:
                    return await self._skip(donor, "existing_invite_reused", active)
                sent = await self._send_invite_email(donor, active, source)
                return InviteResult(
                    outcome=InviteOutcome.EMAIL_SENT if sent else InviteOutcome.FAILED,
                    donor=donor,
                    invite=active,
                    reason=None if sent else "email_failed",
                )

            if not self.plex_client.is_configured:
                return await self._skip(donor, "plex_not_configured")

            return await self._issue_invite(donor, invite_email, active, source, payment_id)

    async def _detect_preexisting_access(
        self, donor: Donor, invites: list[Invite]
    ) -> Donor:
        """Flag access granted outside this system.

        A donor found on the server with no invite on file and no paid
        payment recorded was shared with by the owner directly.
        """
        if donor.had_preexisting_access or invites:
            return donor
        if await self.donor_service.has_recorded_payment(donor.id):
            return donor
        donor = await self.donor_service.update_donor(
            donor, DonorFields(had_preexisting_access=True)
        )
        logfire.info("Pre-existing Plex access detected", donor_id=donor.id)
        await self.audit_service.log(
            "donor.preexisting_access.detected",
            donorId=donor.id,
            email=donor.email,
            plexAccountId=donor.plex_account_id,
            **relay_flags(donor),
        )
        return donor

    async def _issue_invite(
        self,
        donor: Donor,
        invite_email: str,
        stale: Invite | None,
        source: str,
        payment_id: str | None,
    ) -> InviteResult:
        try:
            result = await self.plex_client.create_invite(
                invite_email, friendly_name=donor.name
            )
        except ProviderError as e:
            return await self._fail(donor, "plex_invite_failed", e, stale)

        note = "Auto-generated after successful payment"
        if payment_id:
            note = f"{note} #{payment_id}"

        if stale is not None:
            invite = await self.invite_service.update_invite(
                stale.model_copy(update=self._invite_fields(donor, result, invite_email))
            )
            created = True
        else:
            draft = InviteDraft(
                donor_id=donor.id,
                note=note,
                **self._invite_fields(donor, result, invite_email),
            )
            try:
                invite, created = await self.invite_service.create_invite(draft)
            except ConflictError as e:
                await self._cancel_quietly(donor, result.plex_invite_id)
                return await self._fail(donor, "invite_conflict", e)

        if not created:
            # Another delivery created the active invite first
            if result.plex_invite_id and result.plex_invite_id != invite.plex_invite_id:
                await self._cancel_quietly(donor, result.plex_invite_id)
            return await self._skip(donor, "concurrent_invite", invite)

        await self.audit_service.log(
            "invite.auto.generated",
            donorId=donor.id,
            inviteId=invite.id,
            plexInviteId=invite.plex_invite_id,
            refreshed=stale is not None,
            source=source,
        )

        if await self._send_invite_email(donor, invite, source):
            return InviteResult(outcome=InviteOutcome.CREATED, donor=donor, invite=invite)

        if invite.plex_invite_id:
            if await self._cancel_quietly(donor, invite.plex_invite_id):
                await self.invite_service.revoke(invite.id)
        return InviteResult(
            outcome=InviteOutcome.FAILED,
            donor=donor,
            invite=invite,
            reason="email_failed",
        )

    @staticmethod
    def _invite_fields(
        donor: Donor, result: PlexInviteResult, invite_email: str
    ) -> dict:
        return {
            "plex_invite_id": result.plex_invite_id,
            "invite_url": result.invite_url,
            "invite_status": result.status,
            "invited_at": utcnow(),
            "plex_invited_at": result.invited_at,
            "shared_libraries": result.shared_libraries,
            "recipient_email": invite_email,
            "plex_account_id": donor.plex_account_id,
            "plex_email": donor.plex_email,
            "email_sent_at": None,
        }

    async def _send_invite_email(self, donor: Donor, invite: Invite, source: str) -> bool:
        to = donor.email or invite.recipient_email
        if not to:
            return False
        envelope = self.notifier.invite(
            to=to,
            invite_url=invite.invite_url,
            name=donor.name,
            subscription_id=donor.billing_subscription_id,
        )
        if not await send_email(self.mail_client, envelope, donor_id=donor.id):
            await self.audit_service.log(
                "invite.auto.email_failed", donorId=donor.id, inviteId=invite.id
            )
            return False
        await self.invite_service.mark_email_sent(invite.id)
        await self.audit_service.log(
            "invite.auto.email_sent",
            donorId=donor.id,
            inviteId=invite.id,
            source=source,
            **relay_flags(donor),
        )
        return True

    async def _cancel_quietly(self, donor: Donor, plex_invite_id: str | None) -> bool:
        """Cancel a Plex invite, returning whether it is gone."""
        if not plex_invite_id:
            return False
        try:
            outcome = await self.plex_client.cancel_invite(plex_invite_id)
        except ProviderError as e:
            logfire.warn(
                "Failed to cancel Plex invite",
                donor_id=donor.id,
                plex_invite_id=plex_invite_id,
                error=str(e),
            )
            return False
        await self.audit_service.log(
            "plex.invite.cancelled",
            donorId=donor.id,
            plexInviteId=plex_invite_id,
            outcome=outcome.value,
        )
        return True

    async def ensure_revoked(
        self, donor: Donor, reason: str = "revoked", context: str = "system"
    ) -> AccessChange:
        """Remove a donor's Plex access unless it predates this system.

        Args:
            donor: Donor losing access
            reason: Why access is being removed, e.g. ``access_expired``
            context: What triggered the removal, e.g. ``scheduled-job``

        Returns:
            What happened to the donor's access
        """
        with logfire.span(
            "access_controller.ensure_revoked",
            donor_id=donor.id,
            reason=reason,
            context=context,
        ):
            if donor.had_preexisting_access:
                logfire.info("Plex access preserved", donor_id=donor.id)
                await self.audit_service.log(
                    "plex.access.preserved",
                    donorId=donor.id,
                    reason=reason,
                    context=context,
                )
                return AccessChange.PRESERVED

            invite = await self.invite_service.get_latest_active_for_donor(donor.id)
            if not (donor.plex_account_id or donor.plex_invite_email):
                return AccessChange.SKIPPED

            try:
                outcome = await self.plex_client.revoke_user(
                    plex_account_id=donor.plex_account_id,
                    email=donor.plex_invite_email,
                )
            except ProviderError as e:
                logfire.warn(
                    "Failed to revoke Plex access", donor_id=donor.id, error=str(e)
                )
                await self.audit_service.log(
                    "plex.access.revoke_failed",
                    donorId=donor.id,
                    reason=reason,
                    context=context,
                    error=str(e),
                )
                return AccessChange.FAILED

            if outcome == RevokeOutcome.SKIPPED:
                return AccessChange.SKIPPED

            if invite is not None:
                if outcome == RevokeOutcome.SUCCESS:
                    await self.invite_service.mark_plex_revoked(invite.id)
                if invite.plex_invite_id:
                    await self._cancel_pending_invite(donor, invite)
                if outcome != RevokeOutcome.SUCCESS:
                    await self.invite_service.revoke(invite.id)

            if outcome == RevokeOutcome.NOT_FOUND:
                logfire.info("Plex user already gone", donor_id=donor.id)
                return AccessChange.NOT_FOUND

            await self.audit_service.log(
                "plex.access.revoked",
                donorId=donor.id,
                email=donor.email,
                plexAccountId=donor.plex_account_id,
                reason=reason,
                context=context,
            )
            await send_email(
                self.mail_client,
                self.notifier.admin_plex_revoked(donor, reason=reason, context=context),
                donor_id=donor.id,
            )
            return AccessChange.REVOKED

    async def _cancel_pending_invite(self, donor: Donor, invite: Invite) -> None:
        try:
            outcome = await self.plex_client.cancel_invite(invite.plex_invite_id)
        except ProviderError as e:
            logfire.warn(
                "Failed to cancel Plex invite automatically",
                donor_id=donor.id,
                invite_id=invite.id,
                error=str(e),
            )
            return
        if outcome == CancelOutcome.CANCELLED:
            await self.audit_service.log(
                "plex.invite.cancelled", donorId=donor.id, inviteId=invite.id
            )

    async def sync_donor_share(self, donor: Donor, shares: list[PlexShare]) -> bool:
        """Forget the Plex identity of a donor who left the server.

        Donors with an outstanding invite and no linked account are left
        alone; their share has not been accepted yet.

        Returns:
            True if the donor's Plex identity was cleared
        """
        if not donor.has_plex_identity:
            return False
        if donor_share_state(donor, shares) != ShareState.ABSENT:
            return False
        if not donor.plex_account_id:
            invite = await self.invite_service.get_latest_active_for_donor(donor.id)
            if invite is not None:
                return False

        await self.donor_service.update_donor(
            donor, DonorFields(plex_account_id=None, plex_email=None)
        )
        logfire.info("Plex identity cleared", donor_id=donor.id)
        await self.audit_service.log(
            "plex.access.synced",
            donorId=donor.id,
            plexAccountId=donor.plex_account_id,
            plexEmail=donor.plex_email,
            action="cleared",
        )
        return True
