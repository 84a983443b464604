"""Reconciler.

Applies uniform subscription events to donor state and drives the side
effects of each transition: Plex access, donor emails, admin notifications
and the audit trail. Every entry point holds the per-subscription lock so
events for one subscription apply in arrival order.
"""

from datetime import datetime
from typing import Any

import logfire
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from plexdonate.adapter.error import ProviderError
from plexdonate.application.error import StoreError
from plexdonate.domain.error import NotFoundError
from plexdonate.domain.model import (
    AccessExpired,
    Donor,
    DonorFields,
    PaymentDraft,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionActivated,
    SubscriptionEvent,
    SubscriptionTerminated,
    SubscriptionUpdated,
)
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.service import (
    AuditService,
    DonorService,
    InviteService,
    MailClient,
    Notifier,
    PaymentProviderClient,
    PayPalClient,
    StripeClient,
    relay_flags,
)
from plexdonate.domain.value import (
    EXPIRABLE_STATUSES,
    DonorStatus,
    Provider,
    Subscriber,
    SubscriptionSnapshot,
)

from .access_controller import (
    AccessChange,
    AccessController,
    InviteResult,
    send_email,
)
from .locks import SubscriptionLocks


class ReconcileResult(BaseModel):
    """Outcome of applying one event."""

    outcome: str
    donor: Donor | None = None
    invite: InviteResult | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Reconciler:
    """Single entry point for webhook and sweeper events."""

    def __init__(
        self,
        donor_service: DonorService,
        invite_service: InviteService,
        audit_service: AuditService,
        access_controller: AccessController,
        notifier: Notifier,
        mail_client: MailClient,
        paypal_client: PayPalClient,
        stripe_client: StripeClient,
        locks: SubscriptionLocks,
    ) -> None:
        self.donor_service = donor_service
        self.invite_service = invite_service
        self.audit_service = audit_service
        self.access_controller = access_controller
        self.notifier = notifier
        self.mail_client = mail_client
        self.paypal_client = paypal_client
        self.stripe_client = stripe_client
        self.locks = locks

    async def handle(self, event: SubscriptionEvent) -> ReconcileResult:
        """Apply an event under its subscription lock.

        Provider failures inside individual effects are caught, logged and
        audited; only lock and store failures escape.

        Args:
            event: Translated provider or sweeper event

        Returns:
            What the event did

        Raises:
            LockTimeoutError: If the subscription lock is not acquired in time
            StoreError: If the store failed mid-event
        """
        handlers = {
            "subscription_activated": self._activated,
            "subscription_updated": self._updated,
            "subscription_terminated": self._terminated,
            "payment_succeeded": self._payment_succeeded,
            "payment_failed": self._payment_failed,
            "access_expired": self._access_expired,
        }
        async with self.locks.hold(event.lock_key):
            with logfire.span(
                "reconciler.handle",
                kind=event.kind,
                provider=event.provider.value,
                subscription_id=event.subscription_id,
            ):
                try:
                    return await handlers[event.kind](event)
                except SQLAlchemyError as e:
                    logfire.error(
                        "Store failed while reconciling",
                        kind=event.kind,
                        subscription_id=event.subscription_id,
                        error=str(e),
                    )
                    raise StoreError(f"Store failed while handling {event.kind}") from e

    def _client(self, provider: Provider) -> PaymentProviderClient:
        if provider == Provider.STRIPE:
            return self.stripe_client
        return self.paypal_client

    async def _find_donor(self, event: SubscriptionEvent) -> Donor | None:
        donor = await self.donor_service.find_by_subscription(
            event.provider, event.subscription_id
        )
        if donor is None and event.provider == Provider.STRIPE and event.customer_id:
            donor = await self.donor_service.find_by_stripe_customer(event.customer_id)
        return donor

    async def _fetch_snapshot(
        self, provider: Provider, subscription_id: str
    ) -> SubscriptionSnapshot | None:
        client = self._client(provider)
        if not client.is_configured:
            return None
        try:
            return await client.get_subscription(subscription_id)
        except ProviderError as e:
            logfire.warn(
                "Failed to fetch subscription",
                provider=provider.value,
                subscription_id=subscription_id,
                error=str(e),
            )
            return None

    async def _resolve_subscriber(
        self, event: SubscriptionEvent, subscriber: Subscriber
    ) -> Subscriber:
        """Fill a missing subscriber email from the provider's subscription."""
        if subscriber.email:
            return subscriber
        snapshot = await self._fetch_snapshot(event.provider, event.subscription_id)
        if snapshot is None or not snapshot.subscriber.email:
            return subscriber
        return Subscriber(
            email=snapshot.subscriber.email,
            name=subscriber.name or snapshot.subscriber.name,
        )

    @staticmethod
    def _contact_values(event: SubscriptionEvent, subscriber: Subscriber) -> dict[str, Any]:
        values: dict[str, Any] = {"payment_provider": event.provider}
        if subscriber.email:
            values["email"] = subscriber.email
        if subscriber.name:
            values["name"] = subscriber.name
        if event.provider == Provider.STRIPE and event.customer_id:
            values["stripe_customer_id"] = event.customer_id
        return values

    async def _upsert(
        self, event: SubscriptionEvent, values: dict[str, Any], source: str
    ) -> Donor:
        donor, created = await self.donor_service.upsert_from_subscription(
            event.provider, event.subscription_id, DonorFields(**values)
        )
        if created:
            await self.audit_service.log(
                "donor.created",
                donorId=donor.id,
                email=donor.email,
                provider=event.provider.value,
                subscriptionId=event.subscription_id,
                source=source,
            )
            await send_email(
                self.mail_client,
                self.notifier.admin_donor_created(donor, source=source),
                donor_id=donor.id,
            )
        return donor

    def _ignored(self, event: SubscriptionEvent, reason: str) -> ReconcileResult:
        logfire.info(
            "Event ignored",
            kind=event.kind,
            provider=event.provider.value,
            subscription_id=event.subscription_id,
            reason=reason,
        )
        return ReconcileResult(outcome="ignored")

    @staticmethod
    def _contact_email(donor: Donor) -> str | None:
        return donor.email or donor.plex_email

    async def _activated(self, event: SubscriptionActivated) -> ReconcileResult:
        donor = await self._find_donor(event)
        subscriber = event.subscriber
        if donor is None:
            subscriber = await self._resolve_subscriber(event, subscriber)
            if not subscriber.email:
                return self._ignored(event, "missing_subscriber_email")

        values = self._contact_values(event, subscriber)
        values["status"] = DonorStatus.ACTIVE
        if event.last_payment_at:
            values["last_payment_at"] = event.last_payment_at
        donor = await self._upsert(event, values, f"{event.provider.value}-webhook")

        await self.audit_service.log(
            f"{event.provider.value}.subscription.updated",
            donorId=donor.id,
            subscriptionId=event.subscription_id,
            status=donor.status.value,
            eventId=event.event_id,
        )
        invite = await self.access_controller.ensure_invite(
            donor, source=f"{event.provider.value}-activation"
        )
        return ReconcileResult(outcome="activated", donor=invite.donor, invite=invite)

    async def _updated(self, event: SubscriptionUpdated) -> ReconcileResult:
        donor = await self._find_donor(event)
        previous_status = donor.status if donor else None
        if donor is None:
            if not event.subscriber.email:
                return self._ignored(event, "unknown_subscription")
            values = self._contact_values(event, event.subscriber)
            values["status"] = event.status
            donor = await self._upsert(event, values, f"{event.provider.value}-webhook")
        else:
            donor = await self.donor_service.update_donor(
                donor, DonorFields(status=event.status)
            )

        await self.audit_service.log(
            f"{event.provider.value}.subscription.updated",
            donorId=donor.id,
            subscriptionId=event.subscription_id,
            status=event.status.value,
            rawStatus=event.raw_status,
            eventId=event.event_id,
        )
        if event.status == DonorStatus.TRIAL and previous_status != DonorStatus.TRIAL:
            return await self._trial_started(donor, event)
        return ReconcileResult(outcome="updated", donor=donor)

    async def _trial_started(
        self, donor: Donor, event: SubscriptionUpdated
    ) -> ReconcileResult:
        """Schedule the end of a trial and tell the admin."""
        values: dict[str, Any] = {"trial_reminder_sent_at": None}
        if event.next_billing_at:
            values["access_expires_at"] = event.next_billing_at
        donor = await self.donor_service.update_donor(donor, DonorFields(**values))
        await self.audit_service.log(
            "donor.trial.started",
            donorId=donor.id,
            subscriptionId=event.subscription_id,
            accessExpiresAt=_iso(donor.access_expires_at),
        )
        await send_email(
            self.mail_client,
            self.notifier.admin_trial_started(
                donor, access_expires_at=donor.access_expires_at
            ),
            donor_id=donor.id,
        )
        return ReconcileResult(outcome="trial_started", donor=donor)

    async def _resolve_expiration(
        self, event: SubscriptionTerminated, now: datetime
    ) -> tuple[datetime, str]:
        """Instant access ends: the event's own date, the provider's, or now."""
        if event.effective_at:
            return event.effective_at, "webhook"
        snapshot = await self._fetch_snapshot(event.provider, event.subscription_id)
        if snapshot is not None and snapshot.next_billing_at:
            return snapshot.next_billing_at, "api"
        return now, "fallback-now"

    async def _terminated(self, event: SubscriptionTerminated) -> ReconcileResult:
        donor = await self._find_donor(event)
        if donor is None:
            return self._ignored(event, "unknown_subscription")

        previous_status = donor.status
        previous_expiry = donor.access_expires_at
        now = utcnow()

        donor = await self.donor_service.update_donor(
            donor, DonorFields(status=event.cause.status)
        )
        expires_at, source = await self._resolve_expiration(event, now)
        if previous_status == donor.status and previous_expiry is None and expires_at <= now:
            logfire.info("Termination replayed; access already ended", donor_id=donor.id)
            return ReconcileResult(outcome="terminated", donor=donor)

        donor = await self.donor_service.set_access_expiration(donor, expires_at)
        await self.audit_service.log(
            "donor.access.expiration.scheduled",
            donorId=donor.id,
            subscriptionId=event.subscription_id,
            status=donor.status.value,
            accessExpiresAt=_iso(expires_at),
            source=source,
        )

        replay = previous_status == donor.status and previous_expiry == expires_at
        if replay:
            logfire.info("Termination replayed; email already sent", donor_id=donor.id)
        else:
            await self._send_cancellation_email(donor, event, expires_at, now)

        if expires_at <= now:
            change = await self.access_controller.ensure_revoked(
                donor, reason=f"subscription_{event.cause.value}", context="webhook-immediate"
            )
            if change == AccessChange.FAILED:
                # Keep the past expiration so the sweeper retries the revoke
                return ReconcileResult(outcome="revoke_failed", donor=donor)
            donor = await self.donor_service.set_access_expiration(donor, None)
            await self.audit_service.log(
                "donor.access.expiration.reached",
                donorId=donor.id,
                subscriptionId=event.subscription_id,
                source="webhook-immediate",
            )
        return ReconcileResult(outcome="terminated", donor=donor)

    async def _send_cancellation_email(
        self,
        donor: Donor,
        event: SubscriptionTerminated,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        to = self._contact_email(donor)
        if not to:
            logfire.warn("Cancellation email skipped: no address", donor_id=donor.id)
            return
        envelope = self.notifier.cancellation_scheduled(
            donor,
            to=to,
            paid_through=expires_at if expires_at > now else None,
            subscription_id=event.subscription_id,
        )
        sent = await send_email(self.mail_client, envelope, donor_id=donor.id)
        await self.audit_service.log(
            "donor.cancellation.email.sent" if sent else "donor.cancellation.email.failed",
            donorId=donor.id,
            subscriptionId=event.subscription_id,
            accessExpiresAt=_iso(expires_at),
            **relay_flags(donor),
        )

    async def _payment_succeeded(self, event: PaymentSucceeded) -> ReconcileResult:
        donor = await self._find_donor(event)
        previous_status = donor.status if donor else None
        subscriber = event.subscriber
        source = f"{event.provider.value}-payment"

        if donor is None:
            subscriber = await self._resolve_subscriber(event, subscriber)
            if not subscriber.email:
                return self._ignored(event, "missing_subscriber_email")
            donor = await self._upsert(
                event, self._contact_values(event, subscriber), source
            )

        payment, recorded = await self.donor_service.record_payment(
            PaymentDraft(
                donor_id=donor.id,
                provider=event.provider,
                provider_payment_id=event.payment_id,
                amount=event.amount,
                currency=event.currency,
                paid_at=event.paid_at,
            )
        )
        if not recorded:
            if donor.last_payment_at is not None and donor.last_payment_at >= event.paid_at:
                return ReconcileResult(outcome="duplicate_payment", donor=donor)
            # Stored by an earlier delivery that failed before the donor was updated
            logfire.warn(
                "Recorded payment not yet applied to donor",
                donor_id=donor.id,
                payment_id=event.payment_id,
            )

        values = self._contact_values(event, subscriber)
        values["status"] = DonorStatus.ACTIVE
        values["last_payment_at"] = max(
            value for value in (donor.last_payment_at, event.paid_at) if value
        )
        donor = await self._upsert(event, values, source)

        if donor.had_preexisting_access:
            donor = await self.donor_service.update_donor(
                donor, DonorFields(had_preexisting_access=False)
            )
            await self.audit_service.log(
                "donor.transitioned_to_subscription",
                donorId=donor.id,
                subscriptionId=event.subscription_id,
                paymentId=event.payment_id,
            )

        await self.audit_service.log(
            f"{event.provider.value}.payment.recorded",
            donorId=donor.id,
            paymentId=payment.id,
            providerPaymentId=event.payment_id,
            amount=str(event.amount) if event.amount is not None else None,
            currency=event.currency,
            paidAt=_iso(event.paid_at),
        )

        if previous_status != DonorStatus.ACTIVE:
            await self._welcome(donor, event)

        invite = await self.access_controller.ensure_invite(
            donor, source=source, payment_id=event.payment_id
        )
        return ReconcileResult(outcome="payment_recorded", donor=invite.donor, invite=invite)

    async def _welcome(self, donor: Donor, event: PaymentSucceeded) -> None:
        to = self._contact_email(donor)
        if to and await send_email(
            self.mail_client,
            self.notifier.subscription_thank_you(donor, to=to),
            donor_id=donor.id,
        ):
            await self.audit_service.log(
                "donor.thank_you.email.sent",
                donorId=donor.id,
                subscriptionId=event.subscription_id,
            )
        await send_email(
            self.mail_client,
            self.notifier.admin_subscription_started(
                donor,
                amount=event.amount,
                currency=event.currency,
                paid_at=event.paid_at,
                source=f"{event.provider.value}-payment",
            ),
            donor_id=donor.id,
        )

    async def _payment_failed(self, event: PaymentFailed) -> ReconcileResult:
        donor = await self._find_donor(event)
        if donor is None:
            return self._ignored(event, "unknown_subscription")
        to = self._contact_email(donor)
        if not to:
            return ReconcileResult(outcome="payment_failed", donor=donor)

        envelope = self.notifier.payment_failed(
            donor, to=to, attempt_count=event.attempt_count
        )
        if await send_email(self.mail_client, envelope, donor_id=donor.id):
            await self.audit_service.log(
                "donor.payment_failed.email.sent",
                donorId=donor.id,
                subscriptionId=event.subscription_id,
                attemptCount=event.attempt_count,
            )
        return ReconcileResult(outcome="payment_failed", donor=donor)

    async def _access_expired(self, event: AccessExpired) -> ReconcileResult:
        try:
            donor = await self.donor_service.get_donor(event.donor_id)
        except NotFoundError:
            return self._ignored(event, "donor_deleted")

        # Re-check under the lock; a payment may have landed since the query
        if (
            donor.access_expires_at is None
            or donor.access_expires_at > event.observed_at
            or donor.status not in EXPIRABLE_STATUSES
        ):
            return self._ignored(event, "no_longer_expired")

        if donor.status == DonorStatus.TRIAL:
            donor = await self.donor_service.set_status(donor, DonorStatus.TRIAL_EXPIRED)
            reason, context = "trial_expired", "trial-expiration"
        else:
            reason, context = "access_expired", "scheduled-job"

        change = await self.access_controller.ensure_revoked(
            donor, reason=reason, context=context
        )
        if change == AccessChange.FAILED:
            # Keep the expiration so the next sweep retries the revoke
            return ReconcileResult(outcome="revoke_failed", donor=donor)

        donor = await self.donor_service.set_access_expiration(donor, None)
        await self.audit_service.log(
            "donor.access.expiration.reached",
            donorId=donor.id,
            status=donor.status.value,
            source="scheduled-job",
            access=change.value,
        )
        return ReconcileResult(outcome="expired", donor=donor)

    async def refresh_subscription(self, donor: Donor) -> Donor:
        """Re-read a PayPal subscription and store its normalized status.

        Failures are recorded on the donor as ``paypal_refresh_error`` and
        cleared by the next successful refresh.

        Args:
            donor: PayPal donor with a subscription id

        Returns:
            The donor after the refresh
        """
        if not donor.subscription_id or not self.paypal_client.is_configured:
            return donor

        async with self.locks.hold((Provider.PAYPAL.value, donor.subscription_id)):
            with logfire.span(
                "reconciler.refresh_subscription",
                donor_id=donor.id,
                subscription_id=donor.subscription_id,
            ):
                now = utcnow()
                try:
                    snapshot = await self.paypal_client.get_subscription(
                        donor.subscription_id
                    )
                except ProviderError as e:
                    logfire.warn(
                        "Subscription refresh failed", donor_id=donor.id, error=str(e)
                    )
                    donor = await self.donor_service.update_donor(
                        donor,
                        DonorFields(paypal_refresh_error=str(e), last_refreshed_at=now),
                    )
                    await self.audit_service.log(
                        "donor.subscription.refresh_failed",
                        donorId=donor.id,
                        subscriptionId=donor.subscription_id,
                        error=str(e),
                    )
                    return donor

                values: dict[str, Any] = {
                    "last_refreshed_at": now,
                    "paypal_refresh_error": None,
                }
                if snapshot.status is not None:
                    values["status"] = snapshot.status
                if snapshot.last_payment_at:
                    values["last_payment_at"] = max(
                        value
                        for value in (donor.last_payment_at, snapshot.last_payment_at)
                        if value
                    )
                donor = await self.donor_service.update_donor(donor, DonorFields(**values))
                await self.audit_service.log(
                    "donor.subscription.refreshed",
                    donorId=donor.id,
                    subscriptionId=donor.subscription_id,
                    status=donor.status.value,
                    rawStatus=snapshot.raw_status,
                )
                return donor
