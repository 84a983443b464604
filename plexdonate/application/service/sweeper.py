"""Background sweeper.

Periodically revokes expired access, reminds trial donors whose trial is
about to end, refreshes PayPal subscriptions whose state is unclear and
forgets Plex identities of donors who left the server.
Each donor is processed in its own request scope so one failure never aborts
the sweep.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from datetime import datetime

import logfire
from dishka import AsyncContainer
from pydantic import BaseModel

from plexdonate.adapter.error import ProviderError
from plexdonate.config import SweeperSettings
from plexdonate.domain.model import AccessExpired, Donor, DonorFields
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.service import (
    AuditService,
    DonorService,
    MailClient,
    Notifier,
    PlexClient,
)
from plexdonate.domain.value import PlexShare, Provider

from .access_controller import AccessController, send_email
from .reconciler import Reconciler


class SweepReport(BaseModel):
    """Counts from one sweeper tick."""

    expired: int = 0
    reminded: int = 0
    refreshed: int = 0
    synced: int = 0
    failures: int = 0


def expiration_event(donor: Donor, now: datetime) -> AccessExpired:
    """Synthetic event contending for the donor's subscription lock."""
    return AccessExpired(
        provider=donor.provider or Provider.PAYPAL,
        subscription_id=donor.billing_subscription_id or f"donor:{donor.id}",
        donor_id=donor.id,
        observed_at=now,
    )


class Sweeper:
    """Runs sweeper ticks on a fixed interval until stopped."""

    def __init__(self, container: AsyncContainer, settings: SweeperSettings) -> None:
        """Initialize sweeper.

        Args:
            container: APP-scope container; each unit of work opens a request scope
            settings: Sweeper settings
        """
        self.container = container
        self.settings = settings
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _load(self, query: Callable[[DonorService], Awaitable[list[Donor]]]) -> list[Donor]:
        async with self.container() as scope:
            donor_service = await scope.get(DonorService)
            return await query(donor_service)

    async def _per_donor(
        self,
        step: str,
        donor: Donor,
        work: Callable[[AsyncContainer], Awaitable[object]],
        report: SweepReport,
    ) -> bool:
        try:
            async with self.container() as scope:
                await work(scope)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            report.failures += 1
            logfire.error(
                "Sweeper step failed for donor",
                step=step,
                donor_id=donor.id,
                error=str(e),
            )
            return False
        return True

    async def tick(self, now: datetime | None = None) -> SweepReport:
        """Run one sweep.

        Args:
            now: Reference instant, defaults to the current time

        Returns:
            Counts of donors expired, refreshed and synced
        """
        now = now or utcnow()
        report = SweepReport()
        with logfire.span("sweeper.tick", now=now.isoformat()):
            await self._expire(now, report)
            await self._remind_trials(now, report)
            await self._refresh(now, report)
            if self.settings.drift_repair:
                await self._repair_drift(report)
            logfire.info(
                "Sweep finished",
                expired=report.expired,
                reminded=report.reminded,
                refreshed=report.refreshed,
                synced=report.synced,
                failures=report.failures,
            )
        return report

    async def _expire(self, now: datetime, report: SweepReport) -> None:
        donors = await self._load(lambda service: service.list_with_expired_access(now))

        for donor in donors:
            async def work(scope: AsyncContainer, donor: Donor = donor) -> None:
                reconciler = await scope.get(Reconciler)
                result = await reconciler.handle(expiration_event(donor, now))
                if result.outcome == "expired":
                    report.expired += 1

            await self._per_donor("expire", donor, work, report)

    async def _remind_trials(self, now: datetime, report: SweepReport) -> None:
        donors = await self._load(
            lambda service: service.list_trials_needing_reminder(
                self.settings.trial_reminder_window_seconds, now
            )
        )

        for donor in donors:
            async def work(scope: AsyncContainer, donor: Donor = donor) -> None:
                to = donor.email or donor.plex_email
                if not to:
                    logfire.warn("Trial reminder skipped: no address", donor_id=donor.id)
                    return
                notifier = await scope.get(Notifier)
                mail_client = await scope.get(MailClient)
                envelope = notifier.trial_ending(
                    donor, to=to, access_expires_at=donor.access_expires_at
                )
                if not await send_email(mail_client, envelope, donor_id=donor.id):
                    return
                # Marked only once sent so a failed delivery is retried next tick
                donor_service = await scope.get(DonorService)
                await donor_service.update_donor(
                    donor, DonorFields(trial_reminder_sent_at=utcnow())
                )
                audit_service = await scope.get(AuditService)
                await audit_service.log(
                    "donor.trial.reminder.sent",
                    donorId=donor.id,
                    accessExpiresAt=donor.access_expires_at.isoformat(),
                    source="scheduled-job",
                )
                report.reminded += 1

            await self._per_donor("trial_reminder", donor, work, report)

    async def _refresh(self, now: datetime, report: SweepReport) -> None:
        donors = await self._load(
            lambda service: service.list_needing_refresh(
                self.settings.refresh_interval_seconds, now
            )
        )

        for donor in donors:
            async def work(scope: AsyncContainer, donor: Donor = donor) -> None:
                reconciler = await scope.get(Reconciler)
                await reconciler.refresh_subscription(donor)

            if await self._per_donor("refresh", donor, work, report):
                report.refreshed += 1

    async def _repair_drift(self, report: SweepReport) -> None:
        async with self.container() as scope:
            plex_client = await scope.get(PlexClient)
            if not plex_client.is_configured:
                return
            try:
                shares: list[PlexShare] = await plex_client.list_current_shares()
            except ProviderError as e:
                logfire.warn("Drift repair skipped: Plex unavailable", error=str(e))
                return
            donor_service = await scope.get(DonorService)
            donors = await donor_service.list_with_plex_identity()

        for donor in donors:
            async def work(scope: AsyncContainer, donor: Donor = donor) -> None:
                access_controller = await scope.get(AccessController)
                if await access_controller.sync_donor_share(donor, shares):
                    report.synced += 1

            await self._per_donor("drift", donor, work, report)

    async def run(self) -> None:
        """Tick every ``interval_seconds`` until ``stop`` is called."""
        logfire.info("Sweeper started", interval_seconds=self.settings.interval_seconds)
        while not self._stop.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logfire.error("Sweeper tick failed", error=str(e))
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._stop.wait(), timeout=self.settings.interval_seconds
                )
        logfire.info("Sweeper stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self.run(), name="plexdonate-sweeper")

    async def stop(self) -> None:
        """Signal shutdown, wait for the current tick, then cancel it."""
        self._stop.set()
        task = self._task
        if task is None:
            return
        try:
            await asyncio.wait_for(
                asyncio.shield(task), timeout=self.settings.shutdown_grace_seconds
            )
        except asyncio.TimeoutError:
            logfire.warn(
                "Sweeper did not finish in time; cancelling",
                grace_seconds=self.settings.shutdown_grace_seconds,
            )
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        finally:
            self._task = None
