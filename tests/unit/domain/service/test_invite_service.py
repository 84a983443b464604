"""Unit tests for InviteService."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from plexdonate.domain.error import ConflictError
from plexdonate.domain.model import InviteDraft
from plexdonate.domain.service import InviteService
from plexdonate.domain.value import SharedLibrary
from plexdonate.persistence.repository.inmemory import (
    InMemoryDatabase,
    InMemoryInviteRepository,
)
from tests.factories import NOW, add_donor, add_invite
from tests.harness import create_env_fixture

# Unit test fixture - everything mocked
unit_env = create_env_fixture()


class TestCreateInvite:
    """Tests for create_invite."""

    @pytest.mark.asyncio
    async def test_create_invite_success(self, unit_env, db):
        """Creating an invite stores it as the donor's active invite."""
        # Arrange
        invite_service = await unit_env.get(InviteService)
        donor = add_donor(db)
        draft = InviteDraft(
            donor_id=donor.id,
            plex_invite_id="inv-1",
            invite_url="https://app.plex.tv/invite/1",
            shared_libraries=[SharedLibrary(id="1", title="Movies")],
            recipient_email="donor@example.com",
        )

        # Act
        invite, created = await invite_service.create_invite(draft)

        # Assert
        assert created is True
        assert invite.is_active
        assert invite.shared_libraries[0].title == "Movies"
        latest = await invite_service.get_latest_active_for_donor(donor.id)
        assert latest.id == invite.id

    @pytest.mark.asyncio
    async def test_create_invite_revokes_previous(self, unit_env, db):
        """A new invite supersedes the donor's previous active invite."""
        # Arrange
        invite_service = await unit_env.get(InviteService)
        donor = add_donor(db)
        old = add_invite(db, donor)

        # Act
        new, _ = await invite_service.create_invite(
            InviteDraft(donor_id=donor.id, plex_invite_id="inv-2")
        )

        # Assert
        assert db.invites[old.id].revoked_at is not None
        active = [invite for invite in db.invites.values() if invite.is_active]
        assert [invite.id for invite in active] == [new.id]

    @pytest.mark.asyncio
    async def test_lost_race_returns_winner(self, unit_env, db, monkeypatch):
        """When a concurrent writer wins the unique index, its invite is returned."""
        # Arrange
        invite_service = await unit_env.get(InviteService)
        donor = add_donor(db)
        winner = add_invite(db, donor, plex_invite_id="winner")

        async def conflicting_create(draft):
            raise IntegrityError("INSERT", {}, Exception("uq_invites_active_donor"))

        monkeypatch.setattr(
            invite_service.invite_repository, "create", conflicting_create
        )

        # Act
        invite, created = await invite_service.create_invite(
            InviteDraft(donor_id=donor.id, plex_invite_id="loser")
        )

        # Assert
        assert created is False
        assert invite.id == winner.id

    @pytest.mark.asyncio
    async def test_repeated_conflicts_raise(self, unit_env, db, monkeypatch):
        """Conflicts with no visible winner give up with ConflictError."""
        # Arrange
        invite_service = await unit_env.get(InviteService)
        donor = add_donor(db)

        async def conflicting_create(draft):
            raise IntegrityError("INSERT", {}, Exception("uq_invites_active_donor"))

        monkeypatch.setattr(
            invite_service.invite_repository, "create", conflicting_create
        )

        # Act & Assert
        with pytest.raises(ConflictError):
            await invite_service.create_invite(InviteDraft(donor_id=donor.id))


class TestInviteState:
    """Tests for email, revoke and staleness bookkeeping."""

    @pytest.mark.asyncio
    async def test_mark_email_sent(self, unit_env, db):
        """Recording delivery stamps email_sent_at."""
        # Arrange
        invite_service = await unit_env.get(InviteService)
        invite = add_invite(db, add_donor(db))

        # Act
        updated = await invite_service.mark_email_sent(invite.id, NOW)

        # Assert
        assert updated.email_sent_at == NOW

    @pytest.mark.asyncio
    async def test_mark_plex_revoked_sets_both_stamps(self, unit_env, db):
        """Plex revocation also closes the invite locally."""
        # Arrange
        invite_service = await unit_env.get(InviteService)
        invite = add_invite(db, add_donor(db))

        # Act
        updated = await invite_service.mark_plex_revoked(invite.id)

        # Assert
        assert updated.plex_revoked_at is not None
        assert updated.revoked_at == updated.plex_revoked_at
        assert await invite_service.get_latest_active_for_donor(invite.donor_id) is None

    def test_staleness_threshold(self):
        """Invites older than the threshold are stale; zero disables the check."""
        db = InMemoryDatabase()
        invite = add_invite(db, add_donor(db), created_at=NOW - timedelta(days=15))
        repository = InMemoryInviteRepository(db)

        fortnight = InviteService(repository, stale_threshold_seconds=14 * 86400)
        disabled = InviteService(repository, stale_threshold_seconds=0)

        assert fortnight.is_stale(invite, NOW) is True
        assert disabled.is_stale(invite, NOW) is False

    def test_staleness_uses_latest_issue_time(self):
        """A recent Plex invite time keeps an old row fresh."""
        db = InMemoryDatabase()
        invite = add_invite(
            db,
            add_donor(db),
            created_at=NOW - timedelta(days=30),
            plex_invited_at=NOW - timedelta(days=1),
        )

        assert invite.is_stale(14 * 86400, NOW) is False
