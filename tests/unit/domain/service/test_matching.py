"""Unit tests for Plex share matching."""

from plexdonate.domain.model import Donor, Invite
from plexdonate.domain.service import donor_share_state
from plexdonate.domain.service.matching import find_matching_share
from plexdonate.domain.value import DonorId, InviteId, ShareState
from tests.factories import plex_user


def _donor(**fields) -> Donor:
    return Donor(id=DonorId(1), **fields)


class TestDonorShareState:
    """Tests for donor_share_state."""

    def test_matches_contact_email(self):
        """A share addressed to the donor's email counts as shared."""
        donor = _donor(email="donor@example.com")

        state = donor_share_state(donor, [plex_user(email="donor@example.com")])

        assert state == ShareState.SHARED

    def test_matches_account_id(self):
        """A share for the donor's Plex account id counts as shared."""
        donor = _donor(email="a@example.com", plex_account_id="12345")

        state = donor_share_state(donor, [plex_user(account_id="12345")])

        assert state == ShareState.SHARED

    def test_pending_share(self):
        """An unaccepted invitation counts as pending."""
        donor = _donor(email="donor@example.com")

        state = donor_share_state(
            donor, [plex_user(email="donor@example.com", pending=True)]
        )

        assert state == ShareState.PENDING

    def test_accepted_share_wins_over_pending(self):
        """A real share beats a pending one regardless of order."""
        donor = _donor(email="donor@example.com", plex_account_id="7")
        shares = [
            plex_user(email="donor@example.com", pending=True),
            plex_user(account_id="7"),
        ]

        assert donor_share_state(donor, shares) == ShareState.SHARED

    def test_invite_snapshot_emails_are_candidates(self):
        """Emails recorded on invites also identify the donor."""
        donor = _donor(email="contact@example.com")
        invite = Invite(
            id=InviteId(1), donor_id=donor.id, recipient_email="plex@example.com"
        )

        state = donor_share_state(donor, [plex_user(email="plex@example.com")], [invite])

        assert state == ShareState.SHARED

    def test_no_identity_is_absent(self):
        """A donor with no email or account id never matches."""
        donor = _donor()

        assert donor_share_state(donor, [plex_user(email="x@example.com")]) == (
            ShareState.ABSENT
        )

    def test_other_users_are_absent(self):
        """Shares for other people do not match."""
        donor = _donor(email="donor@example.com")

        state = donor_share_state(
            donor, [plex_user(email="other@example.com", account_id="9")]
        )

        assert state == ShareState.ABSENT


class TestFindMatchingShare:
    """Tests for find_matching_share."""

    def test_prefers_accepted_share(self):
        """The accepted share is returned over an earlier pending one."""
        donor = _donor(email="donor@example.com")
        pending = plex_user(email="donor@example.com", pending=True)
        accepted = plex_user(email="donor@example.com", account_id="1")

        assert find_matching_share(donor, [pending, accepted]) == accepted

    def test_falls_back_to_pending(self):
        """With only a pending share, that share is returned."""
        donor = _donor(email="donor@example.com")
        pending = plex_user(email="donor@example.com", pending=True)

        assert find_matching_share(donor, [pending]) == pending
        assert find_matching_share(_donor(email="x@example.com"), [pending]) is None
