"""Plex share matching.

Shares and users arrive from the Plex adapter already normalized (emails
trimmed and lowercased, ids additionally stripped of hyphens), so matching
here is plain set membership.
"""

from collections.abc import Iterable

from plexdonate.domain.model.donor import Donor
from plexdonate.domain.model.invite import Invite
from plexdonate.domain.value import (
    PlexShare,
    ShareState,
    normalize_email,
    normalize_identifier,
)


def donor_email_candidates(donor: Donor, invites: Iterable[Invite] = ()) -> set[str]:
    values = [donor.email, donor.plex_email]
    for invite in invites:
        values.extend([invite.recipient_email, invite.plex_email])
    return {normalize_email(value) for value in values if normalize_email(value)}


def donor_id_candidates(donor: Donor, invites: Iterable[Invite] = ()) -> set[str]:
    values = [donor.plex_account_id]
    for invite in invites:
        values.append(invite.plex_account_id)
    return {
        normalize_identifier(value) for value in values if normalize_identifier(value)
    }


def share_matches(
    share: PlexShare, emails: set[str], ids: set[str]
) -> bool:
    return bool(share.emails & emails) or bool(share.user_ids & ids)


def donor_share_state(
    donor: Donor, shares: Iterable[PlexShare], invites: Iterable[Invite] = ()
) -> ShareState:
    """Classify a donor against the current Plex shares and users.

    A donor matches when any known email equals a share email, or a known
    Plex account id equals a share id. A non-pending match wins over a
    pending one.

    Args:
        donor: Donor to classify
        shares: Normalized shares and users of the server
        invites: Donor invites whose snapshots add match candidates

    Returns:
        ``shared``, ``pending`` or ``absent``
    """
    invites = list(invites)
    emails = donor_email_candidates(donor, invites)
    ids = donor_id_candidates(donor, invites)
    if not emails and not ids:
        return ShareState.ABSENT

    state = ShareState.ABSENT
    for share in shares:
        if not share_matches(share, emails, ids):
            continue
        if not share.pending:
            return ShareState.SHARED
        state = ShareState.PENDING
    return state


def find_matching_share(
    donor: Donor, shares: Iterable[PlexShare]
) -> PlexShare | None:
    """First non-pending share matching the donor, else the first pending one."""
    emails = donor_email_candidates(donor)
    ids = donor_id_candidates(donor)
    pending: PlexShare | None = None
    for share in shares:
        if not share_matches(share, emails, ids):
            continue
        if not share.pending:
            return share
        pending = pending or share
    return pending
