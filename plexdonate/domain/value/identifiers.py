"""Strongly typed identifiers for plex-donate entities.

Rows use integer surrogate keys assigned by the store.
"""

from typing import NewType

DonorId = NewType("DonorId", int)
InviteId = NewType("InviteId", int)
PaymentId = NewType("PaymentId", int)
EventId = NewType("EventId", int)
ProspectId = NewType("ProspectId", int)
ShareLinkId = NewType("ShareLinkId", int)
