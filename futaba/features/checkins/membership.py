"""
Membership feed → participants.

Only registered participants can have check-ins counted, so the whole guild is
walked once on startup and new members are registered as they join.
"""
from __future__ import annotations

from typing import List, Optional, Protocol

from futaba.core.logging import log_event
from futaba.features.checkins.ledger import LedgerStore
from futaba.models.checkin import Member

MEMBERS_LIMIT = 1000


class MembershipSource(Protocol):
    def list_members_after(self, after: Optional[int], limit: int) -> List[Member]:
        ...


def register_member(ledger: LedgerStore, member: Member) -> None:
    ledger.upsert_participant(member.actor_id, member.display_name)


def sync_members(source: MembershipSource, ledger: LedgerStore, *, page_size: int = MEMBERS_LIMIT) -> int:
    """Upsert every member, paging by the largest actor id seen. Returns the member count."""
    after: Optional[int] = None
    synced = 0
    while True:
        members = source.list_members_after(after, page_size)
        if not members:
            break

        largest = after
        for member in members:
            if largest is None or member.actor_id > largest:
                largest = member.actor_id
            register_member(ledger, member)
            synced += 1

        if largest == after:
            # source ignored the lower bound; stop instead of looping
            break
        after = largest

    log_event("info", f"Synced {synced} members")
    return synced
