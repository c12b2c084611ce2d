"""Event store — append-only identity audit log.

Learn: Every change to an identity is written as an immutable event in
the same transaction as the change itself, e.g.
{type: "identity.wallet_linked", data: {address: "0xab..."}}.
If the change rolls back, so does its event.

Events never carry secrets: no password hashes, signatures or tokens.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from peerhire.db.models import Event


def identity_stream(identity_id) -> str:
    return f"identity:{identity_id}"


class EventStore:
    """Append-only event store backed by the identity database."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict,
        metadata: Optional[dict] = None,
    ) -> Event:
        """Append an event to a stream. Returns the created event."""
        event = Event(
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta=metadata or {},
        )
        self.db.add(event)
        await self.db.flush()  # get the auto-generated id
        return event

    async def read_stream(
        self,
        stream_id: str,
        after_id: int = 0,
        limit: int = 100,
    ) -> list[Event]:
        """Read events for one identity, optionally after a given position."""
        result = await self.db.execute(
            select(Event)
            .where(Event.stream_id == stream_id, Event.id > after_id)
            .order_by(Event.id)
            .limit(limit)
        )
        return list(result.scalars().all())
