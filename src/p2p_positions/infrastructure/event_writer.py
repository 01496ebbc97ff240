"""p2p_events writer — raw SQL within the caller's transaction."""
import json
from collections.abc import Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.p2p_positions.domain.events import P2PEvent

_INSERT_EVENT_SQL = text("""
    INSERT INTO p2p_events (market_id, event_type, payload, created_at)
    VALUES (:market_id, :event_type, :payload, :created_at)
""")


async def write_p2p_event(event: P2PEvent, db: AsyncSession) -> None:
    """Insert one row into p2p_events.

    Amounts are WAD-scaled and may exceed 2**63, so they are stored as
    JSON numbers inside the JSONB payload rather than in BIGINT columns.
    """
    await db.execute(
        _INSERT_EVENT_SQL,
        {
            "market_id": event.market_id,
            "event_type": event.event_type.value,
            "payload": json.dumps(event.payload),
            "created_at": event.created_at,
        },
    )


async def write_p2p_events(events: Sequence[P2PEvent], db: AsyncSession) -> int:
    for event in events:
        await write_p2p_event(event, db)
    return len(events)
