"""Domain events emitted by PositionsManager.

Kept as pending until the application service has written them to
p2p_events; an aborted action drops the events it produced.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.p2p_common.enums import P2PEventType


@dataclass(frozen=True)
class P2PEvent:
    event_type: P2PEventType
    market_id: str
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
