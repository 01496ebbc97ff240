from dataclasses import dataclass, field

from src.p2p_common.enums import Side


@dataclass
class PositionUpdate:
    """Balance of one counterparty after the matcher touched it."""

    user_id: str
    on_pool: int
    in_p2p: int


@dataclass
class MatchResult:
    """Outcome of one match/unmatch traversal, passed back to the positions manager."""

    side: Side
    amount: int = 0  # underlying moved between pool and P2P
    steps: int = 0  # accounts touched, <= max_steps
    updates: list[PositionUpdate] = field(default_factory=list)
