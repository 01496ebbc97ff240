"""Domain models for p2p_market — pure dataclasses, no business logic."""

from dataclasses import dataclass

from src.p2p_common.enums import Side
from src.p2p_common.fixed_point import WAD


@dataclass
class Market:
    market_id: str
    collateral_factor: int                # WAD fraction of supply usable as borrowing power
    p2p_supply_index: int = WAD           # P2P supply unit -> underlying
    p2p_borrow_index: int = WAD           # P2P borrow unit -> underlying
    last_pool_supply_index: int = WAD     # pool share -> underlying, read at action start
    last_pool_borrow_index: int = WAD     # pool debt unit -> underlying, read at action start
    p2p_supply_delta: int = 0             # pool shares, nominally P2P supply resting on pool
    p2p_borrow_delta: int = 0             # pool debt units, nominally P2P borrow resting on pool
    p2p_supply_amount: int = 0            # P2P supply units across all suppliers
    p2p_borrow_amount: int = 0            # P2P borrow units across all borrowers
    treasury_balance: int = 0             # underlying, fees skimmed on repay
    no_p2p: bool = False

    def pool_index(self, side: Side) -> int:
        if side is Side.SUPPLY:
            return self.last_pool_supply_index
        return self.last_pool_borrow_index

    def p2p_index(self, side: Side) -> int:
        if side is Side.SUPPLY:
            return self.p2p_supply_index
        return self.p2p_borrow_index


@dataclass
class PositionBalance:
    on_pool: int = 0   # pool share / pool debt units
    in_p2p: int = 0    # P2P units

    @property
    def is_empty(self) -> bool:
        return self.on_pool == 0 and self.in_p2p == 0
