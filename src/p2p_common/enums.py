"""Global enums — event_type values must match the p2p_events CHECK constraint."""

from enum import Enum


class Side(str, Enum):
    """Which half of a market a balance or registry belongs to."""
    SUPPLY = "SUPPLY"
    BORROW = "BORROW"


class P2PEventType(str, Enum):
    # User actions
    SUPPLIED = "SUPPLIED"
    BORROWED = "BORROWED"
    WITHDRAWN = "WITHDRAWN"
    REPAID = "REPAID"
    LIQUIDATED = "LIQUIDATED"
    # Delta / amount bookkeeping
    P2P_SUPPLY_DELTA_UPDATED = "P2P_SUPPLY_DELTA_UPDATED"
    P2P_BORROW_DELTA_UPDATED = "P2P_BORROW_DELTA_UPDATED"
    P2P_AMOUNTS_UPDATED = "P2P_AMOUNTS_UPDATED"
    # Counterparties touched by matching
    SUPPLIER_POSITION_UPDATED = "SUPPLIER_POSITION_UPDATED"
    BORROWER_POSITION_UPDATED = "BORROWER_POSITION_UPDATED"
