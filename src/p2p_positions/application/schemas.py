# src/p2p_positions/application/schemas.py
"""Request / response models for the positions and market endpoints.

All amounts are integers in the underlying's smallest unit; indexes and
prices are WAD-scaled (1e18 == 1.0).
"""
from pydantic import BaseModel, Field, field_validator

from src.p2p_market.domain.models import Market, PositionBalance
from src.p2p_positions.domain.liquidity import BalanceStates


class _ActionRequest(BaseModel):
    user_id: str
    # Zero is let through so the domain rejects it with its own error code
    amount: int = Field(ge=0)
    max_steps: int | None = Field(None, ge=0)

    @field_validator("user_id")
    @classmethod
    def no_whitespace(cls, v: str) -> str:
        if v != v.strip() or " " in v:
            raise ValueError("user_id must not contain whitespace")
        return v


class SupplyRequest(_ActionRequest):
    pass


class BorrowRequest(_ActionRequest):
    pass


class WithdrawRequest(_ActionRequest):
    receiver: str | None = None  # defaults to user_id


class RepayRequest(_ActionRequest):
    pass


class LiquidateRequest(BaseModel):
    borrowed_market_id: str
    collateral_market_id: str
    liquidator: str
    borrower: str
    amount: int = Field(ge=0)


class PositionOut(BaseModel):
    on_pool: int
    in_p2p: int

    @classmethod
    def from_domain(cls, balance: PositionBalance) -> "PositionOut":
        return cls(on_pool=balance.on_pool, in_p2p=balance.in_p2p)


class UserPositionResponse(BaseModel):
    market_id: str
    user_id: str
    supply: PositionOut
    borrow: PositionOut
    supply_balance: int   # underlying, at current indexes
    borrow_balance: int


class ActionResponse(BaseModel):
    action: str
    amount: int
    position: UserPositionResponse


class LiquidationResponse(BaseModel):
    borrowed_market_id: str
    collateral_market_id: str
    liquidator: str
    borrower: str
    amount_repaid: int
    amount_seized: int


class MarketResponse(BaseModel):
    market_id: str
    collateral_factor: int
    p2p_supply_index: int
    p2p_borrow_index: int
    last_pool_supply_index: int
    last_pool_borrow_index: int
    p2p_supply_delta: int
    p2p_borrow_delta: int
    p2p_supply_amount: int
    p2p_borrow_amount: int
    treasury_balance: int
    no_p2p: bool
    suppliers_on_pool: int
    suppliers_in_p2p: int
    borrowers_on_pool: int
    borrowers_in_p2p: int

    @classmethod
    def from_domain(cls, market: Market, registry_sizes: dict[str, int]) -> "MarketResponse":
        return cls(
            market_id=market.market_id,
            collateral_factor=market.collateral_factor,
            p2p_supply_index=market.p2p_supply_index,
            p2p_borrow_index=market.p2p_borrow_index,
            last_pool_supply_index=market.last_pool_supply_index,
            last_pool_borrow_index=market.last_pool_borrow_index,
            p2p_supply_delta=market.p2p_supply_delta,
            p2p_borrow_delta=market.p2p_borrow_delta,
            p2p_supply_amount=market.p2p_supply_amount,
            p2p_borrow_amount=market.p2p_borrow_amount,
            treasury_balance=market.treasury_balance,
            no_p2p=market.no_p2p,
            **registry_sizes,
        )


class LiquidityResponse(BaseModel):
    user_id: str
    entered_markets: list[str]
    collateral_value: int
    debt_value: int
    max_debt_value: int
    is_liquidatable: bool

    @classmethod
    def from_domain(
        cls, user_id: str, entered_markets: list[str], states: BalanceStates
    ) -> "LiquidityResponse":
        return cls(
            user_id=user_id,
            entered_markets=entered_markets,
            collateral_value=states.collateral_value,
            debt_value=states.debt_value,
            max_debt_value=states.max_debt_value,
            is_liquidatable=states.is_liquidatable,
        )
