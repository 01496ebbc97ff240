"""p2p_market read endpoints.

GET /markets/{market_id}                   — market row, deltas and registry sizes
GET /markets/{market_id}/users/{user_id}   — a user's balances in one market
GET /users/{user_id}/liquidity             — collateral, debt and max debt values
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from src.p2p_common.response import ApiResponse, success_response
from src.p2p_positions.application.service import (
    PositionsApplicationService,
    get_positions_service,
)

router = APIRouter(tags=["markets"])

ServiceDep = Annotated[PositionsApplicationService, Depends(get_positions_service)]


@router.get("/markets/{market_id}")
async def get_market(market_id: str, request: Request, service: ServiceDep) -> ApiResponse:
    result = await service.get_market(market_id)
    return success_response(result.model_dump(), getattr(request.state, "request_id", None))


@router.get("/markets/{market_id}/users/{user_id}")
async def get_user_position(
    market_id: str, user_id: str, request: Request, service: ServiceDep
) -> ApiResponse:
    result = await service.get_user_position(market_id, user_id)
    return success_response(result.model_dump(), getattr(request.state, "request_id", None))


@router.get("/users/{user_id}/liquidity")
async def get_user_liquidity(user_id: str, request: Request, service: ServiceDep) -> ApiResponse:
    result = await service.get_user_liquidity(user_id)
    return success_response(result.model_dump(), getattr(request.state, "request_id", None))
