"""p2p_positions REST endpoints.

POST /markets/{market_id}/supply     — supply on behalf of user_id
POST /markets/{market_id}/borrow     — borrow against entered collateral
POST /markets/{market_id}/withdraw   — withdraw up to the supply balance
POST /markets/{market_id}/repay      — repay up to the borrow balance
POST /liquidations                   — liquidate an unhealthy borrower
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.p2p_common.database import get_db_session
from src.p2p_common.response import ApiResponse, success_response
from src.p2p_positions.application.schemas import (
    BorrowRequest,
    LiquidateRequest,
    RepayRequest,
    SupplyRequest,
    WithdrawRequest,
)
from src.p2p_positions.application.service import (
    PositionsApplicationService,
    get_positions_service,
)

router = APIRouter(tags=["positions"])

ServiceDep = Annotated[PositionsApplicationService, Depends(get_positions_service)]
DbDep = Annotated[AsyncSession, Depends(get_db_session)]


@router.post("/markets/{market_id}/supply")
async def supply(
    market_id: str, req: SupplyRequest, request: Request, service: ServiceDep, db: DbDep
) -> ApiResponse:
    result = await service.supply(market_id, req, db)
    return success_response(result.model_dump(), getattr(request.state, "request_id", None))


@router.post("/markets/{market_id}/borrow")
async def borrow(
    market_id: str, req: BorrowRequest, request: Request, service: ServiceDep, db: DbDep
) -> ApiResponse:
    result = await service.borrow(market_id, req, db)
    return success_response(result.model_dump(), getattr(request.state, "request_id", None))


@router.post("/markets/{market_id}/withdraw")
async def withdraw(
    market_id: str, req: WithdrawRequest, request: Request, service: ServiceDep, db: DbDep
) -> ApiResponse:
    result = await service.withdraw(market_id, req, db)
    return success_response(result.model_dump(), getattr(request.state, "request_id", None))


@router.post("/markets/{market_id}/repay")
async def repay(
    market_id: str, req: RepayRequest, request: Request, service: ServiceDep, db: DbDep
) -> ApiResponse:
    result = await service.repay(market_id, req, db)
    return success_response(result.model_dump(), getattr(request.state, "request_id", None))


@router.post("/liquidations")
async def liquidate(
    req: LiquidateRequest, request: Request, service: ServiceDep, db: DbDep
) -> ApiResponse:
    result = await service.liquidate(req, db)
    return success_response(result.model_dump(), getattr(request.state, "request_id", None))
