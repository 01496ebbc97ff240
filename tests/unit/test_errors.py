"""Tests for p2p_common.errors and p2p_common.response."""

from src.p2p_common.errors import (
    AmountAboveWhatAllowedToRepayError,
    AppError,
    DebtValueNotAboveMaxError,
    InternalError,
    MarketNotCreatedError,
    MintOnPoolFailedError,
    OracleFailedError,
    PoolCallFailedError,
    ReentrancyError,
    ToSeizeAboveCollateralError,
    UserNotMemberOfMarketError,
)
from src.p2p_common.response import ApiResponse, error_response, success_response


class TestAppError:
    def test_base_error(self) -> None:
        err = AppError(code=9002, message="Internal error")
        assert err.code == 9002
        assert err.message == "Internal error"
        assert err.http_status == 500

    def test_is_exception(self) -> None:
        assert isinstance(AppError(code=1001, message="test"), Exception)


class TestSpecificErrors:
    def test_market_not_created(self) -> None:
        err = MarketNotCreatedError("cXYZ")
        assert err.code == 1003
        assert err.http_status == 404
        assert "cXYZ" in err.message

    def test_user_not_member(self) -> None:
        err = UserNotMemberOfMarketError("bob", "cDAI")
        assert err.code == 1006
        assert "bob" in err.message and "cDAI" in err.message

    def test_debt_value_default_message(self) -> None:
        err = DebtValueNotAboveMaxError("bob")
        assert err.code == 2003
        assert err.http_status == 422
        assert "bob" in err.message

    def test_debt_value_custom_detail(self) -> None:
        err = DebtValueNotAboveMaxError("bob", "Borrow of 42 would put bob above max debt value")
        assert err.code == 2003
        assert "42" in err.message

    def test_close_factor_error_carries_limit(self) -> None:
        err = AmountAboveWhatAllowedToRepayError(60, 50)
        assert err.code == 2004
        assert "60" in err.message and "50" in err.message

    def test_to_seize_above_collateral(self) -> None:
        assert ToSeizeAboveCollateralError(270, 200).code == 2005

    def test_pool_failure_keeps_pool_code(self) -> None:
        err = MintOnPoolFailedError("cDAI", 14)
        assert isinstance(err, PoolCallFailedError)
        assert err.code == 3001
        assert err.pool_error_code == 14
        assert err.http_status == 502

    def test_oracle_failed(self) -> None:
        assert OracleFailedError("cETH").http_status == 502

    def test_system_errors(self) -> None:
        assert InternalError().code == 9002
        err = ReentrancyError("supply")
        assert err.code == 9003
        assert err.http_status == 409


class TestApiResponse:
    def test_success_response(self) -> None:
        resp = success_response({"amount": 1})
        assert resp.code == 0
        assert resp.message == "success"
        assert resp.data == {"amount": 1}
        assert resp.request_id.startswith("req_")

    def test_error_response(self) -> None:
        resp = error_response(1003, "Market not created: cXYZ")
        assert resp.code == 1003
        assert resp.data is None

    def test_timestamp_is_iso(self) -> None:
        assert "T" in ApiResponse().timestamp

    def test_request_id_is_echoed(self) -> None:
        assert success_response(None, "req_abc").request_id == "req_abc"
        assert error_response(2001, "nope", "req_def").request_id == "req_def"
