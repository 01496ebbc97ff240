"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Precondition (rejected before any state change)
  2xxx: Solvency
  3xxx: Underlying pool call
  4xxx: Oracle
  9xxx: System

Every error aborts the whole action; the positions manager restores the
ledger snapshot before the exception leaves it.
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Precondition ---

class AmountIsZeroError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Amount must be greater than zero", 422)


class AddressIsZeroError(AppError):
    def __init__(self) -> None:
        super().__init__(1002, "User address must not be empty", 422)


class MarketNotCreatedError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(1003, f"Market not created: {market_id}", 404)


class MarketAlreadyCreatedError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(1004, f"Market already created: {market_id}", 409)


class WithdrawTooSmallError(AppError):
    def __init__(self, amount: int) -> None:
        super().__init__(
            1005, f"Withdraw amount {amount} rounds to zero pool shares", 422
        )


class UserNotMemberOfMarketError(AppError):
    def __init__(self, user_id: str, market_id: str) -> None:
        super().__init__(
            1006, f"User {user_id} is not a member of market {market_id}", 422
        )


# --- 2xxx: Solvency ---

class UnauthorisedWithdrawError(AppError):
    def __init__(self, user_id: str, amount: int) -> None:
        super().__init__(
            2002,
            f"Withdraw of {amount} would put debt value of {user_id} above max debt value",
            422,
        )


class DebtValueNotAboveMaxError(AppError):
    """Solvency check failed: raised by liquidation on a healthy borrower and by
    a borrow that would leave the borrower unhealthy."""

    def __init__(self, user_id: str, detail: str | None = None) -> None:
        super().__init__(
            2003, detail or f"Debt value of {user_id} is not above max debt value", 422
        )


class AmountAboveWhatAllowedToRepayError(AppError):
    def __init__(self, amount: int, max_repayable: int) -> None:
        super().__init__(
            2004,
            f"Repay amount {amount} above close-factor limit {max_repayable}",
            422,
        )


class ToSeizeAboveCollateralError(AppError):
    def __init__(self, to_seize: int, collateral: int) -> None:
        super().__init__(
            2005,
            f"Amount to seize {to_seize} above collateral balance {collateral}",
            422,
        )


# --- 3xxx: Underlying pool ---

class PoolCallFailedError(AppError):
    """The underlying pool rejected a call; the action is aborted."""

    def __init__(self, code: int, operation: str, market_id: str, error_code: int) -> None:
        self.pool_error_code = error_code
        super().__init__(
            code,
            f"Pool {operation} failed on {market_id} (pool error {error_code})",
            502,
        )


class MintOnPoolFailedError(PoolCallFailedError):
    def __init__(self, market_id: str, error_code: int) -> None:
        super().__init__(3001, "mint", market_id, error_code)


class RedeemOnPoolFailedError(PoolCallFailedError):
    def __init__(self, market_id: str, error_code: int) -> None:
        super().__init__(3002, "redeem", market_id, error_code)


class BorrowOnPoolFailedError(PoolCallFailedError):
    def __init__(self, market_id: str, error_code: int) -> None:
        super().__init__(3003, "borrow", market_id, error_code)


class RepayOnPoolFailedError(PoolCallFailedError):
    def __init__(self, market_id: str, error_code: int) -> None:
        super().__init__(3004, "repay", market_id, error_code)


# --- 4xxx: Oracle ---

class OracleFailedError(AppError):
    def __init__(self, market_id: str) -> None:
        super().__init__(4001, f"Oracle returned no price for {market_id}", 502)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class ReentrancyError(AppError):
    def __init__(self, action: str) -> None:
        super().__init__(9003, f"Reentrant call rejected: {action}", 409)
