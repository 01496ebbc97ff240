"""WAD fixed-point arithmetic for pool shares, P2P units and indexes.

All amounts, balances and indexes are unsigned ints scaled by WAD (1e18).
Results are truncated toward zero. Operands and results are kept within the
uint256 range so every value stays representable by the underlying pool.
"""

WAD = 10**18
MAX_UINT256 = 2**256 - 1


def _check_range(value: int) -> int:
    if value < 0 or value > MAX_UINT256:
        raise OverflowError(f"Value out of uint256 range: {value}")
    return value


def mul(x: int, y: int) -> int:
    """x * y / WAD, e.g. pool shares times pool index -> underlying."""
    return _check_range(x * y) // WAD


def div(x: int, y: int) -> int:
    """x * WAD / y, e.g. underlying over pool index -> pool shares.

    Raises ZeroDivisionError when y == 0; indexes start at WAD and never
    decrease, so this only fires on a corrupted market.
    """
    return _check_range(x * WAD) // y


def safe_sub(x: int, y: int) -> int:
    """x - y, saturating at zero."""
    return x - y if x > y else 0
