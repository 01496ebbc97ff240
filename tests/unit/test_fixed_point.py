import pytest

from src.p2p_common.fixed_point import MAX_UINT256, WAD, div, mul, safe_sub


class TestMul:
    def test_identity_index(self) -> None:
        assert mul(123 * WAD, WAD) == 123 * WAD

    def test_truncates_toward_zero(self) -> None:
        # 1 wei at index 0.5 -> 0.5 wei -> 0
        assert mul(1, WAD // 2) == 0

    def test_fractional_index(self) -> None:
        assert mul(10 * WAD, 11 * 10**17) == 11 * WAD

    def test_overflow_raises(self) -> None:
        with pytest.raises(OverflowError):
            mul(MAX_UINT256, 2)


class TestDiv:
    def test_shares_from_underlying(self) -> None:
        # exchange rate 2.0: 10 underlying -> 5 shares
        assert div(10 * WAD, 2 * WAD) == 5 * WAD

    def test_truncates_toward_zero(self) -> None:
        assert div(1, 2 * WAD) == 0

    def test_zero_divisor_raises(self) -> None:
        with pytest.raises(ZeroDivisionError):
            div(WAD, 0)

    def test_overflow_raises(self) -> None:
        with pytest.raises(OverflowError):
            div(MAX_UINT256, WAD)

    def test_negative_operand_raises(self) -> None:
        with pytest.raises(OverflowError):
            div(-1, WAD)


class TestSafeSub:
    def test_regular(self) -> None:
        assert safe_sub(10, 3) == 7

    def test_saturates_at_zero(self) -> None:
        assert safe_sub(3, 10) == 0

    def test_equal(self) -> None:
        assert safe_sub(5, 5) == 0
