import decimal

import pytest

from numeric.fixed_point import (
    INT_MAX, INT_MIN, ONE, UINT_MAX,
    FixedPointDivisionByZero, FixedPointOverflow, FixedPointUnderflow,
    SDecimal, UDecimal, from_native, to_native,
)


class TestConstruction:
    def test_of_int_str_decimal(self):
        assert UDecimal.of(3).raw == 3 * ONE
        assert UDecimal.of('0.5').raw == ONE // 2
        assert SDecimal.of(decimal.Decimal('-1.25')).raw == -125 * 10 ** 16

    def test_extra_digits_truncated(self):
        assert UDecimal.of('0.0000000000000000019').raw == 1
        assert SDecimal.of('-0.0000000000000000019').raw == -1

    def test_rejects_bool_and_float(self):
        with pytest.raises(TypeError):
            UDecimal.of(True)
        with pytest.raises(TypeError):
            UDecimal.of(1.5)
        with pytest.raises(TypeError):
            UDecimal(1.5)

    def test_unsigned_rejects_negative(self):
        with pytest.raises(FixedPointUnderflow):
            UDecimal.of(-1)

    def test_bounds(self):
        assert UDecimal(UINT_MAX).raw == UINT_MAX
        assert SDecimal(INT_MIN).raw == INT_MIN
        with pytest.raises(FixedPointOverflow):
            UDecimal(UINT_MAX + 1)
        with pytest.raises(FixedPointOverflow):
            SDecimal(INT_MAX + 1)
        with pytest.raises(FixedPointOverflow):
            SDecimal(INT_MIN - 1)


class TestArithmetic:
    def test_mixed_types_become_signed(self):
        result = UDecimal.of('1.5') + SDecimal.of(-2)
        assert isinstance(result, SDecimal)
        assert result == SDecimal.of('-0.5')

    def test_unsigned_stays_unsigned(self):
        assert isinstance(UDecimal.of(2) * UDecimal.of(3), UDecimal)

    def test_unsigned_subtraction_underflows(self):
        with pytest.raises(FixedPointUnderflow):
            UDecimal.of(1) - UDecimal.of(2)

    def test_signed_subtraction_goes_negative(self):
        assert UDecimal.of(1).to_signed() - UDecimal.of(2) == SDecimal.of(-1)

    def test_multiplication_keeps_scale(self):
        assert UDecimal.of('1.5') * UDecimal.of('2.5') == UDecimal.of('3.75')
        assert SDecimal.of(-50) * UDecimal.of('0.5') == SDecimal.of(-25)

    def test_division_truncates_toward_zero(self):
        assert (UDecimal.of(1) / UDecimal.of(3)).raw == 333333333333333333
        assert (SDecimal.of(-1) / UDecimal.of(3)).raw == -333333333333333333
        assert (SDecimal.of(2) / SDecimal.of(-3)).raw == -666666666666666666

    def test_division_by_zero(self):
        with pytest.raises(FixedPointDivisionByZero):
            UDecimal.of(1) / UDecimal.zero()
        with pytest.raises(FixedPointDivisionByZero):
            SDecimal.of(1).div_scalar(0)

    def test_intermediate_overflow(self):
        with pytest.raises(FixedPointOverflow):
            UDecimal(UINT_MAX) * UDecimal.of(2)
        with pytest.raises(FixedPointOverflow):
            UDecimal(UINT_MAX // 2) / UDecimal.of(1)

    def test_negation_and_abs(self):
        assert -UDecimal.of(3) == SDecimal.of(-3)
        assert SDecimal.of(-3).abs() == UDecimal.of(3)
        assert isinstance(abs(SDecimal.of(-3)), UDecimal)

    def test_down_cast_fails_when_negative(self):
        assert SDecimal.of(4).to_unsigned() == UDecimal.of(4)
        with pytest.raises(FixedPointUnderflow):
            SDecimal.of(-4).to_unsigned()

    def test_scalar_ops(self):
        assert UDecimal.of('1.5').mul_scalar(3) == UDecimal.of('4.5')
        assert SDecimal.of(-7).div_scalar(2) == SDecimal.of('-3.5')


class TestComparisonAndDisplay:
    def test_compare_across_types(self):
        assert SDecimal.of(-1) < UDecimal.zero()
        assert UDecimal.of(2) == SDecimal.of(2)
        assert hash(UDecimal.of(2)) == hash(SDecimal.of(2))

    def test_not_equal_to_plain_numbers(self):
        assert UDecimal.of(1) != 1

    def test_sign_tests(self):
        assert SDecimal.of(-1).is_negative()
        assert UDecimal.of(1).is_positive()
        assert UDecimal.zero().is_zero()
        assert not UDecimal.zero()
        assert SDecimal.of(-1)

    def test_str_and_repr(self):
        assert str(UDecimal.of('1.50')) == '1.5'
        assert str(SDecimal.of('-0.25')) == '-0.25'
        assert str(UDecimal.of(7)) == '7'
        assert repr(SDecimal.of('-1.5')) == "SDecimal('-1.5')"

    def test_to_decimal(self):
        assert SDecimal.of('-3.125').to_decimal() == decimal.Decimal('-3.125')


class TestNativePrecision:
    def test_round_down_to_token_decimals(self):
        assert to_native(UDecimal.of('1.2345678'), 6) == 1234567
        assert from_native(1234567, 6) == UDecimal.of('1.234567')

    def test_dust_becomes_zero(self):
        assert to_native(UDecimal.of('0.0000001'), 6) == 0

    def test_same_precision(self):
        assert to_native(UDecimal.of('2.5'), 18) == 25 * 10 ** 17
        assert from_native(25 * 10 ** 17, 18) == UDecimal.of('2.5')
