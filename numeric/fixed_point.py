"""
Fixed-Point Decimals — 18-digit unsigned and signed values for margin accounting.

Every monetary amount and ratio in the clearing house is one of these two types:
  UDecimal — never negative; subtraction that would go below zero fails
  SDecimal — signed

Both wrap a plain Python int scaled by 10**18 and are bounded like their
256-bit on-chain counterparts. Multiplication and division keep the scale and
truncate toward zero. Leaving the bounds raises instead of wrapping.

Mixing the two types yields SDecimal:
  UDecimal + UDecimal → UDecimal
  UDecimal + SDecimal → SDecimal
"""
import decimal

DECIMALS  = 18
ONE       = 10 ** DECIMALS
UINT_MAX  = 2 ** 256 - 1
INT_MAX   = 2 ** 255 - 1
INT_MIN   = -(2 ** 255)


class FixedPointError(ArithmeticError):
    """Base class for fixed-point failures. Never caught inside the engine."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class FixedPointOverflow(FixedPointError):
    pass


class FixedPointUnderflow(FixedPointError):
    pass


class FixedPointDivisionByZero(FixedPointError):
    pass


def _trunc_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero (Python's // floors)."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator >= 0) else -quotient


def _scale(value) -> int:
    if isinstance(value, bool):
        raise TypeError('bool is not a fixed-point value')
    if isinstance(value, int):
        return value * ONE
    if isinstance(value, str):
        value = decimal.Decimal(value)
    if isinstance(value, decimal.Decimal):
        if not value.is_finite():
            raise ValueError(f'cannot represent {value} as fixed point')
        with decimal.localcontext() as ctx:
            ctx.prec = 120
            return int(value.scaleb(DECIMALS))
    raise TypeError(f'unsupported fixed-point source: {type(value).__name__}')


class FixedPoint:
    """Shared behaviour of UDecimal / SDecimal. Instances are immutable."""

    __slots__ = ('_raw',)
    _MIN = 0
    _MAX = UINT_MAX

    def __init__(self, raw: int = 0):
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise TypeError(f'{type(self).__name__} expects a raw int, got {type(raw).__name__}')
        self._raw = self._check(raw)

    @classmethod
    def _check(cls, raw: int) -> int:
        if raw > cls._MAX:
            raise FixedPointOverflow(f'{cls.__name__} overflow')
        if raw < cls._MIN:
            if cls._MIN == 0:
                raise FixedPointUnderflow(f'{cls.__name__} underflow')
            raise FixedPointOverflow(f'{cls.__name__} overflow')
        return raw

    # ── Construction ─────────────────────────────────────────────────
    @classmethod
    def of(cls, value):
        """Build from an int, a decimal string or a decimal.Decimal (extra digits truncated)."""
        return cls(_scale(value))

    @classmethod
    def zero(cls):
        return cls(0)

    @classmethod
    def one(cls):
        return cls(ONE)

    @property
    def raw(self) -> int:
        return self._raw

    # ── Sign Tests ───────────────────────────────────────────────────
    def is_zero(self) -> bool:
        return self._raw == 0

    def is_positive(self) -> bool:
        return self._raw > 0

    def is_negative(self) -> bool:
        return self._raw < 0

    def __bool__(self) -> bool:
        return self._raw != 0

    # ── Casting ──────────────────────────────────────────────────────
    def to_signed(self) -> 'SDecimal':
        return SDecimal(self._raw)

    def to_unsigned(self) -> 'UDecimal':
        """Down-cast; fails when the value is negative."""
        return UDecimal(self._raw)

    def abs(self) -> 'UDecimal':
        return UDecimal(abs(self._raw))

    def __abs__(self) -> 'UDecimal':
        return self.abs()

    def to_decimal(self) -> decimal.Decimal:
        with decimal.localcontext() as ctx:
            ctx.prec = 120
            return decimal.Decimal(self._raw).scaleb(-DECIMALS)

    # ── Arithmetic ───────────────────────────────────────────────────
    def _result_type(self, other):
        if isinstance(self, SDecimal) or isinstance(other, SDecimal):
            return SDecimal
        return UDecimal

    def __add__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        return self._result_type(other)(self._raw + other._raw)

    def __sub__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        return self._result_type(other)(self._raw - other._raw)

    def __mul__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        result_type = self._result_type(other)
        product = result_type._check(self._raw * other._raw)
        return result_type(_trunc_div(product, ONE))

    def __truediv__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        if other._raw == 0:
            raise FixedPointDivisionByZero('division by zero')
        result_type = self._result_type(other)
        numerator = result_type._check(self._raw * ONE)
        return result_type(_trunc_div(numerator, other._raw))

    def __neg__(self) -> 'SDecimal':
        return SDecimal(-self._raw)

    def mul_scalar(self, n: int):
        return type(self)(self._raw * n)

    def div_scalar(self, n: int):
        if n == 0:
            raise FixedPointDivisionByZero('division by zero')
        return type(self)(_trunc_div(self._raw, n))

    # ── Comparison ───────────────────────────────────────────────────
    def __eq__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        return self._raw == other._raw

    def __lt__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        return self._raw < other._raw

    def __le__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        return self._raw <= other._raw

    def __gt__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        return self._raw > other._raw

    def __ge__(self, other):
        if not isinstance(other, FixedPoint):
            return NotImplemented
        return self._raw >= other._raw

    def __hash__(self):
        return hash(self._raw)

    # ── Display ──────────────────────────────────────────────────────
    def __str__(self) -> str:
        whole, frac = divmod(abs(self._raw), ONE)
        sign = '-' if self._raw < 0 else ''
        digits = f'{frac:0{DECIMALS}d}'.rstrip('0')
        return f'{sign}{whole}.{digits}' if digits else f'{sign}{whole}'

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self}')"


class UDecimal(FixedPoint):
    __slots__ = ()
    _MIN = 0
    _MAX = UINT_MAX


class SDecimal(FixedPoint):
    __slots__ = ()
    _MIN = INT_MIN
    _MAX = INT_MAX


# ── Token Precision ───────────────────────────────────────────────────
def to_native(amount: UDecimal, decimals: int) -> int:
    """18-digit amount → raw token units. Precision beyond `decimals` is dropped."""
    if decimals >= DECIMALS:
        return amount.raw * 10 ** (decimals - DECIMALS)
    return amount.raw // 10 ** (DECIMALS - decimals)


def from_native(raw: int, decimals: int) -> UDecimal:
    """Raw token units → 18-digit amount."""
    if decimals >= DECIMALS:
        return UDecimal(raw // 10 ** (decimals - DECIMALS))
    return UDecimal(raw * 10 ** (DECIMALS - decimals))
