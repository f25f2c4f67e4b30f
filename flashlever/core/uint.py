"""
Checked unsigned 256-bit arithmetic.

Python integers never wrap, so overflow has to be made explicit: every amount
that crosses a ledger or venue boundary must fit in a uint256 word, and any
intermediate product that would not fit is a hard failure.
"""

from __future__ import annotations

from .errors import ArithmeticOverflow, InvalidAction

UINT256_MAX = (1 << 256) - 1
UINT160_MAX = (1 << 160) - 1
UINT128_MAX = (1 << 128) - 1


def require_uint(value: int, *, name: str, bound: int = UINT256_MAX) -> int:
    """Validate that `value` is an int in [0, bound]."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAction(f"{name} must be an int")
    if value < 0:
        raise InvalidAction(f"{name} must be non-negative: {value}")
    if value > bound:
        raise ArithmeticOverflow(f"{name} exceeds {bound.bit_length()}-bit range")
    return value


def checked(value: int, *, name: str = "value", bound: int = UINT256_MAX) -> int:
    if value < 0 or value > bound:
        raise ArithmeticOverflow(f"{name} out of {bound.bit_length()}-bit range")
    return value


def add(a: int, b: int) -> int:
    return checked(a + b, name="sum")


def mul(a: int, b: int) -> int:
    return checked(a * b, name="product")


def div_round_up(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise ArithmeticOverflow("division by zero")
    return -(-numerator // denominator)


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a*b/denominator) with a full-width intermediate, result checked."""
    if denominator <= 0:
        raise ArithmeticOverflow("division by zero")
    return checked((a * b) // denominator, name="mul_div")


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    if denominator <= 0:
        raise ArithmeticOverflow("division by zero")
    return checked(div_round_up(a * b, denominator), name="mul_div")
