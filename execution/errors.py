"""
Clearing house failures. Each carries a stable `reason` string; any of them
aborts the whole operation and nothing is retried.
"""
from numeric.fixed_point import (
    FixedPointDivisionByZero, FixedPointError,
    FixedPointOverflow, FixedPointUnderflow,
)

__all__ = [
    'ClearingHouseError', 'InputValidationError', 'MarginError',
    'RestrictionModeError', 'CollaboratorError',
    'FixedPointError', 'FixedPointOverflow', 'FixedPointUnderflow',
    'FixedPointDivisionByZero',
]


class ClearingHouseError(Exception):

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InputValidationError(ClearingHouseError):
    """Zero amounts, wrong market state, empty positions, caps."""


class MarginError(ClearingHouseError):
    """Margin ratio below requirement or bad debt where none is allowed."""


class RestrictionModeError(ClearingHouseError):
    """Second sensitive action by the same trader in a restricted block."""


class CollaboratorError(ClearingHouseError):
    """Missing or misbehaving external collaborator."""
