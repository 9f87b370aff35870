"""
Clearing house parameters — margin ratios, liquidation fee and the allow-list.
Process-wide and changed only through the clearing house setters.
"""
from dataclasses import dataclass, field, replace

import config
from execution.errors import InputValidationError
from numeric.fixed_point import UDecimal


@dataclass
class ClearingHouseParams:
    init_margin_ratio:        UDecimal
    maintenance_margin_ratio: UDecimal
    liquidation_fee_ratio:    UDecimal
    allow_list:               set = field(default_factory=set)

    def __post_init__(self):
        if self.init_margin_ratio.is_zero() or self.maintenance_margin_ratio.is_zero():
            raise InputValidationError('input is 0')
        if self.maintenance_margin_ratio > self.init_margin_ratio:
            raise InputValidationError('maintenance margin ratio above initial')
        if self.liquidation_fee_ratio > UDecimal.one():
            raise InputValidationError('liquidation fee ratio above one')

    @classmethod
    def from_config(cls) -> 'ClearingHouseParams':
        return cls(
            init_margin_ratio=UDecimal.of(config.INIT_MARGIN_RATIO),
            maintenance_margin_ratio=UDecimal.of(config.MAINTENANCE_MARGIN_RATIO),
            liquidation_fee_ratio=UDecimal.of(config.LIQUIDATION_FEE_RATIO),
            allow_list=set(config.ALLOW_LIST),
        )

    def update(self, **changes):
        """Apply changes only if the resulting parameter set is valid."""
        replace(self, **changes)
        for name, value in changes.items():
            setattr(self, name, value)

    def is_allow_listed(self, trader) -> bool:
        return trader in self.allow_list
