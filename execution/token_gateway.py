"""
Decimal Token Gateway — 18-digit amounts over a native-precision token ledger.

Amounts are rounded down to the token's precision before moving. After each
transfer the recipient's balance must have grown by exactly that amount.
"""
from typing import Hashable

from execution.errors import CollaboratorError
from execution.interfaces import NativeTokenBackend
from numeric.fixed_point import UDecimal, from_native, to_native


class DecimalTokenGateway:

    def __init__(self, backend: NativeTokenBackend):
        self.backend = backend

    def balance_of(self, token: Hashable, account: str) -> UDecimal:
        return from_native(self.backend.balance_of(token, account), self.backend.decimals(token))

    def transfer(self, token: Hashable, sender: str, recipient: str, amount: UDecimal):
        native = to_native(amount, self.backend.decimals(token))
        if native == 0 or sender == recipient:
            return

        before = self.backend.balance_of(token, recipient)
        self.backend.transfer(token, sender, recipient, native)
        if self.backend.balance_of(token, recipient) - before != native:
            raise CollaboratorError('balance inconsistent')
