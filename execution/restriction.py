"""
Restriction Guard — one sensitive action per trader per block after a
destabilizing event.

A bad-debt close or any liquidation marks the market for the current block.
While marked, open/close calls from a trader whose position was already
written in this block are rejected. Other traders are unaffected.
"""
from loguru import logger

from data.ledger import BlockClock, PositionLedger
from execution.errors import RestrictionModeError
from monitoring.events import EventLog


class RestrictionGuard:

    def __init__(self, ledger: PositionLedger, clock: BlockClock, events: EventLog):
        self._ledger = ledger
        self._clock = clock
        self._events = events

    def is_restricted(self, amm) -> bool:
        return self._ledger.restriction_block(amm) == self._clock.block_number()

    def require_not_restricted(self, amm, trader):
        current = self._clock.block_number()
        if self._ledger.restriction_block(amm) != current:
            return
        # unadjusted read: only the block number matters here
        if self._ledger.get(amm, trader).block_number == current:
            raise RestrictionModeError('only one action allowed')

    def enter(self, amm):
        block = self._clock.block_number()
        self._ledger.set_restriction_block(amm, block)
        self._events.emit('RestrictionModeEntered', amm=amm.address, block_number=block)
        logger.warning(f'[GUARD] Restriction mode on {amm.address} for block {block}')
