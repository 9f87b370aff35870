"""
Position Ledger — in-memory store of positions and per-market funding state.

Layout (two-level map, market first):
  markets[amm] → MarketState
                   ├── positions[trader] → Position
                   ├── cumulative_funding  (append-only)
                   ├── restriction_block
                   └── open_interest_notional
  prepaid_bad_debt[token] → UDecimal

Mutations go through the methods below so that `atomic()` can undo them when an
operation fails part-way. The ledger is not thread-safe by itself; the
clearing house serializes access.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Callable, Hashable, Optional
from loguru import logger

from monitoring.events import EventLog
from numeric.fixed_point import SDecimal, UDecimal


@dataclass(frozen=True)
class Position:
    """A trader's net exposure in one market."""
    size:                    SDecimal = field(default_factory=SDecimal.zero)   # >0 long, <0 short
    margin:                  UDecimal = field(default_factory=UDecimal.zero)
    open_notional:           UDecimal = field(default_factory=UDecimal.zero)   # quote cost basis
    last_funding_checkpoint: SDecimal = field(default_factory=SDecimal.zero)
    liquidity_basis:         UDecimal = field(default_factory=UDecimal.zero)   # multiplier at last write
    block_number:            int = 0

    @property
    def is_flat(self) -> bool:
        return self.size.is_zero()

    @property
    def is_long(self) -> bool:
        return self.size.is_positive()

    @property
    def is_short(self) -> bool:
        return self.size.is_negative()


@dataclass
class MarketState:
    restriction_block:      int = 0
    cumulative_funding:     list[SDecimal] = field(default_factory=list)
    positions:              dict[Hashable, Position] = field(default_factory=dict)
    open_interest_notional: UDecimal = field(default_factory=UDecimal.zero)


class BlockClock:
    """
    Source of the ordering unit. Calls made within one block see each other's
    writes; restriction mode is keyed on it.
    """

    def __init__(self, start: int = 1):
        self._block = start

    def block_number(self) -> int:
        return self._block

    def advance(self, blocks: int = 1) -> int:
        self._block += blocks
        return self._block


class PositionLedger:

    def __init__(self, clock: BlockClock, events: EventLog):
        self._clock = clock
        self._events = events
        self._markets: dict[Hashable, MarketState] = {}
        self._prepaid_bad_debt: dict[Hashable, UDecimal] = {}
        self._journal: Optional[list[Callable[[], None]]] = None

    # ── Transactions ─────────────────────────────────────────────────
    @contextmanager
    def atomic(self):
        """Undo every mutation made inside the block if it raises. Re-entrant."""
        if self._journal is not None:
            yield
            return

        self._journal = []
        try:
            yield
        except BaseException:
            undo_count = len(self._journal)
            for undo in reversed(self._journal):
                undo()
            if undo_count:
                logger.debug(f'[LEDGER] Rolled back {undo_count} writes')
            raise
        finally:
            self._journal = None

    def _record(self, undo: Callable[[], None]):
        if self._journal is not None:
            self._journal.append(undo)

    def market(self, amm) -> MarketState:
        state = self._markets.get(amm)
        if state is None:
            state = self._markets[amm] = MarketState()
        return state

    # ── Positions ────────────────────────────────────────────────────
    def get(self, amm, trader) -> Position:
        """Stored record, or a fresh one based at the market's current multiplier."""
        position = self.market(amm).positions.get(trader)
        if position is None:
            return Position(liquidity_basis=amm.get_cumulative_position_multiplier())
        return position

    def get_adjusted(self, amm, trader) -> Position:
        """
        Read path used everywhere outside the rebasing routine: rescale the
        stored size to the market's current position multiplier and persist
        the result before returning it.
        """
        position = self.get(amm, trader)
        if position.is_flat:
            return position

        multiplier = amm.get_cumulative_position_multiplier()
        if multiplier == position.liquidity_basis:
            return position

        adjusted = replace(
            position,
            size=position.size * multiplier / position.liquidity_basis,
            liquidity_basis=multiplier,
        )
        self.set(amm, trader, adjusted)
        self._events.emit(
            'PositionAdjusted',
            amm=amm.address,
            trader=trader,
            old_size=position.size,
            new_size=adjusted.size,
            old_liquidity_basis=position.liquidity_basis,
            new_liquidity_basis=multiplier,
        )
        return adjusted

    def set(self, amm, trader, position: Position):
        positions = self.market(amm).positions
        previous = positions.get(trader)

        def undo():
            if previous is None:
                positions.pop(trader, None)
            else:
                positions[trader] = previous

        self._record(undo)
        positions[trader] = position

    def clear(self, amm, trader):
        """Flatten the record; the block number is kept for restriction checks."""
        self.set(amm, trader, Position(
            liquidity_basis=amm.get_cumulative_position_multiplier(),
            block_number=self._clock.block_number(),
        ))

    def traders(self, amm) -> list:
        return list(self.market(amm).positions)

    # ── Funding History ──────────────────────────────────────────────
    def latest_cumulative_funding(self, amm) -> SDecimal:
        history = self.market(amm).cumulative_funding
        return history[-1] if history else SDecimal.zero()

    def cumulative_funding_history(self, amm) -> tuple[SDecimal, ...]:
        return tuple(self.market(amm).cumulative_funding)

    def append_cumulative_funding(self, amm, value: SDecimal):
        history = self.market(amm).cumulative_funding
        self._record(history.pop)
        history.append(value)

    # ── Restriction Marker ───────────────────────────────────────────
    def restriction_block(self, amm) -> int:
        return self.market(amm).restriction_block

    def set_restriction_block(self, amm, block: int):
        state = self.market(amm)
        previous = state.restriction_block
        self._record(lambda: setattr(state, 'restriction_block', previous))
        state.restriction_block = block

    # ── Open Interest ────────────────────────────────────────────────
    def open_interest_notional(self, amm) -> UDecimal:
        return self.market(amm).open_interest_notional

    def set_open_interest_notional(self, amm, value: UDecimal):
        state = self.market(amm)
        previous = state.open_interest_notional
        self._record(lambda: setattr(state, 'open_interest_notional', previous))
        state.open_interest_notional = value

    # ── Prepaid Bad Debt ─────────────────────────────────────────────
    def prepaid_bad_debt(self, token) -> UDecimal:
        return self._prepaid_bad_debt.get(token, UDecimal.zero())

    def set_prepaid_bad_debt(self, token, value: UDecimal):
        previous = self._prepaid_bad_debt.get(token)

        def undo():
            if previous is None:
                self._prepaid_bad_debt.pop(token, None)
            else:
                self._prepaid_bad_debt[token] = previous

        self._record(undo)
        self._prepaid_bad_debt[token] = value
