"""
Event Log — the clearing house's audit trail.

Every state-changing operation emits named events (PositionChanged,
MarginChanged, PositionLiquidated, ...). Events raised inside an operation are
held back until the operation commits; a failed operation publishes nothing.

Published events are:
  - kept in memory (`records`)
  - logged at INFO
  - forwarded to subscribers
  - appended to a JSONL file when a path is configured
"""
import json
import time
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
from loguru import logger

from numeric.fixed_point import FixedPoint


def _encode(value):
    if isinstance(value, FixedPoint):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f'not JSON serializable: {type(value).__name__}')


class EventLog:

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self.records: list[dict] = []
        self._subscribers: list[Callable[[dict], None]] = []
        self._pending: Optional[list[dict]] = None

    def subscribe(self, fn: Callable[[dict], None]):
        self._subscribers.append(fn)

    def emit(self, name: str, **fields) -> dict:
        record = {'event': name, **fields}
        if self._pending is not None:
            self._pending.append(record)
        else:
            self._publish(record)
        return record

    @contextmanager
    def buffered(self):
        """Hold events until the block completes; drop them if it raises."""
        if self._pending is not None:
            yield
            return

        self._pending = []
        try:
            yield
        except BaseException:
            if self._pending:
                logger.debug(f'[EVENTS] Dropped {len(self._pending)} events from failed operation')
            self._pending = None
            raise

        pending, self._pending = self._pending, None
        for record in pending:
            self._publish(record)

    def named(self, name: str) -> list[dict]:
        return [r for r in self.records if r['event'] == name]

    def _publish(self, record: dict):
        self.records.append(record)
        logger.info(
            f"[EVENTS] {record['event']} | "
            + ' '.join(f'{k}={_encode(v) if isinstance(v, (FixedPoint, Enum)) else v}'
                       for k, v in record.items() if k != 'event')
        )

        for fn in list(self._subscribers):
            try:
                fn(record)
            except Exception as e:
                logger.warning(f"[EVENTS] Subscriber failed on {record['event']}: {e}")

        if self.path:
            self._append(record)

    def _append(self, record: dict):
        line = json.dumps({**record, '_logged_at': time.time()}, default=_encode)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'a') as f:
            f.write(line + '\n')


def load_records(path: str, n: Optional[int] = None) -> list[dict]:
    """Load the last N events from a JSONL audit log (all when N is None)."""
    log_path = Path(path)
    if not log_path.exists():
        return []
    records = []
    with open(log_path) as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records if n is None else records[-n:]
