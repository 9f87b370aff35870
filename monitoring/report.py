"""
Audit Report CLI — summarize a clearing house event log.

Usage:
    clearing-house-audit                                   # EVENT_LOG_PATH from .env
    clearing-house-audit --events logs/events.jsonl --report liquidations

Reports:
    pnl           realized PnL per trader
    bad_debt      bad debt per market
    liquidations  count, fees and bad debt of liquidations per market
"""
import argparse
from typing import Optional
from loguru import logger

from config import EVENT_LOG_PATH, LOG_LEVEL, LOG_PATH
from monitoring.audit import (
    bad_debt_by_market, liquidation_summary, load_events, realized_pnl_by_trader,
)
from monitoring.logs import setup_logging

REPORTS = {
    'pnl':          ('Realized PnL by trader', realized_pnl_by_trader),
    'bad_debt':     ('Bad debt by market', bad_debt_by_market),
    'liquidations': ('Liquidations by market', liquidation_summary),
}


def run_reports(path: str, names: Optional[list[str]] = None) -> dict:
    frame = load_events(path)
    logger.info(f'[AUDIT] Loaded {len(frame)} events from {path}')

    results = {}
    for name in names or REPORTS:
        title, report = REPORTS[name]
        results[name] = report(frame)
        logger.info(f'[AUDIT] {title}: {results[name]}')
    return results


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Summarize a clearing house audit log')
    parser.add_argument('--events', default=EVENT_LOG_PATH,
                        help='JSONL event log (default: EVENT_LOG_PATH)')
    parser.add_argument('--report', choices=sorted(REPORTS), action='append',
                        help='report to run, repeatable (default: all)')
    parser.add_argument('--log-level', default=LOG_LEVEL)
    parser.add_argument('--log-path', default=LOG_PATH)
    args = parser.parse_args(argv)

    if not args.events:
        parser.error('no event log: pass --events or set EVENT_LOG_PATH')

    setup_logging(level=args.log_level, path=args.log_path)
    run_reports(args.events, args.report)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
