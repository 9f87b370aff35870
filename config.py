"""
Clearing House — Central Configuration
Risk parameters, vault identity and logging settings. Values come from the
environment (a local .env file is honoured).
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Risk Parameters ──────────────────────────────────────────────────
# Ratios are decimal strings so they parse exactly into 18-digit fixed point.
INIT_MARGIN_RATIO        = os.getenv('INIT_MARGIN_RATIO', '0.1')         # 10× max leverage
MAINTENANCE_MARGIN_RATIO = os.getenv('MAINTENANCE_MARGIN_RATIO', '0.0625')
LIQUIDATION_FEE_RATIO    = os.getenv('LIQUIDATION_FEE_RATIO', '0.0125')  # of closed notional

# Traders exempt from the per-market max holding and open interest caps
ALLOW_LIST = [t.strip() for t in os.getenv('ALLOW_LIST', '').split(',') if t.strip()]

# ── Vault ────────────────────────────────────────────────────────────
CLEARING_HOUSE_ACCOUNT = os.getenv('CLEARING_HOUSE_ACCOUNT', 'clearing_house')

# ── System ───────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_PATH  = os.getenv('LOG_PATH', 'logs/clearing_house.log')

# ── Audit Trail ──────────────────────────────────────────────────────
# Empty = events are kept in memory only
EVENT_LOG_PATH = os.getenv('EVENT_LOG_PATH', '')
