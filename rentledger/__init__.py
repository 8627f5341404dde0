"""
Rent Ledger - billing and ledger engine for rent collection.

Per-lease financial accounts with:
- Append-only transaction log and derived running balance
- Prorated first-month rent at lease signing
- Daily recurring rent billing and proportional late fees
- Idempotent mobile-money payment reconciliation
- APScheduler daemon and CLI to trigger the daily jobs
"""

from pathlib import Path

_version_file = Path(__file__).parent / 'VERSION'
if _version_file.exists():
    __version__ = _version_file.read_text().strip()
else:
    __version__ = '1.0.0'


def get_version():
    """Return the current package version."""
    return __version__


__all__ = ['__version__', 'get_version']
