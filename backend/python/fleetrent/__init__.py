"""
Fleet Rental Backend

Contract lifecycle and automated billing for multi-tenant vehicle rental:
- Rental contracts with driver/vehicle exclusivity and deposit holds
- Scheduled daily rent debits with per-contract failure isolation
- Debtor and billing statistics from the payment ledger
- Cached analytics recalculated on daily/weekly/monthly schedules
"""

__version__ = '1.0.0'


def get_version():
    """Return the current package version."""
    return __version__
