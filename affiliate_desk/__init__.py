"""AffiliateDesk: commission accrual and payout reconciliation backend."""

__version__ = "1.0.0"
