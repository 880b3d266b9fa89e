"""Router package exports."""
from . import affiliates, payments, payouts, tds

__all__ = [
	"affiliates",
	"payments",
	"payouts",
	"tds",
]
