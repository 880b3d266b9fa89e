"""Commission rate decisions based on bundle tiers.

Bundles are totally ordered by price. A sponsor earns on a referred purchase
according to the purchased bundle's commission percent, except when the
purchased bundle sits above the highest bundle the sponsor holds: then the
sponsor is capped at what their own tier would have earned.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Optional, Sequence

LEVEL_THRESHOLDS: tuple[tuple[Decimal, str], ...] = (
    (Decimal("10000000"), "Grandmaster"),
    (Decimal("5000000"), "Elite Legend"),
    (Decimal("2500000"), "Diamond"),
    (Decimal("1000000"), "Platinum"),
    (Decimal("500000"), "Gold"),
    (Decimal("100000"), "Silver"),
    (Decimal("50000"), "Bronze"),
)


@dataclass(frozen=True)
class BundleTier:
    """The pricing facts of one bundle needed for a commission decision."""

    id: int
    price: Decimal
    discounted_price: Optional[Decimal]
    commission_percent: Decimal

    @property
    def effective_price(self) -> Decimal:
        return self.discounted_price if self.discounted_price is not None else self.price

    @classmethod
    def from_course(cls, course) -> "BundleTier":
        return cls(
            id=course.id,
            price=Decimal(str(course.price)),
            discounted_price=(
                Decimal(str(course.discounted_price)) if course.discounted_price is not None else None
            ),
            commission_percent=Decimal(str(course.commission_percent or 0)),
        )


@dataclass(frozen=True)
class CommissionQuote:
    amount: int
    percent: Decimal
    base_amount: Decimal
    sponsor_tier_id: Optional[int]
    capped: bool = False


def floor_commission(percent: Decimal, base: Decimal) -> int:
    """Return ``floor(percent% of base)`` as whole currency units, never below zero."""

    value = (Decimal(percent) / Decimal(100)) * Decimal(base)
    return max(0, int(value.to_integral_value(rounding=ROUND_FLOOR)))


def sponsor_tier(bundles_by_price: Sequence[BundleTier], held_bundle_ids: Iterable[int]) -> BundleTier | None:
    """Highest-priced bundle the sponsor holds, scanning in ascending price order."""

    held = set(held_bundle_ids)
    current: BundleTier | None = None
    for bundle in bundles_by_price:
        if bundle.id in held:
            current = bundle
    return current


def resolve_commission(
    bundles_by_price: Sequence[BundleTier],
    held_bundle_ids: Iterable[int],
    purchased: BundleTier,
    amount_paid: Decimal,
) -> CommissionQuote:
    tier = sponsor_tier(bundles_by_price, held_bundle_ids)
    amount_paid = Decimal(str(amount_paid))

    if tier is None or purchased.effective_price <= tier.effective_price:
        return CommissionQuote(
            amount=floor_commission(purchased.commission_percent, amount_paid),
            percent=purchased.commission_percent,
            base_amount=amount_paid,
            sponsor_tier_id=tier.id if tier else None,
        )

    # Selling above the sponsor's own tier.
    return CommissionQuote(
        amount=floor_commission(tier.commission_percent, tier.effective_price),
        percent=tier.commission_percent,
        base_amount=tier.effective_price,
        sponsor_tier_id=tier.id,
        capped=True,
    )


def affiliate_level(total_income: Decimal) -> str:
    for threshold, label in LEVEL_THRESHOLDS:
        if total_income >= threshold:
            return label
    return "Starter"
