from decimal import Decimal

import pytest

from affiliate_desk.core.tiers import (
    BundleTier,
    affiliate_level,
    floor_commission,
    resolve_commission,
    sponsor_tier,
)


def _tier(id, price, percent, discounted=None):
    return BundleTier(
        id=id,
        price=Decimal(price),
        discounted_price=Decimal(discounted) if discounted is not None else None,
        commission_percent=Decimal(percent),
    )


BUNDLE_A = _tier(1, "2000", "20")
BUNDLE_C = _tier(3, "3000", "15")
BUNDLE_B = _tier(2, "5000", "10")
CATALOG = [BUNDLE_A, BUNDLE_C, BUNDLE_B]


def test_selling_above_own_tier_is_capped_at_sponsor_tier():
    quote = resolve_commission(CATALOG, {BUNDLE_A.id}, BUNDLE_B, Decimal("5000"))
    assert quote.amount == 400
    assert quote.capped is True
    assert quote.sponsor_tier_id == BUNDLE_A.id
    assert quote.percent == Decimal("20")
    assert quote.base_amount == Decimal("2000")


def test_sponsor_without_bundle_earns_purchased_percent_of_amount_paid():
    quote = resolve_commission(CATALOG, set(), BUNDLE_C, Decimal("3000"))
    assert quote.amount == 450
    assert quote.capped is False
    assert quote.sponsor_tier_id is None


def test_selling_at_or_below_own_tier_uses_purchased_bundle():
    quote = resolve_commission(CATALOG, {BUNDLE_B.id}, BUNDLE_A, Decimal("2000"))
    assert quote.amount == 400
    assert quote.capped is False
    assert quote.sponsor_tier_id == BUNDLE_B.id

    same = resolve_commission(CATALOG, {BUNDLE_C.id}, BUNDLE_C, Decimal("2999.99"))
    assert same.amount == 449


def test_highest_held_bundle_is_the_tier():
    assert sponsor_tier(CATALOG, {BUNDLE_A.id, BUNDLE_B.id}) == BUNDLE_B
    assert sponsor_tier(CATALOG, {99}) is None


def test_discounted_price_drives_tier_comparison_and_cap_base():
    own = _tier(10, "4000", "25", discounted="1600")
    bought = _tier(11, "3000", "10", discounted="2500")
    quote = resolve_commission([bought, own], {own.id}, bought, Decimal("2500"))
    # 2500 > 1600, so the sponsor is capped at 25% of 1600.
    assert quote.capped is True
    assert quote.amount == 400


@pytest.mark.parametrize(
    "held, purchased",
    [
        (set(), BUNDLE_B),
        ({BUNDLE_A.id}, BUNDLE_B),
        ({BUNDLE_A.id}, BUNDLE_C),
        ({BUNDLE_C.id}, BUNDLE_B),
        ({BUNDLE_B.id}, BUNDLE_A),
    ],
)
def test_commission_never_exceeds_sponsor_tier_entitlement(held, purchased):
    quote = resolve_commission(CATALOG, held, purchased, purchased.effective_price)
    tier = sponsor_tier(CATALOG, held)
    assert quote.amount >= 0
    if tier is not None and purchased.effective_price > tier.effective_price:
        assert quote.amount <= floor_commission(tier.commission_percent, tier.effective_price)


def test_floor_commission_rounds_down_and_clamps():
    assert floor_commission(Decimal("15"), Decimal("99.99")) == 14
    assert floor_commission(Decimal("0"), Decimal("5000")) == 0
    assert floor_commission(Decimal("10"), Decimal("-50")) == 0


def test_affiliate_level_ladder():
    assert affiliate_level(Decimal("0")) == "Starter"
    assert affiliate_level(Decimal("49999.99")) == "Starter"
    assert affiliate_level(Decimal("50000")) == "Bronze"
    assert affiliate_level(Decimal("100000")) == "Silver"
    assert affiliate_level(Decimal("1000000")) == "Platinum"
    assert affiliate_level(Decimal("10000000")) == "Grandmaster"
