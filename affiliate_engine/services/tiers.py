"""
Affiliate tiers and commission rates.

Central source of truth for what each tier pays. The rate table is fixed;
only the earnings thresholds are configurable (see tier_config).
Everything here is pure - no I/O.
"""
from decimal import Decimal
from typing import Any, Optional

from affiliate_engine.schemas.affiliates import TierThresholds
from affiliate_engine.utils.money import to_money, percent_of

TIER_ORDER = ("bronze", "silver", "gold", "platinum")

COMMISSION_RATES: dict[str, Decimal] = {
    "bronze": Decimal("0.10"),
    "silver": Decimal("0.12"),
    "gold": Decimal("0.15"),
    "platinum": Decimal("0.20"),
}

DEFAULT_THRESHOLDS = TierThresholds(
    bronze=Decimal("0"),
    silver=Decimal("500"),
    gold=Decimal("2000"),
    platinum=Decimal("5000"),
)


def tier_for(earnings: Any, thresholds: TierThresholds = DEFAULT_THRESHOLDS) -> str:
    """Highest tier whose threshold is <= earnings."""
    value = Decimal(str(earnings))
    if value >= thresholds.platinum:
        return "platinum"
    if value >= thresholds.gold:
        return "gold"
    if value >= thresholds.silver:
        return "silver"
    return "bronze"


def commission_rate(tier: Optional[str]) -> Decimal:
    """Rate for a tier label. Unknown or empty labels pay the bronze rate."""
    return COMMISSION_RATES.get((tier or "").lower(), COMMISSION_RATES["bronze"])


def calculate_commission(booking_amount: Any, tier: str) -> Decimal:
    """booking_amount x rate(tier), half-up to the minor unit."""
    return percent_of(booking_amount, commission_rate(tier))


def next_tier(tier: str) -> Optional[str]:
    """The tier above this one, or None at platinum."""
    try:
        idx = TIER_ORDER.index(tier)
    except ValueError:
        return TIER_ORDER[1]
    return TIER_ORDER[idx + 1] if idx + 1 < len(TIER_ORDER) else None


def tier_progress(earnings: Any, thresholds: TierThresholds = DEFAULT_THRESHOLDS) -> dict:
    """
    Progress toward the next tier, as shown on the affiliate dashboard.

    Returns:
        {"tier", "rate", "next_tier", "next_rate", "remaining", "percent"}
        remaining/percent are None at platinum.
    """
    earned = to_money(earnings)
    tier = tier_for(earned, thresholds)
    upcoming = next_tier(tier)
    result = {
        "tier": tier,
        "rate": commission_rate(tier),
        "next_tier": upcoming,
        "next_rate": commission_rate(upcoming) if upcoming else None,
        "remaining": None,
        "percent": None,
    }
    if upcoming is None:
        return result

    floor = getattr(thresholds, tier)
    ceiling = getattr(thresholds, upcoming)
    span = ceiling - floor
    result["remaining"] = to_money(ceiling - earned)
    result["percent"] = float(round((earned - floor) / span * 100, 1)) if span > 0 else 0.0
    return result
