"""
Privacy filter - tier-based small-sample suppression and list caps.

Central source of truth for what each signals tier may see. Applied to every
report before it leaves the service (partner API and admin views alike).
Pure and stateless: same report + same tier always gives the same output.
"""
from dataclasses import dataclass, replace
from typing import Optional

from dealnet.services.aggregation import ROW_SECTIONS, SignalsReport


@dataclass(frozen=True)
class PrivacyPolicy:
    min_clicks: int
    min_impressions: int
    top_n: int
    include_price_volatility: bool


# Lower tiers get stricter minimums: more aggregation before a row is shown.
TIER_POLICIES: dict[str, PrivacyPolicy] = {
    "basic": PrivacyPolicy(min_clicks=20, min_impressions=100, top_n=10, include_price_volatility=False),
    "pro": PrivacyPolicy(min_clicks=10, min_impressions=50, top_n=25, include_price_volatility=True),
}


def policy_for_tier(tier: Optional[str]) -> PrivacyPolicy:
    """Get the policy for a tier. Defaults to basic for unknown tiers."""
    return TIER_POLICIES.get(tier or "basic", TIER_POLICIES["basic"])


def apply_min_threshold(rows: list[dict], policy: PrivacyPolicy) -> list[dict]:
    return [
        row for row in rows
        if row.get("clicks", 0) >= policy.min_clicks
        and row.get("impressions", 0) >= policy.min_impressions
    ]


def clamp_top_n(rows: list[dict], policy: PrivacyPolicy) -> list[dict]:
    return rows[: max(0, policy.top_n)]


def apply_privacy_filter(report: SignalsReport, tier: Optional[str]) -> SignalsReport:
    """
    Return a filtered copy of the report for the given tier.

    Each row list keeps its incoming order, loses rows under the tier's
    click/impression minimums, then is cut to the tier's top N. Tier-gated
    sections are removed outright (None), not emptied. Totals are window-wide
    sums and are left as-is.
    """
    policy = policy_for_tier(tier)
    changes = {}
    for name in ROW_SECTIONS:
        rows = getattr(report, name)
        if rows is None:
            continue
        changes[name] = clamp_top_n(apply_min_threshold(rows, policy), policy)

    if not policy.include_price_volatility:
        changes["price_volatility"] = None

    assumptions = dict(report.assumptions)
    assumptions["privacy"] = {
        "tier": tier if tier in TIER_POLICIES else "basic",
        "min_clicks": policy.min_clicks,
        "min_impressions": policy.min_impressions,
        "top_n": policy.top_n,
    }
    changes["assumptions"] = assumptions
    return replace(report, **changes)
