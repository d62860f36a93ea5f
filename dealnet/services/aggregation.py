"""
Aggregation engine - turns a window of decoded click events into a signals
report: totals, per-dimension breakdowns, category momentum, time-to-expiry
conversion, discount volatility and deal lifecycle.

Pure computation. Every call recomputes from the events it is handed; there
is no incremental state, so concurrent calls need no locking. Revenue is a
static per-provider EPC estimate, never reconciled against settlement data.
"""
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Mapping, Optional, Sequence

from dealnet.services.attribution import decode
from dealnet.services.event_reader import DealSnapshot, Event, EventWindow, UNKNOWN_CATEGORY

logger = logging.getLogger(__name__)

# Conservative EPC assumptions (cents per outbound click). Keep stable over time.
EPC_CENTS_BY_PROVIDER: dict[str, int] = {"amazon": 12, "walmart": 10, "target": 10}

MOMENTUM_SPLIT = timedelta(days=7)
MAX_LIFETIME_HOURS = 24 * 30

EXPIRY_BUCKETS: tuple[tuple[str, float], ...] = (
    ("lte_1h", 1.0),
    ("lte_6h", 6.0),
    ("lte_24h", 24.0),
)
EXPIRY_BUCKET_OVERFLOW = "gt_24h"

# report attribute -> row key name
DIMENSIONS: dict[str, str] = {
    "sections": "section",
    "deal_states": "deal_status",
    "categories": "category",
    "providers": "provider",
    "partners": "partner",
}

# Every list-of-rows section of the report, in output order
ROW_SECTIONS = (
    "sections",
    "deal_states",
    "categories",
    "providers",
    "partners",
    "time_to_expiry",
    "category_momentum",
    "daily",
    "price_volatility",
)


@dataclass(frozen=True)
class SignalsParams:
    days: int
    tier: str = "basic"
    site_key: Optional[str] = None
    partner_key: Optional[str] = None  # only partner-attributed events when set


@dataclass(frozen=True)
class SignalsReport:
    since: datetime
    generated_at: datetime
    window: dict
    assumptions: dict
    totals: dict
    sections: list[dict] = field(default_factory=list)
    deal_states: list[dict] = field(default_factory=list)
    categories: list[dict] = field(default_factory=list)
    providers: list[dict] = field(default_factory=list)
    partners: list[dict] = field(default_factory=list)
    time_to_expiry: list[dict] = field(default_factory=list)
    category_momentum: list[dict] = field(default_factory=list)
    daily: list[dict] = field(default_factory=list)
    lifecycle: dict = field(default_factory=dict)
    # None means the section is withheld entirely for this tier
    price_volatility: Optional[list[dict]] = None

    def to_dict(self) -> dict:
        out = asdict(self)
        out["since"] = self.since.isoformat()
        out["generated_at"] = self.generated_at.isoformat()
        if self.price_volatility is None:
            out.pop("price_volatility")
        return out


@dataclass
class _Tally:
    impressions: int = 0
    clicks: int = 0
    revenue_cents: int = 0


def epc_cents(provider: str) -> int:
    """Estimated cents per click for a provider; unknown providers estimate 0."""
    return EPC_CENTS_BY_PROVIDER.get(provider, 0)


def click_through_rate(clicks: int, impressions: int) -> float:
    """clicks / impressions clamped to [0, 1]; no impressions means 0."""
    if impressions <= 0:
        return 0.0
    return round(min(1.0, max(0.0, clicks / impressions)), 4)


def expiry_bucket(hours_to_expiry: float) -> str:
    for name, upper in EXPIRY_BUCKETS:
        if hours_to_expiry <= upper:
            return name
    return EXPIRY_BUCKET_OVERFLOW


def _share(part: float, total: float) -> float:
    return round(part / total, 4) if total > 0 else 0.0


def _click_shares(counts: Mapping[str, int]) -> dict[str, float]:
    total = sum(counts.values())
    return {k: (v / total if total > 0 else 0.0) for k, v in counts.items()}


def _tally_rows(key_name: str, tallies: Mapping[str, _Tally], total_revenue: int) -> list[dict]:
    rows = [
        {
            key_name: key,
            "impressions": t.impressions,
            "clicks": t.clicks,
            "ctr": click_through_rate(t.clicks, t.impressions),
            "est_revenue_cents": t.revenue_cents,
            "revenue_share": _share(t.revenue_cents, total_revenue),
        }
        for key, t in tallies.items()
    ]
    rows.sort(key=lambda r: (-r["est_revenue_cents"], -r["clicks"], -r["impressions"], r[key_name]))
    return rows


def _momentum_rows(
    last7: Mapping[str, int],
    prev7: Mapping[str, int],
    categories: Mapping[str, _Tally],
) -> list[dict]:
    share7 = _click_shares(last7)
    share_prev = _click_shares(prev7)
    rows = []
    for category in set(share7) | set(share_prev):
        s7 = share7.get(category, 0.0)
        sp = share_prev.get(category, 0.0)
        tally = categories.get(category, _Tally())
        rows.append({
            "category": category,
            "impressions": tally.impressions,
            "clicks": tally.clicks,
            "share_7d": round(s7, 4),
            "share_prev_7d": round(sp, 4),
            "delta_share": round(s7 - sp, 4),
            "est_revenue_cents": tally.revenue_cents,
        })
    rows.sort(key=lambda r: (-r["delta_share"], r["category"]))
    return rows


def _volatility_rows(
    samples_by_category: Mapping[str, list[float]],
    categories: Mapping[str, _Tally],
) -> list[dict]:
    rows = []
    for category, samples in samples_by_category.items():
        std_dev = statistics.stdev(samples) if len(samples) >= 2 else 0.0
        tally = categories.get(category, _Tally())
        rows.append({
            "category": category,
            "samples": len(samples),
            "discount_mean": round(statistics.fmean(samples), 4),
            "discount_std_dev": round(std_dev, 4),
            "impressions": tally.impressions,
            "clicks": tally.clicks,
        })
    rows.sort(key=lambda r: (-r["discount_std_dev"], r["category"]))
    return rows


def _lifecycle(deals: Sequence[DealSnapshot]) -> dict:
    """Average created->expires lifetime among clicked deals, ignoring implausible spans."""
    lifetimes = []
    for deal in deals:
        if deal.created_at is None:
            continue
        hours = (deal.expires_at - deal.created_at).total_seconds() / 3600
        if 0 <= hours <= MAX_LIFETIME_HOURS:
            lifetimes.append(hours)
    avg = round(statistics.fmean(lifetimes), 2) if lifetimes else None
    return {"avg_lifetime_hours": avg, "samples": len(lifetimes)}


def _discount(deal: DealSnapshot) -> Optional[float]:
    old = deal.old_price_cents
    if not old or old <= 0 or old < deal.current_price_cents:
        return None
    return (old - deal.current_price_cents) / old


def build_signals_report(
    window: EventWindow,
    deals: Mapping[str, DealSnapshot],
    params: SignalsParams,
    *,
    now: datetime,
) -> SignalsReport:
    """
    Roll a window of events up into an unfiltered SignalsReport.

    Impressions are events whose href is the impression sentinel; clicks are
    events whose attribution says affiliate_click. Every other synthetic
    event is ignored. Category comes from the joined deal (override, then
    base category, else "unknown"). Run the result through the privacy
    filter before it leaves the service.
    """
    tallies: dict[str, dict[str, _Tally]] = {dim: defaultdict(_Tally) for dim in DIMENSIONS}
    expiry: dict[str, _Tally] = defaultdict(_Tally)
    daily: dict[str, _Tally] = defaultdict(_Tally)
    clicks_last7: dict[str, int] = defaultdict(int)
    clicks_prev7: dict[str, int] = defaultdict(int)
    discount_samples: dict[str, list[float]] = defaultdict(list)
    clicked_deals: dict[str, DealSnapshot] = {}

    last7_start = now - MOMENTUM_SPLIT
    prev7_start = last7_start - MOMENTUM_SPLIT

    total_impressions = 0
    total_clicks = 0
    total_revenue = 0

    for event in window.events:
        record = decode(event.attribution)
        if params.site_key and record.site_key != params.site_key:
            continue
        if params.partner_key and record.partner_key != params.partner_key:
            continue

        is_impression = event.is_impression
        if not is_impression and not record.is_affiliate_click:
            continue

        deal = deals.get(event.deal_id) if event.deal_id else None
        category = deal.category if deal else UNKNOWN_CATEGORY
        keys = {
            "sections": record.section,
            "deal_states": record.deal_status,
            "categories": category,
            "providers": record.provider,
            "partners": record.partner_key,
        }
        touched = [tallies[dim][key] for dim, key in keys.items()]
        touched.append(daily[event.occurred_at.date().isoformat()])
        if deal is not None:
            hours = (deal.expires_at - event.occurred_at).total_seconds() / 3600
            touched.append(expiry[expiry_bucket(hours)])

        if is_impression:
            total_impressions += 1
            for tally in touched:
                tally.impressions += 1
            continue

        epc = epc_cents(record.provider)
        total_clicks += 1
        total_revenue += epc
        for tally in touched:
            tally.clicks += 1
            tally.revenue_cents += epc

        if event.occurred_at >= last7_start:
            clicks_last7[category] += 1
        elif event.occurred_at >= prev7_start:
            clicks_prev7[category] += 1

        if deal is not None:
            clicked_deals[deal.deal_id] = deal
            discount = _discount(deal)
            if discount is not None:
                discount_samples[category].append(discount)

    report = SignalsReport(
        since=window.since,
        generated_at=now,
        window={
            "days": params.days,
            "event_cap": window.cap,
            "events_scanned": len(window.events),
            "truncated": window.truncated,
        },
        assumptions={
            "epc_cents_by_provider": dict(EPC_CENTS_BY_PROVIDER),
            "revenue_is_estimate": True,
            "momentum_split_days": MOMENTUM_SPLIT.days,
        },
        totals={
            "impressions": total_impressions,
            "clicks": total_clicks,
            "ctr": click_through_rate(total_clicks, total_impressions),
            "est_revenue_cents": total_revenue,
        },
        sections=_tally_rows("section", tallies["sections"], total_revenue),
        deal_states=_tally_rows("deal_status", tallies["deal_states"], total_revenue),
        categories=_tally_rows("category", tallies["categories"], total_revenue),
        providers=_tally_rows("provider", tallies["providers"], total_revenue),
        partners=_tally_rows("partner", tallies["partners"], total_revenue),
        time_to_expiry=_tally_rows("bucket", expiry, total_revenue),
        category_momentum=_momentum_rows(clicks_last7, clicks_prev7, tallies["categories"]),
        daily=sorted(
            _tally_rows("day", daily, total_revenue), key=lambda r: r["day"], reverse=True
        ),
        lifecycle=_lifecycle(list(clicked_deals.values())),
        price_volatility=_volatility_rows(discount_samples, tallies["categories"]),
    )

    if window.truncated:
        logger.warning(
            "Signals computed over a truncated window (cap=%d); counts are lower bounds",
            window.cap,
            extra={"partner_key": params.partner_key, "site_key": params.site_key},
        )
    return report


def build_ctr_report(events: Sequence[Event]) -> dict:
    """
    Internal CTR view: impressions, clicks and CTR by section and by deal
    state, plus the CTA variants that drive the most clicks. Unfiltered.
    """
    by_section: dict[str, _Tally] = defaultdict(_Tally)
    by_status: dict[str, _Tally] = defaultdict(_Tally)
    clicks_by_cta: dict[str, int] = defaultdict(int)

    for event in events:
        record = decode(event.attribution)
        if event.is_impression:
            by_section[record.section].impressions += 1
            by_status[record.deal_status].impressions += 1
        elif record.is_affiliate_click:
            by_section[record.section].clicks += 1
            by_status[record.deal_status].clicks += 1
            clicks_by_cta[record.cta_variant] += 1

    def _ctr_rows(key_name: str, tallies: Mapping[str, _Tally]) -> list[dict]:
        rows = [
            {
                key_name: key,
                "impressions": t.impressions,
                "clicks": t.clicks,
                "ctr": click_through_rate(t.clicks, t.impressions),
            }
            for key, t in tallies.items()
        ]
        rows.sort(key=lambda r: (-r["ctr"], -r["clicks"], r[key_name]))
        return rows

    top_ctas = sorted(
        ({"cta": cta, "clicks": clicks} for cta, clicks in clicks_by_cta.items()),
        key=lambda r: (-r["clicks"], r["cta"]),
    )
    return {
        "by_section": _ctr_rows("section", by_section),
        "by_deal_state": _ctr_rows("deal_status", by_status),
        "top_ctas": top_ctas,
    }
