"""
Evaluation & Scoring Engine

Weighted overall score from the buyer's four sub-scores, and the ranking
used for a project's top proposals.

    overall = round(price*0.3 + quality*0.3 + delivery*0.2 + vendor*0.2)

Rounding is half-up (72.5 → 73) and done in Decimal so that binary floating
point never tips a .5 the wrong way.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from foodxchange.kernel.policy import MarketplacePolicy, default_policy
from foodxchange.proposal.models import RANKABLE_STATUSES, Proposal, Scores


def _d(value: float) -> Decimal:
    return Decimal(str(value))


def score(scores: Scores, policy: MarketplacePolicy = default_policy) -> int:
    """
    Overall score in [0, 100]

    Deterministic: same sub-scores and weights always give the same result.
    """
    weighted = (
        _d(scores.price) * _d(policy.price_weight)
        + _d(scores.quality) * _d(policy.quality_weight)
        + _d(scores.delivery) * _d(policy.delivery_weight)
        + _d(scores.vendor) * _d(policy.vendor_weight)
    )
    overall = int(weighted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, overall))


def with_overall(scores: Scores, policy: MarketplacePolicy = default_policy) -> Scores:
    """Copy of the scores with ``overall`` filled in"""
    return scores.model_copy(update={"overall": score(scores, policy)})


def rank_proposals(
    proposals: Iterable[Proposal], limit: int | None = None
) -> list[Proposal]:
    """
    Rank a project's proposals for buyer comparison

    Only submitted and shortlisted proposals take part. Higher overall score
    first; equal scores go to the cheaper total price; then input order.
    Unevaluated proposals count as 0.
    """
    candidates = [p for p in proposals if p.status in RANKABLE_STATUSES]
    ranked = sorted(
        candidates, key=lambda p: (-p.overall_score, p.pricing.total_price)
    )
    return ranked if limit is None else ranked[:limit]
