"""Variance math for cycle counts.

Everything in this module is pure: no database access, Decimal in, Decimal out.

    variance        = counted - system
    variancePercent = variance / system * 100   (system != 0)
                    = 100 if variance != 0 else 0   (system == 0)
    varianceCost    = variance * unitCost
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from cyclecount.core.config import settings

ZERO = Decimal("0")
HUNDRED = Decimal("100")
PERCENT_PLACES = Decimal("0.01")
MONEY_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class VarianceResult:
    variance: Decimal
    variance_percent: Decimal
    variance_cost: Decimal


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def calculate_variance(system_quantity, counted_quantity, unit_cost) -> VarianceResult:
    """Compute variance, percent and cost for one counted row.

    ``variance_percent`` and ``variance_cost`` are rounded half-up to two places.
    """
    system = _dec(system_quantity)
    counted = _dec(counted_quantity)
    cost = _dec(unit_cost)

    variance = counted - system
    if system != 0:
        percent = variance / system * HUNDRED
    else:
        percent = HUNDRED if variance != 0 else ZERO

    return VarianceResult(
        variance=variance,
        variance_percent=percent.quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP),
        variance_cost=(variance * cost).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP),
    )


class ThresholdConfig:
    """Thresholds above which a variance is flagged for review."""

    def __init__(
        self,
        percent_threshold: Optional[Decimal] = None,
        cost_threshold: Optional[Decimal] = None,
    ):
        self.percent_threshold = _dec(
            settings.variance_percent_threshold if percent_threshold is None else percent_threshold
        )
        self.cost_threshold = _dec(
            settings.variance_cost_threshold if cost_threshold is None else cost_threshold
        )

    def to_dict(self) -> dict:
        return {
            "percent_threshold": self.percent_threshold,
            "cost_threshold": self.cost_threshold,
        }


def exceeds_threshold(
    variance: Optional[Decimal],
    variance_percent: Optional[Decimal],
    variance_cost: Optional[Decimal],
    config: ThresholdConfig,
) -> bool:
    """True iff the variance is non-zero and breaks either threshold.

    Uncounted rows (all None) never exceed.
    """
    if variance is None or _dec(variance) == 0:
        return False
    percent = abs(_dec(variance_percent)) if variance_percent is not None else ZERO
    cost = abs(_dec(variance_cost)) if variance_cost is not None else ZERO
    return percent > config.percent_threshold or cost > config.cost_threshold


def severity_key(item) -> tuple:
    """Sort key putting the largest absolute cost, then percent, first."""
    cost = abs(_dec(item.variance_cost)) if item.variance_cost is not None else ZERO
    percent = abs(_dec(item.variance_percent)) if item.variance_percent is not None else ZERO
    return (-cost, -percent)


@dataclass(frozen=True)
class VarianceSummary:
    total_items: int
    items_counted: int
    items_remaining: int
    progress_percent: Decimal
    items_with_variance: int
    items_with_positive_variance: int
    items_with_negative_variance: int
    total_variance_cost: Decimal
    positive_variance_cost: Decimal
    negative_variance_cost: Decimal
    absolute_variance_cost: Decimal
    accuracy_percent: Optional[Decimal]

    @property
    def is_complete(self) -> bool:
        return self.total_items > 0 and self.items_remaining == 0


def summarize_items(items: Iterable) -> VarianceSummary:
    """Aggregate counted rows into session-level totals.

    ``items`` are objects with ``counted_quantity``, ``variance`` and
    ``variance_cost`` attributes. ``accuracy_percent`` is None until at least
    one row is counted. ``negative_variance_cost`` is reported as a positive
    magnitude; ``total_variance_cost`` is the signed net.
    """
    total = 0
    counted = 0
    with_variance = 0
    positive = 0
    negative = 0
    positive_cost = ZERO
    negative_cost = ZERO

    for item in items:
        total += 1
        if item.counted_quantity is None:
            continue
        counted += 1
        variance = _dec(item.variance) if item.variance is not None else ZERO
        cost = _dec(item.variance_cost) if item.variance_cost is not None else ZERO
        if variance == 0:
            continue
        with_variance += 1
        if variance > 0:
            positive += 1
            positive_cost += cost
        else:
            negative += 1
            negative_cost += -cost

    remaining = total - counted
    progress = (
        (Decimal(counted) / Decimal(total) * HUNDRED).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)
        if total
        else ZERO
    )
    accuracy = None
    if counted:
        accuracy = (
            Decimal(counted - with_variance) / Decimal(counted) * HUNDRED
        ).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)

    return VarianceSummary(
        total_items=total,
        items_counted=counted,
        items_remaining=remaining,
        progress_percent=progress,
        items_with_variance=with_variance,
        items_with_positive_variance=positive,
        items_with_negative_variance=negative,
        total_variance_cost=positive_cost - negative_cost,
        positive_variance_cost=positive_cost,
        negative_variance_cost=negative_cost,
        absolute_variance_cost=positive_cost + negative_cost,
        accuracy_percent=accuracy,
    )
