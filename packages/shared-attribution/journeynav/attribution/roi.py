"""Channel ROI - attributed revenue against channel spend."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from journeynav.attribution.repository import ConversionRepository
from journeynav.attribution.schema import AttributionModel, MarketingChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelROI:
    """Revenue, cost and ROI percentage for one channel."""

    revenue: float
    cost: float
    roi: float


def channel_roi(revenue: float, cost: float) -> float:
    """ROI percentage; 0 when the channel has no recorded cost."""
    if cost > 0:
        return (revenue - cost) / cost * 100
    return 0.0


def get_channel_roi(
    conversions: ConversionRepository,
    start: datetime,
    end: datetime,
    channel_costs: Mapping[MarketingChannel, float],
    model: AttributionModel = AttributionModel.LINEAR,
) -> dict[MarketingChannel, ChannelROI]:
    """
    Compute ROI per channel from persisted attribution.

    Only channels that received attribution under ``model`` between
    ``start`` and ``end`` appear in the result, and of those only channels
    with revenue or cost. Attribution is read, never recomputed.

    Args:
        conversions: Repository holding processed conversions
        start: Inclusive start of the conversion date range
        end: Inclusive end of the conversion date range
        channel_costs: Spend per channel over the same range
        model: Attribution model whose credit defines revenue

    Returns:
        Mapping of channel to ChannelROI
    """
    report: dict[MarketingChannel, ChannelROI] = {}

    for row in conversions.attribution_by_channel(start, end, model):
        revenue = row.total_attributed_value or 0.0
        cost = channel_costs.get(row.channel, 0.0)
        if not revenue and not cost:
            # e.g. channels credited only for zero-value form submissions
            continue
        report[row.channel] = ChannelROI(
            revenue=revenue,
            cost=cost,
            roi=channel_roi(revenue, cost),
        )

    logger.debug(f"Channel ROI for {model.value}: {len(report)} channels")
    return report
