"""
Attribution calculator - distribute conversion credit across touchpoints.

Supports multiple attribution models:
- First-touch: 100% credit to the first touchpoint
- Last-touch: 100% credit to the last touchpoint
- Linear: Equal credit to all touchpoints
- Time-decay: Exponentially more credit to recent touchpoints
- U-shaped: 40% first, 40% last, 20% split across the middle
- W-shaped: 30% first, 30% middle, 30% last, 10% split across the rest
- Custom: Credit proportional to per-channel weights

Data-driven (ML-based) attribution is not implemented: requesting it
produces no rows.

Every function here is pure. Touchpoints must already be sorted by
``occurred_at``; output rows follow input order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from types import MappingProxyType

from journeynav.attribution.config import AttributionConfig
from journeynav.attribution.schema import (
    AttributionModel,
    AttributionResult,
    MarketingChannel,
    Touchpoint,
)

logger = logging.getLogger(__name__)

ModelCalculator = Callable[
    [Sequence[Touchpoint], float, datetime, AttributionConfig, int | None],
    list[AttributionResult],
]


def _rows(
    model: AttributionModel,
    touchpoints: Sequence[Touchpoint],
    credits: Sequence[float],
    conversion_value: float,
) -> list[AttributionResult]:
    return [
        AttributionResult.for_touchpoint(
            model,
            touchpoint,
            credit=credit,
            attributed_value=conversion_value * credit / 100,
        )
        for touchpoint, credit in zip(touchpoints, credits, strict=True)
    ]


def _normalize(weights: Sequence[float]) -> list[float]:
    """Scale raw weights so they sum to 100 credit points."""
    total = sum(weights)
    return [weight / total * 100 for weight in weights]


def first_touch(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
    model: AttributionModel = AttributionModel.FIRST_TOUCH,
) -> list[AttributionResult]:
    """Give all credit to the first touchpoint in the path."""
    if not touchpoints:
        return []
    return _rows(model, touchpoints[:1], [100.0], conversion_value)


def last_touch(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
) -> list[AttributionResult]:
    """Give all credit to the last touchpoint before conversion."""
    if not touchpoints:
        return []
    return _rows(AttributionModel.LAST_TOUCH, touchpoints[-1:], [100.0], conversion_value)


def linear(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
    model: AttributionModel = AttributionModel.LINEAR,
) -> list[AttributionResult]:
    """
    Distribute credit equally across all touchpoints.

    Each touchpoint gets 100/N. Rounding drift in the sum is left as is.
    """
    if not touchpoints:
        return []
    credit = 100 / len(touchpoints)
    return _rows(model, touchpoints, [credit] * len(touchpoints), conversion_value)


def time_decay(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
    conversion_date: datetime,
    half_life_days: float = 7,
) -> list[AttributionResult]:
    """
    More credit to recent touchpoints.

    Raw weight is ``0.5 ** (gap / half_life)`` where gap is the time
    between the touchpoint and the conversion, then weights are normalized
    to 100.
    """
    if not touchpoints:
        return []

    half_life = timedelta(days=half_life_days)
    gaps = [(conversion_date - tp.occurred_at) / half_life for tp in touchpoints]

    # Shift by the smallest gap so the most recent weight is 1 and old
    # journeys never underflow to zero. Normalization cancels the shift.
    nearest = min(gaps)
    weights = [0.5 ** (gap - nearest) for gap in gaps]

    return _rows(AttributionModel.TIME_DECAY, touchpoints, _normalize(weights), conversion_value)


def u_shaped(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
) -> list[AttributionResult]:
    """
    40% to first, 40% to last, 20% distributed to middle.

    One touchpoint receives all credit; two touchpoints split 50/50.
    """
    count = len(touchpoints)
    if count == 0:
        return []
    if count == 1:
        return first_touch(touchpoints, conversion_value, model=AttributionModel.U_SHAPED)
    if count == 2:
        return _rows(AttributionModel.U_SHAPED, touchpoints, [50.0, 50.0], conversion_value)

    middle = 20 / (count - 2)
    credits = [40.0] + [middle] * (count - 2) + [40.0]
    return _rows(AttributionModel.U_SHAPED, touchpoints, credits, conversion_value)


def w_shaped(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
    mid_index: int | None = None,
) -> list[AttributionResult]:
    """
    30% to first, middle and last; 10% split across the remaining touchpoints.

    Paths of three touchpoints or fewer are split linearly. The middle
    anchor is ``mid_index`` when it points strictly inside the path,
    otherwise ``N // 2``.
    """
    count = len(touchpoints)
    if count == 0:
        return []
    if count <= 3:
        return linear(touchpoints, conversion_value, model=AttributionModel.W_SHAPED)

    if mid_index is None or not 0 < mid_index < count - 1:
        if mid_index is not None:
            logger.debug(f"W-shaped mid index {mid_index} outside path of {count}, using {count // 2}")
        mid_index = count // 2

    anchors = {0, mid_index, count - 1}
    rest = 10 / (count - 3)
    credits = [30.0 if i in anchors else rest for i in range(count)]
    return _rows(AttributionModel.W_SHAPED, touchpoints, credits, conversion_value)


def custom(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
    weights: Mapping[MarketingChannel, float],
) -> list[AttributionResult]:
    """
    Credit proportional to the configured weight of each touchpoint's channel.

    Channels missing from ``weights`` count as weight 1; negative weights
    count as 0. If no touchpoint ends up with any weight the credit is
    split equally.
    """
    if not touchpoints:
        return []
    raw = [max(weights.get(tp.channel, 1.0), 0.0) for tp in touchpoints]
    if sum(raw) <= 0:
        logger.debug(f"Custom weights are all zero for {len(touchpoints)} touchpoints, splitting equally")
        raw = [1.0] * len(touchpoints)
    return _rows(AttributionModel.CUSTOM, touchpoints, _normalize(raw), conversion_value)


def data_driven(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
) -> list[AttributionResult]:
    """ML-based attribution is not implemented; always returns no rows."""
    if touchpoints:
        logger.debug("Data-driven attribution requested; no rows produced")
    return []


MODEL_CALCULATORS: MappingProxyType[AttributionModel, ModelCalculator] = MappingProxyType({
    AttributionModel.FIRST_TOUCH: lambda tps, value, date, config, mid: first_touch(tps, value),
    AttributionModel.LAST_TOUCH: lambda tps, value, date, config, mid: last_touch(tps, value),
    AttributionModel.LINEAR: lambda tps, value, date, config, mid: linear(tps, value),
    AttributionModel.TIME_DECAY: lambda tps, value, date, config, mid: time_decay(
        tps, value, date, config.time_decay_half_life_days
    ),
    AttributionModel.U_SHAPED: lambda tps, value, date, config, mid: u_shaped(tps, value),
    AttributionModel.W_SHAPED: lambda tps, value, date, config, mid: w_shaped(
        tps, value, mid if mid is not None else config.w_shaped_mid_index
    ),
    AttributionModel.CUSTOM: lambda tps, value, date, config, mid: custom(tps, value, config.custom_weights),
    AttributionModel.DATA_DRIVEN: lambda tps, value, date, config, mid: data_driven(tps, value),
})


def calculate_attribution(
    touchpoints: Sequence[Touchpoint],
    conversion_value: float,
    conversion_date: datetime,
    config: AttributionConfig | None = None,
    mid_index: int | None = None,
) -> list[AttributionResult]:
    """
    Run every configured attribution model against one conversion path.

    Args:
        touchpoints: Touchpoints sorted ascending by ``occurred_at``
        conversion_value: Monetary value of the conversion (may be 0)
        conversion_date: When the conversion happened
        config: Models and their parameters (defaults to AttributionConfig())
        mid_index: Middle anchor for W-shaped; overrides the config value

    Returns:
        Rows from each model concatenated in configured order. Empty when
        there are no touchpoints.
    """
    config = config or AttributionConfig()
    if not touchpoints:
        return []

    results: list[AttributionResult] = []
    for model in config.models:
        calculator = MODEL_CALCULATORS[model]
        rows = calculator(touchpoints, conversion_value, conversion_date, config, mid_index)
        logger.debug(f"{model.value}: {len(rows)} rows for {len(touchpoints)} touchpoints")
        results.extend(rows)
    return results
