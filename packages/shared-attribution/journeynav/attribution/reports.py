"""
Attribution reports over persisted conversions.

All reports read processed conversions with ``converted_at`` in the
requested range and never recompute attribution:
- overview: conversion counts, value and journey averages
- attribution_by_campaign: attributed value per campaign/source/medium
- compare_models: channel totals side by side for several models
- conversion_paths: most common channel sequences before conversion
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import pandas as pd

from journeynav.attribution.repository import (
    ConversionRepository,
    TouchpointRepository,
    attribution_frame,
    channel_totals,
)
from journeynav.attribution.schema import (
    AttributionModel,
    CampaignAttribution,
    ChannelAttribution,
    Conversion,
    ConversionOverview,
    ConversionPath,
    ConversionType,
    MarketingChannel,
)

logger = logging.getLogger(__name__)

DEFAULT_COMPARED_MODELS: tuple[AttributionModel, ...] = (
    AttributionModel.FIRST_TOUCH,
    AttributionModel.LAST_TOUCH,
    AttributionModel.LINEAR,
    AttributionModel.U_SHAPED,
)

PATH_SEPARATOR = ">"


def _none_if_na(value: Any) -> Any:
    return None if pd.isna(value) else value


class AttributionReports:
    """
    Read-only reporting over attributed conversions.

    Example:
        reports = AttributionReports(conversions, touchpoints)
        for path in reports.conversion_paths(start, end, limit=5):
            print(" -> ".join(c.value for c in path.path), path.count)
    """

    def __init__(
        self,
        conversions: ConversionRepository,
        touchpoints: TouchpointRepository | None = None,
    ):
        self.conversions = conversions
        self.touchpoints = touchpoints

    def overview(self, start: datetime, end: datetime) -> ConversionOverview:
        """Summarize processed conversions in [start, end]."""
        processed = self.conversions.find_processed_in_range(start, end)
        if not processed:
            return ConversionOverview()

        df = pd.DataFrame([
            {
                "conversion_type": conversion.conversion_type.value,
                "value": conversion.value,
                "journey_duration": conversion.journey_duration,
                "touchpoint_count": conversion.touchpoint_count,
            }
            for conversion in processed
        ])

        return ConversionOverview(
            total_conversions=len(df),
            total_value=float(df["value"].sum()),
            avg_journey_duration=float(df["journey_duration"].mean()),
            avg_touchpoints=float(df["touchpoint_count"].mean()),
            by_type={
                ConversionType(conversion_type): int(count)
                for conversion_type, count in df["conversion_type"].value_counts().items()
            },
        )

    def attribution_by_campaign(
        self,
        start: datetime,
        end: datetime,
        model: AttributionModel = AttributionModel.LINEAR,
        limit: int = 20,
    ) -> list[CampaignAttribution]:
        """Attributed value per campaign/source/medium, highest first.

        Rows without a campaign label are left out.
        """
        frame = attribution_frame(self.conversions.find_processed_in_range(start, end))
        rows = frame[(frame["model"] == model.value) & frame["campaign"].notna()]
        if rows.empty:
            return []

        grouped = (
            rows.groupby(["campaign", "source", "medium"], dropna=False)
            .agg(
                conversions=("conversion_id", "size"),
                total_attributed_value=("attributed_value", "sum"),
                avg_credit=("credit", "mean"),
                channels=("channel", "unique"),
            )
            .sort_values("total_attributed_value", ascending=False)
            .head(limit)
        )

        return [
            CampaignAttribution(
                campaign=campaign,
                source=_none_if_na(source),
                medium=_none_if_na(medium),
                conversions=int(totals.conversions),
                total_attributed_value=float(totals.total_attributed_value),
                avg_credit=float(totals.avg_credit),
                channels=tuple(MarketingChannel(channel) for channel in totals.channels),
            )
            for (campaign, source, medium), totals in grouped.iterrows()
        ]

    def compare_models(
        self,
        start: datetime,
        end: datetime,
        models: Sequence[AttributionModel] = DEFAULT_COMPARED_MODELS,
    ) -> dict[AttributionModel, list[ChannelAttribution]]:
        """Channel totals per model; ``conversions`` counts distinct conversions."""
        frame = attribution_frame(self.conversions.find_processed_in_range(start, end))
        return {
            model: channel_totals(frame, model, distinct_conversions=True)
            for model in models
        }

    def conversion_paths(
        self,
        start: datetime,
        end: datetime,
        limit: int = 10,
    ) -> list[ConversionPath]:
        """Most frequent channel sequences among conversions with touchpoints.

        Raises:
            ValueError: If the reports were built without a touchpoint repository.
        """
        if self.touchpoints is None:
            raise ValueError("conversion_paths requires a touchpoint repository")

        records = []
        for conversion in self.conversions.find_processed_in_range(start, end):
            if conversion.touchpoint_count == 0:
                continue
            path = self._channel_path(conversion)
            records.append({
                "path": PATH_SEPARATOR.join(channel.value for channel in path),
                "value": conversion.value,
                "journey_duration": conversion.journey_duration,
            })

        if not records:
            return []

        grouped = (
            pd.DataFrame(records)
            .groupby("path")
            .agg(
                count=("value", "size"),
                total_value=("value", "sum"),
                avg_journey_duration=("journey_duration", "mean"),
            )
            .sort_values("count", ascending=False, kind="stable")
            .head(limit)
        )

        return [
            ConversionPath(
                path=tuple(MarketingChannel(channel) for channel in path.split(PATH_SEPARATOR) if channel),
                count=int(totals["count"]),
                total_value=float(totals.total_value),
                avg_journey_duration=float(totals.avg_journey_duration),
                avg_value_per_conversion=float(totals.total_value) / int(totals["count"]),
            )
            for path, totals in grouped.iterrows()
        ]

    def _channel_path(self, conversion: Conversion) -> list[MarketingChannel]:
        """Channels of the conversion's touchpoint snapshot, in order."""
        journey = {
            tp.touchpoint_id: tp.channel
            for tp in self.touchpoints.find_for_contact(conversion.contact_id, conversion.converted_at)
        }
        missing = [tp_id for tp_id in conversion.touchpoints if tp_id not in journey]
        if missing:
            logger.warning(
                f"Conversion {conversion.conversion_id}: {len(missing)} snapshot touchpoints no longer stored"
            )
        return [journey[tp_id] for tp_id in conversion.touchpoints if tp_id in journey]
