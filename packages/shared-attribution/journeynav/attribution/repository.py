"""
Repositories - storage interfaces the attribution engine reads and writes.

Each backend implements two interfaces:
- TouchpointRepository: read-only access to a contact's touchpoints
- ConversionRepository: load, persist and query conversions

In-memory implementations back tests and single-process use. See
``journeynav.attribution.storage`` for BigQuery-backed implementations.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime

import pandas as pd

from journeynav.attribution.schema import (
    AttributionModel,
    ChannelAttribution,
    Conversion,
    MarketingChannel,
    Touchpoint,
)

logger = logging.getLogger(__name__)


class TouchpointRepository(ABC):
    """Read access to stored touchpoints."""

    @abstractmethod
    def find_for_contact(self, contact_id: str, up_to: datetime) -> list[Touchpoint]:
        """
        Get a contact's touchpoints that occurred at or before ``up_to``.

        Args:
            contact_id: Contact the touchpoints belong to
            up_to: Inclusive upper bound on ``occurred_at``

        Returns:
            Touchpoints sorted ascending by ``occurred_at``; ties keep
            insertion order
        """
        pass


class ConversionRepository(ABC):
    """Storage for conversion records and their attribution rows."""

    @abstractmethod
    def find_by_id(self, conversion_id: str) -> Conversion | None:
        """Get a conversion, or None if it does not exist."""
        pass

    @abstractmethod
    def save(self, conversion: Conversion) -> None:
        """Persist the whole conversion record in a single write.

        Either every field is stored or none is; implementations raise on
        failure.
        """
        pass

    @abstractmethod
    def find_unprocessed(self, limit: int = 100) -> list[str]:
        """Get up to ``limit`` IDs of conversions not yet processed."""
        pass

    @abstractmethod
    def find_in_range(self, start: datetime, end: datetime) -> list[str]:
        """Get IDs of conversions with ``converted_at`` in [start, end]."""
        pass

    @abstractmethod
    def reset_for_range(self, start: datetime, end: datetime) -> int:
        """Mark conversions in [start, end] unprocessed and clear attribution.

        Returns:
            Number of conversions reset
        """
        pass

    @abstractmethod
    def find_processed_in_range(self, start: datetime, end: datetime) -> list[Conversion]:
        """Get processed conversions with ``converted_at`` in [start, end]."""
        pass

    @abstractmethod
    def attribution_by_channel(
        self,
        start: datetime,
        end: datetime,
        model: AttributionModel = AttributionModel.LINEAR,
    ) -> list[ChannelAttribution]:
        """
        Sum persisted attributed value per channel for one model.

        Only processed conversions with ``converted_at`` in [start, end]
        contribute. Rows are sorted by total attributed value, descending.
        """
        pass


def attribution_frame(conversions: list[Conversion]) -> pd.DataFrame:
    """Flatten conversions into one DataFrame row per attribution result."""
    records = [
        {
            "conversion_id": conversion.conversion_id,
            "converted_at": conversion.converted_at,
            **row.to_dict(),
        }
        for conversion in conversions
        for row in conversion.attribution
    ]
    columns = [
        "conversion_id", "converted_at", "model", "touchpoint_id", "channel",
        "source", "medium", "campaign", "credit", "attributed_value",
    ]
    return pd.DataFrame(records, columns=columns)


def channel_totals(
    frame: pd.DataFrame,
    model: AttributionModel,
    distinct_conversions: bool = False,
) -> list[ChannelAttribution]:
    """Group attribution rows of one model by channel.

    ``conversions`` counts attribution rows, or distinct conversions when
    ``distinct_conversions`` is set.
    """
    rows = frame[frame["model"] == model.value]
    if rows.empty:
        return []

    grouped = (
        rows.groupby("channel")
        .agg(
            total_attributed_value=("attributed_value", "sum"),
            conversions=("conversion_id", "nunique" if distinct_conversions else "size"),
            avg_credit=("credit", "mean"),
        )
        .sort_values("total_attributed_value", ascending=False)
    )

    return [
        ChannelAttribution(
            channel=MarketingChannel(channel),
            total_attributed_value=float(totals.total_attributed_value),
            conversions=int(totals.conversions),
            avg_credit=float(totals.avg_credit),
        )
        for channel, totals in grouped.iterrows()
    ]


class InMemoryTouchpointRepository(TouchpointRepository):
    """
    Touchpoints held in process memory.

    Example:
        touchpoints = InMemoryTouchpointRepository()
        touchpoints.add(Touchpoint(...))
        journey = touchpoints.find_for_contact("contact-42", datetime.now(UTC))
    """

    def __init__(self, touchpoints: list[Touchpoint] | None = None):
        self._touchpoints: list[Touchpoint] = []
        for touchpoint in touchpoints or []:
            self.add(touchpoint)

    def add(self, touchpoint: Touchpoint) -> None:
        """Record a touchpoint. Insertion order breaks timestamp ties."""
        self._touchpoints.append(touchpoint)

    def find_for_contact(self, contact_id: str, up_to: datetime) -> list[Touchpoint]:
        eligible = [
            tp for tp in self._touchpoints
            if tp.contact_id == contact_id and tp.occurred_at <= up_to
        ]
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(eligible, key=lambda tp: tp.occurred_at)


class InMemoryConversionRepository(ConversionRepository):
    """
    Conversions held in process memory.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, conversions: list[Conversion] | None = None):
        self._conversions: dict[str, Conversion] = {}
        for conversion in conversions or []:
            self.save(conversion)

    def __len__(self) -> int:
        return len(self._conversions)

    def find_by_id(self, conversion_id: str) -> Conversion | None:
        conversion = self._conversions.get(conversion_id)
        return copy.deepcopy(conversion) if conversion is not None else None

    def save(self, conversion: Conversion) -> None:
        self._conversions[conversion.conversion_id] = copy.deepcopy(conversion)

    def find_unprocessed(self, limit: int = 100) -> list[str]:
        unprocessed = [
            conversion_id
            for conversion_id, conversion in self._conversions.items()
            if not conversion.is_processed
        ]
        return unprocessed[:limit]

    def find_in_range(self, start: datetime, end: datetime) -> list[str]:
        return [
            conversion_id
            for conversion_id, conversion in self._conversions.items()
            if start <= conversion.converted_at <= end
        ]

    def reset_for_range(self, start: datetime, end: datetime) -> int:
        reset = 0
        for conversion in self._conversions.values():
            if start <= conversion.converted_at <= end:
                conversion.is_processed = False
                conversion.attribution = []
                reset += 1
        logger.info(f"Reset {reset} conversions between {start.isoformat()} and {end.isoformat()}")
        return reset

    def find_processed_in_range(self, start: datetime, end: datetime) -> list[Conversion]:
        return [
            copy.deepcopy(conversion)
            for conversion in self._conversions.values()
            if conversion.is_processed and start <= conversion.converted_at <= end
        ]

    def attribution_by_channel(
        self,
        start: datetime,
        end: datetime,
        model: AttributionModel = AttributionModel.LINEAR,
    ) -> list[ChannelAttribution]:
        frame = attribution_frame(self.find_processed_in_range(start, end))
        return channel_totals(frame, model)
