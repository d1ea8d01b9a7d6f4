"""Bulk attribution: process pending conversions and backfill date ranges."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from journeynav.attribution.config import AttributionConfig
from journeynav.attribution.processor import ConversionProcessor
from journeynav.attribution.repository import ConversionRepository

logger = logging.getLogger(__name__)


@dataclass
class BatchItemError:
    """A conversion that failed during a batch run."""

    conversion_id: str
    error: str


@dataclass
class BatchResult:
    """Result of a batch processing run."""

    started_at: datetime
    completed_at: datetime | None = None
    processed: int = 0
    errors: list[BatchItemError] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def is_success(self) -> bool:
        """Return True if no conversion failed."""
        return not self.errors

    @property
    def duration_seconds(self) -> float | None:
        """Return run duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class BatchReprocessor:
    """Drives a ConversionProcessor over many conversions.

    Conversions are processed one at a time. A failing conversion is logged
    and recorded on the result; the rest of the batch still runs.

    Example:
        >>> batch = BatchReprocessor(processor)
        >>> result = batch.process_unprocessed(limit=500)
        >>> print(f"{result.processed} processed, {result.failed} failed")

        # Apply a new half-life to January's conversions
        >>> batch.recalculate_range(
        ...     datetime(2025, 1, 1, tzinfo=UTC),
        ...     datetime(2025, 1, 31, 23, 59, 59, tzinfo=UTC),
        ...     config=AttributionConfig(time_decay_half_life_days=14),
        ... )
    """

    def __init__(self, processor: ConversionProcessor):
        self.processor = processor

    @property
    def conversions(self) -> ConversionRepository:
        return self.processor.conversions

    def process_unprocessed(
        self,
        limit: int = 100,
        config: AttributionConfig | None = None,
    ) -> BatchResult:
        """Process up to ``limit`` conversions that have never been processed.

        Args:
            limit: Maximum number of conversions to pick up.
            config: Attribution configuration; defaults to the processor's.

        Returns:
            BatchResult whose ``processed`` counts successful conversions.
        """
        conversion_ids = self.conversions.find_unprocessed(limit)
        return self._run(conversion_ids, config)

    def recalculate_range(
        self,
        start: datetime,
        end: datetime,
        config: AttributionConfig | None = None,
    ) -> BatchResult:
        """Invalidate and reprocess every conversion converted in [start, end].

        This is the only way to recompute an already-processed conversion,
        e.g. after adding a model or changing the time-decay half-life.

        Args:
            start: Inclusive start of the conversion date range.
            end: Inclusive end of the conversion date range.
            config: Attribution configuration; defaults to the processor's.

        Returns:
            BatchResult whose ``processed`` counts successful conversions.
        """
        if start > end:
            raise ValueError(f"start ({start.isoformat()}) is after end ({end.isoformat()})")

        self.conversions.reset_for_range(start, end)
        conversion_ids = self.conversions.find_in_range(start, end)
        return self._run(conversion_ids, config)

    def _run(
        self,
        conversion_ids: Iterable[str],
        config: AttributionConfig | None,
    ) -> BatchResult:
        result = BatchResult(started_at=datetime.now(UTC))
        seen: set[str] = set()

        for conversion_id in conversion_ids:
            if conversion_id in seen:
                continue
            seen.add(conversion_id)

            try:
                conversion = self.processor.process_conversion(conversion_id, config)
            except Exception as e:
                logger.exception(f"Failed to process conversion {conversion_id}")
                result.errors.append(BatchItemError(
                    conversion_id=conversion_id,
                    error=f"{type(e).__name__}: {e}",
                ))
                continue
            if conversion is not None:
                result.processed += 1

        result.completed_at = datetime.now(UTC)
        logger.info(
            f"Batch finished: {result.processed} processed, {result.failed} failed "
            f"in {result.duration_seconds:.2f}s"
        )
        return result
