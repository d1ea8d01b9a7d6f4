"""Conversion processing.

Loads a conversion, collects the contact's touchpoints up to the
conversion time, runs the configured attribution models and persists the
result together with journey statistics.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from journeynav.attribution.calculator import calculate_attribution
from journeynav.attribution.config import AttributionConfig
from journeynav.attribution.exceptions import StorageError
from journeynav.attribution.repository import ConversionRepository, TouchpointRepository
from journeynav.attribution.schema import Conversion, ConversionType, Touchpoint

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


class _ConversionLocks:
    """One lock per conversion ID, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, list[int]]] = {}

    @contextmanager
    def hold(self, conversion_id: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.setdefault(conversion_id, (threading.Lock(), [0]))
            users[0] += 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                users[0] -= 1
                if users[0] == 0:
                    del self._locks[conversion_id]


def journey_duration_days(first_touch_at: datetime, converted_at: datetime) -> int:
    """Whole days from the first touchpoint to the conversion, rounded up."""
    return max(0, math.ceil((converted_at - first_touch_at) / ONE_DAY))


class ConversionProcessor:
    """Computes and stores attribution for individual conversions.

    Processing is idempotent: an already-processed conversion is returned
    untouched. Reprocessing requires resetting it first (see
    ``BatchReprocessor.recalculate_range``).

    Example:
        >>> processor = ConversionProcessor(
        ...     touchpoints=InMemoryTouchpointRepository(journey),
        ...     conversions=InMemoryConversionRepository(),
        ... )
        >>> conversion = processor.create_deal_conversion(
        ...     deal_id="deal-7", contact_id="contact-42", value=1000.0
        ... )
        >>> conversion.results_for(AttributionModel.LINEAR)
    """

    def __init__(
        self,
        touchpoints: TouchpointRepository,
        conversions: ConversionRepository,
        config: AttributionConfig | None = None,
    ):
        """Initialize the processor.

        Args:
            touchpoints: Source of contact touchpoints.
            conversions: Storage for conversion records.
            config: Default attribution configuration.
        """
        self.touchpoints = touchpoints
        self.conversions = conversions
        self.config = config or AttributionConfig()
        self._locks = _ConversionLocks()

    def process_conversion(
        self,
        conversion_id: str,
        config: AttributionConfig | None = None,
    ) -> Conversion | None:
        """Attribute a conversion to the touchpoints that preceded it.

        Args:
            conversion_id: ID of the conversion to process.
            config: Attribution configuration; defaults to the processor's.

        Returns:
            The processed conversion, the unchanged conversion if it was
            already processed, or None if it does not exist.

        Raises:
            StorageError: If loading or persisting fails. Nothing is marked
                processed in that case.
        """
        config = config or self.config

        with self._locks.hold(conversion_id):
            conversion = self.conversions.find_by_id(conversion_id)
            if conversion is None:
                logger.debug(f"Conversion not found: {conversion_id}")
                return None
            if conversion.is_processed:
                return conversion

            touchpoints = self.touchpoints.find_for_contact(
                conversion.contact_id, conversion.converted_at
            )
            updated = self._attribute(conversion, touchpoints, config)

            self.conversions.save(updated)
            logger.info(
                f"Processed conversion {conversion_id}: "
                f"{updated.touchpoint_count} touchpoints, {len(updated.attribution)} attribution rows"
            )
            return updated

    def _attribute(
        self,
        conversion: Conversion,
        touchpoints: Sequence[Touchpoint],
        config: AttributionConfig,
    ) -> Conversion:
        """Build the processed copy of a conversion. Does not persist."""
        now = datetime.now(UTC)

        if not touchpoints:
            return replace(
                conversion,
                is_processed=True,
                touchpoints=[],
                first_touchpoint=None,
                last_touchpoint=None,
                attribution=[],
                journey_duration=0,
                touchpoint_count=0,
                updated_at=now,
            )

        first, last = touchpoints[0], touchpoints[-1]
        attribution = calculate_attribution(
            touchpoints,
            conversion.value,
            conversion.converted_at,
            config,
            mid_index=self._mql_index(conversion, touchpoints),
        )

        return replace(
            conversion,
            is_processed=True,
            touchpoints=[tp.touchpoint_id for tp in touchpoints],
            first_touchpoint=first.touchpoint_id,
            last_touchpoint=last.touchpoint_id,
            attribution=attribution,
            journey_duration=journey_duration_days(first.occurred_at, conversion.converted_at),
            touchpoint_count=len(touchpoints),
            updated_at=now,
        )

    @staticmethod
    def _mql_index(conversion: Conversion, touchpoints: Sequence[Touchpoint]) -> int | None:
        """Position of the conversion's MQL touchpoint in the path, if present."""
        if conversion.mql_touchpoint is None:
            return None
        for index, touchpoint in enumerate(touchpoints):
            if touchpoint.touchpoint_id == conversion.mql_touchpoint:
                return index
        return None

    def create_deal_conversion(
        self,
        deal_id: str,
        contact_id: str,
        value: float,
        currency: str = "MXN",
        closed_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Conversion:
        """Record a won deal as a conversion and attribute it immediately.

        Args:
            deal_id: ID of the won deal.
            contact_id: Contact who converted.
            value: Deal value.
            currency: Currency code of the value.
            closed_at: When the deal closed (default: now).
            metadata: Extra fields stored with the conversion.

        Returns:
            The processed conversion.
        """
        conversion = Conversion(
            contact_id=contact_id,
            conversion_type=ConversionType.DEAL_WON,
            value=value,
            currency=currency,
            deal_id=deal_id,
            converted_at=closed_at or datetime.now(UTC),
            metadata=metadata or {},
            created_at=datetime.now(UTC),
        )
        return self._create_and_process(conversion)

    def create_form_conversion(
        self,
        contact_id: str,
        form_submission_id: str,
        submitted_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Conversion:
        """Record a form submission as a zero-value conversion and attribute it.

        Args:
            contact_id: Contact who submitted the form.
            form_submission_id: ID of the form submission.
            submitted_at: When the form was submitted (default: now).
            metadata: Extra fields stored with the conversion.

        Returns:
            The processed conversion.
        """
        conversion = Conversion(
            contact_id=contact_id,
            conversion_type=ConversionType.FORM_SUBMIT,
            value=0.0,
            form_submission_id=form_submission_id,
            converted_at=submitted_at or datetime.now(UTC),
            metadata=metadata or {},
            created_at=datetime.now(UTC),
        )
        return self._create_and_process(conversion)

    def _create_and_process(self, conversion: Conversion) -> Conversion:
        self.conversions.save(conversion)
        logger.info(
            f"Created {conversion.conversion_type.value} conversion {conversion.conversion_id} "
            f"for contact {conversion.contact_id}"
        )

        processed = self.process_conversion(conversion.conversion_id)
        if processed is None:
            raise StorageError(f"Conversion {conversion.conversion_id} missing after save")
        return processed
