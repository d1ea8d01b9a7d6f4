"""Tests for ConversionProcessor."""

from __future__ import annotations

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from journeynav.attribution.config import AttributionConfig
from journeynav.attribution.exceptions import StorageError
from journeynav.attribution.processor import (
    ConversionProcessor,
    journey_duration_days,
)
from journeynav.attribution.repository import InMemoryConversionRepository
from journeynav.attribution.schema import (
    AttributionModel,
    Conversion,
    ConversionType,
    MarketingChannel,
)


class TestJourneyDuration:
    """Test journey_duration_days helper."""

    def test_whole_days(self, t0):
        """Test exact day gaps."""
        assert journey_duration_days(t0, t0 + timedelta(days=7)) == 7

    def test_partial_day_rounds_up(self, t0):
        """Test partial days count as a full day."""
        assert journey_duration_days(t0, t0 + timedelta(days=2, hours=1)) == 3

    def test_same_instant(self, t0):
        """Test zero gap is zero days."""
        assert journey_duration_days(t0, t0) == 0


class TestProcessConversion:
    """Test process_conversion."""

    def test_three_touchpoint_journey(self, processor, conversion_repo, sample_conversion):
        """Test the full journey is attributed under every default model."""
        conversion_repo.save(sample_conversion)

        result = processor.process_conversion("CONV-001")

        assert result.is_processed is True
        assert result.touchpoints == ["TP-001", "TP-002", "TP-003"]
        assert result.first_touchpoint == "TP-001"
        assert result.last_touchpoint == "TP-003"
        assert result.touchpoint_count == 3
        assert result.journey_duration == 7
        assert result.updated_at is not None

        first = result.results_for(AttributionModel.FIRST_TOUCH)
        assert len(first) == 1
        assert first[0].channel == MarketingChannel.PAID_SOCIAL
        assert first[0].credit == 100.0
        assert first[0].attributed_value == 1000.0

        last = result.results_for(AttributionModel.LAST_TOUCH)
        assert last[0].channel == MarketingChannel.ORGANIC_SEARCH

        for row in result.results_for(AttributionModel.LINEAR):
            assert row.credit == pytest.approx(33.333, abs=0.001)
            assert row.attributed_value == pytest.approx(333.33, abs=0.01)

    def test_conversion_on_last_touchpoint_day(self, processor, conversion_repo, t0):
        """Test a 1000 conversion on day 5 under first, last and linear models."""
        conversion_repo.save(Conversion(
            conversion_id="CONV-DAY5",
            contact_id="CONTACT-001",
            value=1000.0,
            converted_at=t0 + timedelta(days=5),
        ))
        config = AttributionConfig(models=(
            AttributionModel.FIRST_TOUCH,
            AttributionModel.LAST_TOUCH,
            AttributionModel.LINEAR,
        ))

        result = processor.process_conversion("CONV-DAY5", config)

        assert result.is_processed is True
        assert result.touchpoint_count == 3
        assert result.journey_duration == 5
        assert len(result.attribution) == 5

        first = result.results_for(AttributionModel.FIRST_TOUCH)
        assert [(r.touchpoint_id, r.credit, r.attributed_value) for r in first] == [("TP-001", 100.0, 1000.0)]

        last = result.results_for(AttributionModel.LAST_TOUCH)
        assert [(r.touchpoint_id, r.channel) for r in last] == [("TP-003", MarketingChannel.ORGANIC_SEARCH)]

        linear = result.results_for(AttributionModel.LINEAR)
        assert [r.touchpoint_id for r in linear] == ["TP-001", "TP-002", "TP-003"]
        for row in linear:
            assert row.credit == pytest.approx(33.333, abs=0.001)
            assert row.attributed_value == pytest.approx(333.33, abs=0.01)

    def test_result_is_persisted(self, processor, conversion_repo, sample_conversion):
        """Test the processed conversion is stored."""
        conversion_repo.save(sample_conversion)

        result = processor.process_conversion("CONV-001")

        assert conversion_repo.find_by_id("CONV-001") == result
        assert conversion_repo.find_unprocessed() == []

    def test_missing_conversion(self, processor):
        """Test unknown IDs return None."""
        assert processor.process_conversion("missing") is None

    def test_no_touchpoints(self, processor, conversion_repo):
        """Test a conversion without prior touchpoints is processed with empty attribution."""
        conversion_repo.save(Conversion(conversion_id="LONELY", contact_id="NOBODY", value=50.0))

        result = processor.process_conversion("LONELY")

        assert result.is_processed is True
        assert result.attribution == []
        assert result.touchpoints == []
        assert result.first_touchpoint is None
        assert result.journey_duration == 0
        assert result.touchpoint_count == 0

    def test_touchpoints_after_conversion_ignored(self, processor, conversion_repo, sample_conversion, t0):
        """Test only touchpoints at or before the conversion time count."""
        sample_conversion.converted_at = t0 + timedelta(days=2)
        conversion_repo.save(sample_conversion)

        result = processor.process_conversion("CONV-001")

        assert result.touchpoints == ["TP-001", "TP-002"]
        assert result.last_touchpoint == "TP-002"

    def test_already_processed_is_unchanged(self, processor, conversion_repo, sample_conversion, touchpoint_repo, touchpoint_factory, t0):
        """Test reprocessing without a reset returns the stored result."""
        conversion_repo.save(sample_conversion)
        first = processor.process_conversion("CONV-001")

        touchpoint_repo.add(touchpoint_factory("TP-LATE", MarketingChannel.VIDEO, t0 + timedelta(days=6)))
        second = processor.process_conversion("CONV-001")

        assert second == first
        assert "TP-LATE" not in second.touchpoints

    def test_config_override(self, processor, conversion_repo, sample_conversion):
        """Test a per-call config replaces the processor default."""
        conversion_repo.save(sample_conversion)

        result = processor.process_conversion(
            "CONV-001", AttributionConfig(models=(AttributionModel.W_SHAPED,))
        )

        assert {row.model for row in result.attribution} == {AttributionModel.W_SHAPED}

    def test_mql_touchpoint_anchors_w_shaped(self, touchpoint_repo, touchpoint_factory, t0):
        """Test the conversion's MQL touchpoint becomes the W-shaped middle anchor."""
        touchpoint_repo.add(touchpoint_factory("TP-004", MarketingChannel.REFERRAL, t0 + timedelta(days=6)))
        touchpoint_repo.add(touchpoint_factory("TP-005", MarketingChannel.DIRECT, t0 + timedelta(days=6, hours=1)))
        conversions = InMemoryConversionRepository([
            Conversion(
                conversion_id="MQL",
                contact_id="CONTACT-001",
                value=100.0,
                converted_at=t0 + timedelta(days=7),
                mql_touchpoint="TP-002",
            ),
        ])
        processor = ConversionProcessor(
            touchpoint_repo, conversions, AttributionConfig(models=(AttributionModel.W_SHAPED,))
        )

        result = processor.process_conversion("MQL")

        credit = {row.touchpoint_id: row.credit for row in result.attribution}
        assert credit["TP-002"] == pytest.approx(30.0)
        assert credit["TP-003"] == pytest.approx(5.0)

    def test_save_failure_leaves_conversion_unprocessed(self, touchpoint_repo, sample_conversion):
        """Test a failed write propagates and nothing is marked processed."""
        conversions = InMemoryConversionRepository([sample_conversion])
        failing = MagicMock(wraps=conversions)
        failing.save.side_effect = StorageError("write failed")
        processor = ConversionProcessor(touchpoint_repo, failing)

        with pytest.raises(StorageError, match="write failed"):
            processor.process_conversion("CONV-001")

        assert conversions.find_by_id("CONV-001").is_processed is False

    def test_concurrent_calls_process_once(self, touchpoint_repo, sample_conversion):
        """Test parallel calls for one conversion write it once."""
        conversions = InMemoryConversionRepository([sample_conversion])
        spy = MagicMock(wraps=conversions)
        processor = ConversionProcessor(touchpoint_repo, spy)

        threads = [
            threading.Thread(target=processor.process_conversion, args=("CONV-001",))
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert spy.save.call_count == 1
        assert processor._locks._locks == {}


class TestCreateConversions:
    """Test conversion constructors."""

    def test_create_deal_conversion(self, processor, conversion_repo, t0):
        """Test a won deal is stored and attributed immediately."""
        conversion = processor.create_deal_conversion(
            deal_id="DEAL-9",
            contact_id="CONTACT-001",
            value=1000.0,
            closed_at=t0 + timedelta(days=7),
            metadata={"pipeline": "enterprise"},
        )

        assert conversion.conversion_type == ConversionType.DEAL_WON
        assert conversion.deal_id == "DEAL-9"
        assert conversion.currency == "MXN"
        assert conversion.is_processed is True
        assert conversion.touchpoint_count == 3
        assert conversion.metadata == {"pipeline": "enterprise"}
        assert conversion.created_at is not None
        assert conversion_repo.find_by_id(conversion.conversion_id).is_processed is True

    def test_create_deal_conversion_currency(self, processor, t0):
        """Test an explicit currency is kept."""
        conversion = processor.create_deal_conversion(
            "DEAL-10", "CONTACT-001", 250.0, currency="USD", closed_at=t0 + timedelta(days=7)
        )

        assert conversion.currency == "USD"

    def test_create_form_conversion(self, processor, t0):
        """Test a form submission becomes a zero-value conversion."""
        conversion = processor.create_form_conversion(
            contact_id="CONTACT-001",
            form_submission_id="FORM-1",
            submitted_at=t0 + timedelta(days=3),
        )

        assert conversion.conversion_type == ConversionType.FORM_SUBMIT
        assert conversion.value == 0.0
        assert conversion.form_submission_id == "FORM-1"
        assert conversion.touchpoints == ["TP-001", "TP-002"]
        assert all(row.attributed_value == 0.0 for row in conversion.attribution)

    def test_create_raises_when_conversion_vanishes(self, touchpoint_repo):
        """Test a store that loses the record raises StorageError."""
        conversions = MagicMock()
        conversions.find_by_id.return_value = None
        processor = ConversionProcessor(touchpoint_repo, conversions)

        with pytest.raises(StorageError, match="missing after save"):
            processor.create_form_conversion("CONTACT-001", "FORM-2")
