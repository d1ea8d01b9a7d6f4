"""Pytest fixtures for shared-attribution tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from journeynav.attribution.processor import ConversionProcessor
from journeynav.attribution.repository import (
    InMemoryConversionRepository,
    InMemoryTouchpointRepository,
)
from journeynav.attribution.schema import (
    Conversion,
    ConversionType,
    MarketingChannel,
    Touchpoint,
)

T0 = datetime(2025, 1, 10, 9, 0, 0, tzinfo=UTC)


def make_touchpoint(
    touchpoint_id: str,
    channel: MarketingChannel,
    occurred_at: datetime,
    contact_id: str = "CONTACT-001",
    **labels,
) -> Touchpoint:
    """Build a touchpoint with optional UTM labels."""
    return Touchpoint(
        touchpoint_id=touchpoint_id,
        contact_id=contact_id,
        channel=channel,
        occurred_at=occurred_at,
        **labels,
    )


@pytest.fixture
def t0() -> datetime:
    """Time of the first touchpoint in the sample journey."""
    return T0


@pytest.fixture
def journey() -> list[Touchpoint]:
    """Paid social on day 0, email on day 2, organic search on day 5."""
    return [
        make_touchpoint(
            "TP-001", MarketingChannel.PAID_SOCIAL, T0,
            source="facebook", medium="cpc", campaign="winter_launch",
        ),
        make_touchpoint(
            "TP-002", MarketingChannel.EMAIL, T0 + timedelta(days=2),
            source="newsletter", medium="email", campaign="winter_nurture",
        ),
        make_touchpoint(
            "TP-003", MarketingChannel.ORGANIC_SEARCH, T0 + timedelta(days=5),
            source="google", medium="organic",
        ),
    ]


@pytest.fixture
def touchpoint_repo(journey) -> InMemoryTouchpointRepository:
    """Touchpoint repository holding the sample journey."""
    return InMemoryTouchpointRepository(journey)


@pytest.fixture
def conversion_repo() -> InMemoryConversionRepository:
    """Empty conversion repository."""
    return InMemoryConversionRepository()


@pytest.fixture
def processor(touchpoint_repo, conversion_repo) -> ConversionProcessor:
    """Processor wired to the in-memory repositories."""
    return ConversionProcessor(touchpoint_repo, conversion_repo)


@pytest.fixture
def sample_conversion() -> Conversion:
    """Unprocessed 1000 MXN won deal converting on day 7."""
    return Conversion(
        conversion_id="CONV-001",
        contact_id="CONTACT-001",
        conversion_type=ConversionType.DEAL_WON,
        value=1000.0,
        deal_id="DEAL-001",
        converted_at=T0 + timedelta(days=7),
    )


@pytest.fixture
def touchpoint_factory():
    """Factory for touchpoints of the sample contact."""
    return make_touchpoint
