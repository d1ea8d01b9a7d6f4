"""Shared pytest fixtures for JourneyNav packages."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture
def mock_bigquery_client():
    """Mock google.cloud.bigquery.Client for testing."""
    with patch("google.cloud.bigquery.Client") as mock:
        client = MagicMock()
        mock.return_value = client
        yield client


@pytest.fixture
def base_time():
    """Start of the sample customer journey."""
    return datetime(2025, 1, 10, 9, 0, 0, tzinfo=UTC)


@pytest.fixture
def sample_touchpoint_data(base_time):
    """Three touchpoints for one contact: paid social, email, organic search."""
    return [
        {
            "touchpoint_id": "TP-001",
            "contact_id": "CONTACT-001",
            "channel": "paid_social",
            "type": "ad_click",
            "source": "facebook",
            "medium": "cpc",
            "campaign": "winter_launch",
            "occurred_at": base_time.isoformat(),
        },
        {
            "touchpoint_id": "TP-002",
            "contact_id": "CONTACT-001",
            "channel": "email",
            "type": "email_click",
            "source": "newsletter",
            "medium": "email",
            "campaign": "winter_nurture",
            "occurred_at": (base_time + timedelta(days=2)).isoformat(),
        },
        {
            "touchpoint_id": "TP-003",
            "contact_id": "CONTACT-001",
            "channel": "organic_search",
            "type": "page_view",
            "source": "google",
            "medium": "organic",
            "occurred_at": (base_time + timedelta(days=5)).isoformat(),
        },
    ]
