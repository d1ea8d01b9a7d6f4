"""
Attribution data model - touchpoints, conversions and attribution rows.

This schema describes the three records the attribution engine works with:
- Touchpoints: immutable marketing interactions tied to a contact
- Conversions: business outcomes that receive marketing credit
- Attribution results: one row of credit per touchpoint per model

It also defines the typed rows returned by the storage layer for
reporting (channel, campaign and path aggregations).

All timestamps are timezone-aware datetime objects in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


class MarketingChannel(str, Enum):
    """Marketing medium category a touchpoint belongs to."""

    EMAIL = "email"
    PAID_SOCIAL = "paid_social"
    ORGANIC_SOCIAL = "organic_social"
    PAID_SEARCH = "paid_search"
    ORGANIC_SEARCH = "organic_search"
    DIRECT = "direct"
    REFERRAL = "referral"
    AFFILIATE = "affiliate"
    DISPLAY = "display"
    VIDEO = "video"
    OTHER = "other"


class TouchpointType(str, Enum):
    """Kind of interaction. Carried through, never used in calculation."""

    PAGE_VIEW = "page_view"
    FORM_SUBMISSION = "form_submission"
    EMAIL_OPEN = "email_open"
    EMAIL_CLICK = "email_click"
    AD_CLICK = "ad_click"
    AD_IMPRESSION = "ad_impression"
    SOCIAL_ENGAGEMENT = "social_engagement"
    CONTENT_DOWNLOAD = "content_download"
    WEBINAR_REGISTRATION = "webinar_registration"
    WEBINAR_ATTENDANCE = "webinar_attendance"
    MEETING_BOOKED = "meeting_booked"
    CHAT_STARTED = "chat_started"
    CALL_COMPLETED = "call_completed"
    LANDING_PAGE_VIEW = "landing_page_view"
    LANDING_PAGE_CONVERSION = "landing_page_conversion"
    OTHER = "other"  # Unrecognised types from ingestion

    @classmethod
    def parse(cls, value: Any) -> TouchpointType:
        """Map a stored value to a member; unknown values become OTHER."""
        if not value:
            return cls.PAGE_VIEW
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class ConversionType(str, Enum):
    """Type of conversion event."""

    DEAL_WON = "deal_won"
    DEAL_CREATED = "deal_created"
    FORM_SUBMIT = "form_submit"
    SIGNUP = "signup"
    PURCHASE = "purchase"
    MQL = "mql"
    SQL = "sql"
    DEMO_REQUEST = "demo_request"
    TRIAL_START = "trial_start"
    SUBSCRIPTION = "subscription"


class AttributionModel(str, Enum):
    """Attribution model used to distribute conversion credit."""

    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"  # Equal credit to all touchpoints
    TIME_DECAY = "time_decay"  # More credit to recent touchpoints
    U_SHAPED = "u_shaped"  # 40% first, 40% last, 20% middle
    W_SHAPED = "w_shaped"  # 30% first, 30% middle, 30% last, 10% rest
    CUSTOM = "custom"  # Channel-weighted
    DATA_DRIVEN = "data_driven"  # ML-based, not implemented


def _parse_timestamp(value: Any, field_name: str) -> datetime:
    """Parse an ISO string or datetime into a timezone-aware datetime."""
    if isinstance(value, datetime):
        timestamp = value
    elif isinstance(value, str):
        try:
            timestamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Invalid {field_name} format: {value}") from e
    else:
        raise ValueError(f"Missing or invalid {field_name}: {value!r}")

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp


def _optional_timestamp(value: Any, field_name: str) -> datetime | None:
    if value is None:
        return None
    return _parse_timestamp(value, field_name)


@dataclass(frozen=True)
class Touchpoint:
    """
    A single recorded marketing interaction.

    Touchpoints are written by the ingestion pipeline and are read-only
    to the attribution engine.

    Example:
        touchpoint = Touchpoint(
            touchpoint_id="tp-001",
            contact_id="contact-42",
            channel=MarketingChannel.PAID_SOCIAL,
            occurred_at=datetime(2025, 1, 10, tzinfo=UTC),
            source="facebook",
            medium="cpc",
            campaign="spring_launch",
        )
    """

    touchpoint_id: str
    contact_id: str
    channel: MarketingChannel
    occurred_at: datetime
    type: TouchpointType = TouchpointType.PAGE_VIEW

    # UTM labels, carried through to attribution output
    source: str | None = None
    medium: str | None = None
    campaign: str | None = None
    content: str | None = None
    term: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "touchpoint_id": self.touchpoint_id,
            "contact_id": self.contact_id,
            "channel": self.channel.value,
            "occurred_at": self.occurred_at.isoformat(),
            "type": self.type.value,
            "source": self.source,
            "medium": self.medium,
            "campaign": self.campaign,
            "content": self.content,
            "term": self.term,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Touchpoint:
        """Create Touchpoint from dictionary.

        Raises:
            ValueError: If a required field is missing or malformed.
        """
        for required in ("touchpoint_id", "contact_id", "channel", "occurred_at"):
            if data.get(required) is None:
                raise ValueError(f"Missing required field: {required}")

        return cls(
            touchpoint_id=str(data["touchpoint_id"]),
            contact_id=str(data["contact_id"]),
            channel=MarketingChannel(data["channel"]),
            occurred_at=_parse_timestamp(data["occurred_at"], "occurred_at"),
            type=TouchpointType.parse(data.get("type")),
            source=data.get("source"),
            medium=data.get("medium"),
            campaign=data.get("campaign"),
            content=data.get("content"),
            term=data.get("term"),
        )


@dataclass(frozen=True)
class AttributionResult:
    """Credit assigned to one touchpoint under one attribution model."""

    model: AttributionModel
    touchpoint_id: str
    channel: MarketingChannel
    credit: float  # 0-100
    attributed_value: float
    source: str | None = None
    medium: str | None = None
    campaign: str | None = None

    @classmethod
    def for_touchpoint(
        cls,
        model: AttributionModel,
        touchpoint: Touchpoint,
        credit: float,
        attributed_value: float,
    ) -> AttributionResult:
        """Build a row that copies the touchpoint's reporting labels."""
        return cls(
            model=model,
            touchpoint_id=touchpoint.touchpoint_id,
            channel=touchpoint.channel,
            credit=credit,
            attributed_value=attributed_value,
            source=touchpoint.source,
            medium=touchpoint.medium,
            campaign=touchpoint.campaign,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model.value,
            "touchpoint_id": self.touchpoint_id,
            "channel": self.channel.value,
            "source": self.source,
            "medium": self.medium,
            "campaign": self.campaign,
            "credit": self.credit,
            "attributed_value": self.attributed_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttributionResult:
        try:
            credit = float(data["credit"])
            attributed_value = float(data.get("attributed_value", 0))
        except (KeyError, ValueError, TypeError) as e:
            raise ValueError(f"Invalid attribution row: {data}") from e

        return cls(
            model=AttributionModel(data["model"]),
            touchpoint_id=str(data["touchpoint_id"]),
            channel=MarketingChannel(data["channel"]),
            credit=credit,
            attributed_value=attributed_value,
            source=data.get("source"),
            medium=data.get("medium"),
            campaign=data.get("campaign"),
        )


@dataclass
class Conversion:
    """
    Business outcome that attribution credit is assigned to.

    A conversion starts unprocessed. Processing snapshots the eligible
    touchpoints, stores the attribution rows for every configured model
    and derives journey statistics. A conversion without any prior
    touchpoint is a valid processed state with empty attribution.

    Example:
        conversion = Conversion(
            contact_id="contact-42",
            conversion_type=ConversionType.DEAL_WON,
            value=1000.0,
            converted_at=datetime(2025, 1, 15, tzinfo=UTC),
        )
    """

    contact_id: str
    conversion_id: str = field(default_factory=lambda: str(uuid4()))
    conversion_type: ConversionType = ConversionType.PURCHASE
    value: float = 0.0
    currency: str = "MXN"
    converted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Source references
    deal_id: str | None = None
    form_submission_id: str | None = None

    # Populated by processing
    is_processed: bool = False
    touchpoints: list[str] = field(default_factory=list)
    first_touchpoint: str | None = None
    last_touchpoint: str | None = None
    mql_touchpoint: str | None = None  # Middle anchor for W-shaped
    attribution: list[AttributionResult] = field(default_factory=list)
    journey_duration: int = 0  # Whole days
    touchpoint_count: int = 0

    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def results_for(self, model: AttributionModel) -> list[AttributionResult]:
        """Return the attribution rows produced by a single model."""
        return [row for row in self.attribution if row.model == model]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "conversion_id": self.conversion_id,
            "contact_id": self.contact_id,
            "conversion_type": self.conversion_type.value,
            "value": self.value,
            "currency": self.currency,
            "converted_at": self.converted_at.isoformat(),
            "deal_id": self.deal_id,
            "form_submission_id": self.form_submission_id,
            "is_processed": self.is_processed,
            "touchpoints": list(self.touchpoints),
            "first_touchpoint": self.first_touchpoint,
            "last_touchpoint": self.last_touchpoint,
            "mql_touchpoint": self.mql_touchpoint,
            "attribution": [row.to_dict() for row in self.attribution],
            "journey_duration": self.journey_duration,
            "touchpoint_count": self.touchpoint_count,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversion:
        """Create Conversion from dictionary.

        Args:
            data: Dictionary containing conversion data.

        Returns:
            Conversion instance.

        Raises:
            ValueError: If 'contact_id' is missing or a numeric/timestamp
                field cannot be parsed.
        """
        if not data.get("contact_id"):
            raise ValueError("Missing required field: contact_id")

        try:
            value = float(data.get("value") or 0)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid value: {data.get('value')}") from e

        try:
            journey_duration = int(data.get("journey_duration") or 0)
            touchpoint_count = int(data.get("touchpoint_count") or 0)
        except (ValueError, TypeError) as e:
            raise ValueError("Invalid journey statistics") from e

        converted_at = data.get("converted_at")
        kwargs: dict[str, Any] = {}
        if data.get("conversion_id"):
            kwargs["conversion_id"] = str(data["conversion_id"])

        return cls(
            contact_id=str(data["contact_id"]),
            conversion_type=ConversionType(data.get("conversion_type") or "purchase"),
            value=value,
            currency=data.get("currency") or "MXN",
            converted_at=(
                _parse_timestamp(converted_at, "converted_at")
                if converted_at is not None
                else datetime.now(UTC)
            ),
            deal_id=data.get("deal_id"),
            form_submission_id=data.get("form_submission_id"),
            is_processed=bool(data.get("is_processed", False)),
            touchpoints=[str(tp) for tp in data.get("touchpoints") or []],
            first_touchpoint=data.get("first_touchpoint"),
            last_touchpoint=data.get("last_touchpoint"),
            mql_touchpoint=data.get("mql_touchpoint"),
            attribution=[
                AttributionResult.from_dict(row) for row in data.get("attribution") or []
            ],
            journey_duration=journey_duration,
            touchpoint_count=touchpoint_count,
            metadata=dict(data.get("metadata") or {}),
            created_at=_optional_timestamp(data.get("created_at"), "created_at"),
            updated_at=_optional_timestamp(data.get("updated_at"), "updated_at"),
            **kwargs,
        )


@dataclass(frozen=True)
class ChannelAttribution:
    """Attributed value summed per channel for one model."""

    channel: MarketingChannel
    total_attributed_value: float
    conversions: int = 0
    avg_credit: float = 0.0


@dataclass(frozen=True)
class CampaignAttribution:
    """Attributed value summed per campaign/source/medium for one model."""

    campaign: str
    source: str | None
    medium: str | None
    conversions: int
    total_attributed_value: float
    avg_credit: float
    channels: tuple[MarketingChannel, ...] = ()


@dataclass(frozen=True)
class ConversionPath:
    """A distinct ordered channel sequence observed before conversions."""

    path: tuple[MarketingChannel, ...]
    count: int
    total_value: float
    avg_journey_duration: float
    avg_value_per_conversion: float


@dataclass
class ConversionOverview:
    """Summary statistics over processed conversions in a date range."""

    total_conversions: int = 0
    total_value: float = 0.0
    avg_journey_duration: float = 0.0
    avg_touchpoints: float = 0.0
    by_type: dict[ConversionType, int] = field(default_factory=dict)
