"""
JourneyNav Attribution - multi-touch marketing attribution engine.

Provides:
- Closed-form attribution models (first/last touch, linear, time decay,
  U-shaped, W-shaped, custom channel weights)
- Conversion processing against a contact's touchpoint history
- Batch processing and date-range recalculation
- Channel ROI and attribution reports over persisted results

The calculator is pure; processing and reporting talk to storage only
through the TouchpointRepository and ConversionRepository interfaces, so
the same engine runs on in-memory data or BigQuery.

Usage:
    from journeynav.attribution import (
        AttributionConfig,
        BatchReprocessor,
        ConversionProcessor,
        InMemoryConversionRepository,
        InMemoryTouchpointRepository,
        get_channel_roi,
    )

    processor = ConversionProcessor(touchpoints, conversions)
    conversion = processor.create_deal_conversion("deal-7", "contact-42", 1000.0)

    BatchReprocessor(processor).process_unprocessed(limit=100)
    roi = get_channel_roi(conversions, start, end, {MarketingChannel.EMAIL: 250.0})
"""

from journeynav.attribution.batch import (
    BatchItemError,
    BatchReprocessor,
    BatchResult,
)
from journeynav.attribution.calculator import (
    MODEL_CALCULATORS,
    calculate_attribution,
)
from journeynav.attribution.config import (
    AttributionConfig,
    StorageConfig,
)
from journeynav.attribution.exceptions import (
    AttributionError,
    ConfigurationError,
    StorageError,
)
from journeynav.attribution.processor import ConversionProcessor
from journeynav.attribution.reports import AttributionReports
from journeynav.attribution.repository import (
    ConversionRepository,
    InMemoryConversionRepository,
    InMemoryTouchpointRepository,
    TouchpointRepository,
)
from journeynav.attribution.roi import (
    ChannelROI,
    get_channel_roi,
)
from journeynav.attribution.storage import (
    BigQueryConversionRepository,
    BigQueryTouchpointRepository,
)
from journeynav.attribution.schema import (
    AttributionModel,
    AttributionResult,
    CampaignAttribution,
    ChannelAttribution,
    Conversion,
    ConversionOverview,
    ConversionPath,
    ConversionType,
    MarketingChannel,
    Touchpoint,
    TouchpointType,
)

__all__ = [
    # Schema
    "AttributionModel",
    "AttributionResult",
    "CampaignAttribution",
    "ChannelAttribution",
    "Conversion",
    "ConversionOverview",
    "ConversionPath",
    "ConversionType",
    "MarketingChannel",
    "Touchpoint",
    "TouchpointType",
    # Config
    "AttributionConfig",
    "StorageConfig",
    # Exceptions
    "AttributionError",
    "ConfigurationError",
    "StorageError",
    # Calculator
    "MODEL_CALCULATORS",
    "calculate_attribution",
    # Repositories
    "ConversionRepository",
    "TouchpointRepository",
    "InMemoryConversionRepository",
    "InMemoryTouchpointRepository",
    "BigQueryConversionRepository",
    "BigQueryTouchpointRepository",
    # Processing
    "ConversionProcessor",
    "BatchReprocessor",
    "BatchResult",
    "BatchItemError",
    # Reporting
    "ChannelROI",
    "get_channel_roi",
    "AttributionReports",
]
