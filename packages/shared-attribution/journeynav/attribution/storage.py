"""Touchpoint and conversion storage in BigQuery.

Tables live in ``{project_id}.{dataset}``:
- ``touchpoints``: written by the ingestion pipeline, read here
- ``conversions``: one row per conversion, attribution rows stored as JSON

Every write is a single DML statement, so a conversion is either stored in
full or not at all.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from google.api_core import exceptions

from journeynav.attribution.config import StorageConfig
from journeynav.attribution.exceptions import StorageError
from journeynav.attribution.repository import ConversionRepository, TouchpointRepository
from journeynav.attribution.schema import (
    AttributionModel,
    ChannelAttribution,
    Conversion,
    MarketingChannel,
    Touchpoint,
)

if TYPE_CHECKING:
    from google.cloud import bigquery

logger = logging.getLogger(__name__)

CREATE_TOUCHPOINTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS `{table_id}` (
    touchpoint_id STRING NOT NULL,
    contact_id STRING NOT NULL,
    channel STRING NOT NULL,
    type STRING,
    source STRING,
    medium STRING,
    campaign STRING,
    content STRING,
    term STRING,
    occurred_at TIMESTAMP NOT NULL,
    inserted_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP(),
    ingest_seq INT64  -- Position within the ingestion batch
)
PARTITION BY DATE(occurred_at)
CLUSTER BY contact_id
"""

CREATE_CONVERSIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS `{table_id}` (
    conversion_id STRING NOT NULL,
    contact_id STRING NOT NULL,
    conversion_type STRING NOT NULL,
    value FLOAT64 DEFAULT 0,
    currency STRING,
    converted_at TIMESTAMP NOT NULL,
    deal_id STRING,
    form_submission_id STRING,
    is_processed BOOL DEFAULT FALSE,
    touchpoints ARRAY<STRING>,
    first_touchpoint STRING,
    last_touchpoint STRING,
    mql_touchpoint STRING,
    attribution JSON,
    journey_duration INT64 DEFAULT 0,
    touchpoint_count INT64 DEFAULT 0,
    metadata JSON,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP(),
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP()
)
"""


class _BigQueryRepository:
    """Shared client handling for BigQuery repositories."""

    TABLE: str

    def __init__(
        self,
        config: StorageConfig | None = None,
        client: bigquery.Client | None = None,
    ):
        """Initialize the repository.

        Args:
            config: Storage configuration. Loaded from environment if None.
            client: Optional BigQuery client. Will be created if not provided.
        """
        self.config = config or StorageConfig.from_env()
        self._client = client

    @property
    def client(self) -> bigquery.Client:
        """Lazy-initialize BigQuery client."""
        if self._client is None:
            from google.cloud import bigquery

            self._client = bigquery.Client(
                project=self.config.project_id,
                location=self.config.location,
            )
        return self._client

    @property
    def table_id(self) -> str:
        """Full table ID for this repository's table."""
        return f"{self.config.project_id}.{self.config.dataset}.{self.TABLE}"

    def _run(self, sql: str, parameters: list[Any] | None = None) -> Any:
        """Execute a query and wait for its result.

        Raises:
            StorageError: If BigQuery rejects or fails the query.
        """
        from google.cloud import bigquery

        job_config = bigquery.QueryJobConfig(query_parameters=parameters or [])
        try:
            return self.client.query(sql, job_config=job_config).result(timeout=self.config.timeout)
        except exceptions.GoogleAPICallError as e:
            raise StorageError(f"BigQuery query on {self.table_id} failed: {e}") from e

    @staticmethod
    def _range_parameters(start: datetime, end: datetime) -> list[Any]:
        from google.cloud import bigquery

        return [
            bigquery.ScalarQueryParameter("start", "TIMESTAMP", start.isoformat()),
            bigquery.ScalarQueryParameter("end", "TIMESTAMP", end.isoformat()),
        ]


class BigQueryTouchpointRepository(_BigQueryRepository, TouchpointRepository):
    """Read a contact's touchpoints from BigQuery.

    Example:
        >>> touchpoints = BigQueryTouchpointRepository(StorageConfig(project_id="my-project"))
        >>> journey = touchpoints.find_for_contact("contact-42", datetime.now(UTC))
    """

    TABLE = "touchpoints"

    def ensure_table_exists(self) -> None:
        """Create the touchpoints table if it doesn't exist."""
        self._run(CREATE_TOUCHPOINTS_TABLE_SQL.format(table_id=self.table_id))
        logger.info(f"Ensured touchpoints table exists: {self.table_id}")

    def find_for_contact(self, contact_id: str, up_to: datetime) -> list[Touchpoint]:
        from google.cloud import bigquery

        # Rows from one load job share inserted_at; ingest_seq orders them,
        # and touchpoint_id fixes any rows written without a sequence.
        sql = f"""
        SELECT *
        FROM `{self.table_id}`
        WHERE contact_id = @contact_id
          AND occurred_at <= @up_to
        ORDER BY occurred_at ASC, inserted_at ASC, ingest_seq ASC, touchpoint_id ASC
        """
        result = self._run(sql, [
            bigquery.ScalarQueryParameter("contact_id", "STRING", contact_id),
            bigquery.ScalarQueryParameter("up_to", "TIMESTAMP", up_to.isoformat()),
        ])
        return [Touchpoint.from_dict(dict(row.items())) for row in result]


class BigQueryConversionRepository(_BigQueryRepository, ConversionRepository):
    """Store conversions and their attribution in BigQuery.

    Example:
        >>> conversions = BigQueryConversionRepository(StorageConfig(project_id="my-project"))
        >>> conversions.ensure_table_exists()
        >>> conversion = conversions.find_by_id("9b2f...")
    """

    TABLE = "conversions"

    def ensure_table_exists(self) -> None:
        """Create the conversions table if it doesn't exist."""
        self._run(CREATE_CONVERSIONS_TABLE_SQL.format(table_id=self.table_id))
        logger.info(f"Ensured conversions table exists: {self.table_id}")

    def find_by_id(self, conversion_id: str) -> Conversion | None:
        from google.cloud import bigquery

        sql = f"""
        SELECT *
        FROM `{self.table_id}`
        WHERE conversion_id = @conversion_id
        LIMIT 1
        """
        rows = list(self._run(sql, [
            bigquery.ScalarQueryParameter("conversion_id", "STRING", conversion_id),
        ]))
        if not rows:
            return None
        return self._row_to_conversion(rows[0])

    def save(self, conversion: Conversion) -> None:
        """Upsert the full conversion record with one MERGE statement."""
        from google.cloud import bigquery

        row = conversion.to_dict()
        sql = f"""
        MERGE `{self.table_id}` AS target
        USING (SELECT @conversion_id AS conversion_id) AS source
        ON target.conversion_id = source.conversion_id
        WHEN MATCHED THEN
            UPDATE SET
                contact_id = @contact_id,
                conversion_type = @conversion_type,
                value = @value,
                currency = @currency,
                converted_at = @converted_at,
                deal_id = @deal_id,
                form_submission_id = @form_submission_id,
                is_processed = @is_processed,
                touchpoints = @touchpoints,
                first_touchpoint = @first_touchpoint,
                last_touchpoint = @last_touchpoint,
                mql_touchpoint = @mql_touchpoint,
                attribution = PARSE_JSON(@attribution),
                journey_duration = @journey_duration,
                touchpoint_count = @touchpoint_count,
                metadata = PARSE_JSON(@metadata),
                updated_at = CURRENT_TIMESTAMP()
        WHEN NOT MATCHED THEN
            INSERT (
                conversion_id, contact_id, conversion_type, value, currency,
                converted_at, deal_id, form_submission_id, is_processed,
                touchpoints, first_touchpoint, last_touchpoint, mql_touchpoint,
                attribution, journey_duration, touchpoint_count, metadata,
                created_at, updated_at
            )
            VALUES (
                @conversion_id, @contact_id, @conversion_type, @value, @currency,
                @converted_at, @deal_id, @form_submission_id, @is_processed,
                @touchpoints, @first_touchpoint, @last_touchpoint, @mql_touchpoint,
                PARSE_JSON(@attribution), @journey_duration, @touchpoint_count,
                PARSE_JSON(@metadata), CURRENT_TIMESTAMP(), CURRENT_TIMESTAMP()
            )
        """

        self._run(sql, [
            bigquery.ScalarQueryParameter("conversion_id", "STRING", row["conversion_id"]),
            bigquery.ScalarQueryParameter("contact_id", "STRING", row["contact_id"]),
            bigquery.ScalarQueryParameter("conversion_type", "STRING", row["conversion_type"]),
            bigquery.ScalarQueryParameter("value", "FLOAT64", row["value"]),
            bigquery.ScalarQueryParameter("currency", "STRING", row["currency"]),
            bigquery.ScalarQueryParameter("converted_at", "TIMESTAMP", row["converted_at"]),
            bigquery.ScalarQueryParameter("deal_id", "STRING", row["deal_id"]),
            bigquery.ScalarQueryParameter("form_submission_id", "STRING", row["form_submission_id"]),
            bigquery.ScalarQueryParameter("is_processed", "BOOL", row["is_processed"]),
            bigquery.ArrayQueryParameter("touchpoints", "STRING", row["touchpoints"]),
            bigquery.ScalarQueryParameter("first_touchpoint", "STRING", row["first_touchpoint"]),
            bigquery.ScalarQueryParameter("last_touchpoint", "STRING", row["last_touchpoint"]),
            bigquery.ScalarQueryParameter("mql_touchpoint", "STRING", row["mql_touchpoint"]),
            bigquery.ScalarQueryParameter("attribution", "STRING", json.dumps(row["attribution"])),
            bigquery.ScalarQueryParameter("journey_duration", "INT64", row["journey_duration"]),
            bigquery.ScalarQueryParameter("touchpoint_count", "INT64", row["touchpoint_count"]),
            bigquery.ScalarQueryParameter("metadata", "STRING", json.dumps(row["metadata"])),
        ])
        logger.info(f"Saved conversion: {conversion.conversion_id}")

    def find_unprocessed(self, limit: int = 100) -> list[str]:
        from google.cloud import bigquery

        sql = f"""
        SELECT conversion_id
        FROM `{self.table_id}`
        WHERE is_processed = FALSE
        ORDER BY converted_at ASC
        LIMIT @limit
        """
        result = self._run(sql, [bigquery.ScalarQueryParameter("limit", "INT64", limit)])
        return [row["conversion_id"] for row in result]

    def find_in_range(self, start: datetime, end: datetime) -> list[str]:
        sql = f"""
        SELECT conversion_id
        FROM `{self.table_id}`
        WHERE converted_at BETWEEN @start AND @end
        ORDER BY converted_at ASC
        """
        result = self._run(sql, self._range_parameters(start, end))
        return [row["conversion_id"] for row in result]

    def reset_for_range(self, start: datetime, end: datetime) -> int:
        sql = f"""
        UPDATE `{self.table_id}`
        SET is_processed = FALSE, attribution = JSON '[]', updated_at = CURRENT_TIMESTAMP()
        WHERE converted_at BETWEEN @start AND @end
        """
        result = self._run(sql, self._range_parameters(start, end))
        reset = result.num_dml_affected_rows or 0
        logger.info(f"Reset {reset} conversions between {start.isoformat()} and {end.isoformat()}")
        return reset

    def find_processed_in_range(self, start: datetime, end: datetime) -> list[Conversion]:
        sql = f"""
        SELECT *
        FROM `{self.table_id}`
        WHERE is_processed = TRUE
          AND converted_at BETWEEN @start AND @end
        ORDER BY converted_at ASC
        """
        result = self._run(sql, self._range_parameters(start, end))
        return [self._row_to_conversion(row) for row in result]

    def attribution_by_channel(
        self,
        start: datetime,
        end: datetime,
        model: AttributionModel = AttributionModel.LINEAR,
    ) -> list[ChannelAttribution]:
        from google.cloud import bigquery

        sql = f"""
        SELECT
            JSON_VALUE(attr, '$.channel') AS channel,
            COUNT(*) AS conversions,
            AVG(CAST(JSON_VALUE(attr, '$.credit') AS FLOAT64)) AS avg_credit,
            SUM(CAST(JSON_VALUE(attr, '$.attributed_value') AS FLOAT64)) AS total_attributed_value
        FROM `{self.table_id}`,
            UNNEST(JSON_QUERY_ARRAY(attribution)) AS attr
        WHERE is_processed = TRUE
          AND converted_at BETWEEN @start AND @end
          AND JSON_VALUE(attr, '$.model') = @model
        GROUP BY channel
        ORDER BY total_attributed_value DESC
        """
        parameters = self._range_parameters(start, end)
        parameters.append(bigquery.ScalarQueryParameter("model", "STRING", model.value))
        result = self._run(sql, parameters)

        return [
            ChannelAttribution(
                channel=MarketingChannel(row["channel"]),
                total_attributed_value=float(row["total_attributed_value"] or 0),
                conversions=int(row["conversions"] or 0),
                avg_credit=float(row["avg_credit"] or 0),
            )
            for row in result
        ]

    def _row_to_conversion(self, row: Any) -> Conversion:
        """Convert a BigQuery row to Conversion.

        Raises:
            TypeError: If attribution or metadata have unexpected types.
        """
        data = dict(row.items())
        data["attribution"] = self._parse_json(data.get("attribution"), "attribution", list)
        data["metadata"] = self._parse_json(data.get("metadata"), "metadata", dict)
        return Conversion.from_dict(data)

    @staticmethod
    def _parse_json(value: Any, field_name: str, expected: type) -> Any:
        if isinstance(value, str):
            value = json.loads(value)
        if value is None:
            return expected()
        if not isinstance(value, expected):
            raise TypeError(
                f"Unexpected type for {field_name}: {type(value).__name__}. "
                f"Expected {expected.__name__}, str, or None."
            )
        return value
