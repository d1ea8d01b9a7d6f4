"""Configuration models for the attribution engine."""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from journeynav.attribution.exceptions import ConfigurationError
from journeynav.attribution.schema import AttributionModel, MarketingChannel

DEFAULT_MODELS: tuple[AttributionModel, ...] = (
    AttributionModel.FIRST_TOUCH,
    AttributionModel.LAST_TOUCH,
    AttributionModel.LINEAR,
    AttributionModel.TIME_DECAY,
    AttributionModel.U_SHAPED,
)


class AttributionConfig(BaseModel):
    """Which models to compute per conversion, and their parameters.

    Instances are immutable; build a new config to change how conversions
    are attributed and apply it retroactively with
    ``BatchReprocessor.recalculate_range``.
    """

    model_config = ConfigDict(frozen=True)

    models: tuple[AttributionModel, ...] = DEFAULT_MODELS
    time_decay_half_life_days: float = Field(default=7.0, gt=0)
    custom_weights: dict[MarketingChannel, float] = Field(default_factory=dict)
    w_shaped_mid_index: int | None = Field(default=None, ge=0)

    @field_validator("models")
    @classmethod
    def _dedupe_models(cls, models: tuple[AttributionModel, ...]) -> tuple[AttributionModel, ...]:
        # Each model runs once per conversion, in first-seen order
        return tuple(dict.fromkeys(models))

    @field_validator("custom_weights")
    @classmethod
    def _positive_weights(cls, weights: dict[MarketingChannel, float]) -> dict[MarketingChannel, float]:
        for channel, weight in weights.items():
            if weight <= 0:
                raise ValueError(f"Weight for {channel.value} must be > 0, got {weight}")
        return weights

    @classmethod
    def from_env(cls) -> AttributionConfig:
        """Load configuration from environment variables.

        Reads:
            JOURNEYNAV_ATTRIBUTION_MODELS: comma-separated model names.
            JOURNEYNAV_TIME_DECAY_HALF_LIFE_DAYS: half-life in days.

        Raises:
            ConfigurationError: If a value cannot be parsed.
        """
        kwargs: dict[str, object] = {}

        models = os.getenv("JOURNEYNAV_ATTRIBUTION_MODELS")
        if models:
            try:
                kwargs["models"] = tuple(
                    AttributionModel(name.strip()) for name in models.split(",") if name.strip()
                )
            except ValueError as e:
                raise ConfigurationError(f"Invalid JOURNEYNAV_ATTRIBUTION_MODELS: {models}") from e

        half_life = os.getenv("JOURNEYNAV_TIME_DECAY_HALF_LIFE_DAYS")
        if half_life:
            kwargs["time_decay_half_life_days"] = half_life

        try:
            return cls(**kwargs)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid attribution configuration: {e}") from e


class StorageConfig(BaseModel):
    """Configuration for BigQuery-backed repositories."""

    project_id: str | None = None
    dataset: str = "journeynav_attribution"
    location: str = "US"
    timeout: int = 300  # 5 minutes

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            project_id=os.getenv("GCP_PROJECT_ID") or os.getenv("JOURNEYNAV_PROJECT_ID"),
            dataset=os.getenv("JOURNEYNAV_DATASET", "journeynav_attribution"),
            location=os.getenv("JOURNEYNAV_BQ_LOCATION", "US"),
        )
