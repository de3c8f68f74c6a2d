"""Experiment definitions, assignments, metric samples and summaries."""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

LATENCY_METRIC = "latency_ms"
ERROR_RATE_METRIC = "error_rate"


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class ExperimentVariant(BaseModel):
    """One treatment arm of an experiment."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Variant identifier")
    weight: float = Field(
        default=1.0,
        ge=0.0,
        description="Relative traffic weight (not normalized)",
    )
    description: str | None = Field(None, description="Variant description")


class RandomAllocation(BaseModel):
    """Hash the bucketing key with an optional experiment-specific salt."""

    model_config = ConfigDict(frozen=True)

    type: Literal["random"] = "random"
    salt: str | None = Field(
        None,
        min_length=1,
        description="Overrides the runner salt for this experiment",
    )


class StickyAllocation(BaseModel):
    """Bucket on a context attribute so everyone sharing it gets one variant.

    Falls back to the user id when the attribute is missing from the
    request context.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["sticky"] = "sticky"
    attribute: Literal["user_id", "organization_id", "session_id"] = Field(
        "user_id", description="Context attribute used as bucketing key"
    )
    salt: str | None = Field(
        None,
        min_length=1,
        description="Overrides the runner salt for this experiment",
    )


ExperimentAllocation = Annotated[
    RandomAllocation | StickyAllocation, Field(discriminator="type")
]


class ExperimentDefinition(BaseModel):
    """A named, versioned set of weighted variants.

    Definitions are immutable once created; the registry refuses to
    register the same ``key.v{version}`` twice.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Experiment key")
    version: int = Field(..., ge=1, description="Experiment version")
    goal: str = Field(..., description="What the experiment tries to improve")
    audience: dict[str, Any] | None = Field(
        None, description="Opaque audience description"
    )
    variants: list[ExperimentVariant] = Field(
        default_factory=list, description="Variants to assign between"
    )
    primary_metric: str = Field(..., description="Metric the experiment optimizes")
    guardrail_metrics: list[str] | None = Field(
        None, description="Metrics that must not regress"
    )
    start_date: datetime | None = Field(None, description="Planned start")
    end_date: datetime | None = Field(None, description="Planned end")
    minimum_sample: int | None = Field(
        None, ge=1, description="Samples per variant before drawing conclusions"
    )
    allocation: ExperimentAllocation | None = Field(
        None,
        description="Bucketing strategy. None hashes the user id with the runner salt",
    )

    @property
    def identity(self) -> str:
        """Experiment identity, ``key.v{version}``."""
        return f"{self.key}.v{self.version}"


class ExperimentAssignment(BaseModel):
    """Immutable fact: this user got this variant at this time."""

    model_config = ConfigDict(frozen=True)

    experiment_key: str = Field(..., description="Experiment identity")
    variant_id: str = Field(..., description="Assigned variant")
    user_id: str = Field(..., description="Bucketing key")
    assigned_at: datetime = Field(default_factory=_utcnow)
    context: dict[str, Any] | None = Field(None, description="Request context")


class MetricSample(BaseModel):
    """One observed numeric outcome for a variant."""

    model_config = ConfigDict(frozen=True)

    experiment_key: str = Field(..., description="Experiment identity")
    variant_id: str = Field(..., description="Variant the sample belongs to")
    metric: str = Field(..., description="Metric name, e.g. latency_ms")
    value: float = Field(..., description="Observed value")
    user_id: str | None = Field(None, description="User the outcome belongs to")
    timestamp: datetime = Field(default_factory=_utcnow)


class VariantMetricSummary(BaseModel):
    """Summary statistics of one metric for one variant."""

    variant_id: str
    count: int = 0
    mean: float = 0.0
    variance: float = 0.0
    improvement: float = Field(
        default=0.0,
        description="Relative difference to the highest-mean variant",
    )


class MetricSummary(BaseModel):
    """Per-variant summaries of a metric and the significance verdict."""

    metric: str
    summaries: list[VariantMetricSummary] = Field(default_factory=list)
    winner: str | None = None
    p_value: float | None = None
