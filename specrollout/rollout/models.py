"""Rollout configuration and request-time result models."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from specrollout.experiments.models import ExperimentAssignment, ExperimentDefinition

CONTROL_VARIANT_ID = "control"


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class RolloutStatus(str, Enum):
    """Status of a spec rollout."""

    DRAFT = "draft"  # Registered, never evaluated
    RUNNING = "running"  # Advancing through stages
    PAUSED = "paused"  # Held by an operator
    ROLLED_BACK = "rolled_back"  # Guardrail breach reduced exposure
    COMPLETED = "completed"  # Last stage passed cleanly


class SpecTarget(BaseModel):
    """Versioned operation a rollout applies to."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Operation name")
    version: int = Field(..., ge=1, description="Operation version")

    @property
    def key(self) -> str:
        """Target identity, ``name.v{version}``."""
        return f"{self.name}.v{self.version}"

    def __str__(self) -> str:
        return self.key


class SpecVariantBinding(BaseModel):
    """Binds a variant id to the spec payload served for it."""

    id: str = Field(..., min_length=1, description="Variant id")
    spec: Any = Field(..., description="Opaque spec payload")
    description: str | None = Field(None, description="Binding description")
    rollout_percentage: float | None = Field(
        None,
        ge=0.0,
        le=1.0,
        description="Share of the variant's bucket allowed to see it (0-1)",
    )


class SpecGuardrails(BaseModel):
    """Thresholds whose breach forces a rollback."""

    error_rate_threshold: float | None = Field(
        None, ge=0.0, le=1.0, description="Maximum tolerated error rate"
    )
    latency_p99_threshold_ms: float | None = Field(
        None, gt=0.0, description="Maximum tolerated P99 latency"
    )


class SpecExperimentConfig(BaseModel):
    """Mutable rollout record of one target.

    Only ``status`` and ``active_stage_index`` change after registration,
    and only through the controller.
    """

    model_config = ConfigDict(validate_assignment=True)

    target: SpecTarget = Field(..., description="Operation being rolled out")
    experiment: ExperimentDefinition = Field(..., description="Variant weights")
    control: Any = Field(..., description="Spec served when no variant applies")
    variants: list[SpecVariantBinding] = Field(
        default_factory=list, description="Spec payload per variant"
    )
    rollout_stages: list[float] | None = Field(
        None, description="Ordered traffic shares a rollout passes through"
    )
    active_stage_index: int | None = Field(
        None, ge=0, description="Index into rollout_stages"
    )
    status: RolloutStatus = Field(default=RolloutStatus.DRAFT)
    guardrails: SpecGuardrails | None = Field(None)

    @model_validator(mode="after")
    def check_stages(self) -> "SpecExperimentConfig":
        """Validate stage shares and the active stage index."""
        stages = self.rollout_stages
        if stages is not None:
            for share in stages:
                if not 0.0 <= share <= 1.0:
                    raise ValueError(f"Rollout stage {share} must be within [0, 1]")
        if self.active_stage_index is not None:
            if not stages:
                raise ValueError("active_stage_index requires rollout_stages")
            if self.active_stage_index >= len(stages):
                raise ValueError(
                    f"active_stage_index {self.active_stage_index} out of range "
                    f"for {len(stages)} stages"
                )
        return self

    @property
    def has_stages(self) -> bool:
        return bool(self.rollout_stages)

    @property
    def current_stage_index(self) -> int:
        """Active stage index, 0 when staging is configured but unset."""
        return self.active_stage_index or 0

    def find_variant(self, variant_id: str) -> SpecVariantBinding | None:
        for binding in self.variants:
            if binding.id == variant_id:
                return binding
        return None


class SpecAssignment(BaseModel):
    """Spec resolved for one user."""

    spec: Any
    variant_id: str
    experiment_key: str
    assignment: ExperimentAssignment | None = None


class SpecExperimentMetricSample(BaseModel):
    """Outcome of one request served from a spec assignment."""

    target: SpecTarget
    experiment_key: str
    variant_id: str
    latency_ms: float = Field(..., ge=0.0)
    success: bool
    user_id: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class SpecExperimentEvaluation(BaseModel):
    """Analyzer verdict for one evaluation cycle."""

    should_rollback: bool = False
    reasons: list[str] = Field(default_factory=list)
    latency_p99: float | None = None
    error_rate: float | None = None
    winner: str | None = None
    p_value: float | None = None
    sample_count: int = 0


class RequestContext(BaseModel):
    """Request identity fields used to derive a bucketing key."""

    user_id: str | None = None
    organization_id: str | None = None
    actor: str | None = None
