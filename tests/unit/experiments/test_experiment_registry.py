"""Unit tests for ExperimentRegistry."""

import pytest

from specrollout.core.exceptions import DuplicateExperimentError
from specrollout.experiments.models import ExperimentDefinition, ExperimentVariant
from specrollout.experiments.registry import ExperimentRegistry


def _definition(key: str = "checkout", version: int = 1) -> ExperimentDefinition:
    return ExperimentDefinition(
        key=key,
        version=version,
        goal="Faster checkout",
        variants=[ExperimentVariant(id="A"), ExperimentVariant(id="B")],
        primary_metric="latency_ms",
    )


class TestExperimentRegistry:
    """Tests for ExperimentRegistry."""

    def test_register_and_get(self) -> None:
        registry = ExperimentRegistry()
        definition = registry.register(_definition())

        assert registry.get("checkout", 1) is definition
        assert "checkout.v1" in registry
        assert len(registry) == 1

    def test_duplicate_identity_rejected(self) -> None:
        registry = ExperimentRegistry()
        registry.register(_definition())

        with pytest.raises(DuplicateExperimentError) as exc_info:
            registry.register(_definition())

        assert exc_info.value.identity == "checkout.v1"

    def test_get_latest_version(self) -> None:
        registry = ExperimentRegistry()
        registry.register(_definition(version=1))
        registry.register(_definition(version=3))
        registry.register(_definition(version=2))

        latest = registry.get("checkout")

        assert latest is not None
        assert latest.version == 3

    def test_get_missing(self) -> None:
        registry = ExperimentRegistry()

        assert registry.get("checkout") is None
        assert registry.get("checkout", 1) is None

    def test_list_sorted(self) -> None:
        registry = ExperimentRegistry()
        registry.register(_definition("search", 1))
        registry.register(_definition("checkout", 2))
        registry.register(_definition("checkout", 1))

        identities = [d.identity for d in registry.list()]

        assert identities == ["checkout.v1", "checkout.v2", "search.v1"]


class TestExperimentDefinition:
    """Tests for definition validation."""

    def test_identity(self) -> None:
        assert _definition("search.ranking", 4).identity == "search.ranking.v4"

    def test_version_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            _definition(version=0)

    def test_negative_weight_rejected(self) -> None:
        with pytest.raises(ValueError):
            ExperimentVariant(id="A", weight=-1)

    def test_definition_is_frozen(self) -> None:
        definition = _definition()

        with pytest.raises(ValueError):
            definition.goal = "changed"  # type: ignore[misc]
