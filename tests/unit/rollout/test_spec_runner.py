"""Unit tests for spec assignment and rollout gating."""

from specrollout.experiments.models import (
    ExperimentDefinition,
    ExperimentVariant,
    RandomAllocation,
    StickyAllocation,
)
from specrollout.experiments.runner import ExperimentRunner
from specrollout.rollout.models import (
    CONTROL_VARIANT_ID,
    SpecExperimentConfig,
    SpecVariantBinding,
)
from specrollout.rollout.runner import SpecExperimentRunner, effective_rollout

USERS = [f"user-{i}" for i in range(10_000)]


def _served(runner: SpecExperimentRunner, config: SpecExperimentConfig) -> set[str]:
    """Users who receive a non-control variant."""
    return {
        user
        for user in USERS
        if runner.assign(config, user).variant_id != CONTROL_VARIANT_ID
    }


class TestEffectiveRollout:
    """Tests for effective_rollout."""

    def test_binding_percentage_wins(
        self, rollout_config: SpecExperimentConfig
    ) -> None:
        binding = SpecVariantBinding(id="canary", spec={}, rollout_percentage=0.3)

        assert effective_rollout(rollout_config, binding) == 0.3

    def test_active_stage(self, rollout_config: SpecExperimentConfig) -> None:
        rollout_config.active_stage_index = 2

        assert effective_rollout(rollout_config, rollout_config.variants[0]) == 0.5

    def test_unset_index_uses_first_stage(
        self, rollout_config: SpecExperimentConfig
    ) -> None:
        rollout_config.active_stage_index = None

        assert effective_rollout(rollout_config, rollout_config.variants[0]) == 0.01

    def test_no_stages_is_fully_open(
        self, rollout_config: SpecExperimentConfig
    ) -> None:
        rollout_config.active_stage_index = None
        rollout_config.rollout_stages = None

        assert effective_rollout(rollout_config, rollout_config.variants[0]) == 1.0


class TestSpecExperimentRunner:
    """Tests for SpecExperimentRunner.assign."""

    def test_full_rollout_serves_variant(
        self, rollout_config: SpecExperimentConfig
    ) -> None:
        rollout_config.active_stage_index = 3
        runner = SpecExperimentRunner()

        result = runner.assign(rollout_config, "user-1")

        assert result.variant_id == "canary"
        assert result.spec["handler"] == "streaming"
        assert result.experiment_key == "billing.charge.streaming.v1"
        assert result.assignment is not None
        assert result.assignment.variant_id == "canary"
        assert len(_served(runner, rollout_config)) == len(USERS)

    def test_zero_rollout_never_serves_variant(
        self, rollout_config: SpecExperimentConfig
    ) -> None:
        """Test a closed rollout leaks to nobody, bucket 0 included."""
        rollout_config.rollout_stages = [0.0]
        runner = SpecExperimentRunner()

        assert _served(runner, rollout_config) == set()

    def test_zero_binding_percentage_never_serves_variant(
        self, rollout_config: SpecExperimentConfig
    ) -> None:
        rollout_config.variants = [
            SpecVariantBinding(id="canary", spec={}, rollout_percentage=0.0)
        ]

        assert _served(SpecExperimentRunner(), rollout_config) == set()

    def test_partial_rollout_share(self, rollout_config: SpecExperimentConfig) -> None:
        rollout_config.active_stage_index = 1

        served = _served(SpecExperimentRunner(), rollout_config)

        assert abs(len(served) / len(USERS) - 0.1) < 0.02

    def test_advancing_only_widens_exposure(
        self, rollout_config: SpecExperimentConfig
    ) -> None:
        """Test users exposed at one stage stay exposed at the next."""
        runner = SpecExperimentRunner()
        rollout_config.active_stage_index = 1
        at_ten_percent = _served(runner, rollout_config)
        rollout_config.active_stage_index = 2
        at_half = _served(runner, rollout_config)

        assert at_ten_percent <= at_half
        assert len(at_half) > len(at_ten_percent)

    def test_control_result(self, rollout_config: SpecExperimentConfig) -> None:
        rollout_config.rollout_stages = [0.0]

        result = SpecExperimentRunner().assign(
            rollout_config, "user-1", context={"ip": "10.0.0.1"}
        )

        assert result.variant_id == CONTROL_VARIANT_ID
        assert result.spec["handler"] == "legacy"
        assert result.assignment is not None
        assert result.assignment.variant_id == CONTROL_VARIANT_ID
        assert result.assignment.user_id == "user-1"
        assert result.assignment.context == {"ip": "10.0.0.1"}

    def test_missing_binding_serves_control(
        self, rollout_config: SpecExperimentConfig, experiment: ExperimentDefinition
    ) -> None:
        rollout_config.experiment = experiment.model_copy(
            update={"variants": [ExperimentVariant(id="unbound")]}
        )

        result = SpecExperimentRunner().assign(rollout_config, "user-1")

        assert result.variant_id == CONTROL_VARIANT_ID
        assert result.spec["handler"] == "legacy"

    def test_empty_experiment_serves_control(
        self, rollout_config: SpecExperimentConfig, experiment: ExperimentDefinition
    ) -> None:
        rollout_config.experiment = experiment.model_copy(update={"variants": []})

        result = SpecExperimentRunner().assign(rollout_config, "user-1")

        assert result.variant_id == CONTROL_VARIANT_ID

    def test_explicit_control_variant(
        self, rollout_config: SpecExperimentConfig, experiment: ExperimentDefinition
    ) -> None:
        """Test an experiment can route a share of users to control itself."""
        rollout_config.active_stage_index = 3
        rollout_config.experiment = experiment.model_copy(
            update={
                "variants": [
                    ExperimentVariant(id=CONTROL_VARIANT_ID),
                    ExperimentVariant(id="canary"),
                ]
            }
        )

        served = _served(SpecExperimentRunner(), rollout_config)

        assert abs(len(served) / len(USERS) - 0.5) < 0.03

    def test_deterministic(self, rollout_config: SpecExperimentConfig) -> None:
        rollout_config.active_stage_index = 2
        first = _served(SpecExperimentRunner(ExperimentRunner(salt="x")), rollout_config)
        second = _served(
            SpecExperimentRunner(ExperimentRunner(salt="x")), rollout_config
        )

        assert first == second

    def test_gate_bucket_differs_from_variant_bucket(self) -> None:
        runner = SpecExperimentRunner()
        key = "billing.charge.streaming.v1"

        gate = [runner.rollout_bucket(key, user) for user in USERS[:100]]
        variant = [runner.runner.bucket(key, user) for user in USERS[:100]]

        assert gate != variant


class TestAllocationGating:
    """Tests for rollout gating under per-experiment allocation."""

    def test_allocation_salt_drives_gate(
        self, rollout_config: SpecExperimentConfig, experiment: ExperimentDefinition
    ) -> None:
        rollout_config.active_stage_index = 2
        own_salt = SpecExperimentRunner(ExperimentRunner(salt="own"))
        plain = _served(own_salt, rollout_config)

        rollout_config.experiment = experiment.model_copy(
            update={"allocation": RandomAllocation(salt="own")}
        )
        salted = _served(SpecExperimentRunner(), rollout_config)

        assert salted == plain

    def test_sticky_gate_opens_per_group(
        self, rollout_config: SpecExperimentConfig, experiment: ExperimentDefinition
    ) -> None:
        """Test members of one organization are exposed together."""
        rollout_config.active_stage_index = 2
        rollout_config.experiment = experiment.model_copy(
            update={"allocation": StickyAllocation(attribute="organization_id")}
        )
        runner = SpecExperimentRunner()

        exposure = {
            org: {
                runner.assign(rollout_config, user, {"organization_id": org}).variant_id
                for user in USERS[:20]
            }
            for org in (f"org-{i}" for i in range(40))
        }

        assert all(len(variants) == 1 for variants in exposure.values())
        assert {v for variants in exposure.values() for v in variants} == {
            "canary",
            CONTROL_VARIANT_ID,
        }
