"""specrollout exceptions."""


class RolloutError(Exception):
    """Base exception for all specrollout errors."""


class EmptyVariantsError(RolloutError):
    """Raised when an experiment with no variants is asked for an assignment."""

    def __init__(self, experiment_key: str):
        self.experiment_key = experiment_key
        super().__init__(f"Experiment {experiment_key} has no variants to assign")


class DuplicateExperimentError(RolloutError):
    """Raised when an experiment definition identity is registered twice."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Experiment {identity} is already registered")


class UnknownTargetError(RolloutError):
    """Raised when the control loop is asked about an unregistered target."""

    def __init__(self, target_key: str):
        self.target_key = target_key
        super().__init__(f"No spec experiment registered for {target_key}")


class ConcurrentUpdateError(RolloutError):
    """Raised when a rollout config changed between read and write."""

    def __init__(self, target_key: str, expected_version: int, actual_version: int):
        self.target_key = target_key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Rollout config {target_key} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
