"""Registry of immutable experiment definitions."""

import logging

from specrollout.core.exceptions import DuplicateExperimentError
from specrollout.experiments.models import ExperimentDefinition

logger = logging.getLogger(__name__)


class ExperimentRegistry:
    """Holds experiment definitions keyed by ``key.v{version}``.

    Definitions must not be redefined, so registering an identity twice is
    an error.
    """

    def __init__(self) -> None:
        self._definitions: dict[str, ExperimentDefinition] = {}

    def register(self, definition: ExperimentDefinition) -> ExperimentDefinition:
        """Register a definition.

        Raises:
            DuplicateExperimentError: If the identity is already registered.
        """
        identity = definition.identity
        if identity in self._definitions:
            raise DuplicateExperimentError(identity)
        self._definitions[identity] = definition
        logger.debug("Registered experiment %s", identity)
        return definition

    def get(self, key: str, version: int | None = None) -> ExperimentDefinition | None:
        """Get a definition by key, the latest version when none is given."""
        if version is not None:
            return self._definitions.get(f"{key}.v{version}")

        candidates = [d for d in self._definitions.values() if d.key == key]
        if not candidates:
            return None
        return max(candidates, key=lambda d: d.version)

    def list(self) -> list[ExperimentDefinition]:
        """List definitions sorted by key and version."""
        return sorted(self._definitions.values(), key=lambda d: (d.key, d.version))

    def __contains__(self, identity: object) -> bool:
        return identity in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
