"""In-memory lookup of rollout configs keyed by target.

Configs are hot-reloadable: registering a target again replaces the stored
config. Each entry carries a version number so the controller can write
stage and status changes with a compare-and-set instead of a blind
overwrite.
"""

import logging
import threading
from dataclasses import dataclass

from specrollout.core.exceptions import ConcurrentUpdateError, UnknownTargetError
from specrollout.rollout.models import RolloutStatus, SpecExperimentConfig, SpecTarget

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    config: SpecExperimentConfig
    version: int


class SpecExperimentRegistry:
    """Rollout configs by ``name.v{version}``.

    ``get`` returns the stored instance itself, so every reader observes
    the controller's writes.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        # Versions are unique across re-registrations of the same target.
        self._last_version = 0

    def register(self, config: SpecExperimentConfig) -> SpecExperimentConfig:
        """Register or replace the config of a target."""
        key = config.target.key
        with self._lock:
            replaced = key in self._entries
            self._last_version += 1
            self._entries[key] = _Entry(config=config, version=self._last_version)
        if replaced:
            logger.info("Replaced rollout config for %s", key)
        else:
            logger.debug("Registered rollout config for %s", key)
        return config

    def get(self, target: SpecTarget) -> SpecExperimentConfig | None:
        entry = self._entries.get(target.key)
        return entry.config if entry else None

    def get_versioned(self, target: SpecTarget) -> tuple[SpecExperimentConfig, int]:
        """Get a config with its current version.

        Raises:
            UnknownTargetError: If nothing is registered for the target.
        """
        with self._lock:
            entry = self._entries.get(target.key)
            if entry is None:
                raise UnknownTargetError(target.key)
            return entry.config, entry.version

    def compare_and_set(
        self,
        target: SpecTarget,
        expected_version: int,
        *,
        active_stage_index: int | None,
        status: RolloutStatus,
    ) -> int:
        """Atomically write the mutable fields of a config.

        Args:
            target: Target whose config is written.
            expected_version: Version read before computing the new state.
            active_stage_index: New stage index.
            status: New status.

        Returns:
            The new version.

        Raises:
            UnknownTargetError: If nothing is registered for the target.
            ConcurrentUpdateError: If the entry changed since it was read.
        """
        with self._lock:
            entry = self._entries.get(target.key)
            if entry is None:
                raise UnknownTargetError(target.key)
            if entry.version != expected_version:
                raise ConcurrentUpdateError(
                    target.key, expected_version, entry.version
                )
            entry.config.active_stage_index = active_stage_index
            entry.config.status = status
            self._last_version += 1
            entry.version = self._last_version
            return entry.version

    def unregister(self, target: SpecTarget) -> bool:
        """Remove a target. Returns False if it was not registered."""
        with self._lock:
            return self._entries.pop(target.key, None) is not None

    def __contains__(self, target: object) -> bool:
        return isinstance(target, SpecTarget) and target.key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def list(self) -> list[SpecExperimentConfig]:
        """List registered configs sorted by target key."""
        return [self._entries[key].config for key in sorted(self._entries)]
