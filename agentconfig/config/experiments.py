"""Experiment Manager

Boolean feature flags stored in the plain namespace under ``experiments.<flag>``.
Because they are ordinary plain keys, a flag can be forced from the
environment, e.g. ``AGENT_EXPERIMENTS_SMART_APPROVE=true``.
"""

import logging
from typing import Dict, List, Tuple

from agentconfig.config.base import ConfigStore
from agentconfig.config.exceptions import InvalidValue
from agentconfig.config.values import Namespace, ValueKind

logger = logging.getLogger(__name__)

EXPERIMENT_PREFIX = "experiments."

# Known experiments and their defaults
ALL_EXPERIMENTS: List[Tuple[str, bool]] = [
    ("smart_approve", True),
]


class ExperimentManager:
    """Feature-flag toggles backed by a ConfigStore"""

    def __init__(self, store: ConfigStore):
        self.store = store
        for name, _ in ALL_EXPERIMENTS:
            store.declare(self._key(name), ValueKind.BOOLEAN)

    @staticmethod
    def _key(flag_name: str) -> str:
        return EXPERIMENT_PREFIX + flag_name

    def is_enabled(self, flag_name: str) -> bool:
        """Stored (or env-overridden) value, else the known default, else False"""
        default = dict(ALL_EXPERIMENTS).get(flag_name, False)
        value = self.store.get(self._key(flag_name), Namespace.PLAIN, default)
        if not isinstance(value, bool):
            logger.warning(
                f"Experiment '{flag_name}' has non-boolean value {value!r}; using default {default}"
            )
            return default
        return value

    def set(self, flag_name: str, enabled: bool) -> None:
        if not isinstance(enabled, bool):
            raise InvalidValue(
                f"Experiment '{flag_name}' must be set to a bool, got {type(enabled).__name__}",
                key=self._key(flag_name),
                namespace=Namespace.PLAIN,
            )
        self.store.set(self._key(flag_name), enabled)
        logger.info(f"Experiment '{flag_name}' {'enabled' if enabled else 'disabled'}")

    def list(self) -> Dict[str, bool]:
        """Known experiments plus any stored flags, with their current state"""
        names = [name for name, _ in ALL_EXPERIMENTS]
        for key in self.store.keys(Namespace.PLAIN, prefix=EXPERIMENT_PREFIX):
            name = key[len(EXPERIMENT_PREFIX):]
            if name not in names:
                names.append(name)
        return {name: self.is_enabled(name) for name in names}
