from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Union

from ..persistence.models import SavePayload

logger = logging.getLogger(__name__)

MigrationFunction = Callable[[SavePayload], Union[SavePayload, None, Awaitable[Optional[SavePayload]]]]

MAX_PATH_DEPTH = 20


@dataclass(frozen=True)
class MigrationStep:
    from_version: str
    to_version: str
    function: MigrationFunction
    description: str = ""

    @property
    def name(self) -> str:
        return f"{self.from_version} -> {self.to_version}"

    async def apply(self, payload: SavePayload) -> SavePayload:
        """Run the step; functions may be sync or async and may mutate in place and return None."""
        result = self.function(payload)
        if inspect.isawaitable(result):
            result = await result
        return result if result is not None else payload


class MigrationRegistry:
    """Version steps keyed by their source version.

    Versions are opaque strings compared by equality; a path is whatever chain
    of registered steps leads from one string to the other.
    """

    def __init__(self, max_depth: int = MAX_PATH_DEPTH) -> None:
        self.max_depth = max_depth
        self._steps: Dict[str, MigrationStep] = {}

    def register(
        self, from_version: str, to_version: str, function: MigrationFunction, description: str = ""
    ) -> MigrationStep:
        if from_version == to_version:
            raise ValueError(f"Migration step must change the version: {from_version}")
        if from_version in self._steps:
            logger.warning("Replacing migration step from %s", from_version)
        step = MigrationStep(from_version, to_version, function, description)
        self._steps[from_version] = step
        logger.debug("Registered migration %s", step.name)
        return step

    def step(self, from_version: str, to_version: str, description: str = ""):
        """Decorator form of register()."""

        def decorator(fn: MigrationFunction) -> MigrationFunction:
            self.register(from_version, to_version, fn, description or (fn.__doc__ or "").strip())
            return fn

        return decorator

    def plan_path(self, from_version: str, to_version: str) -> List[MigrationStep]:
        """Steps leading from one version to the other, or [] when none exists."""
        if from_version == to_version:
            return []
        path: List[MigrationStep] = []
        cursor = from_version
        for _ in range(self.max_depth):
            step = self._steps.get(cursor)
            if step is None:
                return []
            path.append(step)
            cursor = step.to_version
            if cursor == to_version:
                return path
        logger.warning("Migration path from %s to %s exceeds depth %d", from_version, to_version, self.max_depth)
        return []

    def can_migrate(self, from_version: str, to_version: str) -> bool:
        return from_version == to_version or bool(self.plan_path(from_version, to_version))

    @staticmethod
    def is_migration_required(version: str, target: str) -> bool:
        return version != target

    def describe_path(self, from_version: str, to_version: str) -> List[str]:
        return [
            f"{s.name}: {s.description}" if s.description else s.name
            for s in self.plan_path(from_version, to_version)
        ]

    def supported_versions(self) -> List[str]:
        versions: List[str] = []
        for step in self._steps.values():
            for v in (step.from_version, step.to_version):
                if v not in versions:
                    versions.append(v)
        return versions

    def latest_version(self) -> Optional[str]:
        """The end of the chain: a version that is migrated to but never from."""
        ends = [s.to_version for s in self._steps.values() if s.to_version not in self._steps]
        return ends[-1] if ends else None

    def __len__(self) -> int:
        return len(self._steps)
