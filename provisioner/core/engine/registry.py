"""
Step registry — the ordered, immutable provisioning pipeline.

Single-host provisioning is a fixed linear pipeline (swap → OS update
→ runtime → certificate → config render → service start → verify), so
the registry is a validated tuple with no mutation API.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from provisioner.core.errors import ConfigError
from provisioner.core.models.step import Step

logger = logging.getLogger(__name__)


class StepRegistry:
    """Ordered, immutable sequence of Steps.

    Raises:
        ConfigError: on duplicate names, on a ``depends_on`` entry that
            does not name an earlier step, or on a non-callable
            pre/apply/post/rollback.
    """

    def __init__(self, steps: Iterable[Step], name: str = "default"):
        self._name = name
        self._steps: tuple[Step, ...] = tuple(steps)
        self._index: dict[str, int] = {}
        self._validate()
        logger.debug("Registry '%s' built with %d steps", name, len(self._steps))

    def _validate(self) -> None:
        errors: list[str] = []

        for position, step in enumerate(self._steps):
            if not step.name:
                errors.append(f"Step at position {position} has no name")
                continue

            if step.name in self._index:
                errors.append(f"Duplicate step name '{step.name}'")
                continue

            for attr in ("precondition", "apply", "postcondition"):
                if not callable(getattr(step, attr)):
                    errors.append(f"Step '{step.name}': {attr} is not callable")
            if step.rollback is not None and not callable(step.rollback):
                errors.append(f"Step '{step.name}': rollback is not callable")
            if step.retries < 0:
                errors.append(f"Step '{step.name}': retries must be >= 0")
            if step.timeout <= 0:
                errors.append(f"Step '{step.name}': timeout must be > 0")

            for dep in step.depends_on:
                if dep not in self._index:
                    errors.append(
                        f"Step '{step.name}' depends on '{dep}', "
                        "which is not registered before it"
                    )

            self._index[step.name] = position

        if errors:
            raise ConfigError(f"Invalid step registry '{self._name}': " + "; ".join(errors))

    @property
    def name(self) -> str:
        return self._name

    @property
    def steps(self) -> tuple[Step, ...]:
        return self._steps

    def names(self) -> list[str]:
        return [s.name for s in self._steps]

    def get(self, name: str) -> Step | None:
        position = self._index.get(name)
        return self._steps[position] if position is not None else None

    def index(self, name: str) -> int:
        """Position of a step in the pipeline (ValueError if unknown)."""
        if name not in self._index:
            raise ValueError(f"Unknown step '{name}'")
        return self._index[name]

    def filter_known(self, names: Iterable[str]) -> list[str]:
        """Keep only names that belong to this registry, in registry order."""
        wanted = set(names)
        return [s.name for s in self._steps if s.name in wanted]

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __repr__(self) -> str:
        return f"<StepRegistry name={self._name!r} steps={self.names()!r}>"
