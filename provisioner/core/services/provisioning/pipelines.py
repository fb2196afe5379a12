"""
Pipeline selection — the step registry for an install method.
"""

from __future__ import annotations

import logging

from provisioner.core.config.settings import Settings
from provisioner.core.engine.registry import StepRegistry
from provisioner.core.errors import ConfigError
from provisioner.core.services.provisioning.container import container_steps
from provisioner.core.services.provisioning.native import native_steps

logger = logging.getLogger(__name__)

_BUILDERS = {
    "container": container_steps,
    "native": native_steps,
}

INSTALL_METHODS = tuple(_BUILDERS)


def build_registry(method: str, settings: Settings | None = None) -> StepRegistry:
    """Build the validated registry for ``method``.

    Raises:
        ConfigError: unknown method, or the pipeline itself is malformed.
    """
    builder = _BUILDERS.get(method)
    if builder is None:
        raise ConfigError(f"Unknown install method '{method}' (expected one of: {', '.join(INSTALL_METHODS)})")
    registry = StepRegistry(builder(settings or Settings()), name=method)
    logger.debug("Pipeline %s: %s", method, " → ".join(registry.names()))
    return registry
