"""Provisioning pipelines — concrete code-server steps for each install method."""

from provisioner.core.services.provisioning.pipelines import INSTALL_METHODS, build_registry

__all__ = ["INSTALL_METHODS", "build_registry"]
