"""
Configuration loader — reads the control panel record (panel.yml).

The record is written by the installer's ``panel-config`` step and
read by the control panel at startup. It is validated as a whole:
YAML errors, a non-mapping document, unknown keys or wrong types all
raise ``ConfigError`` and nothing is applied.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import yaml
from pydantic import ValidationError

from provisioner.core.errors import ConfigError
from provisioner.core.models.service import ServiceConfig

logger = logging.getLogger(__name__)


def load_service_config(path: Path) -> ServiceConfig:
    """Load and validate the control panel configuration.

    Args:
        path: Path to panel.yml.

    Returns:
        Validated ServiceConfig.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if not path.is_file():
        raise ConfigError(
            f"Config file not found: {path}. "
            "Run the installer first, or point CSP_PANEL_CONFIG at the record."
        )

    logger.debug("Loading panel config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = ServiceConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid panel configuration in {path}: {e}") from e

    logger.info("Loaded panel config for %s (%s)", config.domain, config.install_method)
    return config


def render_service_config(config: ServiceConfig) -> str:
    """Serialize a ServiceConfig to YAML text."""
    return yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False, default_flow_style=False)


def save_service_config(config: ServiceConfig, path: Path) -> None:
    """Write the control panel configuration atomically."""
    content = render_service_config(config)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".panel_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("Panel config saved to %s", path)
