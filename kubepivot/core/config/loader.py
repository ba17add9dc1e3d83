"""
Configuration loader — reads the optional config.yml into Settings.

Settings live in the kubepivot home directory (``$KUBEPIVOT_HOME`` or
``~/.kubepivot``), which is also where finished clusters' artifacts
and the run ledger are kept.  Every field has a default, so a missing
file is not an error; an unreadable or invalid one is.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from kubepivot.core.errors import ConfigError
from kubepivot.core.reliability.backoff import BackoffPolicy

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yml"
HOME_ENV_VAR = "KUBEPIVOT_HOME"
DEFAULT_HOME_DIR = ".kubepivot"


class BackoffSettings(BaseModel):
    """Serializable form of a BackoffPolicy."""

    base_delay: float = Field(default=5.0, gt=0)
    max_delay: float = Field(default=60.0, gt=0)
    timeout: float | None = Field(default=1800.0, gt=0)
    max_attempts: int | None = Field(default=None, ge=1)

    def policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            timeout=self.timeout,
            max_attempts=self.max_attempts,
        )


class Settings(BaseModel):
    """Tunables for a provisioning run."""

    ephemeral_name: str = "kubepivot-bootstrapper"
    kind_node_image: str | None = None
    kubernetes_version: str = "v1.29.4"
    worker_count: int = Field(default=3, ge=1)
    cni_manifest_url: str = (
        "https://raw.githubusercontent.com/projectcalico/calico/v3.27.3/manifests/calico.yaml"
    )
    argocd_install_url: str = (
        "https://github.com/argoproj/argo-cd/manifests/cluster-install?ref=stable"
    )
    readiness: BackoffSettings = Field(default_factory=BackoffSettings)
    stage_retry: BackoffSettings = Field(
        default_factory=lambda: BackoffSettings(
            base_delay=5.0, max_delay=60.0, timeout=None, max_attempts=3
        )
    )
    run_timeout: float | None = Field(default=None, gt=0)


def home_dir() -> Path:
    """The kubepivot home directory (not created)."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_HOME_DIR


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from ``path`` or ``<home>/config.yml``.

    Raises:
        ConfigError: If the file exists but cannot be read or validated.
    """
    if path is None:
        path = home_dir() / CONFIG_FILE
        if not path.is_file():
            logger.debug("No %s — using defaults", path)
            return Settings()
    elif not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e
