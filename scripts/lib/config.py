"""
P3 Proposal Dashboard — Settings
==================================

Business rules come from configs/p3_attribution.yaml; connection and
runtime knobs come from .env. Anything missing from the YAML falls back to
the defaults below.

Usage:
    from scripts.lib.config import load_settings
    settings = load_settings()
    settings.eligible_deal_types  # ("monthly service", "recurring special service")
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger("config")

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")

DEFAULT_CONFIG_PATH = PROJECT_ROOT / "configs" / "p3_attribution.yaml"


@dataclass(frozen=True)
class Settings:
    """Attribution rules and runtime limits for one process."""
    p3_label: str = "P3 - Proposal"
    meeting_type_field: str = "call_and_meeting_type"
    eligible_deal_types: Tuple[str, ...] = ("monthly service", "recurring special service")
    won_stage: str = "Closed Won"
    lost_stage: str = "Closed Lost"
    overdue_after_days: int = 150
    annualization_factor: int = 12
    priority_stages: Tuple[str, ...] = ("Proposal Sent", "Contract Sent")
    contact_fallback: bool = False
    batch_size: int = 100
    page_size: int = 1000
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_multiplier: float = 2.0
    timeout_seconds: float = 30.0
    unassigned_label: str = "Unassigned"
    source: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        normalized = tuple(t.strip().lower() for t in self.eligible_deal_types)
        object.__setattr__(self, "eligible_deal_types", normalized)
        object.__setattr__(self, "priority_stages", tuple(self.priority_stages))
        if self.batch_size < 1 or self.batch_size > 100:
            raise ConfigError(f"batch_size must be between 1 and 100, got {self.batch_size}")
        if self.overdue_after_days < 1:
            raise ConfigError("overdue_after_days must be positive")


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.info("No attribution config at %s, using defaults", path)
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed YAML: {e}", config_path=str(path)) from e

    if not isinstance(data, dict):
        raise ConfigError("Top level of the attribution config must be a mapping",
                          config_path=str(path))
    return data


def load_settings(config_path: Optional[str | Path] = None) -> Settings:
    """
    Build Settings from the YAML rules file plus environment overrides.

    Args:
        config_path: YAML file to read. Defaults to P3_CONFIG_PATH or
            configs/p3_attribution.yaml.

    Raises:
        ConfigError: If the file is malformed or has unknown keys.
    """
    path = Path(config_path or os.getenv("P3_CONFIG_PATH") or DEFAULT_CONFIG_PATH)
    raw = _read_yaml(path)

    # Flatten the sections used in the YAML file
    values: Dict[str, Any] = {}
    for section in ("meetings", "deals", "store", "runtime"):
        values.update(raw.pop(section, None) or {})
    values.update(raw)

    known = {f.name for f in fields(Settings)} - {"source"}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}", config_path=str(path))

    timeout = os.getenv("METRICS_TIMEOUT_SECONDS")
    if timeout:
        try:
            values["timeout_seconds"] = float(timeout)
        except ValueError as e:
            raise ConfigError(f"METRICS_TIMEOUT_SECONDS is not a number: {timeout}") from e

    for key in ("eligible_deal_types", "priority_stages"):
        if key in values:
            values[key] = tuple(values[key] or ())

    try:
        return Settings(**values, source={"path": str(path)})
    except TypeError as e:
        raise ConfigError(str(e), config_path=str(path)) from e
