"""
Configuration Management
========================

Handles loading the learning configuration from defaults, a JSON config file
and environment variables.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "selfcorrect_config.json"
ENV_PREFIX = "SELFCORRECT_"
DEFAULT_DATA_DIR = Path("memory-bank") / "learning-data"


@dataclass
class MonitoringScope:
    """Which activity families are observed."""
    all_commands: bool = True
    all_templates: bool = True
    all_mechanisms: bool = True

    @property
    def any(self) -> bool:
        return self.all_commands or self.all_templates or self.all_mechanisms


@dataclass
class LearningConfig:
    """Self-correction learning configuration."""
    data_dir: Path = DEFAULT_DATA_DIR
    backup_dir: Optional[Path] = None
    enabled: bool = True
    monitoring_scope: MonitoringScope = field(default_factory=MonitoringScope)

    # Correction policy
    auto_correct_confidence: float = 0.8
    failed_correction_confidence: float = 0.1
    applied_correction_confidence: float = 0.9
    schedule_delay_hours: float = 24.0
    sweep_interval_seconds: float = 60.0

    # Diagnosis thresholds (milliseconds)
    template_duration_threshold_ms: float = 30000
    mechanism_duration_threshold_ms: float = 60000

    # Retention
    history_limit: int = 1000
    history_keep: int = 500
    success_pattern_limit: int = 100
    success_pattern_keep: int = 50
    backup_retention: int = 50

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        if self.backup_dir is None:
            self.backup_dir = self.data_dir.parent / "backups"
        self.backup_dir = Path(self.backup_dir)

    @property
    def database_path(self) -> Path:
        return self.data_dir / "learning.db"

    @property
    def correction_log_path(self) -> Path:
        return self.data_dir / "corrections.log"

    @classmethod
    def load(
        cls,
        data_dir: Optional[Path] = None,
        config_path: Optional[Path] = None,
    ) -> "LearningConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables (SELFCORRECT_*)
        2. Config file (selfcorrect_config.json in cwd, or config_path)
        3. Default values

        An explicit data_dir argument wins over all of them.
        """
        values: dict[str, Any] = {}

        path = Path(config_path) if config_path else Path(CONFIG_FILENAME)
        if path.exists():
            try:
                with open(path, "r") as f:
                    values.update(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", path, e)

        values.update(_read_env())

        if data_dir is not None:
            values["data_dir"] = data_dir
            values.setdefault("backup_dir", None)

        return cls.from_dict(values)

    @classmethod
    def from_dict(cls, values: dict) -> "LearningConfig":
        """Build a config from plain values, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in values.items() if k in known}
        scope = kwargs.pop("monitoring_scope", None)
        config = cls(**kwargs)
        if isinstance(scope, dict):
            config.monitoring_scope = MonitoringScope(
                all_commands=bool(scope.get("all_commands", True)),
                all_templates=bool(scope.get("all_templates", True)),
                all_mechanisms=bool(scope.get("all_mechanisms", True)),
            )
        return config


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _read_env() -> dict[str, Any]:
    """Collect SELFCORRECT_* overrides, converted to each field's type."""
    overrides: dict[str, Any] = {}
    defaults = LearningConfig()
    for f in fields(LearningConfig):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None or f.name == "monitoring_scope":
            continue
        current = getattr(defaults, f.name)
        try:
            if isinstance(current, bool):
                overrides[f.name] = _parse_bool(raw)
            elif isinstance(current, int):
                overrides[f.name] = int(raw)
            elif isinstance(current, float):
                overrides[f.name] = float(raw)
            else:
                overrides[f.name] = raw
        except ValueError:
            logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, f.name.upper(), raw)
    return overrides
