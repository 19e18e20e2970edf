"""
Settings Manager for the Predictive Maintenance Scheduling Engine
Handles configuration loading, validation, and environment variable management
"""

import os
import copy
import yaml
from pathlib import Path
from typing import Any, Dict, Optional, List
from dataclasses import dataclass, field
import logging
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_FILE = CONFIG_DIR / "config.yaml"

logger = logging.getLogger(__name__)


@dataclass
class PredictorConfig:
    """Failure predictor settings"""
    default_age_years: float = 5.0
    default_usage_hours: float = 8760.0
    default_maintenance_events: int = 4
    lifespan_years: float = 10.0
    heavy_usage_hours: float = 20000.0
    events_for_full_credit: int = 12
    age_weight: float = 0.4
    usage_weight: float = 0.4
    maintenance_weight: float = 0.2
    probability_scale: float = 0.8
    rul_horizon_days: float = 730.0
    minimum_rul_days: float = 30.0
    base_confidence: float = 0.85
    default_input_penalty: float = 0.1
    minimum_confidence: float = 0.5
    warning_ratio: float = 0.9


@dataclass
class CostConfig:
    """Cost reconciliation settings"""
    hourly_rate: float = 65.0
    overhead_rate: float = 0.15
    reactive_cost_multiplier: float = 3.5
    outsourcing_hourly_rate: float = 95.0


@dataclass
class SchedulingConfig:
    """Batch scheduling and collaborator access settings"""
    max_workers: int = 4
    request_timeout_seconds: float = 10.0
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    default_constraints: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OptimizerConfig:
    """Fleet optimizer settings"""
    max_daily_technician_hours: float = 8.0
    max_schedules_per_day: int = 4
    max_cost_increase: float = 0.0
    low_risk_probability: float = 0.3
    consolidation_window_days: int = 14
    batching_setup_fraction: float = 0.1
    predictive_conversion_savings: float = 0.2
    phase_length_days: int = 7
    rollout_lead_days: int = 7
    objective_benefit_map: Dict[str, str] = field(default_factory=dict)


@dataclass
class AnalyticsConfig:
    """Analytics aggregation settings and documented baselines"""
    operating_hours_per_day: float = 16.0
    working_hours_per_day: float = 8.0
    reliability_mission_days: int = 30
    prediction_threshold: float = 0.5
    drift_p_value: float = 0.05
    drift_accuracy_drop: float = 0.1
    performance_rate_baseline: float = 0.95
    average_inventory_value_baseline: float = 5000.0
    downtime_cost_per_hour: float = 500.0
    benchmarks: Dict[str, float] = field(default_factory=dict)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base"""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _section(cls, values: Dict[str, Any]):
    """Build a typed config section, ignoring unknown keys"""
    known = {k: v for k, v in (values or {}).items() if k in cls.__dataclass_fields__}
    return cls(**known)


class Settings:
    """
    Central configuration management class

    Loads the packaged defaults, merges an optional user file and applies
    environment overrides. Components receive the section they need, so a
    test can build its own Settings without touching the module-level one.
    """

    def __init__(self, config_file: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        """Initialize settings

        Args:
            config_file: Optional user YAML merged over the packaged defaults
            overrides: Optional nested dict merged last (mainly for tests)
        """
        self.config_file = Path(config_file) if config_file else None
        self._config: Dict[str, Any] = {}
        self._load_config()
        if overrides:
            self._config = _deep_merge(self._config, overrides)
        self._override_with_env()
        self._validate_config()

    def _load_config(self):
        """Load default configuration and merge the user file over it"""
        with open(DEFAULT_CONFIG_FILE, 'r') as f:
            self._config = yaml.safe_load(f) or {}

        user_file = self.config_file or (Path(os.environ['PDM_CONFIG_FILE']) if os.getenv('PDM_CONFIG_FILE') else None)
        if user_file is None:
            return

        try:
            with open(user_file, 'r') as f:
                user_config = yaml.safe_load(f) or {}
            self._config = _deep_merge(self._config, user_config)
            logger.info(f"Configuration loaded from {user_file}")
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {user_file}, using defaults")

    def _override_with_env(self):
        """Override configuration with environment variables"""
        self._config['environment'] = os.getenv('PDM_ENVIRONMENT', self._config.get('environment', 'development'))

        if 'PDM_LOG_LEVEL' in os.environ:
            self.set('logging.level', os.environ['PDM_LOG_LEVEL'].upper())

        if 'PDM_HOURLY_RATE' in os.environ:
            self.set('cost.hourly_rate', float(os.environ['PDM_HOURLY_RATE']))

        if 'PDM_MAX_WORKERS' in os.environ:
            self.set('scheduling.max_workers', int(os.environ['PDM_MAX_WORKERS']))

    def _validate_config(self):
        """Validate configuration values"""
        if self.get('scheduling.max_workers', 1) < 1:
            raise ValueError("scheduling.max_workers must be at least 1")

        if self.get('scheduling.max_retries', 0) < 0:
            raise ValueError("scheduling.max_retries cannot be negative")

        if self.get('cost.hourly_rate', 0) < 0:
            raise ValueError("cost.hourly_rate cannot be negative")

        if self.get('timing.minimum_lead_days', 7) < 7:
            raise ValueError("timing.minimum_lead_days cannot be below 7 days")

        thresholds = [t['above'] for t in self.get('priority.thresholds', [])]
        if thresholds != sorted(thresholds, reverse=True):
            raise ValueError("priority.thresholds must be ordered from most to least severe")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: settings.get('cost.hourly_rate')
        """
        value = self._config

        for k in key.split('.'):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any):
        """
        Set configuration value using dot notation
        Example: settings.set('scheduling.max_workers', 8)
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def get_predictor_config(self) -> PredictorConfig:
        """Get failure predictor configuration object"""
        return _section(PredictorConfig, self.get('predictor', {}))

    def get_cost_config(self) -> CostConfig:
        """Get cost estimator configuration object"""
        return _section(CostConfig, self.get('cost', {}))

    def get_scheduling_config(self) -> SchedulingConfig:
        """Get scheduling configuration object"""
        return _section(SchedulingConfig, self.get('scheduling', {}))

    def get_optimizer_config(self) -> OptimizerConfig:
        """Get fleet optimizer configuration object"""
        return _section(OptimizerConfig, self.get('optimizer', {}))

    def get_analytics_config(self) -> AnalyticsConfig:
        """Get analytics configuration object"""
        return _section(AnalyticsConfig, self.get('analytics', {}))

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return copy.deepcopy(self._config)

    def save(self, file_path: Path):
        """Save current configuration to file"""
        with open(file_path, 'w') as f:
            yaml.dump(self._config, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Configuration saved to {file_path}")


# Global settings instance
settings = Settings()


def get_config(key: str, default: Any = None) -> Any:
    """Quick access to configuration values"""
    return settings.get(key, default)
