"""
Configuration management and loading.

Handles quota plans, cache and sweep settings, and environment overrides.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from summary_guard.core.errors import InvalidInput


OPERATIONS = ("analyze", "reviews", "import")
FALLBACK_PLAN = "free"


@dataclass(frozen=True)
class PlanConfig:
    """Per-operation ceilings for a single plan."""
    name: str
    limits: Dict[str, int]

    def __post_init__(self):
        """Validate ceilings are non-negative integers."""
        for operation, ceiling in self.limits.items():
            if operation not in OPERATIONS:
                raise ValueError(f"Unknown operation '{operation}' in plan '{self.name}'")
            if not isinstance(ceiling, int) or isinstance(ceiling, bool) or ceiling < 0:
                raise ValueError(f"Ceiling for '{operation}' in plan '{self.name}' must be an integer >= 0")


@dataclass(frozen=True)
class CacheConfig:
    """Artifact cache freshness settings."""
    ttl_hours: float = 24.0

    def __post_init__(self):
        if self.ttl_hours <= 0:
            raise ValueError("ttl_hours must be > 0")


@dataclass(frozen=True)
class SweepConfig:
    """Recomputation sweep settings."""
    batch_size: int = 5
    max_batch_size: int = 20
    secret: Optional[str] = None

    def __post_init__(self):
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        if self.batch_size < 1 or self.batch_size > self.max_batch_size:
            raise ValueError("batch_size must be between 1 and max_batch_size")

    def clamp(self, requested: Optional[int]) -> int:
        """Clamp a requested batch size into [1, max_batch_size].

        Raises:
            InvalidInput: If requested is not an integer
        """
        if requested is None:
            return self.batch_size
        if isinstance(requested, bool):
            raise InvalidInput(f"batch_size must be an integer, got {requested!r}")
        try:
            value = int(requested)
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"batch_size must be an integer, got {requested!r}", e) from e
        return max(1, min(self.max_batch_size, value))


@dataclass(frozen=True)
class GeneratorConfig:
    """Settings for the summary generator."""
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 60.0
    temperature: float = 0.2
    output_language: str = "en"
    max_documents: int = 200

    def __post_init__(self):
        if not self.model or not self.model.strip():
            raise ValueError("generator model cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_documents < 1:
            raise ValueError("max_documents must be >= 1")


@dataclass(frozen=True)
class Settings:
    """Complete application settings."""
    plans: Dict[str, PlanConfig]
    anonymous_limits: Dict[str, int]
    cache: CacheConfig = field(default_factory=CacheConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    db_path: str = "summary_guard.db"

    def __post_init__(self):
        if FALLBACK_PLAN not in self.plans:
            raise ValueError(f"A '{FALLBACK_PLAN}' plan is required")
        PlanConfig("anonymous", self.anonymous_limits)

    def get_plan(self, name: Optional[str]) -> PlanConfig:
        """Get a plan by name, using the fallback plan if it is not configured."""
        return self.plans.get(name or FALLBACK_PLAN, self.plans[FALLBACK_PLAN])


DEFAULT_PLANS = {
    "free": {"analyze": 3, "reviews": 500, "import": 10},
    "pro": {"analyze": 100, "reviews": 5000, "import": 200},
}

DEFAULT_ANONYMOUS_LIMITS = {"analyze": 2, "reviews": 500, "import": 0}


def default_settings() -> Settings:
    """Settings used when no configuration file is supplied."""
    return Settings(
        plans={name: PlanConfig(name, dict(limits)) for name, limits in DEFAULT_PLANS.items()},
        anonymous_limits=dict(DEFAULT_ANONYMOUS_LIMITS),
    )


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Load and validate settings from a YAML file, then apply environment overrides.

    Strict validation ensures a typo in a ceiling never silently turns
    into an unlimited or zero quota.

    Args:
        path: Path to YAML configuration file, or None for defaults
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    settings = default_settings() if path is None else _load_yaml_settings(path)
    return apply_env_overrides(settings, os.environ if env is None else env)


def _load_yaml_settings(path: str) -> Settings:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {'plans', 'anonymous', 'cache', 'sweep', 'generator', 'database'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    plans_data = raw_config.get('plans', DEFAULT_PLANS)
    if not isinstance(plans_data, dict):
        raise ValueError("'plans' must be a dictionary")
    plans = {}
    for plan_name, limits in plans_data.items():
        plans[plan_name] = PlanConfig(plan_name, _parse_limits(limits, f"plans.{plan_name}"))

    anonymous = _parse_limits(raw_config.get('anonymous', DEFAULT_ANONYMOUS_LIMITS), "anonymous")

    cache_data = _section(raw_config, 'cache', {'ttl_hours'})
    sweep_data = _section(raw_config, 'sweep', {'batch_size', 'max_batch_size', 'secret'})
    generator_data = _section(
        raw_config, 'generator',
        {'model', 'timeout_seconds', 'temperature', 'output_language', 'max_documents'}
    )
    database_data = _section(raw_config, 'database', {'path'})

    settings = Settings(
        plans=plans,
        anonymous_limits=anonymous,
        cache=CacheConfig(**cache_data),
        sweep=SweepConfig(**sweep_data),
        generator=GeneratorConfig(**generator_data),
    )
    if 'path' in database_data:
        settings = replace(settings, db_path=str(database_data['path']))
    return settings


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _parse_limits(data, path: str) -> Dict[str, int]:
    """Parse a mapping of operation to ceiling.

    Args:
        data: Raw mapping from YAML
        path: Path for error messages

    Returns:
        Validated operation → ceiling mapping

    Raises:
        ValueError: If an operation is unknown or a ceiling is not a non-negative integer
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - set(OPERATIONS)
    if unknown_keys:
        raise ValueError(f"Unknown operations in {path}: {unknown_keys}")

    limits = {}
    for operation, ceiling in data.items():
        if not isinstance(ceiling, int) or isinstance(ceiling, bool) or ceiling < 0:
            raise ValueError(f"'{operation}' in {path} must be an integer >= 0")
        limits[operation] = ceiling
    return limits


# Environment variable → free-plan operation it overrides
_ENV_LIMITS = {
    "FREE_ANALYZE_LIMIT": "analyze",
    "FREE_REVIEWS_LIMIT": "reviews",
    "FREE_IMPORT_LIMIT": "import",
}


def apply_env_overrides(settings: Settings, env: Mapping[str, str]) -> Settings:
    """Return settings with recognised environment variables applied on top."""
    free_limits = dict(settings.plans[FALLBACK_PLAN].limits)
    for var, operation in _ENV_LIMITS.items():
        if env.get(var):
            free_limits[operation] = _env_int(env, var)
    plans = dict(settings.plans)
    plans[FALLBACK_PLAN] = PlanConfig(FALLBACK_PLAN, free_limits)

    anonymous = dict(settings.anonymous_limits)
    if env.get("ANON_ANALYZE_MONTHLY_LIMIT"):
        anonymous["analyze"] = _env_int(env, "ANON_ANALYZE_MONTHLY_LIMIT")

    cache = settings.cache
    if env.get("ANALYSIS_TTL_HOURS"):
        try:
            cache = CacheConfig(ttl_hours=float(env["ANALYSIS_TTL_HOURS"]))
        except ValueError:
            raise ValueError(f"ANALYSIS_TTL_HOURS must be a positive number, got {env['ANALYSIS_TTL_HOURS']!r}")

    sweep = settings.sweep
    if env.get("CRON_SECRET"):
        sweep = replace(sweep, secret=env["CRON_SECRET"])

    generator = settings.generator
    if env.get("OPENAI_MODEL"):
        generator = replace(generator, model=env["OPENAI_MODEL"])
    if env.get("OUTPUT_LANG"):
        generator = replace(generator, output_language=env["OUTPUT_LANG"])

    return replace(
        settings,
        plans=plans,
        anonymous_limits=anonymous,
        cache=cache,
        sweep=sweep,
        generator=generator,
        db_path=env.get("SUMMARY_GUARD_DB") or settings.db_path,
    )


def _env_int(env: Mapping[str, str], var: str) -> int:
    try:
        value = int(env[var])
    except ValueError:
        raise ValueError(f"{var} must be an integer, got {env[var]!r}")
    if value < 0:
        raise ValueError(f"{var} must be >= 0")
    return value
