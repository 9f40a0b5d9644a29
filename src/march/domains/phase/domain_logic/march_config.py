"""Thresholds, signal weights and confidence parameters for phase scoring.

``MarchConfig`` is an immutable value built once (defaults, optionally
overlaid with a YAML file) and passed by reference into the aggregator,
scorer and service. Nothing in the engine reads a global config.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from march.domains.phase.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    """The fifteen cutoffs that trigger scoring conditions."""

    low_hrv: float = 45.0             # ms
    high_rhr: float = 72.0            # bpm
    poor_sleep: float = 6.5           # hours
    sleep_efficiency: float = 0.85    # 0-1
    gi_bloating: float = 1.5          # 0-3 scale
    stool_form_min: float = 3.0       # Bristol
    stool_form_max: float = 5.0       # Bristol
    bowel_freq_min: float = 1.0       # per day
    bowel_freq_max: float = 3.0       # per day
    food_reactivity: float = 0.5      # reactive meals per day
    high_stress: float = 3.5          # 1-5 scale
    stable_sleep: float = 7.0         # hours
    strength_sessions: int = 3        # per week
    volume_increase: float = 0.10     # fraction over baseline
    strength_trend: float = 1.5       # percent


@dataclass(frozen=True)
class Weights:
    """Per-signal contribution of a triggered condition, in score points."""

    hrv: float = 30.0
    rhr: float = 20.0
    sleep: float = 15.0
    energy: float = 15.0
    steps: float = 10.0
    gi: float = 25.0
    stress: float = 25.0
    training: float = 25.0
    cycle: float = 30.0


@dataclass(frozen=True)
class ConfidenceParams:
    """Bounds and curve for confidence-from-separation.

    Confidence rises linearly from ``min_confidence`` at a zero gap to
    ``max_confidence`` at a gap of ``min_separation * saturation_multiple``.
    Weeks with fewer than ``low_data_threshold`` data days are capped at
    ``low_data_ceiling``.
    """

    min_separation: float = 8.0
    low_data_threshold: int = 3       # distinct days with samples
    min_confidence: float = 0.5
    max_confidence: float = 0.95
    saturation_multiple: float = 4.0
    low_data_ceiling: float = 0.6


@dataclass(frozen=True)
class RuleParams:
    """Secondary cutoffs and multipliers used inside the scoring rules."""

    hrv_baseline_ratio: float = 0.85
    rhr_baseline_ratio: float = 1.08
    resilience_hrv_ratio: float = 0.90
    low_energy: float = 2.0
    low_steps: float = 6000.0
    steps_baseline_ratio: float = 0.70
    high_rpe: float = 7.0
    recovery_stress: float = 4.0
    pms_elevated: float = 1.5
    menstrual_multiplier: float = 2.0
    very_low_hrv: float = 35.0
    very_high_rhr: float = 85.0
    red_flag_floor: float = 80.0
    # Severe GI: any one of these raises ABSORPTION_DETOX to gi_red_flag_floor.
    severe_bloating: float = 2.5
    severe_stool_form_min: float = 2.0
    severe_stool_form_max: float = 6.0
    severe_food_reactivity: float = 1.5
    gi_red_flag_floor: float = 70.0
    # Readiness: HYPERTROPHY_HEALTHSPAN only wins on a stable base.
    readiness_stress_max: float = 3.0
    readiness_energy_min: float = 3.0


@dataclass(frozen=True)
class MarchConfig:
    thresholds: Thresholds = field(default_factory=Thresholds)
    weights: Weights = field(default_factory=Weights)
    confidence: ConfidenceParams = field(default_factory=ConfidenceParams)
    rules: RuleParams = field(default_factory=RuleParams)

    def validate(self) -> MarchConfig:
        """Check internal consistency; return self so it can be chained."""
        t, c = self.thresholds, self.confidence
        problems: list[str] = []

        if t.stool_form_min > t.stool_form_max:
            problems.append("stool_form_min must not exceed stool_form_max")
        if t.bowel_freq_min > t.bowel_freq_max:
            problems.append("bowel_freq_min must not exceed bowel_freq_max")
        if t.poor_sleep > t.stable_sleep:
            problems.append("poor_sleep must not exceed stable_sleep")
        if self.rules.severe_stool_form_min > self.rules.severe_stool_form_max:
            problems.append("severe_stool_form_min must not exceed severe_stool_form_max")
        for name in ("red_flag_floor", "gi_red_flag_floor"):
            if not 0.0 <= getattr(self.rules, name) <= 100.0:
                problems.append(f"{name} must lie within 0-100")

        for f in fields(self.weights):
            if getattr(self.weights, f.name) < 0:
                problems.append(f"weight {f.name!r} must be non-negative")

        if not 0.0 <= c.min_confidence <= c.max_confidence <= 1.0:
            problems.append("confidence bounds must satisfy 0 <= min <= max <= 1")
        if not c.min_confidence <= c.low_data_ceiling <= c.max_confidence:
            problems.append("low_data_ceiling must lie within the confidence bounds")
        if c.min_separation <= 0 or c.saturation_multiple <= 0:
            problems.append("min_separation and saturation_multiple must be positive")
        if c.low_data_threshold < 0:
            problems.append("low_data_threshold must be non-negative")

        if problems:
            raise ConfigError("Invalid MarchConfig: " + "; ".join(problems))
        return self


DEFAULT_MARCH_CONFIG = MarchConfig()


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def _overlay(section: Any, overrides: Mapping[str, Any], section_name: str) -> Any:
    known = {f.name: f for f in fields(section)}
    changes: dict[str, Any] = {}
    for raw_key, value in overrides.items():
        key = _snake(str(raw_key))
        if key not in known:
            raise ConfigError(f"Unknown {section_name} key: {raw_key!r}")
        current = getattr(section, key)
        try:
            changes[key] = type(current)(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Bad value for {section_name}.{key}: {value!r}") from exc
    return replace(section, **changes)


def march_config_from_dict(
    data: Mapping[str, Any] | None,
    base: MarchConfig = DEFAULT_MARCH_CONFIG,
) -> MarchConfig:
    """Overlay a (possibly partial) nested mapping onto ``base``.

    Keys may be snake_case or camelCase. Unknown sections or keys are
    rejected rather than silently ignored.
    """
    if not data:
        return base.validate()

    sections: dict[str, Any] = {}
    for raw_name, overrides in data.items():
        name = _snake(str(raw_name))
        if name not in {f.name for f in fields(base)}:
            raise ConfigError(f"Unknown config section: {raw_name!r}")
        if not isinstance(overrides, Mapping):
            raise ConfigError(f"Config section {raw_name!r} must be a mapping")
        sections[name] = _overlay(getattr(base, name), overrides, name)

    return replace(base, **sections).validate()


def load_march_config(path: str | Path | None) -> MarchConfig:
    """Load a YAML override file; return defaults when no path is given."""
    if not path:
        return DEFAULT_MARCH_CONFIG

    config_path = Path(path).expanduser()
    if not config_path.is_file():
        raise ConfigError(f"March config file not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"March config file must contain a mapping: {config_path}")

    config = march_config_from_dict(data)
    logger.info("Loaded March config overrides from %s", config_path)
    return config
