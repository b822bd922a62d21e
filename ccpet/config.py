"""YAML config loader."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

log = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"

_DEFAULT_EXPRESSIONS = {
    "HAPPY": "(^_^)",
    "HUNGRY": "(o_o)",
    "SICK": "(u_u)",
    "DEAD": "(x_x)",
}


def default_root() -> Path:
    """Directory holding pet state, tracker, config and graveyard."""
    return Path("~/.claude-pet").expanduser()


@dataclass(frozen=True)
class PetConfig:
    initial_energy: float = 100.0
    happy_threshold: float = 80.0
    hungry_threshold: float = 40.0
    sick_threshold: float = 10.0
    expressions: dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_EXPRESSIONS))
    decay_rate_per_minute: float = 0.0231  # ~3 days from 100 to 0
    min_decay_interval_minutes: float = 1.0
    tokens_per_energy: int = 1_000_000
    default_animal: str = "cat"
    context_window_tokens: int = 200_000
    usable_context_ratio: float = 0.8
    energy_bar_length: int = 10

    def expression_for(self, mood_name: str) -> str:
        return self.expressions.get(mood_name, _DEFAULT_EXPRESSIONS[mood_name])

    @property
    def usable_context_tokens(self) -> float:
        return self.context_window_tokens * self.usable_context_ratio


_DEFAULTS = PetConfig()


def _is_number(value: Any) -> bool:
    return (
        not isinstance(value, bool)
        and isinstance(value, (int, float))
        and math.isfinite(value)
    )


# field -> (check, description); a failed check keeps the default
_FIELD_CHECKS: dict[str, tuple[Callable[[Any], bool], str]] = {
    "initial_energy": (lambda v: _is_number(v) and 0 < v <= 100, "a number in (0, 100]"),
    "happy_threshold": (lambda v: _is_number(v) and 0 <= v <= 100, "a number in [0, 100]"),
    "hungry_threshold": (lambda v: _is_number(v) and 0 <= v <= 100, "a number in [0, 100]"),
    "sick_threshold": (lambda v: _is_number(v) and 0 <= v <= 100, "a number in [0, 100]"),
    "decay_rate_per_minute": (lambda v: _is_number(v) and v >= 0, "a non-negative number"),
    "min_decay_interval_minutes": (lambda v: _is_number(v) and v >= 0, "a non-negative number"),
    "tokens_per_energy": (lambda v: _is_number(v) and isinstance(v, int) and v > 0, "a positive integer"),
    "context_window_tokens": (lambda v: _is_number(v) and v > 0, "a positive number"),
    "usable_context_ratio": (lambda v: _is_number(v) and 0 < v <= 1, "a number in (0, 1]"),
    "energy_bar_length": (lambda v: _is_number(v) and isinstance(v, int) and v > 0, "a positive integer"),
    "default_animal": (lambda v: isinstance(v, str), "a string"),
    "expressions": (
        lambda v: isinstance(v, dict)
        and all(isinstance(k, str) and isinstance(e, str) for k, e in v.items()),
        "a mapping of mood names to strings",
    ),
}

_THRESHOLD_FIELDS = ("initial_energy", "happy_threshold", "hungry_threshold", "sick_threshold")


def _validated(raw: dict[str, Any], path: Path) -> dict[str, Any]:
    """Drop fields with bad values so their defaults apply."""
    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in PetConfig.__dataclass_fields__:
            continue
        check, expected = _FIELD_CHECKS[key]
        if not check(value):
            log.warning("Config %s: %s must be %s, got %r; using default", path, key, expected, value)
            continue
        values[key] = value

    merged = {name: values.get(name, getattr(_DEFAULTS, name)) for name in _THRESHOLD_FIELDS}
    if not (
        merged["initial_energy"]
        >= merged["happy_threshold"]
        > merged["hungry_threshold"]
        > merged["sick_threshold"]
    ):
        log.warning(
            "Config %s: need initial_energy >= happy_threshold > hungry_threshold"
            " > sick_threshold; using default thresholds",
            path,
        )
        for name in _THRESHOLD_FIELDS:
            values.pop(name, None)

    if "expressions" in values:
        values["expressions"] = {**_DEFAULT_EXPRESSIONS, **values["expressions"]}
    return values


def load_config(path: str | Path | None = None, root: str | Path | None = None) -> PetConfig:
    """Load config from YAML, falling back to defaults."""
    if path is None:
        path = Path(root) if root is not None else default_root()
        path = path / CONFIG_FILE
    path = Path(path).expanduser()
    if not path.exists():
        return PetConfig()
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        log.warning("Failed to load config %s, using defaults: %s", path, e)
        return PetConfig()
    if not isinstance(raw, dict):
        log.warning("Config %s is not a mapping, using defaults", path)
        return PetConfig()

    # Older configs nest pet options under "pet" with camelCase keys
    pet_section = raw.pop("pet", None)
    if isinstance(pet_section, dict):
        if "decayRate" in pet_section:
            raw.setdefault("decay_rate_per_minute", pet_section["decayRate"])

    return PetConfig(**_validated(raw, path))
