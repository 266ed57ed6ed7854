"""Model identity and token pricing helpers."""
from __future__ import annotations

import re
from typing import NamedTuple

_VERSION_TOKEN_PATTERN = re.compile(r"^\d+$")
_FAMILIES = ("opus", "sonnet", "haiku")


class ModelRates(NamedTuple):
    """USD per million tokens."""

    input: float
    output: float
    cache_read: float


# Approximate list prices; unknown models are priced as Sonnet
_RATES_BY_FAMILY: dict[str, ModelRates] = {
    "opus": ModelRates(15.0, 75.0, 1.5),
    "sonnet": ModelRates(3.0, 15.0, 0.3),
    "haiku": ModelRates(0.8, 4.0, 0.08),
}
DEFAULT_FAMILY = "sonnet"


def model_family(raw_model: str | None) -> str:
    """Lowercase family token (opus/sonnet/haiku) or '' when not recognised."""
    lowered = (raw_model or "").strip().lower()
    for family in _FAMILIES:
        if family in lowered:
            return family
    return ""


def model_rates(raw_model: str | None) -> ModelRates:
    return _RATES_BY_FAMILY[model_family(raw_model) or DEFAULT_FAMILY]


def estimate_cost(
    raw_model: str | None,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int = 0,
) -> float:
    rates = model_rates(raw_model)
    return (
        input_tokens * rates.input
        + output_tokens * rates.output
        + cache_read_tokens * rates.cache_read
    ) / 1_000_000


def short_model_name(raw_model: str | None) -> str:
    """Compact display name.

    Example:
      claude-opus-4-6 -> Opus 4.6
      claude-sonnet-4-5-20250929 -> Sonnet 4.5
    """
    lowered = (raw_model or "").strip().lower()
    family = model_family(lowered)
    if not family:
        return (raw_model or "").strip()

    name = family.capitalize()
    rest = lowered[lowered.index(family) + len(family):]
    parts = [part for part in re.split(r"[-_]+", rest) if part]
    if not parts or not _VERSION_TOKEN_PATTERN.match(parts[0]):
        return name
    # Long numeric tails are build dates, not minor versions
    if len(parts) >= 2 and _VERSION_TOKEN_PATTERN.match(parts[1]) and len(parts[1]) < 8:
        return f"{name} {parts[0]}.{parts[1]}"
    return f"{name} {parts[0]}"
