"""Options controlling segment aggregation, optionally read from YAML."""
from pathlib import Path
from typing import Any

import msgspec
from msgspec import Struct, structs
from ruamel.yaml import YAML

from cnaggregate.errors import InvalidThresholdError
from cnaggregate.region_union import DEFAULT_EPSILON

DEFAULT_MIN_PURITY = 0.3
LOWER_PURITY_BOUND = 0.0
UPPER_PURITY_BOUND = 1.0


def validate_min_purity(min_purity: float) -> None:
    """Raise InvalidThresholdError unless min_purity lies in [0, 1]."""
    if not LOWER_PURITY_BOUND <= min_purity <= UPPER_PURITY_BOUND:
        raise InvalidThresholdError(
            f"min_purity must be between {LOWER_PURITY_BOUND} and {UPPER_PURITY_BOUND}, "
            f"included, got {min_purity}"
        )


def validate_epsilon(epsilon: float) -> None:
    if epsilon < 0:
        raise ValueError(f"epsilon must be non-negative, got {epsilon}")


class AggregateConfig(Struct, frozen=True, forbid_unknown_fields=True, kw_only=True):
    """Aggregation options: purity cutoff and region union settings."""

    min_purity: float = DEFAULT_MIN_PURITY
    epsilon: float = DEFAULT_EPSILON
    adaptive: bool = False

    def __post_init__(self) -> None:
        validate_min_purity(self.min_purity)
        validate_epsilon(self.epsilon)

    def as_kwargs(self) -> dict[str, Any]:
        """Return the options as keyword arguments for `aggregate_segments`."""
        return structs.asdict(self)


def load_aggregate_config(config_path: str | Path) -> AggregateConfig:
    """Read aggregation options from a YAML file.

    Keys left out of the file keep their defaults.  Unknown keys and invalid
    values raise msgspec.ValidationError.
    """
    with Path(config_path).open(encoding="utf-8") as f:
        raw_config = YAML(typ="safe").load(f)
    return msgspec.convert(raw_config or {}, type=AggregateConfig)
