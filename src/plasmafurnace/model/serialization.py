"""
Helpers shared by the ``to_dict`` / ``from_dict`` implementations.
"""
from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

from plasmafurnace.errors import ConfigError


def require(data: Mapping[str, Any], key: str, owner: str) -> Any:
    """Fetch a mandatory key; a missing key is a configuration error."""
    try:
        return data[key]
    except KeyError:
        raise ConfigError(f"{owner}: missing required field '{key}'.") from None
    except TypeError:
        raise ConfigError(f"{owner}: expected a mapping, got {type(data).__name__}.") from None


def float_to_json(value: float) -> Optional[float]:
    """NaN has no JSON form; it is serialized as None."""
    if value is None or math.isnan(value):
        return None
    return float(value)


def float_from_json(value: Optional[float]) -> float:
    return math.nan if value is None else float(value)


def floats_equal(a: float, b: float) -> bool:
    """Equality that treats two NaNs as equal (serialized metrics may hold NaN)."""
    if math.isnan(a) and math.isnan(b):
        return True
    return a == b


def dict_floats_equal(a: Dict[str, float], b: Dict[str, float]) -> bool:
    if a.keys() != b.keys():
        return False
    return all(floats_equal(a[k], b[k]) for k in a)
