"""
Train identifiers derived from the simulator's current formation.

The identifier is the ObjectClass of the drivable vehicle with the
Unreal "_C" class suffix and any trailing separators removed, e.g.
"RVM_PBO_Class142_DMSL_C" -> "RVM_PBO_Class142_DMSL".
"""

import re
from typing import List
import logging

from .client import SimulatorClient, SimulatorError

logger = logging.getLogger(__name__)

_TRAILING_SEPARATORS = re.compile(r'[\W_]+$')


def strip_trailing_separators(text: str) -> str:
    return _TRAILING_SEPARATORS.sub('', text)


def normalize_object_class(object_class: str) -> str:
    """Drop the "_C" class suffix and trailing non-alphanumerics."""
    if object_class.endswith("_C"):
        object_class = object_class[:-2]
    return strip_trailing_separators(object_class)


def common_prefix(names: List[str]) -> str:
    """Longest common prefix of names, without trailing separators."""
    if not names:
        return ""
    if len(names) == 1:
        return names[0]

    prefix = names[0]
    for name in names[1:]:
        length = 0
        for a, b in zip(prefix, name):
            if a != b:
                break
            length += 1
        prefix = prefix[:length]

    return strip_trailing_separators(prefix)


def derive_from_formation(client: SimulatorClient) -> str:
    """
    Read the drivable vehicle's class from the simulator.

    Raises:
        SimulatorError: if the ObjectClass cannot be read
    """
    try:
        index = int(client.get("CurrentFormation.DrivableIndex")["Values"]["DrivableIndex"])
    except (SimulatorError, KeyError, TypeError, ValueError) as e:
        logger.debug(f"DrivableIndex unavailable ({e}), using index 0")
        index = 0

    response = client.get(f"CurrentFormation/{index}.ObjectClass")
    try:
        object_class = response["Values"]["ObjectClass"]
    except (KeyError, TypeError) as e:
        raise SimulatorError(f"No ObjectClass in response: {response!r}") from e
    if not isinstance(object_class, str):
        raise SimulatorError(f"Invalid ObjectClass: {object_class!r}")

    return normalize_object_class(object_class)
