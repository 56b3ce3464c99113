"""
The limits file holds the list of rate limits served by the rate limiting
server. It is carried as YAML under a single key of the limits ConfigMap.
"""

# Standard
from typing import List, Optional

# Third Party
import yaml

# First Party
import alog

# Local
from . import constants
from .declaration import RateLimit
from .exceptions import ConfigError
from .mutators import assert_kind

log = alog.use_channel("LIMTS")


def serialize_limits(limits: List[RateLimit]) -> str:
    """Render the limits file. The same limits always render to the same
    text.
    """
    try:
        return yaml.safe_dump(
            [limit.to_dict() for limit in limits],
            default_flow_style=False,
            sort_keys=False,
        )
    except yaml.YAMLError as err:
        raise ConfigError(f"Failed to encode rate limits: {err}") from err


def deserialize_limits(payload: Optional[str]) -> List[RateLimit]:
    """Parse the limits file

    Raises:
        ValueError if the payload is not a valid limits file
    """
    try:
        content = yaml.safe_load(payload or "")
    except yaml.YAMLError as err:
        raise ValueError(f"Limits file is not valid yaml: {err}") from err
    if content is None:
        return []
    if not isinstance(content, list):
        raise ValueError("Limits file is not a list")
    return [RateLimit.from_dict(entry) for entry in content]


def mutate_limits_config_map(existing: dict, desired: dict) -> bool:
    """Compare the limits of the existing and desired ConfigMaps and overwrite
    the existing limits file if they differ. Other keys are left alone.

    The comparison is order sensitive: the same limits in a different order
    are considered a change.
    """
    assert_kind(existing, "ConfigMap")
    assert_kind(desired, "ConfigMap")
    desired_payload = (desired.get("data") or {}).get(constants.LIMITS_FILE_KEY)
    try:
        desired_limits = deserialize_limits(desired_payload)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Desired limits are not valid: {err}") from err

    existing_payload = (existing.get("data") or {}).get(constants.LIMITS_FILE_KEY)
    try:
        existing_limits = deserialize_limits(existing_payload)
    except (TypeError, ValueError) as err:
        log.debug("Existing limits cannot be parsed, overwriting: %s", err)
        existing_limits = None

    if existing_payload is None or existing_limits != desired_limits:
        if existing.get("data") is None:
            existing["data"] = {}
        existing["data"][constants.LIMITS_FILE_KEY] = desired_payload
        return True
    return False
