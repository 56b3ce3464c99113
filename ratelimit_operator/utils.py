"""
Common utilities shared across the library
"""

# Standard
from typing import Any
import base64

# Local
from . import constants

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict into which the key will be set
        key:  str
            Key that may contain '.' notation indicating dict nesting
        val:  Any
            The value to place at the nested key
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.setdefault(part, {})
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key {} is not a dict".format(  # pylint: disable=consider-using-f-string
                    constants.NESTED_DICT_DELIM.join(parts[:i])
                )
            )
    dct[parts[-1]] = val


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict from which the key will be read
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or None if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key {} is not a dict".format(  # pylint: disable=consider-using-f-string
                    constants.NESTED_DICT_DELIM.join(parts[:i])
                )
            )
    return dct.get(parts[-1], dflt)


## Secrets #####################################################################


def b64_secret(val):
    if isinstance(val, str):
        val = val.encode("utf-8")
    return base64.b64encode(val).decode("utf-8")


def b64_secret_decode(val):
    if isinstance(val, str):
        val = val.encode("utf-8")
    return base64.b64decode(val).decode("utf-8")


## Objects #####################################################################


def object_info(resource: dict) -> str:
    """Short human readable identifier of a manifest for log messages"""
    metadata = resource.get("metadata", {})
    return "{}/{}/{}".format(  # pylint: disable=consider-using-f-string
        resource.get("kind"), metadata.get("namespace"), metadata.get("name")
    )


def to_plain(value):
    """Convert aconfig attribute dicts back to plain dicts and lists so they
    compare and serialize like the objects read from the cluster
    """
    if isinstance(value, dict):
        return {key: to_plain(val) for key, val in value.items()}
    if isinstance(value, list):
        return [to_plain(val) for val in value]
    return value
