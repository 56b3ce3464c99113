"""
Mutators merge the fields of a desired object that the operator owns into the
existing object read from the cluster. Every mutator has the signature

    mutate(existing: dict, desired: dict) -> bool

It edits `existing` in place and returns whether anything changed. Fields it
does not own, such as those defaulted by the API server or set by other
controllers, are left untouched so that the merged object can be sent back as
an update.
"""

# Standard
from typing import Any, Callable, List, Tuple
import copy

# First Party
import alog

# Local
from . import constants
from .exceptions import ConfigError
from .utils import nested_get, nested_set

log = alog.use_channel("MUTAT")

MutateFn = Callable[[dict, dict], bool]

# Field paths inside a Deployment
_POD_SPEC = "spec.template.spec"

## Common ######################################################################


def assert_kind(obj: Any, kind: str):
    """Make sure the object is a manifest of the given kind

    Raises:
        ConfigError if the object is not of the given kind
    """
    if not isinstance(obj, dict) or obj.get("kind") != kind:
        found = obj.get("kind") if isinstance(obj, dict) else type(obj).__name__
        raise ConfigError(f"{found} is not a {kind}")


def merge_field(current: Any, desired: Any) -> Tuple[Any, bool]:
    """Merge a single owned field. The desired value wins and the change flag
    reports whether it differs from the current value.
    """
    if current == desired:
        return current, False
    return copy.deepcopy(desired), True


def create_only_mutator(_existing: dict, _desired: dict) -> bool:
    """Accept any existing object as-is"""
    return False


## Deployment ##################################################################


def deployment_mutator(*mutate_fns: MutateFn) -> MutateFn:
    """Compose Deployment field mutators into a single mutator. Every field
    mutator runs in order and the result is changed if any of them changed.
    """

    def _mutate(existing: dict, desired: dict) -> bool:
        assert_kind(existing, "Deployment")
        assert_kind(desired, "Deployment")
        changed = False
        for mutate_fn in mutate_fns:
            if mutate_fn(existing, desired):
                log.debug2(
                    "Deployment %s changed by %s",
                    existing["metadata"].get("name"),
                    mutate_fn.__name__,
                )
                changed = True
        return changed

    return _mutate


def _field_mutator(path: str) -> MutateFn:
    """Make a mutator owning the value at the given dotted path"""

    def _mutate(existing: dict, desired: dict) -> bool:
        value, changed = merge_field(nested_get(existing, path), nested_get(desired, path))
        if not changed:
            return False
        if value is None:
            parent_path, _, key = path.rpartition(constants.NESTED_DICT_DELIM)
            nested_get(existing, parent_path, {}).pop(key, None)
        else:
            nested_set(existing, path, value)
        return True

    return _mutate


def _container_field_mutator(key: str) -> MutateFn:
    """Make a mutator owning a field of the first (server) container"""

    def _mutate(existing: dict, desired: dict) -> bool:
        existing_container = _containers(existing)[0]
        desired_container = _containers(desired)[0]
        value, changed = merge_field(
            existing_container.get(key), desired_container.get(key)
        )
        if changed:
            if value is None:
                existing_container.pop(key, None)
            else:
                existing_container[key] = value
        return changed

    return _mutate


def _containers(deployment: dict) -> List[dict]:
    return nested_get(deployment, f"{_POD_SPEC}.containers") or []


def deployment_replicas_mutator(existing: dict, desired: dict) -> bool:
    return _field_mutator("spec.replicas")(existing, desired)


def deployment_container_list_mutator(existing: dict, desired: dict) -> bool:
    """The pod must run exactly the server container. Any other layout is
    replaced wholesale by the desired container list.
    """
    if len(_containers(existing)) == 1:
        return False
    nested_set(existing, f"{_POD_SPEC}.containers", copy.deepcopy(_containers(desired)))
    return True


def deployment_image_mutator(existing: dict, desired: dict) -> bool:
    return _container_field_mutator("image")(existing, desired)


def deployment_command_mutator(existing: dict, desired: dict) -> bool:
    return _container_field_mutator("command")(existing, desired)


def deployment_affinity_mutator(existing: dict, desired: dict) -> bool:
    return _field_mutator(f"{_POD_SPEC}.affinity")(existing, desired)


def deployment_resources_mutator(existing: dict, desired: dict) -> bool:
    return _container_field_mutator("resources")(existing, desired)


def deployment_volumes_mutator(existing: dict, desired: dict) -> bool:
    return _field_mutator(f"{_POD_SPEC}.volumes")(existing, desired)


def deployment_volume_mounts_mutator(existing: dict, desired: dict) -> bool:
    return _container_field_mutator("volumeMounts")(existing, desired)


def deployment_env_mutator(existing: dict, desired: dict) -> bool:
    return _container_field_mutator("env")(existing, desired)


def deployment_strategy_mutator(existing: dict, desired: dict) -> bool:
    return _field_mutator("spec.strategy")(existing, desired)


## PodDisruptionBudget #########################################################


def pod_disruption_budget_mutator(existing: dict, desired: dict) -> bool:
    """Owns the selector and the two budget fields. Switching between
    minAvailable and maxUnavailable removes the field no longer declared.
    """
    assert_kind(existing, "PodDisruptionBudget")
    assert_kind(desired, "PodDisruptionBudget")
    existing_spec = existing.setdefault("spec", {})
    desired_spec = desired.get("spec", {})
    changed = False
    for key in ["selector", "minAvailable", "maxUnavailable"]:
        value, field_changed = merge_field(existing_spec.get(key), desired_spec.get(key))
        if not field_changed:
            continue
        if value is None:
            existing_spec.pop(key, None)
        else:
            existing_spec[key] = value
        changed = True
    return changed
