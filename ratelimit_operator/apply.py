"""
The apply engine converges a single child object with its desired manifest:
fetch the existing object, create it when absent, otherwise let the mutator for
its kind merge the owned fields and update only when something changed.
"""

# Standard
from enum import Enum
from typing import Optional
import copy

# First Party
import alog

# Local
from . import constants
from .context import ReconcileContext
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster
from .mutators import MutateFn
from .utils import object_info

log = alog.use_channel("APPLY")


class ReconcileOutcome(Enum):
    """What the engine did to one child object"""

    CREATED = "created"
    UNCHANGED = "unchanged"
    PATCHED = "patched"
    DELETED = "deleted"

    @property
    def changed(self) -> bool:
        return self is not ReconcileOutcome.UNCHANGED


## Delete tagging ##############################################################


def tag_object_to_delete(obj: dict) -> dict:
    """Mark a desired object as one that must not exist in the cluster. The
    object is returned for convenience.
    """
    annotations = obj.setdefault("metadata", {}).setdefault("annotations", {})
    annotations[constants.DELETE_TAG_ANNOTATION_NAME] = "true"
    return obj


def is_object_tagged_to_delete(obj: dict) -> bool:
    annotations = obj.get("metadata", {}).get("annotations") or {}
    return annotations.get(constants.DELETE_TAG_ANNOTATION_NAME) == "true"


## Engine ######################################################################


def reconcile_object(
    ctx: ReconcileContext,
    deploy_manager: DeployManagerBase,
    desired: dict,
    mutate_fn: MutateFn,
) -> ReconcileOutcome:
    """Converge the object in the cluster with the desired manifest

    Args:
        ctx:  ReconcileContext
            The context of the current pass
        deploy_manager:  DeployManagerBase
            The object store
        desired:  dict
            The desired manifest. If it is tagged to delete, the object is
            removed instead of created or updated.
        mutate_fn:  MutateFn
            The mutator owning the fields of this kind

    Returns:
        outcome:  ReconcileOutcome
            What was done to the object

    Raises:
        ClusterError if any operation against the store fails
        ConfigError if the mutator finds the objects not comparable
    """
    metadata = desired.get("metadata", {})
    if is_object_tagged_to_delete(desired):
        return delete_object(
            ctx,
            deploy_manager,
            kind=desired.get("kind"),
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            api_version=desired.get("apiVersion"),
        )

    existing = _fetch(
        ctx,
        deploy_manager,
        desired.get("kind"),
        metadata.get("name"),
        metadata.get("namespace"),
        desired.get("apiVersion"),
    )

    if existing is None:
        ctx.check_cancelled()
        log.debug("Creating %s", object_info(desired), extra=ctx.log_extra)
        success, _ = deploy_manager.create(copy.deepcopy(desired))
        assert_cluster(success, f"Failed to create {object_info(desired)}")
        return ReconcileOutcome.CREATED

    if not mutate_fn(existing, desired):
        log.debug2("%s is up to date", object_info(existing), extra=ctx.log_extra)
        return ReconcileOutcome.UNCHANGED

    # The existing object keeps its resourceVersion so that a concurrent
    # change rejects the update
    ctx.check_cancelled()
    log.debug("Updating %s", object_info(existing), extra=ctx.log_extra)
    log.debug4("Updated content: %s", existing, extra=ctx.log_extra)
    success, _ = deploy_manager.update(existing)
    assert_cluster(success, f"Failed to update {object_info(existing)}")
    return ReconcileOutcome.PATCHED


def delete_object(  # pylint: disable=too-many-arguments
    ctx: ReconcileContext,
    deploy_manager: DeployManagerBase,
    kind: str,
    name: str,
    namespace: Optional[str],
    api_version: Optional[str] = None,
) -> ReconcileOutcome:
    """Delete an object if it exists. An object that is absent or already
    being deleted is left alone.

    Raises:
        ClusterError if any operation against the store fails
    """
    existing = _fetch(ctx, deploy_manager, kind, name, namespace, api_version)
    if existing is None:
        log.debug2("%s %s/%s already absent", kind, namespace, name, extra=ctx.log_extra)
        return ReconcileOutcome.UNCHANGED
    if existing.get("metadata", {}).get("deletionTimestamp") is not None:
        log.debug2("%s already being deleted", object_info(existing), extra=ctx.log_extra)
        return ReconcileOutcome.UNCHANGED

    ctx.check_cancelled()
    log.debug("Deleting %s", object_info(existing), extra=ctx.log_extra)
    success, changed = deploy_manager.delete(existing)
    assert_cluster(success, f"Failed to delete {object_info(existing)}")
    return ReconcileOutcome.DELETED if changed else ReconcileOutcome.UNCHANGED


## Implementation Details ######################################################


def _fetch(  # pylint: disable=too-many-arguments
    ctx: ReconcileContext,
    deploy_manager: DeployManagerBase,
    kind: str,
    name: str,
    namespace: Optional[str],
    api_version: Optional[str],
) -> Optional[dict]:
    ctx.check_cancelled()
    success, existing = deploy_manager.get_object_current_state(
        kind=kind, name=name, namespace=namespace, api_version=api_version
    )
    assert_cluster(success, f"Failed to fetch {kind} {namespace}/{name}")
    return existing
