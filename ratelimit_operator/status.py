"""
This module holds the functionality used to report the status of a RateLimiter

The status carries a single Ready condition reflecting the availability of the
server Deployment, the generation of the declaration that was last observed,
and the address of the Service. The schema is:
{
    "conditions": [
        {
            "type": "Ready",
            "status": "True" | "False",
            "reason": "Ready" | "NotReady" | "ReconciliationError",
            "message": str,
            "lastTransitionTime": str,
        }
    ],
    "observedGeneration": int,
    "service": {
        "host": str,
        "ports": {"http": int, "grpc": int},
    },
}
"""

# Standard
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import constants
from .context import ReconcileContext
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster
from .resources import DEPLOYMENT
from .utils import nested_get

log = alog.use_channel("STTUS")

## Public ######################################################################

# The "type" value of the condition
READY_CONDITION = "Ready"

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"


class ReadyReason(Enum):
    """Reason constants for the Ready condition"""

    # The server Deployment is available
    READY = "Ready"

    # The server Deployment is missing or not yet available
    NOT_READY = "NotReady"

    # Reconciling the child resources failed
    RECONCILIATION_ERROR = "ReconciliationError"


def make_status(  # pylint: disable=too-many-arguments
    manifest: dict,
    deployment_available: bool,
    spec_error: Optional[Exception] = None,
    current_status: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Create the full status of a RateLimiter

    Args:
        manifest:  dict
            The RateLimiter manifest as read at the start of the pass
        deployment_available:  bool
            Whether the server Deployment reports the Available condition
        spec_error:  Optional[Exception]
            The error raised while reconciling the child resources, if any
        current_status:  Optional[dict]
            The status currently set on the RateLimiter. Conditions of other
            types and unchanged transition times are kept from it.
        now:  Optional[datetime]
            The time used for a condition that transitions

    Returns:
        status:  dict
            Dict representation of the status
    """
    current_status = copy.deepcopy(current_status or {})
    now = now or datetime.now(timezone.utc)

    if spec_error is not None:
        ready, reason, message = False, ReadyReason.RECONCILIATION_ERROR, str(spec_error)
    elif deployment_available:
        ready, reason, message = True, ReadyReason.READY, "RateLimiter is ready"
    else:
        ready, reason, message = False, ReadyReason.NOT_READY, "Deployment is not available"

    current_conditions = current_status.get("conditions") or []
    ready_condition = _make_ready_condition(
        ready, reason, message, get_condition(READY_CONDITION, current_status), now
    )
    conditions = [
        cond for cond in current_conditions if cond.get("type") != READY_CONDITION
    ]
    conditions.append(ready_condition)

    metadata = manifest.get("metadata", {})
    name, namespace = metadata.get("name"), metadata.get("namespace")
    status = {
        key: val
        for key, val in current_status.items()
        if key not in ["conditions", "observedGeneration", "service"]
    }
    status["conditions"] = conditions
    status["observedGeneration"] = metadata.get("generation")
    status["service"] = {
        "host": f"{constants.RESOURCE_NAME_PREFIX}-{name}.{namespace}.svc.cluster.local",
        "ports": {
            constants.HTTP_PORT_NAME: nested_get(
                manifest, "spec.listener.http.port", constants.DEFAULT_HTTP_PORT
            ),
            constants.GRPC_PORT_NAME: nested_get(
                manifest, "spec.listener.grpc.port", constants.DEFAULT_GRPC_PORT
            ),
        },
    }
    return status


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current CR
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    # Status objects must be dicts
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    # Perform a deep diff, excluding timestamps
    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def get_condition(type_name: str, current_status: dict) -> dict:
    """Extract the given condition type from a status object

    Args:
        type_name:  str
            The condition type to fetch
        current_status:  dict
            The dict representation of the status

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    cond = [
        cond
        for cond in (current_status or {}).get("conditions", [])
        if cond.get("type") == type_name
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {type_name}"
        return cond[0]
    return {}


def is_deployment_available(deployment: Optional[dict]) -> bool:
    """A Deployment is available when it reports the Available condition"""
    if deployment is None:
        return False
    return any(
        cond.get("type") == "Available" and cond.get("status") == "True"
        for cond in nested_get(deployment, "status.conditions") or []
    )


def reconcile_status(
    ctx: ReconcileContext,
    deploy_manager: DeployManagerBase,
    manifest: dict,
    spec_error: Optional[Exception] = None,
) -> bool:
    """Compute the status of the RateLimiter and write it if it changed

    Args:
        ctx:  ReconcileContext
            The context of the current pass
        deploy_manager:  DeployManagerBase
            The object store
        manifest:  dict
            The RateLimiter manifest as read at the start of the pass
        spec_error:  Optional[Exception]
            The error raised while reconciling the child resources, if any

    Returns:
        requeue:  bool
            True if the status could not be written and the pass should be
            rerun

    Raises:
        ClusterError if the Deployment cannot be fetched
    """
    metadata = manifest.get("metadata", {})
    name, namespace = metadata.get("name"), metadata.get("namespace")
    kind, api_version = DEPLOYMENT
    deployment_name = f"{constants.RESOURCE_NAME_PREFIX}-{name}"

    ctx.check_cancelled()
    success, deployment = deploy_manager.get_object_current_state(
        kind=kind, name=deployment_name, namespace=namespace, api_version=api_version
    )
    assert_cluster(success, f"Failed to fetch {kind} {namespace}/{deployment_name}")

    current_status = manifest.get("status") or {}
    new_status = make_status(
        manifest,
        is_deployment_available(deployment),
        spec_error=spec_error,
        current_status=current_status,
    )
    generation_stale = current_status.get("observedGeneration") != metadata.get(
        "generation"
    )
    if not generation_stale and not status_changed(current_status, new_status):
        log.debug2("No status change for %s/%s", namespace, name, extra=ctx.log_extra)
        return False

    log.debug("Found meaningful change. Updating status", extra=ctx.log_extra)
    log.debug2(
        "(current) %s != (updated) %s", current_status, new_status, extra=ctx.log_extra
    )
    ctx.check_cancelled()
    success, _ = deploy_manager.set_status(
        kind=manifest.get("kind", constants.RATE_LIMITER_KIND),
        name=name,
        namespace=namespace,
        status=new_status,
        api_version=manifest.get("apiVersion", constants.RATE_LIMITER_API_VERSION),
    )
    if not success:
        log.warning(
            "Failed to update status for %s/%s", namespace, name, extra=ctx.log_extra
        )
        return True
    return False


## Implementation Details ######################################################


def _make_ready_condition(
    ready: bool,
    reason: ReadyReason,
    message: str,
    current_condition: dict,
    now: datetime,
) -> dict:
    status = str(ready)
    transition_time = current_condition.get(TIMESTAMP_KEY)
    if current_condition.get("status") != status or transition_time is None:
        transition_time = now.strftime("%Y-%m-%dT%H:%M:%SZ")
    return {
        "type": READY_CONDITION,
        "status": status,
        "reason": reason.value,
        "message": message,
        TIMESTAMP_KEY: transition_time,
    }
