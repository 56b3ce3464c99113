"""
Post-steps that migrate child objects created by earlier releases of the
operator to their current layout. They run after the regular apply of the
object they migrate.
"""

# First Party
import alog

# Local
from . import constants
from .apply import ReconcileOutcome, delete_object
from .context import ReconcileContext
from .declaration import RateLimiterDeclaration
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster
from .resources import CONFIG_MAP, DEPLOYMENT, labels
from .utils import nested_get, object_info

log = alog.use_channel("UPGRD")


def upgrade_deployment_selector(
    ctx: ReconcileContext,
    deploy_manager: DeployManagerBase,
    declaration: RateLimiterDeclaration,
) -> bool:
    """The selector of a Deployment is immutable. A Deployment created with a
    different selector is deleted so that the next pass recreates it.

    Returns:
        requeue:  bool
            True if the Deployment was deleted and the pass must be rerun
    """
    kind, api_version = DEPLOYMENT
    ctx.check_cancelled()
    success, existing = deploy_manager.get_object_current_state(
        kind=kind,
        name=declaration.resource_name,
        namespace=declaration.namespace,
        api_version=api_version,
    )
    assert_cluster(success, f"Failed to fetch {kind} {declaration.resource_name}")
    if existing is None:
        return False

    current_labels = nested_get(existing, "spec.selector.matchLabels")
    if current_labels == labels(declaration):
        return False

    log.info(
        "Replacing %s with outdated selector %s",
        object_info(existing),
        current_labels,
        extra=ctx.log_extra,
    )
    outcome = delete_object(
        ctx,
        deploy_manager,
        kind=kind,
        name=declaration.resource_name,
        namespace=declaration.namespace,
        api_version=api_version,
    )
    return outcome is ReconcileOutcome.DELETED


def upgrade_limits_config_map(
    ctx: ReconcileContext,
    deploy_manager: DeployManagerBase,
    declaration: RateLimiterDeclaration,
) -> ReconcileOutcome:
    """Drop the limits file stored under its legacy key"""
    kind, api_version = CONFIG_MAP
    ctx.check_cancelled()
    success, existing = deploy_manager.get_object_current_state(
        kind=kind,
        name=declaration.limits_config_map_name,
        namespace=declaration.namespace,
        api_version=api_version,
    )
    assert_cluster(
        success, f"Failed to fetch {kind} {declaration.limits_config_map_name}"
    )
    if existing is None or constants.LEGACY_LIMITS_FILE_KEY not in (
        existing.get("data") or {}
    ):
        return ReconcileOutcome.UNCHANGED

    log.info("Removing legacy limits key from %s", object_info(existing), extra=ctx.log_extra)
    del existing["data"][constants.LEGACY_LIMITS_FILE_KEY]
    ctx.check_cancelled()
    success, _ = deploy_manager.update(existing)
    assert_cluster(success, f"Failed to update {object_info(existing)}")
    return ReconcileOutcome.PATCHED
