"""
The RateLimiterReconciler runs a single reconciliation pass of a RateLimiter:
it converges the child resources with the declaration, then reports the
status, and combines both outcomes into a single result for the caller.
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import datetime
import logging

# First Party
import alog

# Local
from . import config, constants
from .apply import ReconcileOutcome, reconcile_object, tag_object_to_delete
from .context import ReconcileContext
from .declaration import RateLimiterDeclaration, parse_declaration
from .deploy_manager import (
    DeployManagerBase,
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from .exceptions import RateLimiterOperatorError, assert_cluster
from .limits import mutate_limits_config_map
from .log_format import RateLimiterJsonFormatter
from .mutators import (
    MutateFn,
    create_only_mutator,
    deployment_affinity_mutator,
    deployment_command_mutator,
    deployment_container_list_mutator,
    deployment_env_mutator,
    deployment_image_mutator,
    deployment_mutator,
    deployment_replicas_mutator,
    deployment_resources_mutator,
    deployment_strategy_mutator,
    deployment_volume_mounts_mutator,
    deployment_volumes_mutator,
    pod_disruption_budget_mutator,
)
from .resources import (
    POD_DISRUPTION_BUDGET,
    build_deployment,
    build_limits_config_map,
    build_persistent_volume_claim,
    build_pod_disruption_budget,
    build_service,
    deployment_options,
)
from .secrets import DeployManagerSecretStore
from .status import reconcile_status
from .storage import resolve_storage_options
from .upgrades import upgrade_deployment_selector, upgrade_limits_config_map

log = alog.use_channel("RECON")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation pass"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # The error that ended the pass, if any
    exception: Exception = None


@dataclass
class SpecResult:
    """The outcome of converging the child resources"""

    # Flag set when the pass stopped early and must be rerun
    requeue: bool = False
    # The outcome for each child kind, in the order they were reconciled
    outcomes: Dict[str, ReconcileOutcome] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return any(outcome.changed for outcome in self.outcomes.values())


def combine_results(
    spec_result: Optional[SpecResult],
    spec_error: Optional[Exception],
    status_requeue: bool,
    status_error: Optional[Exception],
) -> ReconciliationResult:
    """Combine the spec and status outcomes. A spec error wins over a status
    error, which wins over a spec requeue, which wins over a status requeue.

    Errors are requeued unless they are fatal for the declaration.
    """
    for error in [spec_error, status_error]:
        if error is not None:
            return ReconciliationResult(
                requeue=not getattr(error, "is_fatal_error", False),
                exception=error,
            )
    if spec_result is not None and spec_result.requeue:
        log.debug("Reconciling spec not finished. Requeueing.")
        return ReconciliationResult(requeue=True)
    if status_requeue:
        log.debug("Reconciling status not finished. Requeueing.")
        return ReconciliationResult(requeue=True)
    return ReconciliationResult(requeue=False)


## RateLimiterReconciler #######################################################


class RateLimiterReconciler:
    """This class runs reconciliations of RateLimiter declarations against a
    single object store. Passes for different declarations may run
    concurrently on the same instance.
    """

    def __init__(
        self,
        deploy_manager: Optional[DeployManagerBase] = None,
        secret_store: Optional[DeployManagerSecretStore] = None,
    ):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                The object store. Defaults to the in-memory store in dry run
                mode and to the cluster otherwise.
            secret_store:  Optional[DeployManagerSecretStore]
                Lookup for referenced Secrets. Defaults to reading them through
                the deploy manager.
        """
        self.deploy_manager = deploy_manager or self.setup_deploy_manager()
        self.secret_store = secret_store or DeployManagerSecretStore(
            self.deploy_manager
        )

    def reconcile_once(
        self,
        name: str,
        namespace: str,
        ctx: Optional[ReconcileContext] = None,
    ) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The pass runs as
        follows:

            1. Fetch the RateLimiter. If it is gone or being deleted, there is
               nothing to do.
            2. Converge the child resources
            3. Report the status, even if the previous step failed
            4. Combine the results

        Args:
            name:  str
                The name of the RateLimiter
            namespace:  str
                The namespace of the RateLimiter
            ctx:  Optional[ReconcileContext]
                The context of the pass. A fresh one is created if not given.

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        ctx = ctx or ReconcileContext()
        if ctx.resource is None:
            ctx.resource = {
                "kind": constants.RATE_LIMITER_KIND,
                "apiVersion": constants.RATE_LIMITER_API_VERSION,
                "metadata": {"name": name, "namespace": namespace},
            }
        log.debug("Reconciling RateLimiter %s/%s", namespace, name, extra=ctx.log_extra)

        try:
            manifest = self.get_declaration_manifest(ctx, name, namespace)
        except RateLimiterOperatorError as err:
            log.warning("Failed to get RateLimiter: %s", err, extra=ctx.log_extra)
            return combine_results(None, err, False, None)

        if manifest is None:
            log.info("No RateLimiter %s/%s found", namespace, name, extra=ctx.log_extra)
            return ReconciliationResult(requeue=False)
        if manifest.get("metadata", {}).get("deletionTimestamp") is not None:
            log.info("RateLimiter marked to be deleted", extra=ctx.log_extra)
            return ReconciliationResult(requeue=False)

        ctx.resource = manifest

        spec_result, spec_error = None, None
        try:
            self.configure_logging(manifest)
            spec_result = self.reconcile_spec(ctx, manifest)
        except Exception as err:  # pylint: disable=broad-except
            log.warning(
                "Handling caught error in spec reconcile: %s",
                err,
                exc_info=not isinstance(err, RateLimiterOperatorError),
                extra=ctx.log_extra,
            )
            spec_error = err

        status_requeue, status_error = False, None
        if config.manage_status:
            try:
                status_requeue = reconcile_status(
                    ctx, self.deploy_manager, manifest, spec_error
                )
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Handling caught error in status reconcile: %s",
                    err,
                    exc_info=not isinstance(err, RateLimiterOperatorError),
                    extra=ctx.log_extra,
                )
                status_error = err

        result = combine_results(spec_result, spec_error, status_requeue, status_error)
        if not result.requeue and result.exception is None:
            log.info("Successfully reconciled", extra=ctx.log_extra)
        return result

    ## Reconciliation Stages ###################################################

    def get_declaration_manifest(
        self, ctx: ReconcileContext, name: str, namespace: str
    ) -> Optional[dict]:
        """Fetch the RateLimiter manifest, or None if it does not exist

        Raises:
            ClusterError if the fetch fails
        """
        ctx.check_cancelled()
        success, manifest = self.deploy_manager.get_object_current_state(
            kind=constants.RATE_LIMITER_KIND,
            name=name,
            namespace=namespace,
            api_version=constants.RATE_LIMITER_API_VERSION,
        )
        assert_cluster(success, f"Failed to fetch RateLimiter {namespace}/{name}")
        return manifest

    def reconcile_spec(self, ctx: ReconcileContext, manifest: dict) -> SpecResult:
        """Converge the child resources in order: Service, PersistentVolumeClaim,
        Deployment, ConfigMap, PodDisruptionBudget. A Deployment that has to be
        replaced stops the pass with a requeue.

        Raises:
            RateLimiterOperatorError if any step fails
        """
        declaration = parse_declaration(manifest)
        result = SpecResult()

        result.outcomes["Service"] = reconcile_object(
            ctx, self.deploy_manager, build_service(declaration), create_only_mutator
        )
        result.outcomes["PersistentVolumeClaim"] = reconcile_object(
            ctx,
            self.deploy_manager,
            build_persistent_volume_claim(declaration),
            create_only_mutator,
        )

        storage_options = resolve_storage_options(ctx, declaration, self.secret_store)
        result.outcomes["Deployment"] = reconcile_object(
            ctx,
            self.deploy_manager,
            build_deployment(
                declaration, deployment_options(declaration, storage_options)
            ),
            deployment_mutator(*self.deployment_mutators(declaration)),
        )
        if upgrade_deployment_selector(ctx, self.deploy_manager, declaration):
            log.info("Deployment replaced. Requeueing.", extra=ctx.log_extra)
            result.requeue = True
            return result

        config_map_outcome = reconcile_object(
            ctx,
            self.deploy_manager,
            build_limits_config_map(declaration),
            mutate_limits_config_map,
        )
        if upgrade_limits_config_map(ctx, self.deploy_manager, declaration).changed:
            if config_map_outcome is ReconcileOutcome.UNCHANGED:
                config_map_outcome = ReconcileOutcome.PATCHED
        result.outcomes["ConfigMap"] = config_map_outcome

        result.outcomes["PodDisruptionBudget"] = self._reconcile_pdb(ctx, declaration)

        log.debug2("Spec outcomes: %s", result.outcomes, extra=ctx.log_extra)
        return result

    @staticmethod
    def deployment_mutators(declaration: RateLimiterDeclaration) -> List[MutateFn]:
        """The Deployment field mutators. The replica count is only owned when
        the declaration sets it.
        """
        mutators = []
        if declaration.replicas is not None:
            mutators.append(deployment_replicas_mutator)
        mutators.extend(
            [
                deployment_container_list_mutator,
                deployment_image_mutator,
                deployment_command_mutator,
                deployment_affinity_mutator,
                deployment_resources_mutator,
                deployment_volumes_mutator,
                deployment_volume_mounts_mutator,
                deployment_env_mutator,
                deployment_strategy_mutator,
            ]
        )
        return mutators

    ## Setup ###################################################################

    @classmethod
    def setup_deploy_manager(cls) -> DeployManagerBase:
        if config.dry_run:
            log.debug("Using DryRunDeployManager")
            return DryRunDeployManager()

        log.debug("Using OpenshiftDeployManager")
        return OpenshiftDeployManager()

    @classmethod
    def configure_logging(cls, manifest: dict):
        """Configure the logging for a given reconcile with overrides from the
        RateLimiter annotations

        Args:
            manifest:  dict
                The resource to get annotation overrides from
        """
        annotations = manifest.get("metadata", {}).get("annotations") or {}
        overrides = [
            name
            for name in [
                constants.LOG_DEFAULT_LEVEL_NAME,
                constants.LOG_FILTERS_NAME,
                constants.LOG_JSON_NAME,
            ]
            if name in annotations
        ]
        if not overrides:
            return

        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_json = (log_json or "").lower() == "true"

        # Keep the old handler so that output keeps going to the same place
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter=RateLimiterJsonFormatter() if log_json else "pretty",
            thread_id=config.log_thread_id,
            handler_generator=handler_generator,
        )

    ## Implementation Details ##################################################

    def _reconcile_pdb(
        self, ctx: ReconcileContext, declaration: RateLimiterDeclaration
    ) -> ReconcileOutcome:
        pdb = build_pod_disruption_budget(declaration)
        if pdb is None:
            # A budget that is no longer declared must not exist
            kind, api_version = POD_DISRUPTION_BUDGET
            pdb = tag_object_to_delete(
                {
                    "apiVersion": api_version,
                    "kind": kind,
                    "metadata": {
                        "name": declaration.resource_name,
                        "namespace": declaration.namespace,
                    },
                }
            )
        return reconcile_object(
            ctx, self.deploy_manager, pdb, pod_disruption_budget_mutator
        )
