"""
Tests for the RateLimiterReconciler
"""

# Standard
from unittest import mock

# Third Party
import pytest

# Local
from ratelimit_operator import constants
from ratelimit_operator.apply import ReconcileOutcome
from ratelimit_operator.context import ReconcileContext
from ratelimit_operator.deploy_manager import (
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from ratelimit_operator.exceptions import (
    ClusterError,
    ConfigError,
    ReconcileCancelledError,
    ResourceNotFoundError,
)
from ratelimit_operator.limits import deserialize_limits
from ratelimit_operator.reconcile import (
    RateLimiterReconciler,
    ReconciliationResult,
    SpecResult,
    combine_results,
)
from ratelimit_operator.status import READY_CONDITION, ReadyReason, get_condition
from ratelimit_operator.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    TEST_SECRET_NAME,
    FailOnce,
    MockDeployManager,
    library_config,
    setup_cr,
    setup_ctx,
    setup_redis_secret,
)

## Helpers #####################################################################

RESOURCE_NAME = f"ratelimiter-{TEST_INSTANCE_NAME}"
LIMITS_NAME = f"ratelimiter-limits-{TEST_INSTANCE_NAME}"

SAMPLE_LIMITS = [
    {"namespace": "toystore", "max_value": 10, "seconds": 60, "variables": ["user"]},
    {"namespace": "toystore", "max_value": 100, "seconds": 3600},
]


def run_pass(dm, name=TEST_INSTANCE_NAME, ctx=None):
    return RateLimiterReconciler(deploy_manager=dm).reconcile_once(
        name, TEST_NAMESPACE, ctx=ctx
    )


def cr_status(dm):
    return dm.get_obj(constants.RATE_LIMITER_KIND, TEST_INSTANCE_NAME).get("status")


def update_cr_spec(dm, **spec):
    manifest = dm.get_obj(constants.RATE_LIMITER_KIND, TEST_INSTANCE_NAME)
    manifest["spec"].update(spec)
    success, _ = DryRunDeployManager.update(dm, manifest)
    assert success


def server_container(dm):
    deployment = dm.get_obj("Deployment", RESOURCE_NAME)
    return deployment["spec"]["template"]["spec"]["containers"][0]


## Happy path ##################################################################


def test_first_pass_creates_children():
    """Make sure the first pass creates every child and reports the status"""
    dm = MockDeployManager(resources=[setup_cr(spec={"limits": SAMPLE_LIMITS})])
    result = run_pass(dm)
    assert result == ReconciliationResult(requeue=False)

    for kind in ["Service", "PersistentVolumeClaim", "Deployment"]:
        assert dm.has_obj(kind, RESOURCE_NAME)
    assert not dm.has_obj("PodDisruptionBudget", RESOURCE_NAME)
    config_map = dm.get_obj("ConfigMap", LIMITS_NAME)
    limits = deserialize_limits(config_map["data"][constants.LIMITS_FILE_KEY])
    assert [limit.max_value for limit in limits] == [10, 100]

    # No Deployment status in the dry run store, so it is not ready yet
    ready = get_condition(READY_CONDITION, cr_status(dm))
    assert ready["status"] == "False"
    assert ready["reason"] == ReadyReason.NOT_READY.value


def test_reconcile_spec_outcomes():
    """Make sure the spec outcomes are reported per child kind in order"""
    dm = MockDeployManager(resources=[setup_cr()])
    manifest = dm.get_obj(constants.RATE_LIMITER_KIND, TEST_INSTANCE_NAME)
    result = RateLimiterReconciler(dm).reconcile_spec(setup_ctx(), manifest)
    assert not result.requeue
    assert result.changed
    assert list(result.outcomes.items()) == [
        ("Service", ReconcileOutcome.CREATED),
        ("PersistentVolumeClaim", ReconcileOutcome.CREATED),
        ("Deployment", ReconcileOutcome.CREATED),
        ("ConfigMap", ReconcileOutcome.CREATED),
        ("PodDisruptionBudget", ReconcileOutcome.UNCHANGED),
    ]


@pytest.mark.parametrize(
    "spec",
    [
        {},
        {"limits": SAMPLE_LIMITS, "replicas": 2, "pdb": {"minAvailable": 1}},
        {"storage": {"disk": {"optimize": "disk"}}, "telemetry": "exhaustive"},
        {"storage": {"redis": {"configSecretRef": {"name": TEST_SECRET_NAME}}}},
        {
            "storage": {
                "redis-cached": {
                    "configSecretRef": {"name": TEST_SECRET_NAME},
                    "options": {"ttl": 10},
                }
            },
            "affinity": {"podAntiAffinity": {"foo": "bar"}},
        },
    ],
)
def test_second_pass_is_idempotent(spec):
    """Make sure a second pass against an unchanged declaration writes
    nothing
    """
    dm = MockDeployManager(resources=[setup_cr(spec=spec), setup_redis_secret()])
    assert run_pass(dm) == ReconciliationResult(requeue=False)
    dm.reset_calls()

    manifest = dm.get_obj(constants.RATE_LIMITER_KIND, TEST_INSTANCE_NAME)
    spec_result = RateLimiterReconciler(dm).reconcile_spec(setup_ctx(), manifest)
    assert not spec_result.changed
    assert run_pass(dm) == ReconciliationResult(requeue=False)
    dm.create.assert_not_called()
    dm.update.assert_not_called()
    dm.delete.assert_not_called()
    dm.set_status.assert_not_called()


def test_limits_change_patches_config_map():
    """Make sure changed limits are written to the ConfigMap only"""
    dm = MockDeployManager(resources=[setup_cr(spec={"limits": SAMPLE_LIMITS})])
    run_pass(dm)
    update_cr_spec(dm, limits=SAMPLE_LIMITS[:1])
    dm.reset_calls()

    assert run_pass(dm) == ReconciliationResult(requeue=False)
    config_map = dm.get_obj("ConfigMap", LIMITS_NAME)
    assert len(deserialize_limits(config_map["data"][constants.LIMITS_FILE_KEY])) == 1
    assert [call[0][0]["kind"] for call in dm.update.call_args_list] == ["ConfigMap"]


def test_version_change_patches_deployment():
    """Make sure a new version is rolled out to the Deployment"""
    dm = MockDeployManager(resources=[setup_cr()])
    run_pass(dm)
    update_cr_spec(dm, version="1.2.3")
    run_pass(dm)
    assert server_container(dm)["image"].endswith(":1.2.3")


def test_disk_storage():
    """Make sure the disk backend mounts the claim and recreates on rollout"""
    dm = MockDeployManager(resources=[setup_cr(spec={"storage": {"disk": {}}})])
    run_pass(dm)
    deployment = dm.get_obj("Deployment", RESOURCE_NAME)
    assert deployment["spec"]["strategy"] == {"type": "Recreate"}
    claims = [
        vol["persistentVolumeClaim"]["claimName"]
        for vol in deployment["spec"]["template"]["spec"]["volumes"]
        if "persistentVolumeClaim" in vol
    ]
    assert claims == [RESOURCE_NAME]


def test_redis_storage_env():
    """Make sure the redis URL reaches the server through the env only"""
    dm = MockDeployManager(
        resources=[
            setup_cr(
                spec={"storage": {"redis": {"configSecretRef": {"name": TEST_SECRET_NAME}}}}
            ),
            setup_redis_secret(),
        ]
    )
    run_pass(dm)
    server = server_container(dm)
    assert server["env"][0]["valueFrom"]["secretKeyRef"]["name"] == TEST_SECRET_NAME
    assert all("redis://" not in arg for arg in server["command"])


## Create-only children ########################################################


def test_service_is_create_only():
    """Make sure an out of band change to the Service is not reverted"""
    dm = MockDeployManager(resources=[setup_cr()])
    run_pass(dm)
    service = dm.get_obj("Service", RESOURCE_NAME)
    service["spec"]["ports"][0]["port"] = 1234
    DryRunDeployManager.update(dm, service)
    dm.reset_calls()

    run_pass(dm)
    assert dm.get_obj("Service", RESOURCE_NAME)["spec"]["ports"][0]["port"] == 1234
    dm.update.assert_not_called()


def test_pvc_is_create_only():
    """Make sure a changed disk size does not touch the existing claim"""
    dm = MockDeployManager(resources=[setup_cr(spec={"storage": {"disk": {}}})])
    run_pass(dm)
    update_cr_spec(
        dm,
        storage={"disk": {"persistentVolumeClaim": {"resources": {"requests": "9Gi"}}}},
    )
    dm.reset_calls()

    run_pass(dm)
    pvc = dm.get_obj("PersistentVolumeClaim", RESOURCE_NAME)
    assert pvc["spec"]["resources"]["requests"]["storage"] == "1Gi"
    assert all(
        call[0][0]["kind"] != "PersistentVolumeClaim"
        for call in dm.update.call_args_list
    )


## PodDisruptionBudget #########################################################


def test_pdb_removed():
    """Make sure a PDB no longer declared is deleted"""
    dm = MockDeployManager(resources=[setup_cr(spec={"pdb": {"minAvailable": 1}})])
    run_pass(dm)
    assert dm.has_obj("PodDisruptionBudget", RESOURCE_NAME)

    manifest = dm.get_obj(constants.RATE_LIMITER_KIND, TEST_INSTANCE_NAME)
    del manifest["spec"]["pdb"]
    DryRunDeployManager.update(dm, manifest)
    manifest = dm.get_obj(constants.RATE_LIMITER_KIND, TEST_INSTANCE_NAME)
    spec_result = RateLimiterReconciler(dm).reconcile_spec(setup_ctx(), manifest)
    assert spec_result.outcomes["PodDisruptionBudget"] == ReconcileOutcome.DELETED
    assert not dm.has_obj("PodDisruptionBudget", RESOURCE_NAME)


def test_pdb_not_declared():
    """Make sure an undeclared PDB is never created"""
    dm = MockDeployManager(resources=[setup_cr()])
    manifest = dm.get_obj(constants.RATE_LIMITER_KIND, TEST_INSTANCE_NAME)
    for _ in range(2):
        spec_result = RateLimiterReconciler(dm).reconcile_spec(setup_ctx(), manifest)
        assert (
            spec_result.outcomes["PodDisruptionBudget"] == ReconcileOutcome.UNCHANGED
        )
    assert not dm.has_obj("PodDisruptionBudget", RESOURCE_NAME)


def test_invalid_pdb_is_fatal():
    """Make sure an invalid PDB is reported and not requeued"""
    dm = MockDeployManager(resources=[setup_cr(spec={"pdb": {}})])
    result = run_pass(dm)
    assert not result.requeue
    assert isinstance(result.exception, ConfigError)
    ready = get_condition(READY_CONDITION, cr_status(dm))
    assert ready["reason"] == ReadyReason.RECONCILIATION_ERROR.value


## Upgrades ####################################################################


def test_outdated_selector_requeues():
    """Make sure a Deployment with an outdated selector is replaced over two
    passes
    """
    dm = MockDeployManager(resources=[setup_cr()])
    run_pass(dm)
    deployment = dm.get_obj("Deployment", RESOURCE_NAME)
    deployment["spec"]["selector"]["matchLabels"] = {"app": "ratelimiter"}
    DryRunDeployManager.update(dm, deployment)

    result = run_pass(dm)
    assert result.requeue
    assert result.exception is None
    assert not dm.has_obj("Deployment", RESOURCE_NAME)

    assert run_pass(dm) == ReconciliationResult(requeue=False)
    assert dm.has_obj("Deployment", RESOURCE_NAME)


def test_legacy_limits_key_removed():
    """Make sure the legacy limits key is dropped during the pass"""
    dm = MockDeployManager(resources=[setup_cr()])
    run_pass(dm)
    config_map = dm.get_obj("ConfigMap", LIMITS_NAME)
    config_map["data"][constants.LEGACY_LIMITS_FILE_KEY] = "[]"
    DryRunDeployManager.update(dm, config_map)

    manifest = dm.get_obj(constants.RATE_LIMITER_KIND, TEST_INSTANCE_NAME)
    result = RateLimiterReconciler(dm).reconcile_spec(setup_ctx(), manifest)
    assert result.outcomes["ConfigMap"] == ReconcileOutcome.PATCHED
    assert constants.LEGACY_LIMITS_FILE_KEY not in (
        dm.get_obj("ConfigMap", LIMITS_NAME)["data"]
    )


## Missing or deleting declaration #############################################


def test_declaration_absent():
    """Make sure a missing RateLimiter is a no-op"""
    dm = MockDeployManager()
    assert run_pass(dm) == ReconciliationResult(requeue=False)
    dm.create.assert_not_called()
    dm.set_status.assert_not_called()


def test_declaration_deleting():
    """Make sure a RateLimiter being deleted is left to garbage collection"""
    cr = setup_cr()
    cr["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    dm = MockDeployManager(resources=[cr])
    assert run_pass(dm) == ReconciliationResult(requeue=False)
    dm.create.assert_not_called()


def test_declaration_fetch_failure():
    """Make sure a failed lookup of the RateLimiter is requeued"""
    dm = MockDeployManager(resources=[setup_cr()], get_state_fail=True)
    result = run_pass(dm)
    assert result.requeue
    assert isinstance(result.exception, ClusterError)


## Failures ####################################################################


def test_missing_secret_requeues():
    """Make sure a missing redis Secret is retried"""
    dm = MockDeployManager(
        resources=[
            setup_cr(
                spec={"storage": {"redis": {"configSecretRef": {"name": "missing"}}}}
            )
        ]
    )
    result = run_pass(dm)
    assert result.requeue
    assert isinstance(result.exception, ResourceNotFoundError)
    # The children before the Deployment were still created
    assert dm.has_obj("Service", RESOURCE_NAME)
    assert not dm.has_obj("Deployment", RESOURCE_NAME)


def test_create_failure_requeues():
    """Make sure a failed create is a non-fatal error"""
    dm = MockDeployManager(resources=[setup_cr()], create_fail=True)
    result = run_pass(dm)
    assert result.requeue
    assert isinstance(result.exception, ClusterError)


def test_unexpected_error_requeues():
    """Make sure an unexpected error is caught and retried"""
    dm = MockDeployManager(resources=[setup_cr()], create_raise=True)
    result = run_pass(dm)
    assert result.requeue
    assert isinstance(result.exception, AssertionError)


def test_status_write_failure_requeues():
    """Make sure a failed status write asks for a requeue without an error"""
    dm = MockDeployManager(resources=[setup_cr()], set_status_fail=True)
    result = run_pass(dm)
    assert result.requeue
    assert result.exception is None


def test_status_write_retried():
    """Make sure a status write that failed once lands on the next pass"""
    dm = MockDeployManager(
        resources=[setup_cr()], set_status_fail=FailOnce((False, False))
    )
    assert run_pass(dm).requeue
    assert cr_status(dm) is None
    assert run_pass(dm) == ReconciliationResult(requeue=False)
    assert cr_status(dm)["observedGeneration"] == 1


def test_update_conflict_retried():
    """Make sure a rejected update is retried by the next pass"""
    dm = MockDeployManager(
        resources=[setup_cr()], update_fail=FailOnce((False, None))
    )
    run_pass(dm)
    update_cr_spec(dm, version="1.2.3")
    result = run_pass(dm)
    assert result.requeue
    assert isinstance(result.exception, ClusterError)
    assert run_pass(dm) == ReconciliationResult(requeue=False)
    assert server_container(dm)["image"].endswith(":1.2.3")


def test_status_not_managed():
    """Make sure the status is left alone when status management is off"""
    dm = MockDeployManager(resources=[setup_cr()])
    with library_config(manage_status=False):
        assert run_pass(dm) == ReconciliationResult(requeue=False)
    dm.set_status.assert_not_called()


def test_cancelled_pass():
    """Make sure a cancelled pass stops before touching the store"""
    dm = MockDeployManager(resources=[setup_cr()])
    ctx = ReconcileContext()
    ctx.cancel()
    result = run_pass(dm, ctx=ctx)
    assert result.requeue
    assert isinstance(result.exception, ReconcileCancelledError)
    dm.create.assert_not_called()


def test_cancelled_mid_pass():
    """Make sure cancelling during the pass stops before the next write"""
    dm = MockDeployManager(resources=[setup_cr()])
    ctx = ReconcileContext()
    original_create = dm.create.side_effect

    def create_then_cancel(*args, **kwargs):
        res = original_create(*args, **kwargs)
        ctx.cancel()
        return res

    dm.create.side_effect = create_then_cancel
    result = run_pass(dm, ctx=ctx)
    assert isinstance(result.exception, ReconcileCancelledError)
    assert dm.create.call_count == 1
    assert dm.has_obj("Service", RESOURCE_NAME)
    assert not dm.has_obj("Deployment", RESOURCE_NAME)


## combine_results #############################################################

SPEC_ERROR = ConfigError("spec")
STATUS_ERROR = ClusterError("status")


@pytest.mark.parametrize(
    ["spec_result", "spec_error", "status_requeue", "status_error", "expected"],
    [
        (SpecResult(), None, False, None, ReconciliationResult(requeue=False)),
        (
            SpecResult(requeue=True),
            None,
            False,
            None,
            ReconciliationResult(requeue=True),
        ),
        (SpecResult(), None, True, None, ReconciliationResult(requeue=True)),
        (
            None,
            SPEC_ERROR,
            True,
            STATUS_ERROR,
            ReconciliationResult(requeue=False, exception=SPEC_ERROR),
        ),
        (
            SpecResult(requeue=True),
            None,
            False,
            STATUS_ERROR,
            ReconciliationResult(requeue=True, exception=STATUS_ERROR),
        ),
    ],
)
def test_combine_results(
    spec_result, spec_error, status_requeue, status_error, expected
):
    """Make sure errors win over requeues and spec wins over status"""
    assert (
        combine_results(spec_result, spec_error, status_requeue, status_error)
        == expected
    )


def test_combine_results_unknown_error():
    """Make sure errors from outside the library are retried"""
    error = ValueError("boom")
    result = combine_results(None, error, False, None)
    assert result.requeue
    assert result.exception is error


## Setup #######################################################################


def test_setup_deploy_manager_dry_run():
    with library_config(dry_run=True):
        assert isinstance(RateLimiterReconciler().deploy_manager, DryRunDeployManager)


def test_setup_deploy_manager_cluster():
    with library_config(dry_run=False):
        assert isinstance(
            RateLimiterReconciler().deploy_manager, OpenshiftDeployManager
        )


def test_configure_logging_from_annotations():
    """Make sure log annotations reconfigure logging and absent annotations
    leave it alone
    """
    with mock.patch("alog.configure") as configure_mock:
        RateLimiterReconciler.configure_logging(setup_cr())
        configure_mock.assert_not_called()

        RateLimiterReconciler.configure_logging(
            setup_cr(
                metadata={
                    "annotations": {
                        constants.LOG_DEFAULT_LEVEL_NAME: "debug",
                        constants.LOG_JSON_NAME: "true",
                    }
                }
            )
        )
        configure_mock.assert_called_once()
        assert configure_mock.call_args.kwargs["default_level"] == "debug"


def test_configure_logging_failure_is_reported():
    """Make sure a failure to apply the log annotations is returned in the
    result and reported in the status
    """
    dm = MockDeployManager(
        resources=[
            setup_cr(
                metadata={"annotations": {constants.LOG_DEFAULT_LEVEL_NAME: "debug"}}
            )
        ]
    )
    with mock.patch("alog.configure", side_effect=ValueError("bad log config")):
        result = run_pass(dm)
    assert result.requeue
    assert isinstance(result.exception, ValueError)
    assert not dm.has_obj("Deployment", RESOURCE_NAME)
    ready = get_condition(READY_CONDITION, cr_status(dm))
    assert ready["reason"] == ReadyReason.RECONCILIATION_ERROR.value
