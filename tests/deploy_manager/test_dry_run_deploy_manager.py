"""
Tests for the DryRunDeployManager
"""

# Standard
import threading

# Local
from ratelimit_operator.deploy_manager import DryRunDeployManager
from ratelimit_operator.test_helpers.helpers import TEST_NAMESPACE

## Helpers #####################################################################


def config_map(name="test-cm", namespace=TEST_NAMESPACE, **data):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": data,
    }


def get(dm, name="test-cm", kind="ConfigMap", namespace=TEST_NAMESPACE, **kwargs):
    success, obj = dm.get_object_current_state(kind, name, namespace, **kwargs)
    assert success
    return obj


## Tests #######################################################################


def test_initial_resources():
    """Make sure the initial resources are present with server metadata"""
    dm = DryRunDeployManager(resources=[config_map(foo="bar")])
    obj = get(dm)
    assert obj["data"] == {"foo": "bar"}
    assert obj["metadata"]["uid"]
    assert obj["metadata"]["resourceVersion"]
    assert obj["metadata"]["generation"] == 1


def test_get_absent():
    """Make sure an absent object is a successful empty lookup"""
    dm = DryRunDeployManager()
    assert dm.get_object_current_state("ConfigMap", "test-cm", TEST_NAMESPACE) == (
        True,
        None,
    )


def test_get_api_version_and_namespace():
    """Make sure lookups are scoped by api version and namespace"""
    dm = DryRunDeployManager(resources=[config_map()])
    assert get(dm, api_version="v1") is not None
    assert get(dm, api_version="v2") is None
    assert get(dm, namespace="other") is None


def test_get_returns_copy():
    """Make sure edits to a fetched object do not reach the store"""
    dm = DryRunDeployManager(resources=[config_map(foo="bar")])
    get(dm)["data"]["foo"] = "baz"
    assert get(dm)["data"] == {"foo": "bar"}


def test_create():
    """Make sure create stores the object and refuses duplicates"""
    dm = DryRunDeployManager()
    success, created = dm.create(config_map())
    assert success
    assert created["metadata"]["resourceVersion"]
    assert get(dm) is not None
    assert dm.create(config_map()) == (False, None)


def test_update():
    """Make sure update replaces the content and bumps the version"""
    dm = DryRunDeployManager(resources=[config_map(foo="bar")])
    current = get(dm)
    current["data"]["foo"] = "baz"
    success, updated = dm.update(current)
    assert success
    assert updated["data"] == {"foo": "baz"}
    assert updated["metadata"]["resourceVersion"] != current["metadata"][
        "resourceVersion"
    ]
    assert updated["metadata"]["uid"] == current["metadata"]["uid"]


def test_update_absent():
    dm = DryRunDeployManager()
    assert dm.update(config_map()) == (False, None)


def test_update_stale_resource_version():
    """Make sure an update from a stale read is rejected"""
    dm = DryRunDeployManager(resources=[config_map(foo="bar")])
    stale = get(dm)
    fresh = get(dm)
    fresh["data"]["foo"] = "fresh"
    assert dm.update(fresh)[0]
    stale["data"]["foo"] = "stale"
    assert dm.update(stale) == (False, None)
    assert get(dm)["data"] == {"foo": "fresh"}


def test_update_without_resource_version():
    """Make sure an update without a resourceVersion overwrites"""
    dm = DryRunDeployManager(resources=[config_map(foo="bar")])
    assert dm.update(config_map(foo="baz"))[0]
    assert get(dm)["data"] == {"foo": "baz"}


def test_update_generation():
    """Make sure the generation only moves with the spec"""
    deployment = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "test-deploy", "namespace": TEST_NAMESPACE},
        "spec": {"replicas": 1},
    }
    dm = DryRunDeployManager(resources=[deployment])
    current = get(dm, "test-deploy", "Deployment")
    current["metadata"]["labels"] = {"foo": "bar"}
    _, updated = dm.update(current)
    assert updated["metadata"]["generation"] == 1
    updated["spec"]["replicas"] = 2
    _, updated = dm.update(updated)
    assert updated["metadata"]["generation"] == 2


def test_update_keeps_status():
    """Make sure status is only written through set_status"""
    obj = config_map()
    obj["status"] = {"foo": "bar"}
    dm = DryRunDeployManager(resources=[obj])
    current = get(dm)
    current["status"] = {"foo": "changed"}
    _, updated = dm.update(current)
    assert updated["status"] == {"foo": "bar"}


def test_delete():
    """Make sure delete removes the object and reports absent objects as
    unchanged
    """
    dm = DryRunDeployManager(resources=[config_map()])
    assert dm.delete(config_map()) == (True, True)
    assert get(dm) is None
    assert dm.delete(config_map()) == (True, False)


def test_delete_with_finalizers():
    """Make sure an object with finalizers is only marked for deletion"""
    obj = config_map()
    obj["metadata"]["finalizers"] = ["foo"]
    dm = DryRunDeployManager(resources=[obj])
    assert dm.delete(config_map()) == (True, True)
    assert get(dm)["metadata"]["deletionTimestamp"]


def test_set_status():
    """Make sure set_status writes the status and reports changes"""
    dm = DryRunDeployManager(resources=[config_map()])
    version = get(dm)["metadata"]["resourceVersion"]
    assert dm.set_status("ConfigMap", "test-cm", TEST_NAMESPACE, {"a": 1}) == (
        True,
        True,
    )
    assert get(dm)["status"] == {"a": 1}
    assert get(dm)["metadata"]["resourceVersion"] != version
    assert dm.set_status("ConfigMap", "test-cm", TEST_NAMESPACE, {"a": 1}) == (
        True,
        False,
    )


def test_set_status_absent():
    dm = DryRunDeployManager()
    assert dm.set_status("ConfigMap", "test-cm", TEST_NAMESPACE, {}) == (False, False)


def test_concurrent_creates():
    """Make sure concurrent writers do not lose objects"""
    dm = DryRunDeployManager()
    threads = [
        threading.Thread(target=dm.create, args=(config_map(name=f"cm-{i}"),))
        for i in range(20)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert all(get(dm, f"cm-{i}") is not None for i in range(20))
