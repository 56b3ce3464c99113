"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from collections import namedtuple
from typing import Optional, Tuple
import threading

# Third Party
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    ConflictError,
    DynamicApiError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .base import DeployManagerBase

log = alog.use_channel("OSFTD")

# The field manager name recorded on every write
FIELD_MANAGER = "ratelimit-operator"

# Errors that indicate the operation failed in the cluster or on the way to it
_CLUSTER_ERRORS = (DynamicApiError, urllib3.exceptions.HTTPError)


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, client: Optional[DynamicClient] = None):
        """
        Args:
            client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily
                from the in-cluster or local kube config.
        """
        self._client = client

        # Keep a threading lock for performing status updates. This is necessary
        # to avoid running into 409 Conflict errors if concurrent threads are
        # trying to perform status updates
        self._status_lock = threading.Lock()

    @property
    def client(self) -> DynamicClient:
        """Lazy property access to the client"""
        if self._client is None:
            log.debug("Initializing openshift client")
            self._client = self._setup_client()
        return self._client

    ## Interface ###############################################################

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        try:
            resource = resources.get(name=name, namespace=namespace)
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        except ForbiddenError:
            log.warning(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except _CLUSTER_ERRORS as err:
            log.warning("Failed to fetch [%s/%s]: %s", kind, name, err)
            return False, None

        return True, resource.to_dict()

    def create(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        res_id = self._get_resource_identifiers(resource_definition)
        resource_handle = self._get_resource_handle(res_id.kind, res_id.api_version)
        if not resource_handle:
            return False, None

        log.debug2(
            "Attempting to create [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        try:
            created = resource_handle.create(
                body=resource_definition,
                namespace=res_id.namespace,
                field_manager=FIELD_MANAGER,
            )
        except _CLUSTER_ERRORS as err:
            log.warning("Failed to create [%s/%s]: %s", res_id.kind, res_id.name, err)
            return False, None
        return True, created.to_dict()

    def update(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        res_id = self._get_resource_identifiers(resource_definition)
        resource_handle = self._get_resource_handle(res_id.kind, res_id.api_version)
        if not resource_handle:
            return False, None

        # Strip out managedFields to let the sever set them
        resource_definition.get("metadata", {}).pop("managedFields", None)

        log.debug2(
            "Attempting to replace [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        try:
            updated = resource_handle.replace(
                body=resource_definition,
                name=res_id.name,
                namespace=res_id.namespace,
                field_manager=FIELD_MANAGER,
            )
        except ConflictError as err:
            log.info(
                "Conflict updating [%s/%s]. Object changed since it was read: %s",
                res_id.kind,
                res_id.name,
                err,
            )
            return False, None
        except _CLUSTER_ERRORS as err:
            log.warning("Failed to update [%s/%s]: %s", res_id.kind, res_id.name, err)
            return False, None
        return True, updated.to_dict()

    def delete(self, resource_definition: dict) -> Tuple[bool, bool]:
        res_id = self._get_resource_identifiers(resource_definition)
        try:
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=res_id.kind
            )
            log.debug2(
                "Attempting to delete [%s/%s/%s] from %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.delete(name=res_id.name, namespace=res_id.namespace)

        # If the kind or instance is not found, that's a success without change
        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2(
                "Valid error caught when deleting [%s/%s]: %s",
                res_id.kind,
                res_id.name,
                err,
            )
            return True, False
        except _CLUSTER_ERRORS as err:
            log.warning("Failed to delete [%s/%s]: %s", res_id.kind, res_id.name, err)
            return False, False
        return True, True

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False, False

        with self._status_lock:
            try:
                resource = resource_handle.get(name=name, namespace=namespace).to_dict()
                if resource.get("status") == status:
                    log.debug("Status has not changed. No update")
                    return True, False
                resource["status"] = status
                resource_handle.status.replace(body=resource)
            except _CLUSTER_ERRORS as err:
                log.warning("Failed to set status for [%s/%s]: %s", kind, name, err)
                return False, False

        log.debug2(
            "Successfully set the status for [%s/%s] in %s", kind, name, namespace
        )
        return True, True

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client() -> DynamicClient:
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: str, api_version: str) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return resources

    # Internal struct to hold the key resource identifier elements
    _ResourceIdentifiers = namedtuple(
        "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
    )

    @classmethod
    def _get_resource_identifiers(cls, resource_definition):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [
            api_version,
            kind,
            name,
        ], "Cannot operate on a resource without apiVersion, kind or name"
        return cls._ResourceIdentifiers(api_version, kind, name, namespace)
