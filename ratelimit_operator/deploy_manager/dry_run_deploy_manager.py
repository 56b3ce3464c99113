"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime
from threading import RLock
from typing import List, Optional
import copy
import itertools
import uuid

# First Party
import alog

# Local
from .base import DeployManagerBase

log = alog.use_channel("DRY-RUN")


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!

    Every write bumps metadata.resourceVersion so that updates carrying a stale
    resourceVersion are rejected like they would be by the API server.
    """

    def __init__(self, resources: Optional[List[dict]] = None):
        """Construct with an optional list of objects that are already present
        in the cluster
        """
        self._cluster_content = {}
        self._lock = RLock()
        self._resource_versions = itertools.count(1)
        for resource in resources or []:
            self._store(copy.deepcopy(resource), creating=True)

    ## Interface ###############################################################

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug2(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with self._lock:
            matches = [
                entries[name]
                for api_ver, entries in self._cluster_content.get(namespace, {})
                .get(kind, {})
                .items()
                if name in entries and (api_version is None or api_ver == api_version)
            ]
        log.debug3(
            "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
        )
        if len(matches) == 1:
            return True, copy.deepcopy(matches[0])
        return True, None

    def create(self, resource_definition):
        api_version, kind, name, namespace = self._identifiers(resource_definition)
        log.info("DRY RUN create [%s/%s/%s/%s]", namespace, kind, api_version, name)
        with self._lock:
            if self._entries(namespace, kind, api_version).get(name) is not None:
                log.warning("Unable to create [%s/%s]. Already exists", kind, name)
                return False, None
            created = self._store(copy.deepcopy(resource_definition), creating=True)
        return True, copy.deepcopy(created)

    def update(self, resource_definition):
        api_version, kind, name, namespace = self._identifiers(resource_definition)
        log.info("DRY RUN update [%s/%s/%s/%s]", namespace, kind, api_version, name)
        with self._lock:
            current = self._entries(namespace, kind, api_version).get(name)
            if current is None:
                log.warning("Unable to update [%s/%s]. Not found", kind, name)
                return False, None
            resource_version = resource_definition.get("metadata", {}).get(
                "resourceVersion"
            )
            if (
                resource_version is not None
                and resource_version != current["metadata"]["resourceVersion"]
            ):
                log.warning(
                    "Unable to update [%s/%s]. resourceVersion is out of date",
                    kind,
                    name,
                )
                return False, None
            updated = copy.deepcopy(resource_definition)
            # Status is only written through set_status
            updated.pop("status", None)
            if "status" in current:
                updated["status"] = copy.deepcopy(current["status"])
            updated = self._store(updated, current=current)
        return True, copy.deepcopy(updated)

    def delete(self, resource_definition):
        api_version, kind, name, namespace = self._identifiers(resource_definition)
        log.info("DRY RUN delete [%s/%s/%s/%s]", namespace, kind, api_version, name)
        with self._lock:
            current = self._entries(namespace, kind, api_version).get(name)
            if current is None:
                return True, False
            metadata = current["metadata"]
            if metadata.get("finalizers"):
                log.debug2("Marking [%s/%s] for deletion", kind, name)
                metadata.setdefault(
                    "deletionTimestamp", datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ")
                )
                metadata["resourceVersion"] = self._next_resource_version()
            else:
                self._delete_key(namespace, kind, api_version, name)
        return True, True

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.info(
            "DRY RUN set_status of [%s.%s/%s] in %s", api_version, kind, name, namespace
        )
        log.debug3("Status: %s", status)
        with self._lock:
            matches = [
                entries[name]
                for api_ver, entries in self._cluster_content.get(namespace, {})
                .get(kind, {})
                .items()
                if name in entries and (api_version is None or api_ver == api_version)
            ]
            if len(matches) != 1:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            current = matches[0]
            changed = current.get("status") != status
            current["status"] = copy.deepcopy(status)
            current["metadata"]["resourceVersion"] = self._next_resource_version()
        return True, changed

    ## Implementation Details ##################################################

    @staticmethod
    def _identifiers(resource_definition):
        metadata = resource_definition.get("metadata", {})
        return (
            resource_definition.get("apiVersion"),
            resource_definition.get("kind"),
            metadata.get("name"),
            metadata.get("namespace"),
        )

    def _entries(self, namespace, kind, api_version) -> dict:
        return (
            self._cluster_content.setdefault(namespace, {})
            .setdefault(kind, {})
            .setdefault(api_version, {})
        )

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions))

    def _store(self, resource, creating=False, current=None) -> dict:
        """Place the resource into the cluster content, filling in the
        metadata the API server owns
        """
        api_version, kind, name, namespace = self._identifiers(resource)
        metadata = resource.setdefault("metadata", {})
        if creating:
            metadata.setdefault("uid", str(uuid.uuid4()))
            metadata.setdefault("creationTimestamp", datetime.now().isoformat())
            metadata.setdefault("generation", 1)
        else:
            for key in ["uid", "creationTimestamp", "deletionTimestamp", "finalizers"]:
                if key in current["metadata"] and key not in metadata:
                    metadata[key] = current["metadata"][key]
            generation = current["metadata"].get("generation", 1)
            if resource.get("spec") != current.get("spec"):
                generation += 1
            metadata["generation"] = generation
        metadata["resourceVersion"] = self._next_resource_version()
        self._entries(namespace, kind, api_version)[name] = resource
        return resource

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]
