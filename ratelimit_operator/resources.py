"""
Builders for the desired child resources of a RateLimiter. Every builder is a
pure function of the declaration (and the resolved storage options for the
Deployment) and produces a manifest in the wire shape of the cluster API. The
same inputs always produce the same manifest.
"""

# Standard
from typing import List, Optional
import copy

# First Party
import alog

# Local
from . import config, constants
from .declaration import PodDisruptionBudgetPolicy, RateLimiterDeclaration
from .deploy_manager import set_owner_reference
from .exceptions import assert_config
from .limits import serialize_limits
from .storage import DeploymentStorageOptions
from .utils import to_plain

log = alog.use_channel("RSRCS")

## Common ######################################################################


def labels(declaration: RateLimiterDeclaration) -> dict:
    """Labels shared by the pods and the selectors pointing at them"""
    return {
        "app": constants.APP_LABEL_VALUE,
        constants.RESOURCE_LABEL_NAME: declaration.name,
    }


def limits_file_path() -> str:
    return f"{constants.LIMITS_MOUNT_PATH}/{constants.LIMITS_FILE_KEY}"


def _child(
    declaration: RateLimiterDeclaration,
    api_version: str,
    kind: str,
    name: str,
    **content,
) -> dict:
    manifest = {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": declaration.namespace,
            "labels": labels(declaration),
        },
    }
    manifest.update(content)
    return set_owner_reference(declaration, manifest)


## Service #####################################################################


def build_service(declaration: RateLimiterDeclaration) -> dict:
    """The Service exposing the http and grpc listeners of the server"""
    return _child(
        declaration,
        "v1",
        "Service",
        declaration.resource_name,
        spec={
            "type": "ClusterIP",
            "selector": labels(declaration),
            "ports": [
                {
                    "name": constants.HTTP_PORT_NAME,
                    "port": declaration.listener.http_port,
                    "protocol": "TCP",
                    "targetPort": constants.HTTP_PORT_NAME,
                },
                {
                    "name": constants.GRPC_PORT_NAME,
                    "port": declaration.listener.grpc_port,
                    "protocol": "TCP",
                    "targetPort": constants.GRPC_PORT_NAME,
                },
            ],
        },
    )


## Deployment ##################################################################


def deployment_options(
    declaration: RateLimiterDeclaration,
    storage_options: DeploymentStorageOptions,
) -> DeploymentStorageOptions:
    """Combine the resolved storage options with the base server command and
    the limits file volume

    Args:
        declaration:  RateLimiterDeclaration
            The parsed declaration
        storage_options:  DeploymentStorageOptions
            The options resolved for the declaration's storage backend

    Returns:
        options:  DeploymentStorageOptions
            The full runtime configuration of the server container
    """
    command = [
        constants.SERVER_BINARY,
        "--http-port",
        str(declaration.listener.http_port),
        "--rls-port",
        str(declaration.listener.grpc_port),
    ]
    if declaration.rate_limit_headers:
        command.extend(["--rate-limit-headers", declaration.rate_limit_headers])
    if declaration.telemetry == constants.TELEMETRY_EXHAUSTIVE:
        command.append("--limit-name-in-labels")
    command.append(limits_file_path())
    command.extend(storage_options.command)

    return DeploymentStorageOptions(
        command=command,
        env=copy.deepcopy(storage_options.env),
        volumes=[
            {
                "name": constants.LIMITS_VOLUME_NAME,
                "configMap": {
                    "name": declaration.limits_config_map_name,
                    "defaultMode": 420,
                },
            }
        ]
        + copy.deepcopy(storage_options.volumes),
        volume_mounts=[
            {
                "name": constants.LIMITS_VOLUME_NAME,
                "mountPath": constants.LIMITS_MOUNT_PATH,
                "readOnly": True,
            }
        ]
        + copy.deepcopy(storage_options.volume_mounts),
        deployment_strategy=copy.deepcopy(storage_options.deployment_strategy),
    )


def build_deployment(
    declaration: RateLimiterDeclaration,
    options: DeploymentStorageOptions,
) -> dict:
    """The Deployment running the server. The replica count is only set when
    the declaration gives one so that an external scaler is not overridden.

    Args:
        declaration:  RateLimiterDeclaration
            The parsed declaration
        options:  DeploymentStorageOptions
            The combined options from deployment_options

    Returns:
        deployment:  dict
            The desired Deployment manifest
    """
    container = {
        "name": constants.CONTAINER_NAME,
        "image": "{}:{}".format(  # pylint: disable=consider-using-f-string
            config.image_repository, declaration.version or config.default_image_tag
        ),
        "imagePullPolicy": "IfNotPresent",
        "command": list(options.command),
        "ports": [
            {
                "name": constants.HTTP_PORT_NAME,
                "containerPort": declaration.listener.http_port,
                "protocol": "TCP",
            },
            {
                "name": constants.GRPC_PORT_NAME,
                "containerPort": declaration.listener.grpc_port,
                "protocol": "TCP",
            },
        ],
        "livenessProbe": _status_probe(initial_delay_seconds=5, period_seconds=10),
        "readinessProbe": _status_probe(initial_delay_seconds=5, period_seconds=5),
        "resources": to_plain(
            declaration.resource_requirements
            if declaration.resource_requirements is not None
            else config.default_resources
        ),
        "volumeMounts": copy.deepcopy(options.volume_mounts),
    }
    # Empty lists are dropped by the API server
    if options.env:
        container["env"] = copy.deepcopy(options.env)

    pod_spec = {"containers": [container]}
    if options.volumes:
        pod_spec["volumes"] = copy.deepcopy(options.volumes)
    if declaration.affinity is not None:
        pod_spec["affinity"] = copy.deepcopy(declaration.affinity)

    spec = {
        "selector": {"matchLabels": labels(declaration)},
        "strategy": copy.deepcopy(options.deployment_strategy),
        "template": {
            "metadata": {"labels": labels(declaration)},
            "spec": pod_spec,
        },
    }
    if declaration.replicas is not None:
        spec["replicas"] = declaration.replicas

    return _child(
        declaration, "apps/v1", "Deployment", declaration.resource_name, spec=spec
    )


def _status_probe(initial_delay_seconds: int, period_seconds: int) -> dict:
    return {
        "httpGet": {
            "path": constants.STATUS_ENDPOINT,
            "port": constants.HTTP_PORT_NAME,
            "scheme": "HTTP",
        },
        "initialDelaySeconds": initial_delay_seconds,
        "periodSeconds": period_seconds,
        "timeoutSeconds": 2,
        "successThreshold": 1,
        "failureThreshold": 3,
    }


## ConfigMap ###################################################################


def build_limits_config_map(declaration: RateLimiterDeclaration) -> dict:
    """The ConfigMap holding the limits file

    Raises:
        ConfigError if the limits cannot be encoded
    """
    return _child(
        declaration,
        "v1",
        "ConfigMap",
        declaration.limits_config_map_name,
        data={constants.LIMITS_FILE_KEY: serialize_limits(declaration.limits)},
    )


## PersistentVolumeClaim #######################################################


def build_persistent_volume_claim(declaration: RateLimiterDeclaration) -> dict:
    """The claim backing the disk storage. It is built for every declaration so
    that switching to the disk backend later finds it already bound.
    """
    storage_class_name = getattr(declaration.storage, "storage_class_name", None)
    volume_name = getattr(declaration.storage, "volume_name", None)
    storage_size = getattr(declaration.storage, "storage_size", None)

    spec = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {
            "requests": {"storage": storage_size or config.default_storage_size}
        },
    }
    if storage_class_name is not None:
        spec["storageClassName"] = storage_class_name
    if volume_name is not None:
        spec["volumeName"] = volume_name

    return _child(
        declaration,
        "v1",
        "PersistentVolumeClaim",
        declaration.resource_name,
        spec=spec,
    )


## PodDisruptionBudget #########################################################


def validate_pod_disruption_budget(policy: PodDisruptionBudgetPolicy):
    """Exactly one of minAvailable and maxUnavailable must be set

    Raises:
        ConfigError if the policy is invalid
    """
    assert_config(
        policy.min_available is not None or policy.max_unavailable is not None,
        "pdb must set one of minAvailable or maxUnavailable",
    )
    assert_config(
        policy.min_available is None or policy.max_unavailable is None,
        "pdb fields minAvailable and maxUnavailable are mutually exclusive",
    )


def build_pod_disruption_budget(
    declaration: RateLimiterDeclaration,
) -> Optional[dict]:
    """The PodDisruptionBudget of the server pods, or None when the declaration
    does not ask for one

    Raises:
        ConfigError if the declared policy is invalid
    """
    policy = declaration.pdb
    if policy is None:
        return None
    validate_pod_disruption_budget(policy)

    spec = {"selector": {"matchLabels": labels(declaration)}}
    if policy.min_available is not None:
        spec["minAvailable"] = policy.min_available
    else:
        spec["maxUnavailable"] = policy.max_unavailable
    return _child(
        declaration,
        "policy/v1",
        "PodDisruptionBudget",
        declaration.resource_name,
        spec=spec,
    )


## Identifiers #################################################################

# (kind, api_version) of every child kind managed by the operator
SERVICE = ("Service", "v1")
DEPLOYMENT = ("Deployment", "apps/v1")
CONFIG_MAP = ("ConfigMap", "v1")
PERSISTENT_VOLUME_CLAIM = ("PersistentVolumeClaim", "v1")
POD_DISRUPTION_BUDGET = ("PodDisruptionBudget", "policy/v1")

CHILD_KINDS: List[tuple] = [
    SERVICE,
    PERSISTENT_VOLUME_CLAIM,
    DEPLOYMENT,
    CONFIG_MAP,
    POD_DISRUPTION_BUDGET,
]
