"""
The storage options resolver derives the runtime configuration of the rate
limiting server (command line arguments, environment, volumes and the rollout
strategy of the Deployment) from the storage backend of a declaration.
"""

# Standard
from dataclasses import dataclass, field
from typing import List, Optional
import copy

# First Party
import alog

# Local
from . import constants
from .context import ReconcileContext
from .declaration import (
    DiskStorage,
    InMemoryStorage,
    RateLimiterDeclaration,
    RedisCachedStorage,
    RedisStorage,
    SecretReference,
)
from .exceptions import assert_config

log = alog.use_channel("STRGE")

# Backend names passed as the storage subcommand of the server
BACKEND_DISK = "disk"
BACKEND_REDIS = "redis"
BACKEND_REDIS_CACHED = "redis_cached"

RECREATE_STRATEGY = {"type": "Recreate"}
ROLLING_UPDATE_STRATEGY = {
    "type": "RollingUpdate",
    "rollingUpdate": {"maxSurge": "25%", "maxUnavailable": "25%"},
}


@dataclass
class DeploymentStorageOptions:
    """Runtime configuration produced by exactly one storage backend"""

    command: List[str] = field(default_factory=list)
    env: List[dict] = field(default_factory=list)
    volumes: List[dict] = field(default_factory=list)
    volume_mounts: List[dict] = field(default_factory=list)
    deployment_strategy: dict = field(
        default_factory=lambda: copy.deepcopy(ROLLING_UPDATE_STRATEGY)
    )


def resolve_storage_options(
    ctx: ReconcileContext,
    declaration: RateLimiterDeclaration,
    secret_store,
) -> DeploymentStorageOptions:
    """Resolve the storage options for the declaration's backend

    Args:
        ctx:  ReconcileContext
            The context of the current pass
        declaration:  RateLimiterDeclaration
            The parsed declaration
        secret_store:  DeployManagerSecretStore
            Lookup for the Secret holding the redis URL

    Returns:
        options:  DeploymentStorageOptions
            The resolved options

    Raises:
        ConfigError if the backend configuration is incomplete
        ResourceNotFoundError if the referenced Secret does not exist
        ClusterError if the Secret lookup fails
    """
    storage = declaration.storage
    log.debug2(
        "Resolving storage options for %s", type(storage).__name__, extra=ctx.log_extra
    )
    if isinstance(storage, InMemoryStorage):
        return in_memory_storage_options()
    if isinstance(storage, DiskStorage):
        return disk_storage_options(declaration, storage)
    if isinstance(storage, RedisStorage):
        return redis_storage_options(
            ctx, declaration.namespace, storage, secret_store
        )
    if isinstance(storage, RedisCachedStorage):
        return redis_cached_storage_options(
            ctx, declaration.namespace, storage, secret_store
        )
    raise TypeError(f"Unknown storage backend {storage}")


## Backends ####################################################################


def in_memory_storage_options() -> DeploymentStorageOptions:
    """Counters in memory need no arguments, the server defaults to it"""
    return DeploymentStorageOptions()


def disk_storage_options(
    declaration: RateLimiterDeclaration,
    storage: DiskStorage,
) -> DeploymentStorageOptions:
    """The disk backend mounts the PersistentVolumeClaim. Only one pod may hold
    the volume at a time, so rollouts must recreate rather than surge.
    """
    command = [BACKEND_DISK]
    if storage.optimize is not None:
        command.extend(["--optimize", storage.optimize])
    command.append(constants.DISK_MOUNT_PATH)
    return DeploymentStorageOptions(
        command=command,
        volumes=[
            {
                "name": constants.DISK_VOLUME_NAME,
                "persistentVolumeClaim": {
                    "claimName": declaration.resource_name,
                },
            }
        ],
        volume_mounts=[
            {
                "name": constants.DISK_VOLUME_NAME,
                "mountPath": constants.DISK_MOUNT_PATH,
            }
        ],
        deployment_strategy=copy.deepcopy(RECREATE_STRATEGY),
    )


def redis_storage_options(
    ctx: ReconcileContext,
    namespace: str,
    storage: RedisStorage,
    secret_store,
) -> DeploymentStorageOptions:
    secret_ref = _validate_redis_secret(
        ctx, namespace, storage.config_secret_ref, secret_store
    )
    return DeploymentStorageOptions(
        command=[BACKEND_REDIS, f"$({constants.REDIS_URL_ENV_VAR})"],
        env=redis_url_env(secret_ref),
    )


def redis_cached_storage_options(
    ctx: ReconcileContext,
    namespace: str,
    storage: RedisCachedStorage,
    secret_store,
) -> DeploymentStorageOptions:
    secret_ref = _validate_redis_secret(
        ctx, namespace, storage.config_secret_ref, secret_store
    )
    command = [BACKEND_REDIS_CACHED, f"$({constants.REDIS_URL_ENV_VAR})"]
    options = storage.options
    if options is not None:
        for flag, value in [
            ("--ttl", options.ttl),
            ("--ratio", options.ratio),
            ("--flush-period", options.flush_period),
            ("--max-cached", options.max_cached),
        ]:
            if value is not None:
                command.extend([flag, str(value)])
    return DeploymentStorageOptions(command=command, env=redis_url_env(secret_ref))


def redis_url_env(secret_ref: SecretReference) -> List[dict]:
    """The env var exposing the redis URL. The URL itself never appears on the
    command line.
    """
    return [
        {
            "name": constants.REDIS_URL_ENV_VAR,
            "valueFrom": {
                "secretKeyRef": {
                    "name": secret_ref.name,
                    "key": constants.REDIS_URL_SECRET_KEY,
                }
            },
        }
    ]


## Implementation Details ######################################################


def _validate_redis_secret(
    ctx: ReconcileContext,
    namespace: str,
    secret_ref: Optional[SecretReference],
    secret_store,
) -> SecretReference:
    """Make sure the referenced Secret exists and holds the URL key"""
    assert_config(
        secret_ref is not None and secret_ref.name,
        "There is no configSecretRef set for the redis storage",
    )
    content = secret_store.get(ctx, secret_ref.name, namespace)
    assert_config(
        constants.REDIS_URL_SECRET_KEY in content,
        f"The storage config Secret {secret_ref.name} doesn't have the "
        f"`{constants.REDIS_URL_SECRET_KEY}` field",
    )
    return secret_ref
