"""
This module holds the typed view of a RateLimiter custom resource. The raw
manifest is parsed once per reconciliation into immutable dataclasses that the
rest of the library reads from.

The storage backend is modeled as a tagged variant: exactly one of
InMemoryStorage, DiskStorage, RedisStorage or RedisCachedStorage.
"""

# Standard
from dataclasses import dataclass, field
from typing import List, Optional, Union

# First Party
import alog

# Local
from . import constants
from .exceptions import ConfigError, assert_config
from .utils import to_plain

log = alog.use_channel("DECL")

## Storage variants ############################################################


@dataclass(frozen=True)
class SecretReference:
    name: Optional[str] = None
    namespace: Optional[str] = None


@dataclass(frozen=True)
class InMemoryStorage:
    """Counters are held in the server's memory (default)"""


@dataclass(frozen=True)
class DiskStorage:
    """Counters are persisted on a volume backed by the PersistentVolumeClaim"""

    optimize: Optional[str] = None
    storage_class_name: Optional[str] = None
    volume_name: Optional[str] = None
    storage_size: Optional[str] = None


@dataclass(frozen=True)
class RedisStorage:
    """Counters are held in an external redis"""

    config_secret_ref: Optional[SecretReference] = None


@dataclass(frozen=True)
class RedisCachedOptions:
    ttl: Optional[int] = None
    ratio: Optional[int] = None
    flush_period: Optional[int] = None
    max_cached: Optional[int] = None


@dataclass(frozen=True)
class RedisCachedStorage:
    """Counters are held in an external redis with a local write-behind cache"""

    config_secret_ref: Optional[SecretReference] = None
    options: Optional[RedisCachedOptions] = None


StorageBackend = Union[InMemoryStorage, DiskStorage, RedisStorage, RedisCachedStorage]

# The manifest keys under spec.storage for each backend
STORAGE_REDIS = "redis"
STORAGE_REDIS_CACHED = "redis-cached"
STORAGE_DISK = "disk"

## Declaration #################################################################


@dataclass(frozen=True)
class RateLimit:
    """A single rate limit rule. The conditions and variables are opaque to
    the operator and handed to the server as-is.
    """

    namespace: str
    max_value: int
    seconds: int
    conditions: List[str] = field(default_factory=list)
    variables: List[str] = field(default_factory=list)
    name: Optional[str] = None

    def to_dict(self) -> dict:
        """Wire representation used inside the limits file"""
        limit = {
            "namespace": self.namespace,
            "max_value": self.max_value,
            "seconds": self.seconds,
            "conditions": list(self.conditions),
            "variables": list(self.variables),
        }
        if self.name is not None:
            limit["name"] = self.name
        return limit

    @classmethod
    def from_dict(cls, limit: dict) -> "RateLimit":
        """Parse a limit from its wire representation

        Raises:
            ValueError if the entry is not a valid limit
        """
        if not isinstance(limit, dict):
            raise ValueError(f"Rate limit entry is not a mapping: {limit}")
        missing = [
            key for key in ["namespace", "max_value", "seconds"] if key not in limit
        ]
        if missing:
            raise ValueError(f"Rate limit entry missing fields {missing}: {limit}")
        for key in ["max_value", "seconds"]:
            if not _is_int(limit[key]):
                raise ValueError(f"Rate limit {key} must be an integer: {limit}")
        if not isinstance(limit["namespace"], str):
            raise ValueError(f"Rate limit namespace must be a string: {limit}")
        if limit.get("name") is not None and not isinstance(limit["name"], str):
            raise ValueError(f"Rate limit name must be a string: {limit}")
        for key in ["conditions", "variables"]:
            values = limit.get(key) or []
            if not isinstance(values, list) or not all(
                isinstance(value, str) for value in values
            ):
                raise ValueError(f"Rate limit {key} must be a list of strings: {limit}")
        return cls(
            namespace=limit["namespace"],
            max_value=limit["max_value"],
            seconds=limit["seconds"],
            conditions=list(limit.get("conditions") or []),
            variables=list(limit.get("variables") or []),
            name=limit.get("name"),
        )


@dataclass(frozen=True)
class PodDisruptionBudgetPolicy:
    """Exactly one of the two fields must be set. Both take an int or a
    percentage string.
    """

    min_available: Optional[Union[int, str]] = None
    max_unavailable: Optional[Union[int, str]] = None


@dataclass(frozen=True)
class Listener:
    http_port: int = constants.DEFAULT_HTTP_PORT
    grpc_port: int = constants.DEFAULT_GRPC_PORT


@dataclass(frozen=True)
class RateLimiterDeclaration:  # pylint: disable=too-many-instance-attributes
    """The parsed desired state of one rate limiting service instance"""

    name: str
    namespace: str
    uid: Optional[str] = None
    api_version: str = constants.RATE_LIMITER_API_VERSION
    kind: str = constants.RATE_LIMITER_KIND
    generation: Optional[int] = None
    deleting: bool = False
    replicas: Optional[int] = None
    version: Optional[str] = None
    listener: Listener = field(default_factory=Listener)
    storage: StorageBackend = field(default_factory=InMemoryStorage)
    pdb: Optional[PodDisruptionBudgetPolicy] = None
    resource_requirements: Optional[dict] = None
    affinity: Optional[dict] = None
    rate_limit_headers: Optional[str] = None
    telemetry: Optional[str] = None
    limits: List[RateLimit] = field(default_factory=list)

    @property
    def resource_name(self) -> str:
        """Name shared by the Service, Deployment, PVC and PDB children"""
        return f"{constants.RESOURCE_NAME_PREFIX}-{self.name}"

    @property
    def limits_config_map_name(self) -> str:
        return f"{constants.LIMITS_CONFIG_MAP_NAME_PREFIX}-{self.name}"


## Parsing #####################################################################


def parse_declaration(manifest: dict) -> RateLimiterDeclaration:
    """Parse a raw RateLimiter manifest

    Args:
        manifest:  dict
            The full CR manifest as read from the cluster

    Returns:
        declaration:  RateLimiterDeclaration
            The typed view of the manifest

    Raises:
        ConfigError if the spec is contradictory or incomplete
    """
    metadata = manifest.get("metadata") or {}
    spec = manifest.get("spec") or {}
    assert_config(metadata.get("name"), "RateLimiter has no metadata.name")

    limits = []
    for entry in spec.get("limits") or []:
        try:
            limits.append(RateLimit.from_dict(entry))
        except (TypeError, ValueError) as err:
            raise ConfigError(f"Invalid rate limit: {err}") from err

    telemetry = spec.get("telemetry")
    assert_config(
        telemetry in [None, constants.TELEMETRY_BASIC, constants.TELEMETRY_EXHAUSTIVE],
        f"Invalid telemetry value: {telemetry}",
    )

    declaration = RateLimiterDeclaration(
        name=metadata["name"],
        namespace=metadata.get("namespace"),
        uid=metadata.get("uid"),
        api_version=manifest.get("apiVersion", constants.RATE_LIMITER_API_VERSION),
        kind=manifest.get("kind", constants.RATE_LIMITER_KIND),
        generation=metadata.get("generation"),
        deleting=metadata.get("deletionTimestamp") is not None,
        replicas=spec.get("replicas"),
        version=spec.get("version"),
        listener=_parse_listener(spec.get("listener")),
        storage=parse_storage(spec.get("storage")),
        pdb=_parse_pdb(spec.get("pdb")),
        resource_requirements=to_plain(spec.get("resourceRequirements")),
        affinity=to_plain(spec.get("affinity")),
        rate_limit_headers=spec.get("rateLimitHeaders"),
        telemetry=telemetry,
        limits=limits,
    )
    log.debug3("Parsed declaration: %s", declaration)
    return declaration


def parse_storage(storage: Optional[dict]) -> StorageBackend:
    """Parse spec.storage into its storage variant. No storage, or a storage
    section with no backend set, selects the in-memory backend.
    """
    storage = storage or {}
    selected = [
        key
        for key in [STORAGE_REDIS, STORAGE_REDIS_CACHED, STORAGE_DISK]
        if storage.get(key) is not None
    ]
    assert_config(
        len(selected) <= 1,
        f"Only one storage backend may be set, found: {', '.join(selected)}",
    )
    if not selected:
        return InMemoryStorage()

    backend = selected[0]
    content = storage[backend]
    assert_config(
        isinstance(content, dict),
        f"Storage backend {backend} must be a mapping, got: {content}",
    )
    if backend == STORAGE_REDIS:
        return RedisStorage(
            config_secret_ref=_parse_secret_ref(content.get("configSecretRef"))
        )
    if backend == STORAGE_REDIS_CACHED:
        options = content.get("options")
        assert_config(
            options is None or isinstance(options, dict),
            f"redis-cached options must be a mapping, got: {options}",
        )
        return RedisCachedStorage(
            config_secret_ref=_parse_secret_ref(content.get("configSecretRef")),
            options=None
            if options is None
            else RedisCachedOptions(
                ttl=_optional_int(options, "ttl"),
                ratio=_optional_int(options, "ratio"),
                flush_period=_optional_int(options, "flush-period"),
                max_cached=_optional_int(options, "max-cached"),
            ),
        )

    optimize = content.get("optimize")
    assert_config(
        optimize is None or optimize in constants.DISK_OPTIMIZE_VALUES,
        f"Invalid disk optimize value: {optimize}",
    )
    pvc = content.get("persistentVolumeClaim") or {}
    return DiskStorage(
        optimize=optimize,
        storage_class_name=pvc.get("storageClassName"),
        volume_name=pvc.get("volumeName"),
        storage_size=(pvc.get("resources") or {}).get("requests"),
    )


## Implementation Details ######################################################


def _parse_secret_ref(ref: Optional[dict]) -> Optional[SecretReference]:
    if not ref:
        return None
    return SecretReference(name=ref.get("name"), namespace=ref.get("namespace"))


def _parse_listener(listener: Optional[dict]) -> Listener:
    listener = listener or {}
    return Listener(
        http_port=(listener.get("http") or {}).get("port", constants.DEFAULT_HTTP_PORT),
        grpc_port=(listener.get("grpc") or {}).get("port", constants.DEFAULT_GRPC_PORT),
    )


def _parse_pdb(pdb: Optional[dict]) -> Optional[PodDisruptionBudgetPolicy]:
    if pdb is None:
        return None
    return PodDisruptionBudgetPolicy(
        min_available=pdb.get("minAvailable"),
        max_unavailable=pdb.get("maxUnavailable"),
    )


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_int(options: dict, key: str) -> Optional[int]:
    value = options.get(key)
    if value is None:
        return None
    assert_config(
        _is_int(value),
        f"redis-cached option {key} must be an integer, got {value}",
    )
    return value
