"""
Shared module to hold constant values for the library
"""

# The RateLimiter custom resource
RATE_LIMITER_KIND = "RateLimiter"
RATE_LIMITER_API_VERSION = "ratelimiter.io/v1alpha1"

# Log config annotations
LOG_DEFAULT_LEVEL_NAME = "ratelimiter.io/log-default-level"
LOG_FILTERS_NAME = "ratelimiter.io/log-filters"
LOG_JSON_NAME = "ratelimiter.io/log-json"

# Annotation used to mark a desired object that must not exist in the cluster
DELETE_TAG_ANNOTATION_NAME = "ratelimiter.io/delete"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

## Child resources #############################################################

# Prefixes of the child resource names
RESOURCE_NAME_PREFIX = "ratelimiter"
LIMITS_CONFIG_MAP_NAME_PREFIX = "ratelimiter-limits"

# Labels shared by the Deployment pods and the Service selector
APP_LABEL_VALUE = "ratelimiter"
RESOURCE_LABEL_NAME = "ratelimiter-resource"

# The container running the rate limiting server
CONTAINER_NAME = "ratelimiter"
SERVER_BINARY = "ratelimiter-server"

# Listener defaults
DEFAULT_HTTP_PORT = 8080
DEFAULT_GRPC_PORT = 8081
HTTP_PORT_NAME = "http"
GRPC_PORT_NAME = "grpc"
STATUS_ENDPOINT = "/status"

# The limits file inside the ConfigMap and where it is mounted
LIMITS_FILE_KEY = "ratelimiter-config.yaml"
LIMITS_VOLUME_NAME = "config-file"
LIMITS_MOUNT_PATH = "/home/ratelimiter/etc"

# Previous releases stored the limits file under this key
LEGACY_LIMITS_FILE_KEY = "limits.yaml"

## Storage #####################################################################

# Secret key holding the redis URL and the env var it is exposed through
REDIS_URL_SECRET_KEY = "URL"
REDIS_URL_ENV_VAR = "RATELIMITER_REDIS_URL"

# Disk storage volume
DISK_VOLUME_NAME = "storage"
DISK_MOUNT_PATH = "/var/lib/ratelimiter/data"

# Valid values for the disk optimize flag
DISK_OPTIMIZE_VALUES = ["throughput", "disk"]

# Valid values for the telemetry field
TELEMETRY_BASIC = "basic"
TELEMETRY_EXHAUSTIVE = "exhaustive"
