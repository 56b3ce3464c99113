"""
Package exports
"""

# Local
from . import config, reconcile, status
from .apply import ReconcileOutcome, delete_object, reconcile_object
from .context import ReconcileContext
from .declaration import RateLimiterDeclaration, parse_declaration
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config
from .reconcile import RateLimiterReconciler, ReconciliationResult
from .storage import DeploymentStorageOptions, resolve_storage_options
