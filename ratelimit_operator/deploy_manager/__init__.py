"""
The DeployManager is the abstraction in charge of interacting with the
kubernetes cluster to look up, create, update, and delete resources.
"""

# Local
from .base import DeployManagerBase
from .dry_run_deploy_manager import DryRunDeployManager
from .openshift_deploy_manager import OpenshiftDeployManager
from .owner_references import make_owner_reference, set_owner_reference
