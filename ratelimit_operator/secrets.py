"""
Secret lookup used by the redis storage backends to discover the redis URL
"""

# Standard
from typing import Dict

# First Party
import alog

# Local
from .context import ReconcileContext
from .deploy_manager import DeployManagerBase
from .exceptions import ResourceNotFoundError, assert_cluster
from .utils import b64_secret_decode

log = alog.use_channel("SECRT")


class DeployManagerSecretStore:
    """Reads Secrets through a DeployManager and decodes their payload"""

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    def get(self, ctx: ReconcileContext, name: str, namespace: str) -> Dict[str, str]:
        """Fetch the decoded key/value content of a Secret

        Args:
            ctx:  ReconcileContext
                The context of the current pass
            name:  str
                The name of the Secret
            namespace:  str
                The namespace holding the Secret

        Returns:
            content:  Dict[str, str]
                The decoded data of the Secret merged with any stringData

        Raises:
            ResourceNotFoundError if the Secret does not exist
            ClusterError if the lookup fails
        """
        ctx.check_cancelled()
        success, secret = self.deploy_manager.get_object_current_state(
            kind="Secret", name=name, namespace=namespace, api_version="v1"
        )
        assert_cluster(success, f"Failed to fetch Secret {namespace}/{name}")
        if secret is None:
            log.debug("Secret %s/%s not found", namespace, name, extra=ctx.log_extra)
            raise ResourceNotFoundError("Secret", name, namespace)

        content = {
            key: b64_secret_decode(val) for key, val in (secret.get("data") or {}).items()
        }
        # stringData is write-only on a real cluster, but manifests handed to
        # the dry run store may carry it
        content.update(secret.get("stringData") or {})
        log.debug3("Found keys %s in Secret %s", list(content), name, extra=ctx.log_extra)
        return content
