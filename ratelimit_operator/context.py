"""
The ReconcileContext carries the state scoped to a single reconciliation pass:
the correlation id used in every log line and the cancellation flag checked
before every call to the cluster.
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional
import base64
import threading
import uuid

# First Party
import alog

# Local
from .exceptions import ReconcileCancelledError

log = alog.use_channel("CTX")


def generate_id() -> str:
    """Generates a unique human readable id for a reconciliation

    Returns:
        id: str
            A unique base32 encoded id
    """
    base32_str = base64.b32encode(uuid.uuid4().bytes).decode("utf-8")
    return base32_str[:22]


@dataclass
class ReconcileContext:
    """Pass-scoped context handed explicitly down through every operation"""

    reconcile_id: str = field(default_factory=generate_id)
    resource: Optional[dict] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def cancel(self):
        """Request that the pass stops before its next cluster operation"""
        log.debug("Cancelling reconcile %s", self.reconcile_id)
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self):
        """Raise if the pass has been cancelled"""
        if self.cancelled:
            raise ReconcileCancelledError(
                f"Reconcile {self.reconcile_id} was cancelled"
            )

    @property
    def log_extra(self) -> dict:
        """The extra dict to attach to log records emitted for this pass"""
        extra = {"reconciliationId": self.reconcile_id}
        if self.resource is not None:
            extra["resource"] = self.resource
        return extra
