"""
Custom logging formats that contain more detailed reconciliation logs
"""

# First Party
from alog import AlogJsonFormatter
import alog

log = alog.use_channel("LOGFT")


class RateLimiterJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter to add the identifiers
    of the resource being reconciled, the reconciliationId, and thread
    information to the json. The identifiers are read from the `extra` of each
    record, so lines from concurrent passes never share them.
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "resourceVersion",
        "resourceName",
        "resourceNamespace",
        "reconciliationId",
    ]

    def format(self, record):
        if resource := getattr(record, "resource", None):
            record.kind = resource.get("kind")
            record.apiVersion = resource.get("apiVersion")

            metadata = resource.get("metadata", {})
            record.resourceVersion = metadata.get("resourceVersion")
            record.resourceName = metadata.get("name")
            record.resourceNamespace = metadata.get("namespace")

        return super().format(record)
