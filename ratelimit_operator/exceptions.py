"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class RateLimiterOperatorError(Exception):
    """Base class for all ratelimit_operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error is terminal for the
        declaration until the declaration itself changes
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class RateLimiterFatalError(RateLimiterOperatorError):
    """A RateLimiterFatalError is one that will not resolve by retrying the
    same reconciliation pass against the same declaration
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(RateLimiterFatalError):
    """Exception caused by an incomplete or contradictory declaration"""


## Expected Errors #############################################################


class RateLimiterExpectedError(RateLimiterOperatorError):
    """A RateLimiterExpectedError is one that should terminate the current
    pass, but is expected to resolve in a subsequent pass.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ClusterError(RateLimiterExpectedError):
    """Exception caused when an operation against the object store fails, for
    example because the store is unreachable or an update conflicted
    """


class ResourceNotFoundError(RateLimiterExpectedError):
    """Exception caused when an object referenced by the declaration does not
    exist in the cluster (yet)
    """

    def __init__(self, kind: str, name: str, namespace: str = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        super().__init__(f"{kind} {namespace}/{name} not found")


class ReconcileCancelledError(RateLimiterExpectedError):
    """Exception raised when the reconciliation pass has been cancelled by its
    caller
    """


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when the declaration does not hold what is needed to build the child
    resources.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching an existing
    object) fails.
    """
    if not condition:
        raise ClusterError(message)
