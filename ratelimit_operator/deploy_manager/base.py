"""
This defines the base class for all DeployManager types.
"""

# Standard
from typing import Optional, Tuple
import abc


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which are responsible for the individual
    operations against the object store. Every operation reports a success
    flag rather than raising so that callers decide how a failure is surfaced.
    An object that is not present is not a failure: it is reported as a
    successful lookup with no content.
    """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state of a given object by name

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  str
                The namespace to search for the object
            api_version:  str
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def create(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        """Create a new object. Creating an object that already exists fails.

        Args:
            resource_definition:  dict
                The full manifest of the object to create

        Returns:
            success:  bool
                Whether or not the create succeeded
            created:  dict or None
                The object as stored by the cluster
        """

    @abc.abstractmethod
    def update(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        """Replace an existing object. If the definition carries a
        metadata.resourceVersion that is no longer current, the update fails
        without change so that the caller can retry from a fresh read.

        Args:
            resource_definition:  dict
                The full manifest of the object to update

        Returns:
            success:  bool
                Whether or not the update succeeded
            updated:  dict or None
                The object as stored by the cluster
        """

    @abc.abstractmethod
    def delete(self, resource_definition: dict) -> Tuple[bool, bool]:
        """Delete an object. Deleting an object that is not present succeeds
        without change.

        Args:
            resource_definition:  dict
                A manifest holding at least the identifiers of the object

        Returns:
            success:  bool
                Whether or not the delete succeeded
            changed:  bool
                Whether or not the delete resulted in changes
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Set the status on an object

        Args:
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object
            status:  dict
                The status object to set onto the given object
            api_version:  str
                The api_version of the resource to update

        Returns:
            success:  bool
                Whether or not the status update succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """
