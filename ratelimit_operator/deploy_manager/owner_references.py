"""
This module holds the helpers to attach a RateLimiter as the owner of its
child resources so that the platform garbage collects the children when the
RateLimiter is deleted
"""

# First Party
import alog

log = alog.use_channel("OWNRF")


def make_owner_reference(owner) -> dict:
    """Make an owner reference for the given declaration

    Args:
        owner:  RateLimiterDeclaration
            The declaration that owns the child resource

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    return {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.name,
        "uid": owner.uid,
        "controller": True,
        # The owner will not be deleted until this object completes its
        # deletion
        "blockOwnerDeletion": True,
    }


def set_owner_reference(owner, child_obj: dict) -> dict:
    """Set the owner reference on a desired child object in place. Owner
    references of other owners are kept. The object is returned for
    convenience.
    """
    metadata = child_obj.setdefault("metadata", {})
    owner_refs = [
        ref
        for ref in metadata.get("ownerReferences", [])
        if ref.get("uid") != owner.uid
    ]
    owner_refs.append(make_owner_reference(owner))
    log.debug4("Owner refs for %s: %s", metadata.get("name"), owner_refs)
    metadata["ownerReferences"] = owner_refs
    return child_obj
