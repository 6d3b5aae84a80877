"""
Error kinds shared by the directory, provisioning and synchronization modules.
"""


class HarnessError(Exception):
    """Base exception for all harness errors."""
    pass


class NotFoundError(HarnessError):
    """Raised when a referenced directory entry or local entry does not exist."""
    pass


class ConflictError(HarnessError):
    """Raised when creating an entry that collides with an existing one."""
    pass


class MembershipCycleError(ConflictError):
    """Raised when a membership edge would make a group its own ancestor."""
    pass


class PartialTreeError(HarnessError):
    """
    Raised when group discovery is aborted before any local write.

    The local store is left exactly as it was before the synchronization pass.
    """
    pass
