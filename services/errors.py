"""
Error taxonomy for the subscription core
"""


class SubscriptionError(Exception):
    """Base class for subscription core failures"""


class SyncError(SubscriptionError):
    """The billing provider was unreachable or answered with an error."""


class StoreError(SubscriptionError):
    """A read or write against the local subscription/trial store failed."""


class ValidationError(SubscriptionError):
    """A mutation request was malformed and was rejected before any network call."""


class OwnershipError(SubscriptionError):
    """The caller tried to act on a subscription that belongs to someone else."""
