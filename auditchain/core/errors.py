class StoreError(Exception):
    """Raised when the durable store cannot be read or written."""


class SubscriptionError(Exception):
    """Raised by a feed subscription when polling the activity log fails."""
