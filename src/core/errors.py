"""
Engine exceptions.

Expected outcomes (validation failures, already claimed, unavailable packet)
are returned as result objects; only the errors below are raised.
"""


class RedPacketError(Exception):
    """Base class for lucky money engine errors."""


class InvalidAllocationRequest(RedPacketError):
    """Amount / count / share floor combination cannot be allocated."""

    def __init__(self, message: str, field: str = "amount"):
        super().__init__(message)
        self.field = field


class ConcurrencyConflict(RedPacketError):
    """Packet row changed under us (version mismatch or lock timeout)."""


class StorageFailure(RedPacketError):
    """Persistence layer failed; the transaction was rolled back."""
