from __future__ import annotations


class FileventsError(Exception):
    """Base class for every error raised by the pipeline."""


class FormatError(FileventsError, ValueError):
    """Malformed entries, unexpected message method or missing receipt."""


class SchemaValidationError(FileventsError, ValueError):
    pass


class UnknownTypeError(FileventsError, LookupError):
    pass


class DuplicateKeyError(FileventsError, ValueError):
    pass


class NotInitializedError(FileventsError, RuntimeError):
    pass


class ConsistencyError(FileventsError):
    """Raw and event partitions of the store diverged."""


class MismatchError(FileventsError):
    """Event partitions and compiled partitions cannot be paired."""


class MaxResultsLimitError(FileventsError):
    """The node hit its result cap; the query window must shrink."""


class TransientNetworkError(FileventsError):
    """Transport failure; the same window can be retried."""


class RPCError(FileventsError, RuntimeError):
    """JSON-RPC level error or malformed response."""
