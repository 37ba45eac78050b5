class LedgerError(Exception):
    """Base class for errors raised by the analytics core."""


class DataAccessError(LedgerError):
    """The ledger store is unreachable or a query against it failed."""


class CacheUnavailableError(LedgerError):
    """The cache store failed or timed out."""


class InvalidPeriodError(LedgerError, ValueError):
    """A caller-supplied period or range is semantically invalid."""


class NotFoundError(LedgerError, ValueError):
    pass
