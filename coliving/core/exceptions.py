"""Error taxonomy for the availability engine.

Validation, not-found and conflict errors propagate to the caller as typed
failures. Fetch and parse errors are collected per feed by the sync engine.
Persistence errors on calendar writes are logged and swallowed by the
booking manager because the bookings ledger has already been committed.
"""


class ColivingError(Exception):
    """Base class for all engine errors."""


class ValidationError(ColivingError):
    """Request rejected before any mutation (bad range, unknown apartment, ...)."""


class NotFoundError(ColivingError):
    """Unknown booking or feed id."""


class ConflictError(ColivingError):
    """Requested dates are no longer available."""


class ExternalFetchError(ColivingError):
    """Feed URL unreachable, timed out or returned non-calendar content."""


class ParseError(ColivingError):
    """Feed document or a single VEVENT could not be parsed."""


class PersistenceError(ColivingError):
    """Calendar cache write failed."""
