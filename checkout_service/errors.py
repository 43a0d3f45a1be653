from sqlalchemy.exc import DBAPIError

# SQLSTATE codes for serialization failure and deadlock
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
# MySQL: lock wait timeout, deadlock
_RETRYABLE_MYSQL_CODES = {1205, 1213}


class CheckoutError(Exception):
    """Base exception for checkout subsystem errors."""

    http_status = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class EntityNotFoundError(CheckoutError):
    """Referenced book or checkout does not exist."""

    http_status = 404


class ConflictError(CheckoutError):
    """Guard read rejected the request: already checked out, or wrong checkout/borrower."""

    http_status = 422


class WriteAnomalyError(CheckoutError):
    """A write touched no rows even though the guard read allowed it."""

    http_status = 500


class TransactionError(CheckoutError):
    """
    The store failed to run, begin, commit or roll back a transaction.

    `retryable` is set for serialization aborts and deadlocks, which are
    expected under contention; callers may retry those with backoff.
    """

    def __init__(self, message, retryable=False):
        super().__init__(message)
        self.retryable = retryable

    @property
    def http_status(self):
        return 503 if self.retryable else 500


def is_serialization_failure(exc):
    """True when a SQLAlchemy error reports a serialization abort or deadlock."""
    if not isinstance(exc, DBAPIError) or exc.orig is None:
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True

    args = getattr(orig, "args", ())
    if args and args[0] in _RETRYABLE_MYSQL_CODES:
        return True

    # sqlite reports lock contention only through the message
    return "database is locked" in str(orig).lower()


def wrap_store_error(exc, message):
    """Turn a raw SQLAlchemy error into a TransactionError (caller raises it `from exc`)."""
    return TransactionError(f"{message}: {exc}", retryable=is_serialization_failure(exc))
