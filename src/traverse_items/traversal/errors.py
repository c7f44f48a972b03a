"""Typed fetch failures and error recording for traversal tasks."""

from __future__ import annotations

import logging

from traverse_items.graph.client import GraphApiError, GraphAuthError

logger = logging.getLogger(__name__)

ACTION_RATE_LIMITED = "RATE_LIMITED"
ACTION_REQUEST_FAILED = "REQUEST_FAILED"
ACTION_AUTH_FAILED = "AUTH_FAILED"
ACTION_UNKNOWN_ERROR = "UNKNOWN_ERROR"


class FetchError(Exception):
    """Raised by the fetcher when the tenant could not serve a request.

    The original client exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited
        self.retry_after = retry_after

    @classmethod
    def wrap(cls, exc: Exception, message: str) -> FetchError:
        if isinstance(exc, GraphApiError):
            return cls(
                f"{message}: {exc}",
                rate_limited=exc.is_rate_limited,
                retry_after=exc.retry_after,
            )
        return cls(f"{message}: {exc}")


def record_error(exc: BaseException, origin: str, description: str, execution_id: str) -> None:
    """Log a task failure at a severity matching its kind.

    Rate limiting is a warning, since the caller re-enqueues the work. Request
    and authentication failures are errors. Anything else is logged with its
    traceback.

    Args:
        exc: The failure, possibly a FetchError wrapping the client error.
        origin: Name of the operation that failed.
        description: Human-readable context for the log line.
        execution_id: Correlation id of the failing task.
    """
    cause: BaseException = exc
    if isinstance(exc, FetchError) and exc.__cause__ is not None:
        cause = exc.__cause__

    if isinstance(cause, GraphApiError) and cause.is_rate_limited:
        logger.warning(
            "[%s] %s; action:%s;retry_after:%s;execution_id:%s",
            origin,
            description,
            ACTION_RATE_LIMITED,
            cause.retry_after,
            execution_id,
        )
    elif isinstance(cause, GraphApiError):
        logger.error(
            "[%s] %s; action:%s;status:%d;detail:%s;execution_id:%s",
            origin,
            description,
            ACTION_REQUEST_FAILED,
            cause.status_code,
            cause.message,
            execution_id,
        )
    elif isinstance(cause, GraphAuthError):
        logger.error(
            "[%s] %s; action:%s;detail:%s;execution_id:%s",
            origin,
            description,
            ACTION_AUTH_FAILED,
            cause,
            execution_id,
        )
    else:
        logger.error(
            "[%s] %s; action:%s;detail:%s;execution_id:%s",
            origin,
            description,
            ACTION_UNKNOWN_ERROR,
            cause,
            execution_id,
            exc_info=(type(cause), cause, cause.__traceback__),
        )
