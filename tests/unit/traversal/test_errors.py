"""Unit tests for traversal/errors.py: FetchError and record_error()."""

import logging

from traverse_items.graph.client import GraphApiError, GraphAuthError
from traverse_items.traversal.errors import FetchError, record_error

_LOGGER = "traverse_items.traversal.errors"


def _wrapped(cause: Exception) -> FetchError:
    try:
        raise FetchError.wrap(cause, "Listing folder 100 failed") from cause
    except FetchError as exc:
        return exc


class TestFetchErrorWrap:
    def test_rate_limited_graph_error(self) -> None:
        err = FetchError.wrap(GraphApiError(429, "slow down", retry_after=5.0), "Listing failed")
        assert err.rate_limited is True
        assert err.retry_after == 5.0
        assert "Listing failed" in str(err)

    def test_other_graph_error(self) -> None:
        err = FetchError.wrap(GraphApiError(403, "denied"), "Listing failed")
        assert err.rate_limited is False
        assert err.retry_after is None

    def test_non_graph_error(self) -> None:
        err = FetchError.wrap(ValueError("bad shape"), "Listing failed")
        assert err.rate_limited is False
        assert "bad shape" in str(err)


class TestRecordError:
    def test_rate_limit_is_a_single_warning(self, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger=_LOGGER):
            record_error(
                _wrapped(GraphApiError(429, "slow down", retry_after=2.0)),
                "traverse_folder",
                "could not list folder 100",
                "exec-1",
            )

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.levelno == logging.WARNING
        assert "action:RATE_LIMITED" in record.getMessage()
        assert "execution_id:exec-1" in record.getMessage()

    def test_request_failure_is_an_error_with_status(self, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger=_LOGGER):
            record_error(_wrapped(GraphApiError(404, "not found")), "fetch", "no item", "exec-2")

        record = caplog.records[0]
        assert record.levelno == logging.ERROR
        assert "action:REQUEST_FAILED" in record.getMessage()
        assert "status:404" in record.getMessage()

    def test_auth_failure(self, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger=_LOGGER):
            record_error(GraphAuthError("invalid_client"), "run_user", "no token", "exec-3")

        record = caplog.records[0]
        assert record.levelno == logging.ERROR
        assert "action:AUTH_FAILED" in record.getMessage()

    def test_unknown_error_is_logged_with_traceback(self, caplog) -> None:
        try:
            raise KeyError("missing")
        except KeyError as exc:
            error = exc

        with caplog.at_level(logging.DEBUG, logger=_LOGGER):
            record_error(error, "perform_action", "action failed", "exec-4")

        record = caplog.records[0]
        assert record.levelno == logging.ERROR
        assert "action:UNKNOWN_ERROR" in record.getMessage()
        assert record.exc_info is not None
        assert record.exc_info[1] is error

    def test_unknown_cause_of_fetch_error_is_unwrapped(self, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger=_LOGGER):
            record_error(_wrapped(TypeError("bad")), "fetch", "bad shape", "exec-5")

        record = caplog.records[0]
        assert "action:UNKNOWN_ERROR" in record.getMessage()
        assert isinstance(record.exc_info[1], TypeError)
