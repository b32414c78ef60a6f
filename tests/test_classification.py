"""
Fetch error classification tests.

Every failure must map to exactly one ErrorKind; unknowns fall back to
UNKNOWN_FETCH_ERROR.
"""

import socket

import httpx
import pytest

from newsrelay.contracts import ErrorKind, FetchError, ParseError
from newsrelay.fetcher import classify_fetch_error


def status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.com/feed")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def wrapped(outer: Exception, cause: BaseException) -> Exception:
    outer.__cause__ = cause
    return outer


class TestClassifyFetchError:

    @pytest.mark.parametrize("status,kind", [
        (400, ErrorKind.CLIENT_ERROR),
        (404, ErrorKind.CLIENT_ERROR),
        (499, ErrorKind.CLIENT_ERROR),
        (500, ErrorKind.SERVER_ERROR),
        (503, ErrorKind.SERVER_ERROR),
    ])
    def test_http_status(self, status, kind):
        assert classify_fetch_error(status_error(status)) == kind

    def test_dns_failure_in_cause_chain(self):
        error = wrapped(
            httpx.ConnectError("[Errno -2] connection failed"),
            socket.gaierror(-2, "Name or service not known")
        )
        assert classify_fetch_error(error) == ErrorKind.SOURCE_NOT_FOUND

    def test_dns_failure_by_message(self):
        error = httpx.ConnectError("[Errno 11001] getaddrinfo failed")
        assert classify_fetch_error(error) == ErrorKind.SOURCE_NOT_FOUND

    def test_connection_refused_in_cause_chain(self):
        error = wrapped(httpx.ConnectError("connect failed"), ConnectionRefusedError(111, "refused"))
        assert classify_fetch_error(error) == ErrorKind.CONNECTION_REFUSED

    def test_connection_refused_by_message(self):
        error = httpx.ConnectError("[Errno 111] Connection refused")
        assert classify_fetch_error(error) == ErrorKind.CONNECTION_REFUSED

    def test_parse_error(self):
        assert classify_fetch_error(ParseError("bad xml")) == ErrorKind.PARSE_ERROR

    def test_preclassified_fetch_error(self):
        error = FetchError("nope", ErrorKind.SERVER_ERROR)
        assert classify_fetch_error(error) == ErrorKind.SERVER_ERROR

    @pytest.mark.parametrize("error", [
        httpx.ReadTimeout("timed out"),
        RuntimeError("something else"),
        ValueError(""),
    ])
    def test_unknown_fallback(self, error):
        assert classify_fetch_error(error) == ErrorKind.UNKNOWN_FETCH_ERROR
