import pytest
import requests

from diagnostics import telemetry
from fplan_cache.fetcher import HttpFetcher, fetch_text


class _Response:
    def __init__(self, status_code: int, content: bytes = b""):
        self.status_code = status_code
        self.content = content
        self.closed = False

    def close(self) -> None:
        self.closed = True


class _Session:
    def __init__(self, outcome):
        self.outcome = outcome
        self.requests = []
        self.closed = False

    def get(self, url, timeout=None):
        self.requests.append((url, timeout))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def close(self) -> None:
        self.closed = True


def test_success_returns_body_and_closes_response() -> None:
    response = _Response(200, b"hello")
    session = _Session(response)
    fetcher = HttpFetcher(timeout=7, session=session)

    assert fetcher.fetch("https://acme.expofp.com/expofp.js") == b"hello"
    assert session.requests == [("https://acme.expofp.com/expofp.js", 7.0)]
    assert response.closed is True


def test_empty_2xx_body_is_bytes_not_none() -> None:
    fetcher = HttpFetcher(session=_Session(_Response(204)))
    assert fetcher.fetch("https://acme.expofp.com/empty") == b""


def test_non_2xx_is_none_with_metric() -> None:
    response = _Response(404, b"not found")
    fetcher = HttpFetcher(session=_Session(response))

    assert fetcher.fetch("https://acme.expofp.com/missing.js") is None
    assert response.closed is True
    metric = telemetry.get_recent_metrics()[-1]
    assert metric["name"] == "fetch.failed"
    assert metric["attrs"]["status_code"] == 404
    assert metric["attrs"]["error"] == "non_2xx_status"


@pytest.mark.parametrize(
    "exc, label",
    [
        (requests.Timeout("slow"), "timeout"),
        (requests.ConnectionError("down"), "connection_error"),
        (requests.RequestException("odd"), "request_error"),
    ],
)
def test_transport_errors_become_none(exc, label) -> None:
    fetcher = HttpFetcher(session=_Session(exc))
    assert fetcher.fetch("https://acme.expofp.com/x") is None
    assert telemetry.get_recent_metrics()[-1]["attrs"]["error"] == label


def test_non_positive_timeout_uses_default() -> None:
    session = _Session(_Response(200, b"x"))
    HttpFetcher(timeout=0, session=session).fetch("https://a.b/c")
    assert session.requests[0][1] == 30.0


def test_close_closes_session() -> None:
    session = _Session(_Response(200))
    HttpFetcher(session=session).close()
    assert session.closed is True


def test_fetch_text_decodes_and_treats_empty_as_missing() -> None:
    assert fetch_text(HttpFetcher(session=_Session(_Response(200, "grüß".encode("utf-8")))), "u") == "grüß"
    assert fetch_text(HttpFetcher(session=_Session(_Response(200, b""))), "u") is None
