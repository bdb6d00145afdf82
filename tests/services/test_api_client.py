"""Tests for the HTTP client base and retry decorator"""

from unittest.mock import MagicMock

import pytest
import requests

from passkey_mapper.services.api_client import (
    APIClient,
    APIError,
    AuthenticationError,
    RateLimitError,
    ServerError,
    TransportError,
    retry,
)


def make_response(status=200, content=b"{}"):
    response = requests.Response()
    response.status_code = status
    response._content = content
    response.url = "https://api.test/x"
    return response


@pytest.fixture
def client(mocker):
    api = APIClient("https://api.test/", timeout=2)
    mocker.patch.object(api.session, "request")
    return api


def test_request_builds_url(client):
    client.session.request.return_value = make_response(200, b'{"ok": true}')

    assert client.request("GET", "/status", params={"a": 1}) == {"ok": True}
    client.session.request.assert_called_once_with(
        method="GET",
        url="https://api.test/status",
        headers=None,
        params={"a": 1},
        data=None,
        json=None,
        timeout=2,
    )


def test_request_raw(client):
    client.session.request.return_value = make_response(200, b"\x00\x01")
    assert client.request("GET", "/blob", raw=True) == b"\x00\x01"


def test_request_empty_body(client):
    client.session.request.return_value = make_response(204, b"")
    assert client.request("DELETE", "/x") is None


@pytest.mark.parametrize("status, error", [
    (401, AuthenticationError),
    (403, AuthenticationError),
    (429, RateLimitError),
    (500, ServerError),
    (502, ServerError),
    (400, APIError),
    (404, APIError),
])
def test_request_maps_http_errors(client, status, error):
    client.session.request.return_value = make_response(status)

    with pytest.raises(error) as exc_info:
        client.request("GET", "/x")
    assert exc_info.value.status_code == status


def test_request_invalid_json(client):
    client.session.request.return_value = make_response(200, b"<html>")

    with pytest.raises(APIError) as exc_info:
        client.request("GET", "/x")
    assert not isinstance(exc_info.value, TransportError)


@pytest.mark.parametrize("exc", [
    requests.exceptions.ConnectionError("refused"),
    requests.exceptions.Timeout("slow"),
])
def test_request_transport_errors(client, exc):
    client.session.request.side_effect = exc

    with pytest.raises(TransportError):
        client.request("GET", "/x")


def test_retry_succeeds_after_transient_errors(mocker):
    sleep = mocker.patch("passkey_mapper.services.api_client.time.sleep")
    func = MagicMock(side_effect=[ServerError("boom"), TransportError("down"), "ok"])
    func.__name__ = "func"

    assert retry(max_tries=3, delay=0.5, backoff=2)(func)() == "ok"
    assert func.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]


def test_retry_gives_up(mocker):
    mocker.patch("passkey_mapper.services.api_client.time.sleep")
    func = MagicMock(side_effect=ServerError("boom"))
    func.__name__ = "func"

    with pytest.raises(ServerError):
        retry(max_tries=2)(func)()
    assert func.call_count == 2


def test_retry_ignores_permanent_errors(mocker):
    sleep = mocker.patch("passkey_mapper.services.api_client.time.sleep")
    func = MagicMock(side_effect=AuthenticationError("nope", status_code=401))
    func.__name__ = "func"

    with pytest.raises(AuthenticationError):
        retry()(func)()
    assert func.call_count == 1
    sleep.assert_not_called()
