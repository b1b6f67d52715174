import json

import pytest
import requests

from aquaflow.client.transport import HttpTransport
from aquaflow.core.errors import LockTimeout, RemoteError, RemoteUnreachable


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def _answer(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        return self._answer("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._answer("POST", url, **kwargs)


URL = "https://store.example.com/api/v1/data"


def _transport(**kwargs):
    session = FakeSession(**kwargs)
    return HttpTransport(URL, timeout=3, session=session), session


def test_send_posts_a_text_plain_envelope():
    t, session = _transport(response=FakeResponse(payload={"status": "success", "message": "user data saved successfully."}))
    assert t.send("user", {"id": "U1"}) == "user data saved successfully."

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", URL)
    assert kwargs["headers"]["Content-Type"].startswith("text/plain")
    assert json.loads(kwargs["data"].decode("utf-8")) == {"dataType": "user", "payload": {"id": "U1"}}
    assert kwargs["timeout"] == 3


def test_fetch_all_asks_for_everything_past_caches():
    body = {"status": "success", "users": [], "bookings": [], "settings": {}}
    t, session = _transport(response=FakeResponse(payload=body))
    assert t.fetch_all() == body
    params = session.calls[0][2]["params"]
    assert params["action"] == "getAllData"
    assert "_" in params


def test_network_failure_is_unreachable():
    t, _ = _transport(error=requests.ConnectionError("refused"))
    with pytest.raises(RemoteUnreachable):
        t.send("user", {"id": "U1"})
    with pytest.raises(RemoteUnreachable):
        t.fetch_all()


def test_busy_store_is_a_lock_timeout():
    t, _ = _transport(response=FakeResponse(503, {"status": "error", "message": "busy"}))
    with pytest.raises(LockTimeout, match="busy"):
        t.send("booking", {"id": "B1"})


@pytest.mark.parametrize("response", [
    FakeResponse(400, {"status": "error", "message": "Invalid dataType: rider"}),
    FakeResponse(200, {"status": "error", "message": "sheet missing"}),
    FakeResponse(502, None, "<html>bad gateway</html>"),
])
def test_rejected_write_is_a_remote_error(response):
    t, _ = _transport(response=response)
    with pytest.raises(RemoteError):
        t.send("rider", {"id": "R1"})


def test_error_status_on_bulk_read():
    t, _ = _transport(response=FakeResponse(500, {"status": "error", "message": "backend offline"}))
    with pytest.raises(RemoteError, match="backend offline"):
        t.fetch_all()
