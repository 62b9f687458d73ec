import base64
import io
import json
from urllib import error, parse
from urllib.request import Request

import pytest

from ta_common.config import AgentConfig
from ta_common.errors import DisplayPoolError
from ta_pool.api import DisplayTarget
from ta_pool.services import guacamole as guac_mod
from ta_pool.services.guacamole import DisplaySession, GuacamoleDisplayPool, split_address

pytestmark = [pytest.mark.unit_pool]


class DummyResponse:
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self._body = body

    def read(self) -> bytes:
        return self._body.encode("utf-8")

    def __enter__(self) -> "DummyResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeGuacamole:
    """Minimal in-memory stand-in for the Guacamole REST API."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, bytes | None]] = []
        self.connections: dict[str, dict] = {}
        self.fail_create_after: int | None = None
        self.fail_delete: set[str] = set()
        self._next_id = 1

    def urlopen(self, req: Request, timeout: float | None = None) -> DummyResponse:
        method = req.get_method()
        path = parse.urlparse(req.full_url).path
        self.requests.append((method, req.full_url, req.data))
        if path.endswith("/api/tokens"):
            return DummyResponse(200, json.dumps({"authToken": "tok"}))
        if method == "POST" and path.endswith("/connections"):
            if self.fail_create_after is not None and len(self.connections) >= self.fail_create_after:
                raise error.HTTPError(req.full_url, 400, "Bad Request", hdrs=None, fp=io.BytesIO(b"bad"))
            identifier = str(self._next_id)
            self._next_id += 1
            self.connections[identifier] = json.loads(req.data.decode("utf-8"))
            return DummyResponse(200, json.dumps({"identifier": identifier}))
        if method == "DELETE":
            identifier = path.rsplit("/", 1)[-1]
            if identifier in self.fail_delete:
                raise error.HTTPError(req.full_url, 403, "Forbidden", hdrs=None, fp=io.BytesIO(b"denied"))
            if self.connections.pop(identifier, None) is None:
                raise error.HTTPError(req.full_url, 404, "Not Found", hdrs=None, fp=None)
            return DummyResponse(204, "")
        raise AssertionError(f"unexpected request {method} {req.full_url}")


@pytest.fixture
def guac(monkeypatch: pytest.MonkeyPatch) -> FakeGuacamole:
    fake = FakeGuacamole()
    monkeypatch.setattr(guac_mod.request, "urlopen", fake.urlopen)
    monkeypatch.setattr(guac_mod.time, "sleep", lambda _delay: None)
    return fake


def _pool(capacity: int = 21) -> GuacamoleDisplayPool:
    return GuacamoleDisplayPool("http://guac:8080/guacamole/", "admin", "pw", capacity=capacity)


def _targets(*names: str) -> list[DisplayTarget]:
    return [DisplayTarget(name, f"10.0.0.1:{5900 + i}") for i, name in enumerate(names)]


def test_base_url_requires_http_scheme() -> None:
    with pytest.raises(ValueError):
        GuacamoleDisplayPool("file:///tmp/guac", "u", "p")


def test_from_config_uses_guacamole_settings() -> None:
    config = AgentConfig(guacamole_url="https://guac.example", guacamole_data_source="mysql", display_capacity=4)

    pool = GuacamoleDisplayPool.from_config(config)

    assert pool.base_url == "https://guac.example"
    assert pool.data_source == "mysql"
    assert pool.capacity == 4


@pytest.mark.parametrize("address", ["nohost", ":5900", "host:port"])
def test_split_address_rejects_invalid(address: str) -> None:
    with pytest.raises(DisplayPoolError):
        split_address(address)


def test_allocate_returns_assignments_in_request_order(guac: FakeGuacamole) -> None:
    pool = _pool()

    assignments = pool.allocate(_targets("a", "b"))

    assert [a.node_name for a in assignments] == ["a", "b"]
    assert [a.address for a in assignments] == ["10.0.0.1:5900", "10.0.0.1:5901"]
    session = assignments[0].session
    assert isinstance(session, DisplaySession)
    assert session.connection_id == "1"
    assert pool.available == 19

    params = guac.connections["2"]["parameters"]
    assert params["hostname"] == "10.0.0.1"
    assert params["port"] == "5901"
    assert guac.connections["2"]["protocol"] == "vnc"
    assert guac.connections["1"]["name"].startswith("ta-a-")


def test_allocate_authenticates_with_form_credentials(guac: FakeGuacamole) -> None:
    _pool().allocate(_targets("a"))

    method, url, data = guac.requests[0]
    assert method == "POST"
    assert url == "http://guac:8080/guacamole/api/tokens"
    assert parse.parse_qs(data.decode("utf-8")) == {"username": ["admin"], "password": ["pw"]}
    assert "token=tok" in guac.requests[1][1]
    assert "/api/session/data/postgresql/connections" in guac.requests[1][1]


def test_client_url_encodes_connection_identifier() -> None:
    pool = _pool()

    url = pool.client_url("7")

    encoded = url.rsplit("/", 1)[-1]
    assert url.startswith("http://guac:8080/guacamole/#/client/")
    assert base64.b64decode(encoded) == b"7\0c\0postgresql"


def test_allocate_over_capacity_fails_before_any_request(guac: FakeGuacamole) -> None:
    pool = _pool(capacity=2)

    with pytest.raises(DisplayPoolError) as excinfo:
        pool.allocate(_targets("a", "b", "c"))

    assert excinfo.value.context["requested"] == 3
    assert guac.requests == []


def test_allocate_empty_batch_makes_no_request(guac: FakeGuacamole) -> None:
    assert _pool().allocate([]) == []
    assert guac.requests == []


def test_partial_allocation_is_rolled_back(guac: FakeGuacamole) -> None:
    guac.fail_create_after = 1
    pool = _pool()

    with pytest.raises(DisplayPoolError):
        pool.allocate(_targets("a", "b"))

    assert guac.connections == {}
    assert pool.sessions == ()


def test_release_all_deletes_held_connections(guac: FakeGuacamole) -> None:
    pool = _pool()
    pool.allocate(_targets("a", "b"))

    pool.release_all()

    assert guac.connections == {}
    assert pool.sessions == ()
    assert pool.available == 21


def test_release_all_without_sessions_is_silent(guac: FakeGuacamole) -> None:
    _pool().release_all()

    assert guac.requests == []


def test_release_all_tolerates_missing_connections(guac: FakeGuacamole) -> None:
    pool = _pool()
    pool.allocate(_targets("a"))
    guac.connections.clear()

    pool.release_all()

    assert pool.sessions == ()


def test_release_all_reports_failures_after_trying_everything(guac: FakeGuacamole) -> None:
    pool = _pool()
    pool.allocate(_targets("a", "b"))
    guac.fail_delete = {"1"}

    with pytest.raises(DisplayPoolError) as excinfo:
        pool.release_all()

    assert excinfo.value.context == {"nodes": ["a"]}
    assert list(guac.connections) == ["1"]
    assert pool.sessions == ()


def test_request_retries_server_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    attempts = {"count": 0}

    def fake_urlopen(req: Request, timeout: float | None = None) -> DummyResponse:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise error.HTTPError(req.full_url, 503, "Unavailable", hdrs=None, fp=io.BytesIO(b""))
        return DummyResponse(200, '{"authToken": "t"}')

    sleeps: list[float] = []
    monkeypatch.setattr(guac_mod.request, "urlopen", fake_urlopen)
    monkeypatch.setattr(guac_mod.time, "sleep", sleeps.append)

    status, data = _pool()._request("POST", "/api/tokens", form={"username": "u", "password": "p"})

    assert status == 200
    assert data == {"authToken": "t"}
    assert sleeps == [0.5, 1.0]


def test_request_gives_up_on_unreachable_host(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req: Request, timeout: float | None = None) -> DummyResponse:
        raise error.URLError("connection refused")

    monkeypatch.setattr(guac_mod.request, "urlopen", fake_urlopen)
    monkeypatch.setattr(guac_mod.time, "sleep", lambda _delay: None)

    with pytest.raises(DisplayPoolError) as excinfo:
        _pool()._request("GET", "/api/tokens")

    assert isinstance(excinfo.value.__cause__, error.URLError)


def test_connection_create_is_not_resent(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[tuple[str, str]] = []

    def fake_urlopen(req: Request, timeout: float | None = None) -> DummyResponse:
        path = parse.urlparse(req.full_url).path
        sent.append((req.get_method(), path))
        if path.endswith("/api/tokens"):
            return DummyResponse(200, '{"authToken": "tok"}')
        raise error.HTTPError(req.full_url, 502, "Bad Gateway", hdrs=None, fp=io.BytesIO(b""))

    monkeypatch.setattr(guac_mod.request, "urlopen", fake_urlopen)
    monkeypatch.setattr(guac_mod.time, "sleep", lambda _delay: None)
    pool = _pool()

    with pytest.raises(DisplayPoolError):
        pool.allocate(_targets("a"))

    creates = [entry for entry in sent if entry[0] == "POST" and entry[1].endswith("/connections")]
    assert len(creates) == 1
    assert pool.sessions == ()
