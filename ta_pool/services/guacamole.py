"""Guacamole-backed display pool: one VNC connection per node."""

from __future__ import annotations

import base64
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence
from urllib import error, parse, request

from ta_common.config import AgentConfig
from ta_common.errors import DisplayPoolError

from ta_pool.models.types import DisplayAssignment, DisplayTarget

logger = logging.getLogger(__name__)


def _validate_http_url(url: str, label: str) -> str:
    parsed = parse.urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{label} must be an http(s) URL, got: {url}")
    return url


def split_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts."""
    host, _, port = address.rpartition(":")
    if not host or not port.isdigit():
        raise DisplayPoolError(f"Invalid display address: {address}", context={"address": address})
    return host, int(port)


@dataclass(frozen=True)
class DisplaySession:
    """A VNC connection registered in Guacamole for one node."""

    node_name: str
    address: str
    connection_id: str
    url: str


class GuacamoleDisplayPool:
    """Fixed-capacity pool of Guacamole VNC connections with retry support."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        data_source: str = "postgresql",
        capacity: int = 21,
        vnc_password: str = "",
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        backoff_factor: float = 2.0,
    ):
        self.base_url = _validate_http_url(base_url.rstrip("/"), "Guacamole base_url")
        self.username = username
        self.password = password
        self.data_source = data_source
        self.capacity = capacity
        self.vnc_password = vnc_password
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_factor = backoff_factor
        self._sessions: List[DisplaySession] = []

    @classmethod
    def from_config(cls, config: AgentConfig) -> "GuacamoleDisplayPool":
        return cls(
            base_url=config.guacamole_url,
            username=config.guacamole_username,
            password=config.guacamole_password,
            data_source=config.guacamole_data_source,
            capacity=config.display_capacity,
        )

    @property
    def sessions(self) -> tuple[DisplaySession, ...]:
        return tuple(self._sessions)

    @property
    def available(self) -> int:
        return self.capacity - len(self._sessions)

    def client_url(self, connection_id: str) -> str:
        """Browser URL that opens the given connection."""
        identifier = f"{connection_id}\0c\0{self.data_source}".encode("utf-8")
        return f"{self.base_url}/#/client/{base64.b64encode(identifier).decode('ascii')}"

    def allocate(self, targets: Sequence[DisplayTarget]) -> List[DisplayAssignment]:
        """Register one connection per target, all or nothing."""
        if len(targets) > self.available:
            raise DisplayPoolError(
                f"Display pool exhausted: {len(targets)} requested, {self.available} available",
                context={"requested": len(targets), "available": self.available, "capacity": self.capacity},
            )
        if not targets:
            return []

        token = self._get_token()
        created: List[DisplaySession] = []
        try:
            for target in targets:
                created.append(self._create_connection(token, target))
        except DisplayPoolError:
            self._rollback(token, created)
            raise

        self._sessions.extend(created)
        return [DisplayAssignment(s.node_name, s.address, s) for s in created]

    def release_all(self) -> None:
        """Delete every connection held by this pool."""
        if not self._sessions:
            return
        token = self._get_token()
        failed: List[str] = []
        for session in self._sessions:
            try:
                self._delete_connection(token, session.connection_id)
            except DisplayPoolError as exc:
                logger.error("Failed to delete display session for %s: %s", session.node_name, exc)
                failed.append(session.node_name)
            else:
                logger.debug("Released display session %s for %s", session.connection_id, session.node_name)
        self._sessions.clear()
        if failed:
            raise DisplayPoolError(
                f"Failed to release display sessions for: {', '.join(failed)}",
                context={"nodes": failed},
            )

    def _rollback(self, token: str, created: List[DisplaySession]) -> None:
        for session in created:
            try:
                self._delete_connection(token, session.connection_id)
            except DisplayPoolError as exc:
                logger.error("Rollback of display session for %s failed: %s", session.node_name, exc)

    def _get_token(self) -> str:
        _, data = self._request(
            "POST",
            "/api/tokens",
            form={"username": self.username, "password": self.password},
        )
        token = (data or {}).get("authToken")
        if not token:
            raise DisplayPoolError("Guacamole did not return an auth token")
        return str(token)

    def _connections_path(self, token: str, connection_id: str | None = None) -> str:
        path = f"/api/session/data/{parse.quote(self.data_source, safe='')}/connections"
        if connection_id is not None:
            path += f"/{parse.quote(connection_id, safe='')}"
        return f"{path}?token={parse.quote(token, safe='')}"

    def _create_connection(self, token: str, target: DisplayTarget) -> DisplaySession:
        host, port = split_address(target.address)
        payload = {
            "parentIdentifier": "ROOT",
            "name": f"ta-{target.node_name}-{uuid.uuid4().hex[:8]}",
            "protocol": "vnc",
            "parameters": {
                "hostname": host,
                "port": str(port),
                "password": self.vnc_password,
            },
            "attributes": {},
        }
        _, data = self._request("POST", self._connections_path(token), payload=payload, retry=False)
        connection_id = (data or {}).get("identifier")
        if connection_id is None:
            raise DisplayPoolError(
                f"Guacamole did not return a connection id for {target.node_name}",
                context={"node": target.node_name},
            )
        logger.info("Display session %s bound to %s (%s)", connection_id, target.node_name, target.address)
        return DisplaySession(
            node_name=target.node_name,
            address=target.address,
            connection_id=str(connection_id),
            url=self.client_url(str(connection_id)),
        )

    def _delete_connection(self, token: str, connection_id: str) -> None:
        self._request("DELETE", self._connections_path(token, connection_id), expected_statuses={200, 204, 404})

    def _request(
        self,
        method: str,
        path: str,
        payload: Mapping[str, Any] | None = None,
        form: Mapping[str, str] | None = None,
        expected_statuses: set[int] | None = None,
        retry: bool = True,
    ) -> tuple[int, dict[str, Any] | None]:
        expected = expected_statuses or {200}
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        elif form is not None:
            data = parse.urlencode(form).encode("utf-8")
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        retries = self.max_retries if retry else 0
        for attempt in range(retries + 1):
            try:
                req = request.Request(url, data=data, headers=headers, method=method)
                with request.urlopen(req, timeout=self.timeout_seconds) as resp:  # nosec B310
                    status = resp.status
                    body = resp.read().decode("utf-8")
                if status in expected:
                    return status, self._parse_json(body)
                if status >= 500 and attempt < retries:
                    self._sleep_backoff(attempt)
                    continue
                raise DisplayPoolError(f"Guacamole API error {status}: {body}", context={"status": status})
            except error.HTTPError as exc:
                status = exc.code
                body = exc.read().decode("utf-8") if exc.fp else ""
                if status in expected:
                    return status, self._parse_json(body)
                if status >= 500 and attempt < retries:
                    self._sleep_backoff(attempt)
                    continue
                raise DisplayPoolError(
                    f"Guacamole API error {status}: {body}", context={"status": status}, cause=exc
                ) from exc
            except error.URLError as exc:
                if attempt < retries:
                    self._sleep_backoff(attempt)
                    continue
                raise DisplayPoolError(f"Guacamole API request failed: {exc}", cause=exc) from exc
        raise DisplayPoolError("Guacamole API request failed after retries.")

    @staticmethod
    def _parse_json(body: str) -> dict[str, Any] | None:
        if not body:
            return None
        try:
            parsed = json.loads(body)
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            return None

    def _sleep_backoff(self, attempt: int) -> None:
        delay = self.backoff_base * (self.backoff_factor**attempt)
        if delay > 0:
            time.sleep(delay)
