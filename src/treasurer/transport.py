"""
Matrix chat transport.

A minimal client-server API client: long-poll ``/sync`` for room messages
and invites, send text/HTML messages, join rooms. Everything else about the
protocol (federation, encryption, membership rules) is the homeserver's job.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx

from .commands import strip_html
from .dispatcher import InboundMessage
from .errors import NetworkError, TransportError

logger = logging.getLogger(__name__)


API_PREFIX = "/_matrix/client/v3"
HTML_FORMAT = "org.matrix.custom.html"
SYNC_FILTER = {"room": {"timeline": {"types": ["m.room.message"]}}}


@dataclass
class MatrixConfig:
    homeserver: str
    user_id: str
    access_token: str
    device_id: str = ""
    display_name: str = "Treasurer Agent 🤖"
    sync_timeout_ms: int = 30_000
    retry_delay: float = 5.0


@dataclass
class SyncBatch:
    next_batch: str
    messages: list[InboundMessage] = field(default_factory=list)
    invites: list[str] = field(default_factory=list)


class MatrixTransport:
    """Sends and receives room messages for one bot account."""

    def __init__(
        self,
        config: MatrixConfig,
        http: Optional[httpx.Client] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self._http = http or httpx.Client(timeout=config.sync_timeout_ms / 1000 + 30.0)
        self._stop = stop_event or threading.Event()
        self._txn_ids = itertools.count(1)

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        url = f"{self.config.homeserver.rstrip('/')}{API_PREFIX}{path}"
        headers = {"Authorization": f"Bearer {self.config.access_token}"}
        try:
            response = self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e
        if response.status_code != 200:
            raise TransportError(response.status_code, response.text[:200])
        return response.json() if response.content else {}

    def _next_txn_id(self) -> str:
        # Transaction ids are scoped to the access token's device.
        prefix = f"treasurer-{self.config.device_id}" if self.config.device_id else "treasurer"
        return f"{prefix}-{time.time_ns()}-{next(self._txn_ids)}"

    def _send(self, room_id: str, content: dict[str, Any]) -> None:
        path = (
            f"/rooms/{quote(room_id, safe='')}/send/m.room.message/"
            f"{quote(self._next_txn_id(), safe='')}"
        )
        self._request("PUT", path, json=content)

    def send_text(self, room_id: str, body: str) -> None:
        self._send(room_id, {"msgtype": "m.text", "body": body})

    def send_html(self, room_id: str, html: str) -> None:
        self._send(
            room_id,
            {
                "msgtype": "m.text",
                "body": strip_html(html),
                "format": HTML_FORMAT,
                "formatted_body": html.replace("\n", "<br>"),
            },
        )

    def join(self, room_id: str) -> None:
        self._request("POST", f"/join/{quote(room_id, safe='')}", json={})

    def set_display_name(self, name: str) -> None:
        self._request(
            "PUT",
            f"/profile/{quote(self.config.user_id, safe='')}/displayname",
            json={"displayname": name},
        )

    def sync_once(self, since: Optional[str] = None) -> SyncBatch:
        params: dict[str, Any] = {
            "timeout": self.config.sync_timeout_ms if since else 0,
            "filter": json.dumps(SYNC_FILTER, separators=(",", ":")),
        }
        if since:
            params["since"] = since
        raw = self._request("GET", "/sync", params=params)

        batch = SyncBatch(next_batch=str(raw.get("next_batch", since or "")))
        rooms = raw.get("rooms", {})
        for room_id, room in rooms.get("join", {}).items():
            for event in room.get("timeline", {}).get("events", []):
                if event.get("type") != "m.room.message":
                    continue
                content = event.get("content") or {}
                batch.messages.append(
                    InboundMessage(
                        room_id=room_id,
                        sender=str(event.get("sender", "")),
                        body=str(content.get("body", "")),
                        msgtype=str(content.get("msgtype", "")),
                    )
                )
        for room_id, room in rooms.get("invite", {}).items():
            for event in room.get("invite_state", {}).get("events", []):
                if (
                    event.get("type") == "m.room.member"
                    and event.get("state_key") == self.config.user_id
                    and (event.get("content") or {}).get("membership") == "invite"
                ):
                    batch.invites.append(room_id)
                    break
        return batch

    def run(
        self,
        on_message: Callable[[InboundMessage], Any],
        on_invite: Callable[[str], Any],
    ) -> None:
        """
        Sync until the stop event is set.

        The first sync only establishes a position: messages sent before the
        bot started are skipped, pending invites are still handled.
        """
        since: Optional[str] = None
        while not self._stop.is_set():
            try:
                batch = self.sync_once(since)
            except (NetworkError, TransportError, ValueError) as e:
                logger.error("Sync error: %s", e)
                self._stop.wait(self.config.retry_delay)
                continue

            for room_id in batch.invites:
                self._deliver(on_invite, room_id)
            if since is not None:
                for message in batch.messages:
                    self._deliver(on_message, message)
            since = batch.next_batch

    def _deliver(self, callback: Callable[[Any], Any], item: Any) -> None:
        try:
            callback(item)
        except Exception:
            logger.exception("Event callback failed for %r", item)

    def stop(self) -> None:
        self._stop.set()

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
