"""How the sync client reaches the remote store.

``HttpTransport`` talks to the deployed API with ``requests``;
``InProcessTransport`` calls a ``RemoteUpsertStore`` directly and is what
tests and single-process tools use. Both raise ``RemoteUnreachable``,
``LockTimeout`` or ``RemoteError``; the sync client decides what to do
with them.
"""
import json
import logging
import time

import requests

from aquaflow.core.config import settings
from aquaflow.core.errors import LockTimeout, RemoteError, RemoteUnreachable

logger = logging.getLogger(__name__)


def _body(r: requests.Response) -> dict:
    try:
        data = r.json()
    except ValueError:
        return {"status": "error", "message": r.text[:500]}
    return data if isinstance(data, dict) else {"status": "error", "message": "unexpected response body"}


class HttpTransport:
    def __init__(self, url: str | None = None, timeout: float | None = None,
                 session: requests.Session | None = None):
        self.url = url or settings.REMOTE_STORE_URL
        self.timeout = settings.REMOTE_TIMEOUT_SECONDS if timeout is None else timeout
        self.session = session or requests.Session()

    def fetch_all(self) -> dict:
        params = {"action": "getAllData", "_": int(time.time() * 1000)}  # defeat intermediary caches
        try:
            r = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteUnreachable(f"bulk fetch failed: {e}") from e
        data = _body(r)
        if r.status_code >= 400 or data.get("status") == "error":
            raise RemoteError(f"bulk fetch rejected ({r.status_code}): {data.get('message', '')}")
        return data

    def send(self, kind: str, payload: dict) -> str:
        # text/plain keeps browser clients out of CORS preflight; the server parses any content type.
        body = json.dumps({"dataType": kind, "payload": payload}, ensure_ascii=False)
        try:
            r = self.session.post(
                self.url,
                data=body.encode("utf-8"),
                headers={"Content-Type": "text/plain;charset=utf-8"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteUnreachable(f"{kind} write failed: {e}") from e
        data = _body(r)
        if r.status_code == 503:
            raise LockTimeout(data.get("message", "store is busy"))
        if r.status_code >= 400 or data.get("status") == "error":
            raise RemoteError(f"{kind} write rejected ({r.status_code}): {data.get('message', '')}")
        return data.get("message", "")


class InProcessTransport:
    def __init__(self, store):
        self.store = store

    def fetch_all(self) -> dict:
        return {"status": "success", **json.loads(json.dumps(self.store.fetch_all()))}

    def send(self, kind: str, payload: dict) -> str:
        # Round-trip through JSON so the store never shares objects with the client mirror.
        wire = json.loads(json.dumps(payload))
        try:
            return self.store.save(kind, wire)
        except (LockTimeout, RemoteUnreachable):
            raise
        except Exception as e:
            raise RemoteError(str(e)) from e
