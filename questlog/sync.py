"""Remote snapshot gateway.

Local SQLite stays authoritative for the session. After each mutation the full
save snapshot is pushed; at session start a remote snapshot is adopted only if
its revision is newer than the local one. Every failure degrades to a logged
warning and a False/None return.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request

logger = logging.getLogger(__name__)


class SyncGateway:
    max_attempts = 3
    timeout_s = 10

    def __init__(self, base_url: str, user_id: str) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id

    @property
    def state_url(self) -> str:
        return f"{self.base_url}/users/{urllib.parse.quote(self.user_id, safe='')}/state"

    def _request(self, req: urllib.request.Request) -> bytes | None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                    return resp.read()
            except urllib.error.HTTPError as exc:
                if exc.code == 404:
                    return None
                if attempt >= self.max_attempts:
                    logger.warning("Sync request to %s failed: HTTP %s", req.full_url, exc.code)
                    return None
            except (urllib.error.URLError, TimeoutError, OSError) as exc:
                if attempt >= self.max_attempts:
                    logger.warning("Sync request to %s failed after retries: %s", req.full_url, exc)
                    return None
            time.sleep(0.25 * attempt)
        return None

    def push_state(self, snapshot: dict) -> bool:
        req = urllib.request.Request(
            self.state_url,
            data=json.dumps(snapshot).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="PUT",
        )
        return self._request(req) is not None

    def pull_state(self) -> dict | None:
        raw = self._request(urllib.request.Request(self.state_url, method="GET"))
        if not raw:
            return None
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable remote snapshot: %s", exc)
            return None
        return payload if isinstance(payload, dict) else None


def build_gateway(player: dict) -> SyncGateway | None:
    if player.get("sync_url") and player.get("sync_user_id"):
        return SyncGateway(player["sync_url"], player["sync_user_id"])
    return None


def snapshot_revision(snapshot: dict) -> int:
    rows = snapshot.get("app_state") or [{}]
    return int(rows[0].get("revision") or 0)
