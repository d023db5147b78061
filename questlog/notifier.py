from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request

logger = logging.getLogger(__name__)

# ntfy priorities: 3 is default, 4 is high.
NTFY_PRIORITY = {"normal": "3", "high": "4"}


class Notifier:
    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        raise NotImplementedError


class NoopNotifier(Notifier):
    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        return False


class _HttpNotifier(Notifier):
    max_attempts = 3
    timeout_s = 5

    def __init__(self, url: str) -> None:
        self.url = url

    def _build_request(self, title: str, body: str, priority: str) -> urllib.request.Request:
        raise NotImplementedError

    def send(self, title: str, body: str, priority: str = "normal") -> bool:
        req = self._build_request(title, body, priority)
        for attempt in range(1, self.max_attempts + 1):
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                    resp.read()
                return True
            except (urllib.error.URLError, TimeoutError, OSError) as exc:
                if attempt == self.max_attempts:
                    logger.warning("%s gave up after %s attempts: %s", type(self).__name__, attempt, exc)
                    break
                time.sleep(0.25 * attempt)
        return False


class DiscordNotifier(_HttpNotifier):
    def _build_request(self, title: str, body: str, priority: str) -> urllib.request.Request:
        prefix = "@here " if priority == "high" else ""
        return urllib.request.Request(
            self.url,
            data=json.dumps({"content": f"{prefix}**{title}**\n{body}"}).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )


class NtfyNotifier(_HttpNotifier):
    def _build_request(self, title: str, body: str, priority: str) -> urllib.request.Request:
        return urllib.request.Request(
            self.url,
            data=body.encode("utf-8"),
            headers={"Title": title, "Priority": NTFY_PRIORITY.get(priority, "3"), "Tags": "crossed_swords"},
            method="POST",
        )


def build_notifier(player: dict) -> Notifier:
    """Discord wins when both targets are configured."""
    if player.get("discord_webhook_url"):
        return DiscordNotifier(player["discord_webhook_url"])
    if player.get("ntfy_topic_url"):
        return NtfyNotifier(player["ntfy_topic_url"])
    return NoopNotifier()


def daily_summary(reset: dict) -> tuple[str, str] | None:
    """Title and body for a fresh daily reset, or None when nothing new happened."""
    if not reset.get("applied"):
        return None
    parts = [f"New day {reset['today']}."]
    if reset.get("rested_xp"):
        parts.append(f"{reset['rested_xp']} rested XP banked for your next quest.")
    if reset.get("rush_available"):
        parts.append("Daily rush is ready.")
    if reset.get("daily_focus"):
        parts.append(f"Today's focus: {reset['daily_focus']} (+25% XP).")
    return "QuestLog Daily Reset", " ".join(parts)
