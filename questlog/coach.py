"""Client for the streaming AI coach.

The coach answers with an event stream: `data: <json>` lines, `:` keep-alive
comments, blank separators and a final `data: [DONE]`. Text arrives as
`choices[0].delta.content`; quest suggestions and breakdowns arrive as a tool
call whose `function.arguments` is itself a JSON document.
"""

from __future__ import annotations

import codecs
import json
import logging
import os
import urllib.error
import urllib.request
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

COACH_URL = os.environ.get("QUESTLOG_COACH_URL", "")
COACH_API_KEY = os.environ.get("QUESTLOG_COACH_KEY", "")


class CoachMode(str, Enum):
    SUGGEST = "suggest"
    REVIEW = "review"
    BREAKDOWN = "breakdown"
    SMART_REMINDER = "smart_reminder"


class CoachError(Exception):
    pass


def build_player_context(player: dict, skills: dict[str, int]) -> dict:
    top = sorted(skills.items(), key=lambda kv: (-kv[1], kv[0]))[:3]
    return {
        "level": player["level"],
        "xp": player["xp"],
        "gold": player["gold"],
        "streak": player["streak"],
        "completedQuests": player["quests_completed"],
        "topSkills": ", ".join(f"{name} ({level})" for name, level in top),
    }


def _quest_summary(quest: dict) -> dict:
    return {
        "name": quest["name"],
        "category": quest["category"],
        "priority": quest.get("priority", "medium"),
        "xp": quest["xp"],
        "description": quest.get("description"),
        "dueDate": quest.get("due_date"),
    }


def build_coach_request(
    messages: list[dict],
    player_context: dict,
    mode: CoachMode | str | None = None,
    active_quests: list[dict] | None = None,
    quest: dict | None = None,
) -> dict:
    body: dict = {"messages": messages, "playerContext": player_context}
    if mode is None:
        if quest is not None:
            body["questContext"] = _quest_summary(quest)
        return body

    mode = CoachMode(mode)
    body["requestType"] = mode.value
    if mode is CoachMode.BREAKDOWN:
        if quest is None:
            raise ValueError("breakdown needs a quest")
        body["breakdownQuest"] = _quest_summary(quest)
    elif mode in (CoachMode.SUGGEST, CoachMode.REVIEW, CoachMode.SMART_REMINDER):
        body["activeQuests"] = [_quest_summary(q) for q in active_quests or []]
    else:
        raise ValueError(f"Unhandled coach mode: {mode}")
    return body


class CoachStreamParser:
    """Incremental parser; feed it decoded text in whatever pieces the transport yields."""

    def __init__(self) -> None:
        self.text = ""
        self.suggestions: list[dict] | None = None
        self.subtasks: list[dict] | None = None
        self.done = False
        self._buffer = ""
        self._retry_line: str | None = None
        self._tool_args = ""

    def feed(self, chunk: str) -> list[str]:
        """Consume a chunk and return the text deltas it completed."""
        if self.done:
            return []
        self._buffer += chunk
        deltas: list[str] = []
        while not self.done and "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            fragment = self._parse_line(line)
            if fragment is _RETRY:
                # Put it back and wait for more bytes before judging it again.
                self._buffer = line + "\n" + self._buffer
                break
            if fragment is not None:
                delta = self._apply(fragment)
                if delta:
                    deltas.append(delta)
        return deltas

    def close(self) -> list[str]:
        """Flush whatever is left once the transport is exhausted."""
        pending, self._buffer = self._buffer, ""
        deltas: list[str] = []
        for line in pending.split("\n"):
            if self.done:
                break
            fragment = self._parse_line(line, final=True)
            if isinstance(fragment, dict):
                delta = self._apply(fragment)
                if delta:
                    deltas.append(delta)
        self.done = True
        return deltas

    def _parse_line(self, line: str, final: bool = False):
        if line.endswith("\r"):
            line = line[:-1]
        if line.startswith(":") or line.strip() == "":
            return None
        if not line.startswith("data: "):
            return None
        payload = line[6:].strip()
        if payload == "[DONE]":
            self.done = True
            return None
        try:
            fragment = json.loads(payload)
        except json.JSONDecodeError:
            if final or self._retry_line == line:
                logger.warning("Dropping malformed coach stream line: %.80s", line)
                self._retry_line = None
                return None
            self._retry_line = line
            return _RETRY
        self._retry_line = None
        return fragment if isinstance(fragment, dict) else None

    def _apply(self, fragment: dict) -> str | None:
        choices = fragment.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        delta = choices[0].get("delta") or {}
        tool_calls = delta.get("tool_calls") or []
        if tool_calls:
            arguments = ((tool_calls[0] or {}).get("function") or {}).get("arguments")
            if arguments:
                self._apply_tool_arguments(arguments)
        content = delta.get("content")
        if content:
            self.text += content
            return content
        return None

    def _apply_tool_arguments(self, arguments: str) -> None:
        try:
            args = json.loads(arguments)
            self._tool_args = ""
        except json.JSONDecodeError:
            # Some providers stream the arguments in pieces.
            self._tool_args += arguments
            try:
                args = json.loads(self._tool_args)
            except json.JSONDecodeError:
                return
            self._tool_args = ""
        if not isinstance(args, dict):
            return
        if isinstance(args.get("suggestions"), list):
            self.suggestions = [_suggestion(s) for s in args["suggestions"] if isinstance(s, dict) and s.get("name")]
        elif isinstance(args.get("subtasks"), list):
            self.subtasks = [{"name": str(s["name"])} for s in args["subtasks"] if isinstance(s, dict) and s.get("name")]

    def result(self) -> dict:
        return {"text": self.text, "suggestions": self.suggestions, "subtasks": self.subtasks}


_RETRY = object()


def _suggestion(raw: dict) -> dict:
    return {
        "name": str(raw["name"]),
        "category": str(raw.get("category") or "General"),
        "priority": raw.get("priority") if raw.get("priority") in ("low", "medium", "high") else "medium",
        "xp": int(raw.get("xp") or 0),
        "description": raw.get("description"),
    }


class CoachClient:
    timeout_s = 60
    read_size = 4096

    def __init__(self, url: str = COACH_URL, api_key: str = COACH_API_KEY) -> None:
        if not url:
            raise CoachError("AI coach is not configured")
        self.url = url
        self.api_key = api_key

    def chat(self, request_body: dict, on_delta: Callable[[str], None] | None = None) -> dict:
        req = urllib.request.Request(
            self.url,
            data=json.dumps(request_body).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
            method="POST",
        )
        parser = CoachStreamParser()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                while not parser.done:
                    raw = resp.read1(self.read_size)
                    if not raw:
                        break
                    for delta in parser.feed(decoder.decode(raw)):
                        if on_delta:
                            on_delta(delta)
        except urllib.error.HTTPError as exc:
            raise CoachError(_http_error_message(exc.code)) from exc
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise CoachError("Failed to get response from coach") from exc

        for delta in parser.feed(decoder.decode(b"", final=True)) + parser.close():
            if on_delta:
                on_delta(delta)
        return parser.result()


def _http_error_message(status: int) -> str:
    if status == 429:
        return "Rate limit exceeded. Please try again in a moment."
    if status == 402:
        return "AI service credits depleted."
    return "Failed to get coach response"
