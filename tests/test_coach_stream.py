from __future__ import annotations

import io
import json
import unittest
import urllib.error
from unittest.mock import patch

from questlog import coach
from questlog.coach import CoachClient, CoachError, CoachStreamParser, build_coach_request, build_player_context


def content_line(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}) + "\n"


def tool_line(arguments: dict | str) -> str:
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    call = {"function": {"name": "suggest_quests", "arguments": arguments}}
    return "data: " + json.dumps({"choices": [{"delta": {"tool_calls": [call]}}]}) + "\n"


class FakeStream:
    def __init__(self, payload: bytes, piece: int = 7) -> None:
        self._buf = io.BytesIO(payload)
        self.piece = piece

    def read1(self, size: int = -1) -> bytes:
        return self._buf.read(min(size, self.piece))

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


class StreamParserTests(unittest.TestCase):
    def test_line_split_across_chunks(self) -> None:
        parser = CoachStreamParser()
        line = content_line("Hello")
        self.assertEqual(parser.feed(line[:20]), [])
        self.assertEqual(parser.feed(line[20:]), ["Hello"])
        self.assertEqual(parser.text, "Hello")

    def test_comments_blanks_and_crlf(self) -> None:
        parser = CoachStreamParser()
        chunk = ": keep-alive\n\n" + content_line("a").replace("\n", "\r\n") + "event: ping\n" + content_line("b")
        self.assertEqual(parser.feed(chunk), ["a", "b"])

    def test_done_ends_stream(self) -> None:
        parser = CoachStreamParser()
        self.assertEqual(parser.feed(content_line("x") + "data: [DONE]\n" + content_line("ignored")), ["x"])
        self.assertTrue(parser.done)
        self.assertEqual(parser.feed(content_line("late")), [])
        self.assertEqual(parser.text, "x")

    def test_suggestions_normalized(self) -> None:
        parser = CoachStreamParser()
        parser.feed(
            tool_line(
                {
                    "suggestions": [
                        {"name": "Morning run", "category": "Fitness", "priority": "urgent", "xp": "40"},
                        {"name": "Inbox zero"},
                        {"category": "Nameless"},
                    ]
                }
            )
        )
        self.assertEqual(
            parser.suggestions,
            [
                {"name": "Morning run", "category": "Fitness", "priority": "medium", "xp": 40, "description": None},
                {"name": "Inbox zero", "category": "General", "priority": "medium", "xp": 0, "description": None},
            ],
        )
        self.assertIsNone(parser.subtasks)

    def test_subtasks_from_fragmented_arguments(self) -> None:
        parser = CoachStreamParser()
        arguments = json.dumps({"subtasks": [{"name": "Outline"}, {"name": "Draft"}]})
        parser.feed(tool_line(arguments[:15]))
        self.assertIsNone(parser.subtasks)
        parser.feed(tool_line(arguments[15:]))
        self.assertEqual(parser.subtasks, [{"name": "Outline"}, {"name": "Draft"}])

    def test_malformed_line_dropped_after_retry(self) -> None:
        parser = CoachStreamParser()
        with self.assertLogs("questlog.coach", level="WARNING"):
            self.assertEqual(parser.feed("data: {broken\n"), [])
            self.assertEqual(parser.feed(content_line("ok")), ["ok"])
        self.assertEqual(parser.text, "ok")

    def test_close_flushes_unterminated_line(self) -> None:
        parser = CoachStreamParser()
        self.assertEqual(parser.feed(content_line("tail").rstrip("\n")), [])
        self.assertEqual(parser.close(), ["tail"])
        self.assertTrue(parser.done)


class CoachRequestTests(unittest.TestCase):
    player = {"level": 3, "xp": 40, "gold": 25, "streak": 2, "quests_completed": 9}
    quest = {"name": "Write essay", "category": "Learning", "priority": "high", "xp": 60, "description": None, "due_date": "2026-05-03"}

    def test_player_context_lists_top_skills(self) -> None:
        ctx = build_player_context(self.player, {"Work": 2, "Fitness": 5, "Learning": 2, "Social": 1})
        self.assertEqual(ctx["topSkills"], "Fitness (5), Learning (2), Work (2)")
        self.assertEqual(ctx["completedQuests"], 9)

    def test_plain_chat_with_quest_context(self) -> None:
        body = build_coach_request([{"role": "user", "content": "hi"}], {}, quest=self.quest)
        self.assertNotIn("requestType", body)
        self.assertEqual(body["questContext"]["dueDate"], "2026-05-03")

    def test_modes(self) -> None:
        suggest = build_coach_request([], {}, "suggest", active_quests=[self.quest])
        self.assertEqual(suggest["requestType"], "suggest")
        self.assertEqual([q["name"] for q in suggest["activeQuests"]], ["Write essay"])

        breakdown = build_coach_request([], {}, coach.CoachMode.BREAKDOWN, quest=self.quest)
        self.assertEqual(breakdown["breakdownQuest"]["name"], "Write essay")
        self.assertNotIn("activeQuests", breakdown)

    def test_breakdown_needs_quest(self) -> None:
        with self.assertRaises(ValueError):
            build_coach_request([], {}, "breakdown")
        with self.assertRaises(ValueError):
            build_coach_request([], {}, "motivate")


class CoachClientTests(unittest.TestCase):
    def test_not_configured(self) -> None:
        with self.assertRaises(CoachError):
            CoachClient(url="")

    def test_streams_deltas_across_multibyte_chunks(self) -> None:
        payload = (content_line("Héllo ") + content_line("wörld") + "data: [DONE]\n").encode("utf-8")
        seen: list[str] = []
        with patch.object(coach.urllib.request, "urlopen", return_value=FakeStream(payload, piece=5)):
            reply = CoachClient(url="https://coach.example/chat", api_key="k").chat({"messages": []}, on_delta=seen.append)
        self.assertEqual(reply["text"], "Héllo wörld")
        self.assertEqual(seen, ["Héllo ", "wörld"])

    def test_http_errors_map_to_messages(self) -> None:
        client = CoachClient(url="https://coach.example/chat")
        for status, message in [(429, "Rate limit exceeded"), (402, "credits depleted"), (500, "Failed to get coach response")]:
            error = urllib.error.HTTPError(client.url, status, "err", {}, None)
            with patch.object(coach.urllib.request, "urlopen", side_effect=error):
                with self.assertRaises(CoachError) as ctx:
                    client.chat({})
            self.assertIn(message, str(ctx.exception))

    def test_network_failure(self) -> None:
        with patch.object(coach.urllib.request, "urlopen", side_effect=urllib.error.URLError("down")):
            with self.assertRaises(CoachError):
                CoachClient(url="https://coach.example/chat").chat({})


if __name__ == "__main__":
    unittest.main()
