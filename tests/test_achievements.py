from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from questlog import db
from questlog.achievements import ACHIEVEMENTS, collect_stats, evaluate, evaluate_goals
from questlog.challenges import CHALLENGE_TEMPLATES, challenge_progress, generate_daily_challenges


class ScriptedRandom:
    def random(self) -> float:
        return 0.99

    def choice(self, seq):
        return seq[0]


def stats_for(**overrides) -> dict:
    player = {"quests_completed": 0, "streak": 0, "total_xp": 0, "level": 1}
    player.update(overrides)
    return collect_stats(player, [], 0, "2026-05-01")


class EvaluateTests(unittest.TestCase):
    def test_catalog_ids_are_unique(self) -> None:
        ids = [a["achievement_id"] for a in ACHIEVEMENTS]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(len(ids), 19)

    def test_unlock_stamps_now(self) -> None:
        rows = {r["achievement_id"]: r for r in evaluate(stats_for(quests_completed=1), {}, "2026-05-01T09:00:00")}
        self.assertEqual(rows["first_quest"]["unlocked_at"], "2026-05-01T09:00:00")
        self.assertTrue(rows["first_quest"]["just_unlocked"])
        self.assertIsNone(rows["quest_10"]["unlocked_at"])
        self.assertEqual(rows["quest_10"]["progress"], 1)

    def test_existing_unlock_survives_lower_progress(self) -> None:
        previous = {"first_quest": "2026-04-01T08:00:00"}
        rows = {r["achievement_id"]: r for r in evaluate(stats_for(), previous, "2026-05-01T09:00:00")}
        self.assertEqual(rows["first_quest"]["unlocked_at"], "2026-04-01T08:00:00")
        self.assertFalse(rows["first_quest"]["just_unlocked"])
        self.assertEqual(rows["first_quest"]["progress"], 0)

    def test_daily_and_category_counters(self) -> None:
        history = [
            {"category": "Work", "completed_at": "2026-05-01T09:00:00"},
            {"category": "Fitness", "completed_at": "2026-05-01T10:00:00"},
            {"category": "Work", "completed_at": "2026-04-30T10:00:00"},
        ]
        stats = collect_stats({"quests_completed": 3, "streak": 2, "total_xp": 90, "level": 1}, history, 9, "2026-05-01")
        self.assertEqual(stats["completed_today"], 2)
        self.assertEqual(stats["distinct_categories"], 2)
        self.assertEqual(stats["category_counts"], {"Work": 2, "Fitness": 1})

    def test_goal_completion_is_sticky(self) -> None:
        goals = [
            {"id": 1, "type": "category_quests", "category": "Work", "target": 2, "completed_at": None},
            {"id": 2, "type": "xp", "category": None, "target": 50, "completed_at": "2026-04-01T08:00:00"},
        ]
        history = [{"category": "Work", "completed_at": "2026-05-01T09:00:00"}] * 2
        stats = collect_stats({"quests_completed": 2, "streak": 1, "total_xp": 20, "level": 1}, history, 2, "2026-05-01")
        rows = evaluate_goals(goals, stats, "2026-05-01T12:00:00")
        self.assertEqual((rows[0]["current"], rows[0]["completed_at"]), (2, "2026-05-01T12:00:00"))
        self.assertEqual((rows[1]["current"], rows[1]["completed_at"]), (20, "2026-04-01T08:00:00"))


class ChallengeGeneratorTests(unittest.TestCase):
    def test_same_date_same_challenges(self) -> None:
        self.assertEqual(generate_daily_challenges("2026-01-01"), generate_daily_challenges("2026-01-01"))

    def test_selection_from_day_of_year(self) -> None:
        names = [c["name"] for c in generate_daily_challenges("2026-01-01")]
        self.assertEqual(names, ["Quest Marathon", "Mindfulness Master", "Work Focus"])
        self.assertEqual(len(generate_daily_challenges("2026-01-02")), 2)
        self.assertEqual(generate_daily_challenges("2026-01-01")[2]["challenge_id"], "challenge_2026-01-01_2")

    def test_progress_kinds(self) -> None:
        history = [{"category": "Work", "xp": 100}, {"category": "Fitness", "xp": 80}]
        by_kind = {t["kind"]: t for t in CHALLENGE_TEMPLATES}
        self.assertEqual(challenge_progress(by_kind["complete_quests"], history), 2)
        self.assertEqual(challenge_progress(by_kind["earn_xp"], history), 180)
        self.assertEqual(challenge_progress({"kind": "complete_category", "category": "Work"}, history), 1)


class ProgressTrackerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_patch = patch.object(db, "DB_PATH", Path(self.tmpdir.name) / "test.sqlite3")
        self.db_patch.start()
        db.init_db()
        db.update_settings("Hero", "default", True, "", "")
        conn = db.get_conn()
        try:
            conn.execute("UPDATE app_state SET simulated_date = '2026-01-01' WHERE id = 1")
            conn.commit()
        finally:
            conn.close()

    def tearDown(self) -> None:
        self.db_patch.stop()
        self.tmpdir.cleanup()

    def complete(self, category: str, xp: int = 10) -> dict:
        return db.complete_quest(db.add_quest(f"{category} task", category, xp)["id"], rng=ScriptedRandom())

    def test_unlock_persists_across_progress_reset(self) -> None:
        self.complete("Work")
        unlocked_at = next(a for a in db.get_achievements() if a["achievement_id"] == "first_quest")["unlocked_at"]
        self.assertTrue(unlocked_at.startswith("2026-01-01T"))

        db.reset_progress()
        self.assertEqual(db.refresh_achievements(), [])
        first = next(a for a in db.get_achievements() if a["achievement_id"] == "first_quest")
        self.assertEqual(first["unlocked_at"], unlocked_at)
        self.assertEqual(first["progress"], 0)

    def test_unlock_reported_once(self) -> None:
        self.assertEqual(self.complete("Work")["achievements_unlocked"], ["first_quest"])
        self.assertEqual(self.complete("Work")["achievements_unlocked"], [])

    def test_goals_track_progress(self) -> None:
        total = db.add_goal("Two quests", "quests", 2)
        work = db.add_goal("Some work", "category_quests", 1, category="Work")

        self.complete("Fitness")
        goals = {g["id"]: g for g in db.get_goals()}
        self.assertEqual(goals[total]["current"], 1)
        self.assertIsNone(goals[work]["completed_at"])

        self.complete("Work")
        goals = {g["id"]: g for g in db.get_goals()}
        self.assertIsNotNone(goals[total]["completed_at"])
        self.assertIsNotNone(goals[work]["completed_at"])

        self.assertTrue(db.delete_goal(work))
        self.assertFalse(db.delete_goal(work))

    def test_unknown_goal_type_rejected(self) -> None:
        with self.assertRaises(ValueError):
            db.add_goal("Nope", "mana", 3)

    def test_claim_daily_challenge(self) -> None:
        challenge_id = "challenge_2026-01-01_2"
        self.complete("Work")
        self.assertFalse(db.claim_daily_challenge(challenge_id))

        self.complete("Work")
        work_focus = next(c for c in db.get_daily_challenges() if c["challenge_id"] == challenge_id)
        self.assertTrue(work_focus["completed"])

        self.assertTrue(db.claim_daily_challenge(challenge_id))
        self.assertFalse(db.claim_daily_challenge(challenge_id))
        player = db.get_player()
        self.assertEqual((player["xp"], player["gold"]), (80, 42))
        self.assertTrue(next(c for c in db.get_daily_challenges() if c["challenge_id"] == challenge_id)["claimed"])


if __name__ == "__main__":
    unittest.main()
