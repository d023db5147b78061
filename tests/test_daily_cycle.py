from __future__ import annotations

import tempfile
import unittest
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

from questlog import db
from questlog.jobs import daily_reset
from questlog.notifier import daily_summary


class ScriptedRandom:
    def __init__(self, *values: float) -> None:
        self.values = list(values)

    def random(self) -> float:
        return self.values.pop(0) if self.values else 0.99

    def choice(self, seq):
        return seq[0]


class DailyResetTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_patch = patch.object(db, "DB_PATH", Path(self.tmpdir.name) / "test.sqlite3")
        self.db_patch.start()
        db.init_db()

    def tearDown(self) -> None:
        self.db_patch.stop()
        self.tmpdir.cleanup()

    def set_garden(self, level: int) -> None:
        conn = db.get_conn()
        try:
            conn.execute("UPDATE homestead_building SET level = ? WHERE building_id = 'garden'", (level,))
            conn.commit()
        finally:
            conn.close()

    def test_reset_is_idempotent_per_date(self) -> None:
        self.set_garden(2)
        first = db.run_daily_reset("2026-05-01", rng=ScriptedRandom())
        self.assertTrue(first["applied"])
        self.assertEqual(first["rested_xp"], 40)

        conn = db.get_conn()
        try:
            conn.execute("UPDATE player SET rested_xp = 0, daily_rush_used = 1 WHERE id = 1")
            conn.commit()
        finally:
            conn.close()

        second = db.run_daily_reset("2026-05-01", rng=ScriptedRandom())
        self.assertEqual(second, {"today": "2026-05-01", "applied": False})
        player = db.get_player()
        self.assertEqual(player["rested_xp"], 0)
        self.assertEqual(player["daily_rush_used"], 1)

    def test_new_day_overwrites_rested_and_clears_rush(self) -> None:
        self.set_garden(1)
        conn = db.get_conn()
        try:
            conn.execute("UPDATE player SET rested_xp = 999, daily_rush_used = 1 WHERE id = 1")
            conn.commit()
        finally:
            conn.close()

        db.run_daily_reset("2026-05-02", rng=ScriptedRandom())
        player = db.get_player()
        self.assertEqual(player["rested_xp"], 20)
        self.assertEqual(player["daily_rush_used"], 0)

    def test_focus_comes_from_known_skills(self) -> None:
        self.assertEqual(db.run_daily_reset("2026-05-01", rng=ScriptedRandom())["daily_focus"], "")

        conn = db.get_conn()
        try:
            conn.executemany("INSERT INTO skill (category, level) VALUES (?, ?)", [("Work", 3), ("Fitness", 1)])
            conn.commit()
        finally:
            conn.close()

        reset = db.run_daily_reset("2026-05-02", rng=ScriptedRandom())
        self.assertEqual(reset["daily_focus"], "Fitness")
        self.assertEqual(db.get_progress_snapshot("2026-05-02")["daily_focus"], "Fitness")
        self.assertEqual(db.get_progress_snapshot("2026-05-03")["daily_focus"], "")

    def test_completion_runs_pending_reset_first(self) -> None:
        self.set_garden(1)
        quest = db.add_quest("Meditate", "Mindfulness", 10)

        result = db.complete_quest(quest["id"], rng=ScriptedRandom())
        self.assertEqual(result["rested_xp_used"], 20)
        self.assertEqual(result["xp"], 30)
        self.assertEqual(db.get_app_state()["last_reset_date"], db.today_key())

    def test_testing_mode_advances_simulated_date(self) -> None:
        db.update_settings("Hero", "default", True, "", "")
        start = db.today_key()
        self.assertEqual(db.get_app_state()["simulated_date"], start)

        new_date = db.testing_advance_day()
        self.assertEqual(new_date, (date.fromisoformat(start) + timedelta(days=1)).isoformat())
        self.assertEqual(db.today_key(), new_date)
        self.assertTrue(db.run_daily_reset(rng=ScriptedRandom())["applied"])

        db.update_settings("Hero", "default", False, "", "")
        self.assertEqual(db.today_key(), date.today().isoformat())

    def test_every_mutation_bumps_revision(self) -> None:
        before = db.get_app_state()["revision"]
        quest = db.add_quest("Plan", "Work", 10)
        db.update_quest(quest["id"], xp=20)
        db.delete_quest(quest["id"])
        self.assertEqual(db.get_app_state()["revision"], before + 3)


class DailyResetJobTests(unittest.TestCase):
    def test_summary_only_for_applied_reset(self) -> None:
        self.assertIsNone(daily_summary({"today": "2026-05-01", "applied": False}))
        title, body = daily_summary(
            {"today": "2026-05-01", "applied": True, "rested_xp": 40, "daily_focus": "Work", "rush_available": True}
        )
        self.assertEqual(title, "QuestLog Daily Reset")
        self.assertIn("40 rested XP", body)
        self.assertIn("Work", body)
        self.assertIn("Daily rush is ready.", body)

    def test_job_notifies_and_pushes_after_fresh_reset(self) -> None:
        notifier = MagicMock()
        reset = {"today": "2026-05-01", "applied": True, "rested_xp": 0, "daily_focus": "", "rush_available": False}
        with (
            patch.object(daily_reset, "start_session", return_value={"today": "2026-05-01", "reloaded": False, "reset": reset}),
            patch.object(daily_reset, "get_player", return_value={}),
            patch.object(daily_reset, "build_notifier", return_value=notifier),
            patch.object(daily_reset, "push_remote") as push,
        ):
            daily_reset.main()

        notifier.send.assert_called_once_with("QuestLog Daily Reset", "New day 2026-05-01.")
        push.assert_called_once_with()

    def test_job_is_quiet_when_already_reset(self) -> None:
        reset = {"today": "2026-05-01", "applied": False}
        with (
            patch.object(daily_reset, "start_session", return_value={"today": "2026-05-01", "reloaded": False, "reset": reset}),
            patch.object(daily_reset, "build_notifier") as build,
            patch.object(daily_reset, "push_remote") as push,
        ):
            daily_reset.main()

        build.assert_not_called()
        push.assert_not_called()


if __name__ == "__main__":
    unittest.main()
