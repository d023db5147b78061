from __future__ import annotations

import csv
import io
import json
import logging
import os
import random
import sqlite3
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path

from questlog.achievements import ACHIEVEMENTS, GoalType, collect_stats, evaluate, evaluate_goals
from questlog.challenges import challenge_progress, generate_daily_challenges
from questlog.content import load_leisure_catalog, load_oracle_pack, narrative_line
from questlog.progression import (
    HOMESTEAD_CATALOG,
    MAX_EQUIPPED,
    LootType,
    Priority,
    TransactionType,
    absorb_xp,
    building_levels,
    calculate_rewards,
    homestead_bonuses,
    next_streak,
    roll_loot,
    upgrade_cost,
    xp_to_next,
)

logger = logging.getLogger(__name__)

DB_PATH = Path(os.environ.get("QUESTLOG_DB_PATH", Path(__file__).resolve().parent.parent / "questlog.sqlite3"))

_rng = random.Random()

DEFAULT_PLAYER = {
    "id": 1,
    "name": "Hero",
    "level": 1,
    "xp": 0,
    "xp_to_next": xp_to_next(1),
    "gold": 0,
    "streak": 0,
    "prestige_level": 0,
    "prestige_points": 0,
    "quests_completed": 0,
    "total_xp": 0,
    "daily_rush_used": 0,
    "rested_xp": 0,
    "last_completion_date": None,
    "longest_streak": 0,
    "most_quests_in_day": 0,
    "highest_level": 1,
    "total_gold_earned": 0,
    "daily_focus": "",
    "daily_focus_date": None,
    "oracle_pack": "default",
    "testing_mode": 0,
    "discord_webhook_url": "",
    "ntfy_topic_url": "",
    "sync_url": "",
    "sync_user_id": "",
}

SAVE_TABLES = [
    "player",
    "app_state",
    "quest",
    "skill",
    "loot_item",
    "homestead_building",
    "quest_history",
    "gold_transaction",
    "leisure_history",
    "custom_reward",
    "achievement",
    "goal",
    "challenge_claim",
    "event_log",
]


def get_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def local_now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _stamp(for_date: str) -> str:
    # Local wall-clock time on the app's current date (which may be simulated).
    return f"{for_date}T{datetime.now().strftime('%H:%M:%S')}"


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
    cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
    if column not in {c[1] for c in cols}:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


def _insert_event(conn: sqlite3.Connection, event_date: str, kind: str, text: str, meta: dict | None = None) -> None:
    conn.execute(
        "INSERT INTO event_log (date, kind, text, meta_json) VALUES (?, ?, ?, ?)",
        (event_date, kind, text, json.dumps(meta or {})),
    )


def _begin_write(conn: sqlite3.Connection) -> None:
    # Rows read after this cannot change under us until commit or close.
    conn.execute("BEGIN IMMEDIATE")


def _bump_revision(conn: sqlite3.Connection) -> None:
    conn.execute("UPDATE app_state SET revision = revision + 1 WHERE id = 1")


def _seed_homestead(conn: sqlite3.Connection) -> None:
    for entry in HOMESTEAD_CATALOG:
        conn.execute(
            """
            INSERT INTO homestead_building (building_id, name, description, level, base_cost, bonus_type)
            VALUES (?, ?, ?, 0, ?, ?) ON CONFLICT(building_id) DO NOTHING
            """,
            (entry["building_id"], entry["name"], entry["description"], entry["base_cost"], entry["bonus_type"].value),
        )


def init_db() -> None:
    conn = get_conn()
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS player (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                name TEXT NOT NULL,
                level INTEGER NOT NULL,
                xp INTEGER NOT NULL,
                xp_to_next INTEGER NOT NULL,
                gold INTEGER NOT NULL,
                streak INTEGER NOT NULL,
                prestige_level INTEGER NOT NULL,
                prestige_points INTEGER NOT NULL,
                quests_completed INTEGER NOT NULL,
                total_xp INTEGER NOT NULL,
                daily_rush_used INTEGER NOT NULL DEFAULT 0,
                rested_xp INTEGER NOT NULL DEFAULT 0,
                last_completion_date TEXT,
                longest_streak INTEGER NOT NULL DEFAULT 0,
                most_quests_in_day INTEGER NOT NULL DEFAULT 0,
                highest_level INTEGER NOT NULL DEFAULT 1,
                total_gold_earned INTEGER NOT NULL DEFAULT 0,
                daily_focus TEXT NOT NULL DEFAULT '',
                daily_focus_date TEXT,
                oracle_pack TEXT NOT NULL DEFAULT 'default',
                testing_mode INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS app_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                simulated_date TEXT,
                last_reset_date TEXT,
                revision INTEGER NOT NULL DEFAULT 0,
                last_synced_at TEXT
            );

            CREATE TABLE IF NOT EXISTS quest (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                category TEXT NOT NULL,
                xp INTEGER NOT NULL,
                priority TEXT NOT NULL DEFAULT 'medium',
                description TEXT,
                due_date TEXT,
                state TEXT NOT NULL DEFAULT 'active',
                created_at TEXT NOT NULL,
                completed_at TEXT,
                reward_xp INTEGER,
                reward_gold INTEGER,
                critical INTEGER NOT NULL DEFAULT 0,
                rushed INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS skill (
                category TEXT PRIMARY KEY,
                level INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS loot_item (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                item_key TEXT NOT NULL,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                category TEXT,
                value REAL NOT NULL,
                rarity TEXT NOT NULL,
                equipped INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS homestead_building (
                building_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL,
                level INTEGER NOT NULL DEFAULT 0,
                base_cost INTEGER NOT NULL,
                bonus_type TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS quest_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                quest_id TEXT NOT NULL,
                name TEXT NOT NULL,
                category TEXT NOT NULL,
                xp INTEGER NOT NULL,
                gold INTEGER NOT NULL,
                critical INTEGER NOT NULL DEFAULT 0,
                rushed INTEGER NOT NULL DEFAULT 0,
                completed_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS gold_transaction (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                amount INTEGER NOT NULL,
                type TEXT NOT NULL,
                source TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS leisure_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                activity_name TEXT NOT NULL,
                cost INTEGER NOT NULL,
                timestamp TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS custom_reward (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                cost INTEGER NOT NULL,
                category TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS achievement (
                achievement_id TEXT PRIMARY KEY,
                progress INTEGER NOT NULL DEFAULT 0,
                target INTEGER NOT NULL,
                unlocked_at TEXT
            );

            CREATE TABLE IF NOT EXISTS goal (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                type TEXT NOT NULL,
                category TEXT,
                target INTEGER NOT NULL,
                current INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                completed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS challenge_claim (
                challenge_id TEXT PRIMARY KEY,
                claimed_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS event_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date TEXT NOT NULL,
                kind TEXT NOT NULL,
                text TEXT NOT NULL,
                meta_json TEXT
            );
            """
        )

        _ensure_column(conn, "player", "discord_webhook_url", "TEXT NOT NULL DEFAULT ''")
        _ensure_column(conn, "player", "ntfy_topic_url", "TEXT NOT NULL DEFAULT ''")
        _ensure_column(conn, "player", "sync_url", "TEXT NOT NULL DEFAULT ''")
        _ensure_column(conn, "player", "sync_user_id", "TEXT NOT NULL DEFAULT ''")

        cols = ", ".join(DEFAULT_PLAYER)
        params = ", ".join(f":{k}" for k in DEFAULT_PLAYER)
        conn.execute(f"INSERT INTO player ({cols}) VALUES ({params}) ON CONFLICT(id) DO NOTHING", DEFAULT_PLAYER)
        conn.execute("INSERT INTO app_state (id) VALUES (1) ON CONFLICT(id) DO NOTHING")
        _seed_homestead(conn)
        conn.commit()
    finally:
        conn.close()


def get_player() -> dict:
    conn = get_conn()
    try:
        row = conn.execute("SELECT * FROM player WHERE id = 1").fetchone()
        if not row:
            raise RuntimeError("Missing player")
        return dict(row)
    finally:
        conn.close()


def get_app_state() -> dict:
    conn = get_conn()
    try:
        return dict(conn.execute("SELECT * FROM app_state WHERE id = 1").fetchone())
    finally:
        conn.close()


def get_app_today() -> str:
    conn = get_conn()
    try:
        player = conn.execute("SELECT testing_mode FROM player WHERE id = 1").fetchone()
        state = conn.execute("SELECT simulated_date FROM app_state WHERE id = 1").fetchone()
        if player and player["testing_mode"] and state and state["simulated_date"]:
            return state["simulated_date"]
        return date.today().isoformat()
    finally:
        conn.close()


def today_key() -> str:
    return get_app_today()


def testing_advance_day(days: int = 1) -> str:
    conn = get_conn()
    try:
        new_date = (date.fromisoformat(get_app_today()) + timedelta(days=days)).isoformat()
        conn.execute("UPDATE app_state SET simulated_date = ? WHERE id = 1", (new_date,))
        conn.commit()
        return new_date
    finally:
        conn.close()


def update_settings(
    name: str,
    oracle_pack: str,
    testing_mode: bool,
    discord_webhook_url: str,
    ntfy_topic_url: str,
    sync_url: str = "",
    sync_user_id: str = "",
) -> None:
    conn = get_conn()
    try:
        conn.execute(
            """
            UPDATE player
            SET name = ?, oracle_pack = ?, testing_mode = ?, discord_webhook_url = ?, ntfy_topic_url = ?,
                sync_url = ?, sync_user_id = ?
            WHERE id = 1
            """,
            (
                name.strip() or DEFAULT_PLAYER["name"],
                oracle_pack.strip() or "default",
                int(testing_mode),
                discord_webhook_url.strip(),
                ntfy_topic_url.strip(),
                sync_url.strip(),
                sync_user_id.strip(),
            ),
        )
        if testing_mode:
            conn.execute("UPDATE app_state SET simulated_date = COALESCE(simulated_date, ?) WHERE id = 1", (date.today().isoformat(),))
        else:
            conn.execute("UPDATE app_state SET simulated_date = NULL WHERE id = 1")
        conn.commit()
    finally:
        conn.close()


def _levels(conn: sqlite3.Connection) -> dict[str, int]:
    return building_levels([dict(r) for r in conn.execute("SELECT building_id, level FROM homestead_building").fetchall()])


# --- daily cycle ---------------------------------------------------------


def run_daily_reset(for_date: str | None = None, rng: random.Random | None = None) -> dict:
    """Apply the once-per-calendar-day reset. Re-running on the same date is a no-op."""
    for_date = for_date or today_key()
    rng = rng or _rng
    conn = get_conn()
    try:
        _begin_write(conn)
        state = conn.execute("SELECT last_reset_date FROM app_state WHERE id = 1").fetchone()
        if state and state["last_reset_date"] == for_date:
            return {"today": for_date, "applied": False}

        bonuses = homestead_bonuses(_levels(conn))
        rested = bonuses["daily_rested_xp"]
        categories = [r["category"] for r in conn.execute("SELECT category FROM skill ORDER BY category").fetchall()]
        focus = rng.choice(categories) if categories else ""
        conn.execute(
            "UPDATE player SET daily_rush_used = 0, rested_xp = ?, daily_focus = ?, daily_focus_date = ? WHERE id = 1",
            (rested, focus, for_date),
        )
        conn.execute("UPDATE app_state SET last_reset_date = ? WHERE id = 1", (for_date,))
        _insert_event(conn, for_date, "daily_reset", f"New day. Rested XP banked: {rested}.", {"daily_focus": focus})
        _bump_revision(conn)
        conn.commit()
        logger.info("Daily reset applied for %s (rested_xp=%s, focus=%r)", for_date, rested, focus)
        return {"today": for_date, "applied": True, "rested_xp": rested, "daily_focus": focus, "rush_available": bonuses["rush_available"]}
    finally:
        conn.close()


def ensure_daily_cycle(for_date: str) -> None:
    state = get_app_state()
    if state["last_reset_date"] != for_date:
        run_daily_reset(for_date)


# --- quests --------------------------------------------------------------


def add_quest(
    name: str,
    category: str,
    xp: int,
    priority: str = Priority.MEDIUM.value,
    description: str | None = None,
    due_date: str | None = None,
) -> dict:
    quest_id = f"quest-{uuid.uuid4().hex[:12]}"
    conn = get_conn()
    try:
        conn.execute(
            """
            INSERT INTO quest (id, name, category, xp, priority, description, due_date, state, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'active', ?)
            """,
            (quest_id, name.strip(), category.strip(), max(0, int(xp)), Priority(priority).value, description, due_date, local_now_iso()),
        )
        _bump_revision(conn)
        conn.commit()
        return dict(conn.execute("SELECT * FROM quest WHERE id = ?", (quest_id,)).fetchone())
    finally:
        conn.close()


def update_quest(quest_id: str, **updates) -> bool:
    allowed = {"name", "category", "xp", "priority", "description", "due_date"}
    fields = {k: v for k, v in updates.items() if k in allowed and v is not None}
    if "category" in fields:
        fields["category"] = fields["category"].strip()
    if "priority" in fields:
        fields["priority"] = Priority(fields["priority"]).value
    if not fields:
        return False
    conn = get_conn()
    try:
        assignments = ", ".join(f"{k} = ?" for k in fields)
        cur = conn.execute(f"UPDATE quest SET {assignments} WHERE id = ? AND state = 'active'", (*fields.values(), quest_id))
        if cur.rowcount == 0:
            return False
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def get_active_quests() -> list[dict]:
    conn = get_conn()
    try:
        return [dict(r) for r in conn.execute("SELECT * FROM quest WHERE state = 'active' ORDER BY created_at DESC").fetchall()]
    finally:
        conn.close()


def get_completed_quests(limit: int = 100) -> list[dict]:
    conn = get_conn()
    try:
        rows = conn.execute("SELECT * FROM quest WHERE state = 'completed' ORDER BY completed_at DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def delete_quest(quest_id: str) -> bool:
    conn = get_conn()
    try:
        cur = conn.execute("DELETE FROM quest WHERE id = ?", (quest_id,))
        if cur.rowcount == 0:
            return False
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def restore_quest(quest_id: str) -> bool:
    conn = get_conn()
    try:
        cur = conn.execute(
            """
            UPDATE quest SET state = 'active', completed_at = NULL, reward_xp = NULL, reward_gold = NULL, critical = 0, rushed = 0
            WHERE id = ? AND state = 'completed'
            """,
            (quest_id,),
        )
        if cur.rowcount == 0:
            return False
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def _apply_streak(conn: sqlite3.Connection, player: sqlite3.Row, for_date: str) -> tuple[int, bool]:
    yesterday = (date.fromisoformat(for_date) - timedelta(days=1)).isoformat()
    streak, broken = next_streak(player["streak"], player["last_completion_date"], for_date, yesterday)
    if broken and player["streak"] > 0:
        ward = conn.execute(
            "SELECT id, name FROM loot_item WHERE equipped = 1 AND type = ? ORDER BY id LIMIT 1",
            (LootType.STREAK_PROTECTION.value,),
        ).fetchone()
        if ward is not None:
            conn.execute("DELETE FROM loot_item WHERE id = ?", (ward["id"],))
            _insert_event(conn, for_date, "streak_protected", f"{ward['name']} kept your streak alive.")
            return player["streak"] + 1, True
    extended = player["last_completion_date"] not in (None, for_date) and not broken
    return streak, extended


def complete_quest(quest_id: str, rng: random.Random | None = None, *, rush: bool = False) -> dict:
    rng = rng or _rng
    today = today_key()
    ensure_daily_cycle(today)
    conn = get_conn()
    try:
        _begin_write(conn)
        quest = conn.execute("SELECT * FROM quest WHERE id = ? AND state = 'active'", (quest_id,)).fetchone()
        if quest is None:
            return {"ok": False, "reason": "not_active"}
        player = conn.execute("SELECT * FROM player WHERE id = 1").fetchone()
        if player is None:
            raise RuntimeError("Missing player")
        levels = _levels(conn)
        if rush:
            if player["daily_rush_used"]:
                return {"ok": False, "reason": "rush_used"}
            if not homestead_bonuses(levels)["rush_available"]:
                return {"ok": False, "reason": "rush_locked"}

        completed_at = _stamp(today)
        claimed = conn.execute(
            "UPDATE quest SET state = 'completed', completed_at = ? WHERE id = ? AND state = 'active'",
            (completed_at, quest_id),
        ).rowcount
        if not claimed:
            conn.rollback()
            return {"ok": False, "reason": "not_active"}

        equipped = [dict(r) for r in conn.execute("SELECT * FROM loot_item WHERE equipped = 1").fetchall()]
        base_xp = quest["xp"] / 2 if rush else quest["xp"]
        focus = player["daily_focus"] if player["daily_focus_date"] == today else ""
        rewards = calculate_rewards(
            base_xp,
            quest["category"],
            equipped,
            focus,
            player["prestige_points"],
            levels,
            rested_xp=player["rested_xp"],
            rng=rng,
        )
        level, xp, required = absorb_xp(player["level"], player["xp"], rewards["xp"])
        streak, streak_extended = _apply_streak(conn, player, today)
        completed_today = conn.execute(
            "SELECT COUNT(*) FROM quest_history WHERE substr(completed_at, 1, 10) = ?", (today,)
        ).fetchone()[0] + 1

        conn.execute(
            """
            UPDATE player
            SET level = ?, xp = ?, xp_to_next = ?, gold = gold + ?, streak = ?, last_completion_date = ?,
                quests_completed = quests_completed + 1, total_xp = total_xp + ?, rested_xp = 0,
                daily_rush_used = CASE WHEN ? THEN 1 ELSE daily_rush_used END,
                longest_streak = MAX(longest_streak, ?), most_quests_in_day = MAX(most_quests_in_day, ?),
                highest_level = MAX(highest_level, ?), total_gold_earned = total_gold_earned + ?
            WHERE id = 1
            """,
            (level, xp, required, rewards["gold"], streak, today, rewards["xp"], int(rush), streak, completed_today, level, rewards["gold"]),
        )
        conn.execute(
            "UPDATE quest SET reward_xp = ?, reward_gold = ?, critical = ?, rushed = ? WHERE id = ?",
            (rewards["xp"], rewards["gold"], int(rewards["critical_success"]), int(rush), quest_id),
        )
        conn.execute(
            "INSERT INTO skill (category, level) VALUES (?, 1) ON CONFLICT(category) DO UPDATE SET level = level + 1",
            (quest["category"],),
        )
        conn.execute(
            """
            INSERT INTO quest_history (quest_id, name, category, xp, gold, critical, rushed, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (quest_id, quest["name"], quest["category"], rewards["xp"], rewards["gold"], int(rewards["critical_success"]), int(rush), completed_at),
        )
        if rewards["gold"] > 0:
            conn.execute(
                "INSERT INTO gold_transaction (amount, type, source, timestamp) VALUES (?, ?, ?, ?)",
                (rewards["gold"], TransactionType.EARNED.value, f"Quest: {quest['name']}", completed_at),
            )

        loot = roll_loot(rng)
        if loot:
            conn.execute(
                "INSERT INTO loot_item (item_key, name, type, category, value, rarity, equipped) VALUES (?, ?, ?, ?, ?, ?, 0)",
                (loot["key"], loot["name"], LootType(loot["type"]).value, loot["category"], loot["value"], loot["rarity"].value),
            )
            _insert_event(conn, today, "loot", f"Found item: {loot['name']}")

        leveled_up = level > player["level"]
        if leveled_up:
            _insert_event(conn, today, "level_up", f"Level up to {level}.")
        if rewards["critical_success"]:
            _insert_event(conn, today, "critical", f"Critical success on {quest['name']}!")
        _insert_event(conn, today, "quest", f"Completed {quest['name']} (+{rewards['xp']} XP, +{rewards['gold']} gold).")

        pack = load_oracle_pack(player["oracle_pack"])
        oracle = None
        if loot:
            oracle = narrative_line(pack, "loot_found", rng, "A treasure reveals itself.")
        elif leveled_up:
            oracle = narrative_line(pack, "level_up", rng, "Your power grows.")
        elif player["quests_completed"] == 0:
            oracle = narrative_line(pack, "first_quest", rng, "Your journey begins.")
        elif streak_extended:
            oracle = narrative_line(pack, "streak_continued", rng, "The streak continues.")

        unlocked = _refresh_progress_trackers(conn, today)
        _bump_revision(conn)
        conn.commit()
        return {
            "ok": True,
            "quest_id": quest_id,
            "xp": rewards["xp"],
            "gold": rewards["gold"],
            "xp_bonus": rewards["xp_bonus"],
            "gold_bonus": rewards["gold_bonus"],
            "critical_success": rewards["critical_success"],
            "rested_xp_used": rewards["rested_xp"],
            "rushed": rush,
            "level": level,
            "leveled_up": leveled_up,
            "streak": streak,
            "loot": {k: (v.value if hasattr(v, "value") else v) for k, v in loot.items()} if loot else None,
            "achievements_unlocked": unlocked,
            "oracle": oracle,
        }
    finally:
        conn.close()


def rush_quest(quest_id: str, rng: random.Random | None = None) -> dict:
    return complete_quest(quest_id, rng, rush=True)


# --- inventory -----------------------------------------------------------


def get_inventory() -> list[dict]:
    conn = get_conn()
    try:
        return [dict(r) for r in conn.execute("SELECT * FROM loot_item ORDER BY id").fetchall()]
    finally:
        conn.close()


def equip_inventory_item(item_id: int) -> bool:
    conn = get_conn()
    try:
        _begin_write(conn)
        item = conn.execute("SELECT * FROM loot_item WHERE id = ?", (item_id,)).fetchone()
        if not item:
            return False
        if item["equipped"]:
            return True
        equipped_count = conn.execute("SELECT COUNT(*) FROM loot_item WHERE equipped = 1").fetchone()[0]
        if equipped_count >= MAX_EQUIPPED:
            return False
        conn.execute("UPDATE loot_item SET equipped = 1 WHERE id = ?", (item_id,))
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def unequip_inventory_item(item_id: int) -> bool:
    conn = get_conn()
    try:
        cur = conn.execute("UPDATE loot_item SET equipped = 0 WHERE id = ? AND equipped = 1", (item_id,))
        if cur.rowcount == 0:
            return False
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


# --- homestead & gold sinks ----------------------------------------------


def get_homestead() -> list[dict]:
    conn = get_conn()
    try:
        rows = [dict(r) for r in conn.execute("SELECT * FROM homestead_building").fetchall()]
    finally:
        conn.close()
    order = [entry["building_id"] for entry in HOMESTEAD_CATALOG]
    rows.sort(key=lambda b: order.index(b["building_id"]) if b["building_id"] in order else len(order))
    for row in rows:
        row["upgrade_cost"] = upgrade_cost(row["base_cost"], row["level"])
    return rows


def _spend_gold(conn: sqlite3.Connection, amount: int, source: str, for_date: str) -> bool:
    cur = conn.execute("UPDATE player SET gold = gold - ? WHERE id = 1 AND gold >= ?", (amount, amount))
    if cur.rowcount == 0:
        return False
    conn.execute(
        "INSERT INTO gold_transaction (amount, type, source, timestamp) VALUES (?, ?, ?, ?)",
        (amount, TransactionType.SPENT.value, source, _stamp(for_date)),
    )
    return True


def upgrade_building(building_id: str) -> bool:
    today = today_key()
    conn = get_conn()
    try:
        building = conn.execute("SELECT * FROM homestead_building WHERE building_id = ?", (building_id,)).fetchone()
        if not building:
            return False
        cost = upgrade_cost(building["base_cost"], building["level"])
        if not _spend_gold(conn, cost, f"Upgrade: {building['name']}", today):
            return False
        conn.execute("UPDATE homestead_building SET level = level + 1 WHERE building_id = ?", (building_id,))
        _insert_event(conn, today, "upgrade", f"{building['name']} upgraded to level {building['level'] + 1}.", {"cost": cost})
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def spend_on_leisure(activity_id: str) -> bool:
    activity = next((a for a in load_leisure_catalog() if a["id"] == activity_id), None)
    if activity is None:
        return False
    return _record_leisure(activity["name"], int(activity["cost"]))


def _record_leisure(activity_name: str, cost: int) -> bool:
    today = today_key()
    conn = get_conn()
    try:
        if not _spend_gold(conn, cost, f"Leisure: {activity_name}", today):
            return False
        conn.execute(
            "INSERT INTO leisure_history (activity_name, cost, timestamp) VALUES (?, ?, ?)",
            (activity_name, cost, _stamp(today)),
        )
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def add_custom_reward(name: str, cost: int, description: str | None = None, category: str | None = None) -> int:
    conn = get_conn()
    try:
        cur = conn.execute(
            "INSERT INTO custom_reward (name, description, cost, category, created_at) VALUES (?, ?, ?, ?, ?)",
            (name.strip(), description, max(0, int(cost)), category, local_now_iso()),
        )
        _bump_revision(conn)
        conn.commit()
        return int(cur.lastrowid)
    finally:
        conn.close()


def update_custom_reward(reward_id: int, **updates) -> bool:
    fields = {k: v for k, v in updates.items() if k in {"name", "description", "cost", "category"} and v is not None}
    if not fields:
        return False
    conn = get_conn()
    try:
        assignments = ", ".join(f"{k} = ?" for k in fields)
        cur = conn.execute(f"UPDATE custom_reward SET {assignments} WHERE id = ?", (*fields.values(), reward_id))
        if cur.rowcount == 0:
            return False
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def delete_custom_reward(reward_id: int) -> bool:
    conn = get_conn()
    try:
        cur = conn.execute("DELETE FROM custom_reward WHERE id = ?", (reward_id,))
        if cur.rowcount == 0:
            return False
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def get_custom_rewards() -> list[dict]:
    conn = get_conn()
    try:
        return [dict(r) for r in conn.execute("SELECT * FROM custom_reward ORDER BY id").fetchall()]
    finally:
        conn.close()


def redeem_custom_reward(reward_id: int) -> bool:
    conn = get_conn()
    try:
        reward = conn.execute("SELECT name, cost FROM custom_reward WHERE id = ?", (reward_id,)).fetchone()
    finally:
        conn.close()
    if reward is None:
        return False
    return _record_leisure(reward["name"], int(reward["cost"]))


# --- achievements, goals, challenges -------------------------------------


def _refresh_progress_trackers(conn: sqlite3.Connection, for_date: str) -> list[str]:
    player = conn.execute("SELECT * FROM player WHERE id = 1").fetchone()
    history = [dict(r) for r in conn.execute("SELECT category, completed_at FROM quest_history").fetchall()]
    earned = conn.execute(
        "SELECT COALESCE(SUM(amount), 0) FROM gold_transaction WHERE type = ?", (TransactionType.EARNED.value,)
    ).fetchone()[0]
    stats = collect_stats(dict(player), history, earned, for_date)
    now = _stamp(for_date)

    previous = {r["achievement_id"]: r["unlocked_at"] for r in conn.execute("SELECT achievement_id, unlocked_at FROM achievement").fetchall()}
    unlocked = []
    for entry in evaluate(stats, previous, now):
        conn.execute(
            """
            INSERT INTO achievement (achievement_id, progress, target, unlocked_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(achievement_id) DO UPDATE SET progress = excluded.progress, target = excluded.target,
                unlocked_at = COALESCE(achievement.unlocked_at, excluded.unlocked_at)
            """,
            (entry["achievement_id"], entry["progress"], entry["target"], entry["unlocked_at"]),
        )
        if entry["just_unlocked"]:
            unlocked.append(entry["achievement_id"])
            _insert_event(conn, for_date, "achievement", f"Achievement unlocked: {entry['name']}")

    goals = [dict(r) for r in conn.execute("SELECT * FROM goal").fetchall()]
    for goal in evaluate_goals(goals, stats, now):
        conn.execute(
            "UPDATE goal SET current = ?, completed_at = COALESCE(completed_at, ?) WHERE id = ?",
            (goal["current"], goal["completed_at"], goal["id"]),
        )
    return unlocked


def refresh_achievements() -> list[str]:
    today = today_key()
    conn = get_conn()
    try:
        unlocked = _refresh_progress_trackers(conn, today)
        conn.commit()
        return unlocked
    finally:
        conn.close()


def get_achievements() -> list[dict]:
    conn = get_conn()
    try:
        stored = {r["achievement_id"]: dict(r) for r in conn.execute("SELECT * FROM achievement").fetchall()}
    finally:
        conn.close()
    out = []
    for definition in ACHIEVEMENTS:
        row = stored.get(definition["achievement_id"], {})
        out.append({**definition, "progress": row.get("progress", 0), "unlocked_at": row.get("unlocked_at")})
    return out


def add_goal(name: str, goal_type: str, target: int, description: str | None = None, category: str | None = None) -> int:
    today = today_key()
    conn = get_conn()
    try:
        cur = conn.execute(
            "INSERT INTO goal (name, description, type, category, target, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (name.strip(), description, GoalType(goal_type).value, (category or "").strip() or None, max(1, int(target)), local_now_iso()),
        )
        _refresh_progress_trackers(conn, today)
        _bump_revision(conn)
        conn.commit()
        return int(cur.lastrowid)
    finally:
        conn.close()


def delete_goal(goal_id: int) -> bool:
    conn = get_conn()
    try:
        cur = conn.execute("DELETE FROM goal WHERE id = ?", (goal_id,))
        if cur.rowcount == 0:
            return False
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


def get_goals() -> list[dict]:
    conn = get_conn()
    try:
        return [dict(r) for r in conn.execute("SELECT * FROM goal ORDER BY id").fetchall()]
    finally:
        conn.close()


def _todays_history(conn: sqlite3.Connection, for_date: str) -> list[dict]:
    rows = conn.execute("SELECT * FROM quest_history WHERE substr(completed_at, 1, 10) = ?", (for_date,)).fetchall()
    return [dict(r) for r in rows]


def get_daily_challenges(for_date: str | None = None) -> list[dict]:
    for_date = for_date or today_key()
    conn = get_conn()
    try:
        history = _todays_history(conn, for_date)
        claimed = {r["challenge_id"] for r in conn.execute("SELECT challenge_id FROM challenge_claim").fetchall()}
    finally:
        conn.close()
    out = []
    for challenge in generate_daily_challenges(for_date):
        progress = challenge_progress(challenge, history)
        out.append({**challenge, "progress": progress, "completed": progress >= challenge["count"], "claimed": challenge["challenge_id"] in claimed})
    return out


def claim_daily_challenge(challenge_id: str) -> bool:
    today = today_key()
    challenge = next((c for c in get_daily_challenges(today) if c["challenge_id"] == challenge_id), None)
    if challenge is None or not challenge["completed"] or challenge["claimed"]:
        return False
    conn = get_conn()
    try:
        _begin_write(conn)
        cur = conn.execute(
            "INSERT INTO challenge_claim (challenge_id, claimed_at) VALUES (?, ?) ON CONFLICT(challenge_id) DO NOTHING",
            (challenge_id, _stamp(today)),
        )
        if cur.rowcount == 0:
            return False
        player = conn.execute("SELECT level, xp FROM player WHERE id = 1").fetchone()
        if player is None:
            raise RuntimeError("Missing player")
        level, xp, required = absorb_xp(player["level"], player["xp"], challenge["reward_xp"])
        conn.execute(
            """
            UPDATE player SET level = ?, xp = ?, xp_to_next = ?, gold = gold + ?, total_xp = total_xp + ?,
                highest_level = MAX(highest_level, ?), total_gold_earned = total_gold_earned + ?
            WHERE id = 1
            """,
            (level, xp, required, challenge["reward_gold"], challenge["reward_xp"], level, challenge["reward_gold"]),
        )
        conn.execute(
            "INSERT INTO gold_transaction (amount, type, source, timestamp) VALUES (?, ?, ?, ?)",
            (challenge["reward_gold"], TransactionType.EARNED.value, f"Challenge: {challenge['name']}", _stamp(today)),
        )
        _insert_event(conn, today, "challenge", f"Challenge complete: {challenge['name']}")
        _refresh_progress_trackers(conn, today)
        _bump_revision(conn)
        conn.commit()
        return True
    finally:
        conn.close()


# --- snapshots, save data ------------------------------------------------


def get_progress_snapshot(for_date: str) -> dict:
    conn = get_conn()
    try:
        player = dict(conn.execute("SELECT * FROM player WHERE id = 1").fetchone())
        skills = {r["category"]: r["level"] for r in conn.execute("SELECT * FROM skill ORDER BY level DESC, category").fetchall()}
        items = [dict(r) for r in conn.execute("SELECT * FROM loot_item ORDER BY id").fetchall()]
        history = [dict(r) for r in conn.execute("SELECT * FROM quest_history ORDER BY id DESC LIMIT 50").fetchall()]
        ledger = [dict(r) for r in conn.execute("SELECT * FROM gold_transaction ORDER BY id DESC LIMIT 100").fetchall()]
        events = [dict(e) for e in conn.execute("SELECT * FROM event_log ORDER BY id DESC LIMIT 12").fetchall()]
        levels = _levels(conn)
    finally:
        conn.close()
    return {
        "today": for_date,
        "player": player,
        "daily_focus": player["daily_focus"] if player["daily_focus_date"] == for_date else "",
        "skills": skills,
        "inventory": {"equipped": [i for i in items if i["equipped"]], "stored": [i for i in items if not i["equipped"]]},
        "bonuses": homestead_bonuses(levels),
        "personal_records": {
            "longest_streak": player["longest_streak"],
            "most_quests_in_day": player["most_quests_in_day"],
            "highest_level": player["highest_level"],
            "total_gold_earned": player["total_gold_earned"],
        },
        "quest_history": history,
        "gold_transactions": ledger,
        "events": events,
    }


def export_save_data() -> dict:
    conn = get_conn()
    try:
        out = {}
        for table in SAVE_TABLES:
            out[table] = [dict(r) for r in conn.execute(f"SELECT * FROM {table}").fetchall()]
        return out
    finally:
        conn.close()


def check_save_data(payload) -> str | None:
    """Describe the first shape problem in a save payload, or None when it can be imported."""
    if not isinstance(payload, dict):
        return "save data must be a JSON object"
    conn = get_conn()
    try:
        for table in SAVE_TABLES:
            rows = payload.get(table)
            if rows is None:
                continue
            if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
                return f"{table} must be a list of rows"
            if table in ("player", "app_state") and len(rows) != 1:
                return f"{table} must hold exactly one row"
            if not rows:
                continue
            columns = {c[1] for c in conn.execute(f"PRAGMA table_info({table})").fetchall()}
            keys = set(rows[0])
            if not keys or not keys <= columns:
                return f"{table} has unknown columns: {sorted(keys - columns)}"
            if any(set(r) != keys for r in rows):
                return f"{table} rows do not share the same columns"
    finally:
        conn.close()
    return None


def import_save_data(payload: dict) -> None:
    conn = get_conn()
    try:
        for table in SAVE_TABLES:
            rows = payload.get(table)
            if rows is None:
                continue
            conn.execute(f"DELETE FROM {table}")
            if not rows:
                continue
            cols = list(rows[0].keys())
            placeholders = ",".join("?" for _ in cols)
            for row in rows:
                conn.execute(f"INSERT INTO {table} ({','.join(cols)}) VALUES ({placeholders})", tuple(row[c] for c in cols))
        conn.commit()
    finally:
        conn.close()


def export_history_csv() -> str:
    conn = get_conn()
    try:
        rows = conn.execute("SELECT name, category, xp, gold, completed_at FROM quest_history ORDER BY id").fetchall()
    finally:
        conn.close()
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["Name", "Category", "XP", "Gold", "Completed At"])
    for row in rows:
        writer.writerow([row["name"], row["category"], row["xp"], row["gold"], row["completed_at"][:10]])
    return buf.getvalue()


def reset_progress() -> None:
    """Wipe progression and logs. Achievement unlocks and goals survive."""
    conn = get_conn()
    try:
        for table in ["quest", "skill", "loot_item", "quest_history", "gold_transaction", "leisure_history", "challenge_claim", "event_log"]:
            conn.execute(f"DELETE FROM {table}")
        keep = {"id", "name", "oracle_pack", "testing_mode", "discord_webhook_url", "ntfy_topic_url", "sync_url", "sync_user_id"}
        fields = {k: v for k, v in DEFAULT_PLAYER.items() if k not in keep}
        assignments = ", ".join(f"{k} = :{k}" for k in fields)
        conn.execute(f"UPDATE player SET {assignments} WHERE id = 1", fields)
        conn.execute("UPDATE homestead_building SET level = 0")
        conn.execute("UPDATE app_state SET last_reset_date = NULL WHERE id = 1")
        _bump_revision(conn)
        conn.commit()
        logger.info("Progress reset")
    finally:
        conn.close()


def mark_synced(revision: int) -> None:
    conn = get_conn()
    try:
        conn.execute("UPDATE app_state SET last_synced_at = ? WHERE id = 1 AND revision = ?", (local_now_iso(), revision))
        conn.commit()
    finally:
        conn.close()
