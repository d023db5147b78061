from __future__ import annotations

from enum import Enum

from questlog.progression import Rarity


class GoalType(str, Enum):
    QUESTS = "quests"
    CATEGORY_QUESTS = "category_quests"
    XP = "xp"
    GOLD = "gold"
    STREAK = "streak"


def _entry(achievement_id: str, name: str, description: str, target: int, category: str, rarity: Rarity, source: str) -> dict:
    return {
        "achievement_id": achievement_id,
        "name": name,
        "description": description,
        "target": target,
        "category": category,
        "rarity": rarity.value,
        "source": source,
    }


ACHIEVEMENTS: list[dict] = [
    _entry("first_quest", "First Steps", "Complete your first quest", 1, "quests", Rarity.COMMON, "quests_completed"),
    _entry("quest_10", "Journeyman", "Complete 10 quests", 10, "quests", Rarity.COMMON, "quests_completed"),
    _entry("quest_50", "Veteran", "Complete 50 quests", 50, "quests", Rarity.RARE, "quests_completed"),
    _entry("quest_100", "Centurion", "Complete 100 quests", 100, "quests", Rarity.EPIC, "quests_completed"),
    _entry("quest_500", "Legend", "Complete 500 quests", 500, "quests", Rarity.LEGENDARY, "quests_completed"),
    _entry("streak_3", "Getting Started", "Maintain a 3-day streak", 3, "streak", Rarity.COMMON, "streak"),
    _entry("streak_7", "Week Warrior", "Maintain a 7-day streak", 7, "streak", Rarity.RARE, "streak"),
    _entry("streak_30", "Monthly Master", "Maintain a 30-day streak", 30, "streak", Rarity.EPIC, "streak"),
    _entry("streak_100", "Unstoppable", "Maintain a 100-day streak", 100, "streak", Rarity.LEGENDARY, "streak"),
    _entry("xp_1000", "Knowledge Seeker", "Earn 1,000 total XP", 1000, "xp", Rarity.COMMON, "total_xp"),
    _entry("xp_5000", "Wisdom Gatherer", "Earn 5,000 total XP", 5000, "xp", Rarity.RARE, "total_xp"),
    _entry("xp_10000", "Master Scholar", "Earn 10,000 total XP", 10000, "xp", Rarity.EPIC, "total_xp"),
    _entry("gold_500", "Coin Collector", "Earn 500 total gold", 500, "gold", Rarity.COMMON, "gold_earned"),
    _entry("gold_2000", "Treasure Hunter", "Earn 2,000 total gold", 2000, "gold", Rarity.RARE, "gold_earned"),
    _entry("gold_5000", "Wealthy Adventurer", "Earn 5,000 total gold", 5000, "gold", Rarity.EPIC, "gold_earned"),
    _entry("level_10", "Rising Star", "Reach level 10", 10, "special", Rarity.RARE, "level"),
    _entry("level_25", "Seasoned Hero", "Reach level 25", 25, "special", Rarity.EPIC, "level"),
    _entry("perfect_day", "Perfect Day", "Complete 10 quests in a single day", 10, "special", Rarity.RARE, "completed_today"),
    _entry("balanced_hero", "Balanced Hero", "Complete quests in 5 different categories", 5, "special", Rarity.EPIC, "distinct_categories"),
]


def collect_stats(player: dict, history: list[dict], gold_earned: int, today: str) -> dict:
    """Cumulative counters every achievement and goal reads from.

    `history` rows need `category` and `completed_at` (ISO timestamp in local time).
    """
    completed_today = sum(1 for h in history if str(h["completed_at"])[:10] == today)
    category_counts: dict[str, int] = {}
    for h in history:
        category_counts[h["category"]] = category_counts.get(h["category"], 0) + 1
    return {
        "quests_completed": int(player["quests_completed"]),
        "streak": int(player["streak"]),
        "total_xp": int(player["total_xp"]),
        "gold_earned": int(gold_earned),
        "level": int(player["level"]),
        "completed_today": completed_today,
        "distinct_categories": len(category_counts),
        "category_counts": category_counts,
    }


def evaluate(stats: dict, previous: dict[str, str | None], now: str) -> list[dict]:
    """Project achievement state from stats.

    `previous` maps achievement_id to its stored unlocked_at. An existing unlock is
    carried over untouched; an unset one becomes `now` once progress reaches target.
    """
    out = []
    for definition in ACHIEVEMENTS:
        progress = int(stats[definition["source"]])
        unlocked_at = previous.get(definition["achievement_id"])
        just_unlocked = False
        if not unlocked_at and progress >= definition["target"]:
            unlocked_at = now
            just_unlocked = True
        out.append({**definition, "progress": progress, "unlocked_at": unlocked_at, "just_unlocked": just_unlocked})
    return out


def goal_current(goal: dict, stats: dict) -> int:
    kind = GoalType(goal["type"])
    if kind is GoalType.QUESTS:
        return stats["quests_completed"]
    if kind is GoalType.CATEGORY_QUESTS:
        return stats["category_counts"].get((goal.get("category") or "").strip(), 0)
    if kind is GoalType.XP:
        return stats["total_xp"]
    if kind is GoalType.GOLD:
        return stats["gold_earned"]
    if kind is GoalType.STREAK:
        return stats["streak"]
    raise ValueError(f"Unhandled goal type: {kind}")


def evaluate_goals(goals: list[dict], stats: dict, now: str) -> list[dict]:
    out = []
    for goal in goals:
        current = goal_current(goal, stats)
        completed_at = goal.get("completed_at")
        if not completed_at and current >= int(goal["target"]):
            completed_at = now
        out.append({**goal, "current": current, "completed_at": completed_at})
    return out
