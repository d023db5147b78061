from __future__ import annotations

from datetime import date

CHALLENGE_TEMPLATES: list[dict] = [
    {"name": "Daily Hustle", "description": "Complete 3 quests today", "kind": "complete_quests", "count": 3, "reward_xp": 50, "reward_gold": 30},
    {"name": "Quest Marathon", "description": "Complete 5 quests today", "kind": "complete_quests", "count": 5, "reward_xp": 100, "reward_gold": 60},
    {"name": "Overachiever", "description": "Complete 8 quests today", "kind": "complete_quests", "count": 8, "reward_xp": 200, "reward_gold": 120},
    {"name": "XP Hunter", "description": "Earn 150 XP today", "kind": "earn_xp", "count": 150, "reward_xp": 30, "reward_gold": 40},
    {"name": "Knowledge Seeker", "description": "Earn 300 XP today", "kind": "earn_xp", "count": 300, "reward_xp": 50, "reward_gold": 80},
    {"name": "Work Focus", "description": "Complete 2 Work quests", "kind": "complete_category", "count": 2, "category": "Work", "reward_xp": 60, "reward_gold": 40},
    {"name": "Fitness Challenge", "description": "Complete 2 Fitness quests", "kind": "complete_category", "count": 2, "category": "Fitness", "reward_xp": 60, "reward_gold": 40},
    {"name": "Learning Sprint", "description": "Complete 2 Learning quests", "kind": "complete_category", "count": 2, "category": "Learning", "reward_xp": 60, "reward_gold": 40},
    {"name": "Mindfulness Master", "description": "Complete 2 Mindfulness quests", "kind": "complete_category", "count": 2, "category": "Mindfulness", "reward_xp": 60, "reward_gold": 40},
    {"name": "Social Butterfly", "description": "Complete 2 Social quests", "kind": "complete_category", "count": 2, "category": "Social", "reward_xp": 60, "reward_gold": 40},
]


def generate_daily_challenges(for_date: str) -> list[dict]:
    # Same date always yields the same set.
    seed = date.fromisoformat(for_date).timetuple().tm_yday % 20
    out = []
    for i in range(2 + seed % 2):
        template = CHALLENGE_TEMPLATES[(seed + i * 7) % len(CHALLENGE_TEMPLATES)]
        out.append({"challenge_id": f"challenge_{for_date}_{i}", "date": for_date, **template})
    return out


def challenge_progress(challenge: dict, todays_history: list[dict]) -> int:
    kind = challenge["kind"]
    if kind == "complete_quests":
        return len(todays_history)
    if kind == "earn_xp":
        return sum(int(h["xp"]) for h in todays_history)
    if kind == "complete_category":
        return sum(1 for h in todays_history if h["category"] == challenge["category"])
    raise ValueError(f"Unhandled challenge kind: {kind}")
