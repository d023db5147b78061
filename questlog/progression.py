from __future__ import annotations

import math
import random
from enum import Enum


class LootType(str, Enum):
    XP_BOOST = "xp_boost"
    GOLD_BOOST = "gold_boost"
    STREAK_PROTECTION = "streak_protection"


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class BonusType(str, Enum):
    CRITICAL_CHANCE = "critical_chance"
    DAILY_RUSH = "daily_rush"
    RESTED_XP = "rested_xp"
    BETTER_BOUNTIES = "better_bounties"


class TransactionType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


DAILY_FOCUS_MULTIPLIER = 1.25
PRESTIGE_BONUS_PER_POINT = 0.02
CRIT_CHANCE_PER_LEVEL = 0.05
RESTED_XP_PER_LEVEL = 20
LOOT_CHANCE = 0.10
UPGRADE_COST_GROWTH = 1.5
MAX_EQUIPPED = 3

LOOT_TABLE: list[dict] = [
    {"key": "g1", "name": "Gloves of Diligence", "type": LootType.XP_BOOST, "category": "Work", "value": 0.05, "rarity": Rarity.COMMON},
    {"key": "r1", "name": "Ring of Focus", "type": LootType.XP_BOOST, "category": None, "value": 0.10, "rarity": Rarity.RARE},
    {"key": "a1", "name": "Amulet of Prosperity", "type": LootType.GOLD_BOOST, "category": None, "value": 0.15, "rarity": Rarity.EPIC},
    {"key": "c1", "name": "Crown of Champions", "type": LootType.XP_BOOST, "category": None, "value": 0.20, "rarity": Rarity.LEGENDARY},
]

HOMESTEAD_CATALOG: list[dict] = [
    {"building_id": "alchemist", "name": "Alchemist Lab", "description": "Brews luck into every quest.", "base_cost": 100, "bonus_type": BonusType.CRITICAL_CHANCE},
    {"building_id": "chrono", "name": "Chrono Tower", "description": "Bends time to rush one quest a day.", "base_cost": 150, "bonus_type": BonusType.DAILY_RUSH},
    {"building_id": "garden", "name": "Zen Garden", "description": "Banks rested XP overnight.", "base_cost": 80, "bonus_type": BonusType.RESTED_XP},
    {"building_id": "guild", "name": "Adventurers' Guild", "description": "Posts higher tier bounties.", "base_cost": 200, "bonus_type": BonusType.BETTER_BOUNTIES},
]


def xp_to_next(level: int) -> int:
    return math.floor(100 * math.pow(level, 1.5))


def absorb_xp(level: int, xp: int, xp_gain: int) -> tuple[int, int, int]:
    """Add xp_gain and cascade level-ups.

    Returns (level, xp, xp_to_next) with xp < xp_to_next.
    """
    if xp_gain < 0:
        raise ValueError("xp_gain must be non-negative")
    xp += xp_gain
    required = xp_to_next(level)
    while xp >= required:
        xp -= required
        level += 1
        required = xp_to_next(level)
    return level, xp, required


def building_levels(homestead: list[dict]) -> dict[str, int]:
    levels = {entry["building_id"]: 0 for entry in HOMESTEAD_CATALOG}
    for building in homestead:
        levels[building["building_id"]] = int(building["level"])
    return levels


def homestead_bonuses(levels: dict[str, int]) -> dict:
    bonuses: dict = {}
    for entry in HOMESTEAD_CATALOG:
        level = levels.get(entry["building_id"], 0)
        bonus_type = entry["bonus_type"]
        if bonus_type is BonusType.CRITICAL_CHANCE:
            bonuses["critical_chance"] = level * CRIT_CHANCE_PER_LEVEL
        elif bonus_type is BonusType.DAILY_RUSH:
            bonuses["rush_available"] = level > 0
        elif bonus_type is BonusType.RESTED_XP:
            bonuses["daily_rested_xp"] = level * RESTED_XP_PER_LEVEL
        elif bonus_type is BonusType.BETTER_BOUNTIES:
            bonuses["bounty_tier"] = level
        else:
            raise ValueError(f"Unhandled bonus type: {bonus_type}")
    return bonuses


def upgrade_cost(base_cost: int, level: int) -> int:
    return math.floor(base_cost * math.pow(UPGRADE_COST_GROWTH, level))


def calculate_rewards(
    quest_xp: float,
    quest_category: str,
    equipped: list[dict],
    daily_focus: str | None,
    prestige_points: int,
    homestead_levels: dict[str, int],
    rested_xp: int = 0,
    rng: random.Random | None = None,
) -> dict:
    rng = rng or random.Random()
    xp_bonus = 1.0
    gold_bonus = 1.0

    for item in equipped:
        kind = LootType(item["type"])
        if kind is LootType.XP_BOOST:
            if not item.get("category") or item["category"] == quest_category:
                xp_bonus += float(item["value"])
        elif kind is LootType.GOLD_BOOST:
            gold_bonus += float(item["value"])
        elif kind is LootType.STREAK_PROTECTION:
            continue
        else:
            raise ValueError(f"Unhandled loot type: {kind}")

    if daily_focus and quest_category == daily_focus:
        xp_bonus *= DAILY_FOCUS_MULTIPLIER

    prestige_bonus = 1 + prestige_points * PRESTIGE_BONUS_PER_POINT
    xp_bonus *= prestige_bonus
    gold_bonus *= prestige_bonus

    # The draw happens even at 0% so loot rolls see the same sequence either way.
    critical = rng.random() < homestead_bonuses(homestead_levels)["critical_chance"]
    if critical:
        xp_bonus *= 2
        gold_bonus *= 2

    final_xp = math.floor(quest_xp * xp_bonus)
    final_gold = math.floor((quest_xp / 10) * gold_bonus)
    rested = max(0, int(rested_xp))
    if rested > 0:
        final_xp += rested

    return {
        "xp": final_xp,
        "gold": final_gold,
        "xp_bonus": xp_bonus,
        "gold_bonus": gold_bonus,
        "critical_success": critical,
        "rested_xp": rested,
    }


def roll_loot(rng: random.Random | None = None) -> dict | None:
    rng = rng or random.Random()
    if rng.random() < LOOT_CHANCE:
        return dict(rng.choice(LOOT_TABLE))
    return None


def next_streak(current: int, last_date: str | None, today: str, yesterday: str) -> tuple[int, bool]:
    """Return (streak, broken) for a completion made on `today`."""
    if last_date == today:
        return max(current, 1), False
    if last_date == yesterday:
        return current + 1, False
    if not last_date:
        return 1, False
    return 1, True
