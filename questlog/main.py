from __future__ import annotations

import json
import logging
import sqlite3

from fastapi import Body, FastAPI, Form
from fastapi.responses import JSONResponse, PlainTextResponse

from questlog.coach import CoachClient, CoachError, build_coach_request, build_player_context
from questlog.content import load_leisure_catalog
from questlog.db import (
    add_custom_reward,
    add_goal,
    add_quest,
    check_save_data,
    claim_daily_challenge,
    complete_quest,
    delete_custom_reward,
    delete_goal,
    delete_quest,
    equip_inventory_item,
    export_history_csv,
    export_save_data,
    get_achievements,
    get_active_quests,
    get_completed_quests,
    get_custom_rewards,
    get_daily_challenges,
    get_goals,
    get_homestead,
    get_inventory,
    get_player,
    get_progress_snapshot,
    import_save_data,
    redeem_custom_reward,
    reset_progress,
    restore_quest,
    run_daily_reset,
    rush_quest,
    spend_on_leisure,
    testing_advance_day,
    today_key,
    unequip_inventory_item,
    update_custom_reward,
    update_quest,
    update_settings,
    upgrade_building,
)
from questlog.session import push_remote, start_session

logger = logging.getLogger(__name__)

app = FastAPI(title="QuestLog")

REJECTIONS = {
    "not_active": (404, "Quest not found or already completed."),
    "rush_used": (409, "Daily rush already used today."),
    "rush_locked": (409, "Build the Chrono Tower to unlock the daily rush."),
}


@app.on_event("startup")
def startup() -> None:
    # Quest completion routes are only served once this has returned.
    start_session()


def _changed(payload: dict, status_code: int = 200) -> JSONResponse:
    synced = push_remote()
    return JSONResponse({**payload, "synced": synced}, status_code=status_code)


def _rejected(message: str, status_code: int = 409) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def _outcome(result: dict) -> JSONResponse:
    if not result["ok"]:
        status_code, message = REJECTIONS[result["reason"]]
        return JSONResponse({**result, "error": message}, status_code=status_code)
    return _changed(result)


@app.get("/api/state", response_class=JSONResponse)
def state() -> JSONResponse:
    today = today_key()
    snap = get_progress_snapshot(today)
    return JSONResponse(
        {
            **snap,
            "quests": get_active_quests(),
            "homestead": get_homestead(),
            "challenges": get_daily_challenges(today),
        }
    )


@app.get("/api/quests", response_class=JSONResponse)
def quests() -> JSONResponse:
    return JSONResponse(get_active_quests())


@app.get("/api/quests/completed", response_class=JSONResponse)
def completed_quests() -> JSONResponse:
    return JSONResponse(get_completed_quests())


@app.post("/api/quests")
def create_quest(
    name: str = Form(...),
    category: str = Form(...),
    xp: int = Form(...),
    priority: str = Form("medium"),
    description: str = Form(""),
    due_date: str = Form(""),
) -> JSONResponse:
    if not name.strip() or not category.strip():
        return _rejected("Quest name and category are required.", 422)
    if priority not in ("low", "medium", "high"):
        return _rejected("Priority must be low, medium or high.", 422)
    quest = add_quest(name, category, xp, priority, description or None, due_date or None)
    return _changed({"ok": True, "quest": quest}, 201)


@app.post("/api/quests/{quest_id}/edit")
def edit_quest(
    quest_id: str,
    name: str = Form(None),
    category: str = Form(None),
    xp: int = Form(None),
    priority: str = Form(None),
    description: str = Form(None),
    due_date: str = Form(None),
) -> JSONResponse:
    if priority is not None and priority not in ("low", "medium", "high"):
        return _rejected("Priority must be low, medium or high.", 422)
    if not update_quest(quest_id, name=name, category=category, xp=xp, priority=priority, description=description, due_date=due_date):
        return _rejected("Quest not found or nothing to update.", 404)
    return _changed({"ok": True})


@app.post("/api/quests/{quest_id}/complete")
def quest_complete(quest_id: str) -> JSONResponse:
    return _outcome(complete_quest(quest_id))


@app.post("/api/quests/{quest_id}/rush")
def quest_rush(quest_id: str) -> JSONResponse:
    return _outcome(rush_quest(quest_id))


@app.post("/api/quests/{quest_id}/restore")
def quest_restore(quest_id: str) -> JSONResponse:
    if not restore_quest(quest_id):
        return _rejected("Quest is not in the archive.", 404)
    return _changed({"ok": True})


@app.post("/api/quests/{quest_id}/delete")
def quest_delete(quest_id: str) -> JSONResponse:
    if not delete_quest(quest_id):
        return _rejected("Quest not found.", 404)
    return _changed({"ok": True})


@app.get("/api/inventory", response_class=JSONResponse)
def inventory() -> JSONResponse:
    return JSONResponse(get_inventory())


@app.post("/api/inventory/equip")
def inventory_equip(item_id: int = Form(...)) -> JSONResponse:
    if not equip_inventory_item(item_id):
        return _rejected("Maximum 3 items can be equipped!")
    return _changed({"ok": True})


@app.post("/api/inventory/unequip")
def inventory_unequip(item_id: int = Form(...)) -> JSONResponse:
    if not unequip_inventory_item(item_id):
        return _rejected("Item is not equipped.", 404)
    return _changed({"ok": True})


@app.get("/api/homestead", response_class=JSONResponse)
def homestead() -> JSONResponse:
    return JSONResponse(get_homestead())


@app.post("/api/homestead/upgrade")
def homestead_upgrade(building_id: str = Form(...)) -> JSONResponse:
    if not upgrade_building(building_id):
        return _rejected("Not enough gold for this upgrade.")
    return _changed({"ok": True, "homestead": get_homestead()})


@app.get("/api/leisure", response_class=JSONResponse)
def leisure() -> JSONResponse:
    return JSONResponse(load_leisure_catalog())


@app.post("/api/leisure/spend")
def leisure_spend(activity_id: str = Form(...)) -> JSONResponse:
    if not spend_on_leisure(activity_id):
        return _rejected("Not enough gold for this reward.")
    return _changed({"ok": True, "gold": get_player()["gold"]})


@app.get("/api/rewards", response_class=JSONResponse)
def rewards() -> JSONResponse:
    return JSONResponse(get_custom_rewards())


@app.post("/api/rewards")
def rewards_create(name: str = Form(...), cost: int = Form(...), description: str = Form(""), category: str = Form("")) -> JSONResponse:
    reward_id = add_custom_reward(name, cost, description or None, category or None)
    return _changed({"ok": True, "id": reward_id}, 201)


@app.post("/api/rewards/{reward_id}/edit")
def rewards_edit(
    reward_id: int,
    name: str = Form(None),
    cost: int = Form(None),
    description: str = Form(None),
    category: str = Form(None),
) -> JSONResponse:
    if not update_custom_reward(reward_id, name=name, cost=cost, description=description, category=category):
        return _rejected("Reward not found or nothing to update.", 404)
    return _changed({"ok": True})


@app.post("/api/rewards/{reward_id}/delete")
def rewards_delete(reward_id: int) -> JSONResponse:
    if not delete_custom_reward(reward_id):
        return _rejected("Reward not found.", 404)
    return _changed({"ok": True})


@app.post("/api/rewards/{reward_id}/redeem")
def rewards_redeem(reward_id: int) -> JSONResponse:
    if not redeem_custom_reward(reward_id):
        return _rejected("Not enough gold for this reward.")
    return _changed({"ok": True, "gold": get_player()["gold"]})


@app.get("/api/achievements", response_class=JSONResponse)
def achievements() -> JSONResponse:
    return JSONResponse(get_achievements())


@app.get("/api/goals", response_class=JSONResponse)
def goals() -> JSONResponse:
    return JSONResponse(get_goals())


@app.post("/api/goals")
def goals_create(
    name: str = Form(...),
    goal_type: str = Form(...),
    target: int = Form(...),
    description: str = Form(""),
    category: str = Form(""),
) -> JSONResponse:
    if goal_type not in ("quests", "category_quests", "xp", "gold", "streak"):
        return _rejected("Unknown goal type.", 422)
    goal_id = add_goal(name, goal_type, target, description or None, category or None)
    return _changed({"ok": True, "id": goal_id}, 201)


@app.post("/api/goals/{goal_id}/delete")
def goals_delete(goal_id: int) -> JSONResponse:
    if not delete_goal(goal_id):
        return _rejected("Goal not found.", 404)
    return _changed({"ok": True})


@app.get("/api/challenges", response_class=JSONResponse)
def challenges() -> JSONResponse:
    return JSONResponse(get_daily_challenges())


@app.post("/api/challenges/{challenge_id}/claim")
def challenges_claim(challenge_id: str) -> JSONResponse:
    if not claim_daily_challenge(challenge_id):
        return _rejected("Challenge is not complete or already claimed.")
    return _changed({"ok": True})


@app.post("/api/coach")
def coach(payload: dict = Body(...)) -> JSONResponse:
    player = get_player()
    snap = get_progress_snapshot(today_key())
    active = get_active_quests()
    quest = next((q for q in active if q["id"] == payload.get("quest_id")), None)
    try:
        body = build_coach_request(
            payload.get("messages") or [],
            build_player_context(player, snap["skills"]),
            payload.get("mode"),
            active_quests=active,
            quest=quest,
        )
        reply = CoachClient().chat(body)
    except ValueError as exc:
        return _rejected(str(exc), 422)
    except CoachError as exc:
        logger.warning("Coach request failed: %s", exc)
        return _rejected(str(exc), 502)
    return JSONResponse(reply)


@app.get("/settings", response_class=JSONResponse)
def settings() -> JSONResponse:
    return JSONResponse(get_player())


@app.post("/settings")
def save_settings(
    name: str = Form(...),
    oracle_pack: str = Form("default"),
    testing_mode: bool = Form(False),
    discord_webhook_url: str = Form(""),
    ntfy_topic_url: str = Form(""),
    sync_url: str = Form(""),
    sync_user_id: str = Form(""),
) -> JSONResponse:
    update_settings(
        name=name,
        oracle_pack=oracle_pack,
        testing_mode=testing_mode,
        discord_webhook_url=discord_webhook_url,
        ntfy_topic_url=ntfy_topic_url,
        sync_url=sync_url,
        sync_user_id=sync_user_id,
    )
    return JSONResponse(get_player())


@app.post("/testing/advance-day")
def advance_day() -> JSONResponse:
    if not get_player()["testing_mode"]:
        return _rejected("Testing mode is off.", 403)
    new_date = testing_advance_day(1)
    return _changed({"ok": True, "reset": run_daily_reset(new_date)})


@app.get("/export")
def export_save() -> JSONResponse:
    return JSONResponse(export_save_data())


@app.get("/export/history.csv")
def export_history() -> PlainTextResponse:
    return PlainTextResponse(export_history_csv(), media_type="text/csv")


@app.post("/import")
def import_save(payload: str = Form(...)) -> JSONResponse:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return _rejected("Save file is not valid JSON.", 422)
    problem = check_save_data(data)
    if problem:
        return _rejected(f"Save file rejected: {problem}.", 422)
    try:
        import_save_data(data)
    except sqlite3.Error as exc:
        logger.warning("Save import failed: %s", exc)
        return _rejected(f"Save file rejected: {exc}.", 422)
    return _changed({"ok": True})


@app.post("/reset")
def reset() -> JSONResponse:
    reset_progress()
    return _changed({"ok": True, "reset": run_daily_reset()})
