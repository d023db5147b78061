from __future__ import annotations

import logging
import sqlite3

from questlog import db
from questlog.sync import build_gateway, snapshot_revision

logger = logging.getLogger(__name__)


def start_session() -> dict:
    """Prepare local state before any quest can be completed.

    Order matters: schema, then remote reload, then the daily reset, so the reset
    always sees the state the session will actually play on.
    """
    db.init_db()
    reloaded = pull_remote()
    reset = db.run_daily_reset()
    return {"today": reset["today"], "reloaded": reloaded, "reset": reset}


def pull_remote() -> bool:
    gateway = build_gateway(db.get_player())
    if gateway is None:
        return False
    remote = gateway.pull_state()
    if remote is None:
        return False
    problem = db.check_save_data(remote)
    if problem:
        logger.warning("Ignoring remote snapshot: %s", problem)
        return False
    try:
        remote_revision = snapshot_revision(remote)
    except (TypeError, ValueError) as exc:
        logger.warning("Ignoring remote snapshot with unreadable revision: %s", exc)
        return False
    local_revision = db.get_app_state()["revision"]
    if remote_revision <= local_revision:
        return False
    try:
        db.import_save_data(remote)
    except (sqlite3.Error, ValueError) as exc:
        logger.warning("Remote snapshot rejected by the database, keeping local state: %s", exc)
        return False
    logger.info("Adopted remote snapshot (revision %s > %s)", remote_revision, local_revision)
    return True


def push_remote() -> bool | None:
    """Push the current snapshot. None means sync is not configured."""
    gateway = build_gateway(db.get_player())
    if gateway is None:
        return None
    snapshot = db.export_save_data()
    ok = gateway.push_state(snapshot)
    if ok:
        db.mark_synced(snapshot_revision(snapshot))
    else:
        logger.warning("Sync failed; local progress is kept and will be pushed on the next change")
    return ok
