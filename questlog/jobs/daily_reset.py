from __future__ import annotations

import logging

from questlog.db import get_player
from questlog.notifier import build_notifier, daily_summary
from questlog.session import push_remote, start_session


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    session = start_session()
    summary = daily_summary(session["reset"])
    if summary:
        build_notifier(get_player()).send(*summary)
        push_remote()


if __name__ == "__main__":
    main()
