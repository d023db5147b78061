#!/usr/bin/env python3
"""
QuestLog launcher (FastAPI + SQLite)

Creates .venv when missing, installs the project into it, applies today's
daily reset and then serves the JSON API with uvicorn.

  python run.py                      # reset, then serve on 127.0.0.1:8000
  python run.py --daily-reset-only   # reset, notify, exit (cron friendly)
  python run.py --db ~/quests.sqlite3 --port 9000
"""

from __future__ import annotations

import argparse
import os
import platform
import subprocess
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent
VENV_DIR = PROJECT_ROOT / ".venv"


def venv_python() -> Path:
    if platform.system().lower().startswith("win"):
        return VENV_DIR / "Scripts" / "python.exe"
    return VENV_DIR / "bin" / "python"


def run(cmd: list[str], env: dict[str, str] | None = None, check: bool = True) -> int:
    print("\n> " + " ".join(cmd))
    return subprocess.run(cmd, cwd=str(PROJECT_ROOT), env=env, check=check).returncode


def ensure_venv() -> Path:
    py = venv_python()
    if not py.exists():
        print(f"Creating virtual environment at: {VENV_DIR}")
        run([sys.executable, "-m", "venv", str(VENV_DIR)])
        if not py.exists():
            raise RuntimeError(f"Virtualenv created but python not found at: {py}")
    return py


def install(py: Path) -> None:
    if not (PROJECT_ROOT / "pyproject.toml").exists():
        raise FileNotFoundError(f"Missing pyproject.toml in {PROJECT_ROOT}")
    run([str(py), "-m", "pip", "install", "--upgrade", "pip"])
    run([str(py), "-m", "pip", "install", "-e", str(PROJECT_ROOT)])


def child_env(db_path: str | None) -> dict[str, str]:
    env = dict(os.environ)
    if db_path:
        env["QUESTLOG_DB_PATH"] = str(Path(db_path).expanduser().resolve())
    return env


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="run.py",
        description="Install, reset and serve QuestLog.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--daily-reset-only", action="store_true", help="Apply today's reset and exit")
    parser.add_argument("--no-install", action="store_true", help="Skip pip install (assumes .venv is ready)")
    parser.add_argument("--db", help="SQLite file to use (default: questlog.sqlite3 in the project root)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Server port (default: 8000)")
    parser.add_argument("--no-reload", action="store_true", help="Disable uvicorn --reload")
    args = parser.parse_args()

    py = ensure_venv()
    if not args.no_install:
        install(py)

    env = child_env(args.db)
    code = run([str(py), "-m", "questlog.jobs.daily_reset"], env=env, check=False)
    if args.daily_reset_only:
        return code

    cmd = [str(py), "-m", "uvicorn", "questlog.main:app", "--host", args.host, "--port", str(args.port)]
    if not args.no_reload:
        cmd.append("--reload")
    print(f"\nServing QuestLog on http://{args.host}:{args.port}/api/state (Ctrl+C to stop)")
    return run(cmd, env=env, check=False)


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        print("\nStopped.")
        raise
